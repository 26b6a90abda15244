import json
from pathlib import Path

import pytest

from flowguard.validator import validate_workflow

BENCH_DIR = Path(__file__).resolve().parent.parent / "bench" / "structural"


def _messages(issues):
    return [i.message for i in issues]


@pytest.mark.parametrize("case_dir", sorted(BENCH_DIR.glob("S*")), ids=lambda p: p.name)
def test_structural_bench(case_dir: Path):
    """
    Structural benchmark:
    - load workflow.json
    - load expect.json
    - run validate_workflow
    - check presence/absence of issue codes and message fragments
    """
    wf_file = case_dir / "workflow.json"
    exp_file = case_dir / "expect.json"

    assert wf_file.exists(), f"Missing workflow.json in {case_dir}"
    assert exp_file.exists(), f"Missing expect.json in {case_dir}"

    with wf_file.open("r", encoding="utf-8") as f:
        workflow = json.load(f)

    with exp_file.open("r", encoding="utf-8") as f:
        expect = json.load(f)

    result = validate_workflow(workflow)
    asserts = (expect.get("assert") or {})
    codes = set(result.codes())

    # ---- valid ----
    if "valid" in asserts:
        assert result.valid == asserts["valid"], f"{case_dir.name}: valid={result.valid}, errors={_messages(result.errors)}"

    # ---- error_count ----
    if "error_count" in asserts:
        assert len(result.errors) == asserts["error_count"], f"{case_dir.name}: errors={_messages(result.errors)}"

    # ---- codes ----
    for code in asserts.get("codes_include", []):
        assert code in codes, f"{case_dir.name}: expected {code} in {sorted(codes)}"
    for code in asserts.get("codes_exclude", []):
        assert code not in codes, f"{case_dir.name}: unexpected {code}"

    # ---- message fragments ----
    error_text = "\n".join(_messages(result.errors))
    for fragment in asserts.get("errors_include", []):
        assert fragment in error_text, f"{case_dir.name}: missing error text {fragment!r}"
    for fragment in asserts.get("errors_exclude", []):
        assert fragment not in error_text, f"{case_dir.name}: unexpected error text {fragment!r}"

    info_text = "\n".join(_messages(result.infos))
    for fragment in asserts.get("info_exclude", []):
        assert fragment not in info_text, f"{case_dir.name}: unexpected info {fragment!r}"

    # ---- acyclic ----
    if "acyclic" in asserts:
        assert result.statistics.get("acyclic") == asserts["acyclic"], f"{case_dir.name}: acyclic mismatch"

    # every finding must be serialisable to the external shape
    json.dumps(result.to_dict())
