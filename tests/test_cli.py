import json

import yaml
from typer.testing import CliRunner

from flowguard.cli import app

runner = CliRunner()


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_validate_valid_workflow(tmp_path, simple_workflow):
    wf = _write(tmp_path / "wf.json", simple_workflow)
    report = tmp_path / "out" / "report.json"
    result = runner.invoke(app, ["validate", "--input", str(wf), "--report", str(report), "--verbose"])
    assert result.exit_code == 0, result.output
    assert "Valid:    True" in result.output
    payload = json.loads(report.read_text(encoding="utf-8"))
    assert payload["valid"] is True
    assert payload["statistics"]["totalNodes"] == 2


def test_validate_invalid_workflow_exits_1(tmp_path, node, workflow):
    wf = _write(tmp_path / "wf.json", workflow([node("AI Agent", "@n8n/n8n-nodes-langchain.agent")]))
    result = runner.invoke(app, ["validate", "-i", str(wf)])
    assert result.exit_code == 1
    assert "MISSING_LANGUAGE_MODEL" in result.output


def test_validate_reads_yaml_and_catalog(tmp_path, simple_workflow):
    wf = tmp_path / "wf.yaml"
    wf.write_text(yaml.safe_dump(simple_workflow), encoding="utf-8")
    catalog = _write(tmp_path / "catalog.json", {"nodes": {"nodes-base.set": {"isVersioned": True, "version": 3.4}}})
    result = runner.invoke(app, ["validate", "-i", str(wf), "--catalog", str(catalog)])
    assert result.exit_code == 0, result.output
    assert "OUTDATED_TYPE_VERSION" in result.output


def test_patch_writes_workflow(tmp_path, simple_workflow):
    wf = _write(tmp_path / "wf.json", simple_workflow)
    ops = _write(tmp_path / "ops.json", [
        {"type": "addConnection", "source": "Set", "target": "Notify"},
        {"type": "addNode", "node": {"name": "Notify", "type": "n8n-nodes-base.slack"}},
    ])
    out = tmp_path / "patched.json"
    result = runner.invoke(app, ["patch", "-i", str(wf), "--ops", str(ops), "--out", str(out)])
    assert result.exit_code == 0, result.output
    assert "Accepted: True" in result.output
    patched = json.loads(out.read_text(encoding="utf-8"))
    assert [n["name"] for n in patched["nodes"]] == ["Manual Trigger", "Set", "Notify"]


def test_patch_rejection_exits_1(tmp_path, simple_workflow):
    wf = _write(tmp_path / "wf.json", simple_workflow)
    ops = _write(tmp_path / "ops.json", {"operations": [{"type": "removeNode", "nodeName": "Ghost"}]})
    out = tmp_path / "patched.json"
    result = runner.invoke(app, ["patch", "-i", str(wf), "--ops", str(ops), "--out", str(out)])
    assert result.exit_code == 1
    assert "NODE_NOT_FOUND" in result.output
    assert not out.exists()


def test_patch_max_operations_override(tmp_path, simple_workflow):
    wf = _write(tmp_path / "wf.json", simple_workflow)
    ops = _write(tmp_path / "ops.json", [
        {"type": "moveNode", "nodeName": "Set", "position": [10, 10]},
        {"type": "disableNode", "nodeName": "Set"},
    ])
    result = runner.invoke(app, ["patch", "-i", str(wf), "--ops", str(ops), "--max-operations", "1", "--validate-only"])
    assert result.exit_code == 1
    assert "TOO_MANY_OPERATIONS" in result.output


def test_unsupported_input_extension(tmp_path):
    wf = tmp_path / "wf.txt"
    wf.write_text("{}", encoding="utf-8")
    result = runner.invoke(app, ["validate", "-i", str(wf)])
    assert result.exit_code != 0


def test_malformed_yaml_is_a_usage_error(tmp_path):
    wf = tmp_path / "wf.yaml"
    wf.write_text("nodes: [unclosed\n  - name: x\n", encoding="utf-8")
    result = runner.invoke(app, ["validate", "-i", str(wf)])
    assert result.exit_code == 2
    assert isinstance(result.exception, SystemExit)
    assert "Cannot read workflow" in result.output


def test_log_file_option(tmp_path, simple_workflow):
    wf = _write(tmp_path / "wf.json", simple_workflow)
    ops = _write(tmp_path / "ops.json", [{"type": "moveNode", "nodeName": "Set", "position": [40, 40]}])
    log_file = tmp_path / "logs" / "flowguard.log"
    result = runner.invoke(app, ["--log-level", "info", "--log-file", str(log_file), "patch", "-i", str(wf), "--ops", str(ops), "--validate-only"])
    assert result.exit_code == 0, result.output
    assert "Patch checked (validate only)" in log_file.read_text(encoding="utf-8")
