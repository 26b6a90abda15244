#!/usr/bin/env python3
# flowguard/cli.py

import json
from pathlib import Path
from typing import Optional

import typer
import yaml

from flowguard.config import EngineConfig
from flowguard.errors import CatalogError
from flowguard.nodes.catalog import NodeCatalog
from flowguard.patch.engine import apply_patch
from flowguard.utils.io import load_any, write_json
from flowguard.utils.logger import init_logger
from flowguard.validator import validate_workflow

app = typer.Typer(help="flowguard CLI - validate and patch n8n workflows")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG/INFO/WARNING/ERROR (default: $FLOWGUARD_LOG_LEVEL or INFO)"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write logs to this rotating file"),
):
    init_logger(level=log_level, log_file=log_file)


def _load(path: Path, what: str):
    try:
        return load_any(path)
    except (ValueError, OSError, yaml.YAMLError) as e:
        raise typer.BadParameter(f"Cannot read {what} '{path}': {e}")


def _load_catalog(path: Optional[Path]) -> Optional[NodeCatalog]:
    if path is None:
        return None
    try:
        return NodeCatalog.from_file(path)
    except (CatalogError, ValueError, OSError, yaml.YAMLError) as e:
        raise typer.BadParameter(f"Invalid node catalog '{path}': {e}")


def _print_issues(issues) -> None:
    if issues:
        print("Detected issues:")
        for it in issues:
            print(f"- {it}")


@app.command()
def validate(
    input: Path = typer.Option(..., "--input", "-i", exists=True, readable=True, help="Path to workflow JSON/YAML"),
    catalog: Optional[Path] = typer.Option(None, "--catalog", "-c", exists=True, readable=True, help="Node catalog JSON/YAML"),
    report: Optional[Path] = typer.Option(None, "--report", help="Write a JSON report to this path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show statistics and suggestions"),
):
    """
    Validate a workflow: structure, connections, error outputs and AI node rules.
    Exits with status 1 when any error is found.
    """
    wf = _load(input, "workflow")
    config = EngineConfig.from_env()
    result = validate_workflow(wf, catalog=_load_catalog(catalog), config=config)

    print(f"Valid:    {result.valid}")
    print(f"Errors:   {len(result.errors)}")
    print(f"Warnings: {len(result.warnings)}")

    if report is not None:
        payload = {"input": str(input), **result.to_dict()}
        write_json(report, payload)
        print(f"[ok] wrote report to {report}")

    _print_issues(result.errors + result.warnings)

    if verbose:
        print("[debug] statistics:", json.dumps(result.statistics, ensure_ascii=False))
        for s in result.suggestions:
            print(f"[hint] {s}")

    if not result.valid:
        raise typer.Exit(code=1)


@app.command()
def patch(
    input: Path = typer.Option(..., "--input", "-i", exists=True, readable=True, help="Path to workflow JSON/YAML"),
    ops: Path = typer.Option(..., "--ops", "-o", exists=True, readable=True, help="JSON/YAML list of operations"),
    validate_only: bool = typer.Option(False, "--validate-only", help="Check the operations without producing a new workflow"),
    out: Optional[Path] = typer.Option(None, "--out", help="Where to write the patched workflow (default: stdout)"),
    catalog: Optional[Path] = typer.Option(None, "--catalog", "-c", exists=True, readable=True, help="Node catalog JSON/YAML"),
    max_operations: Optional[int] = typer.Option(None, "--max-operations", min=1, help="Override the per-request operation cap"),
):
    """
    Apply a batch of operations to a workflow. The workflow is only written
    when the patched result validates without errors.
    """
    wf = _load(input, "workflow")
    operations = _load(ops, "operations")
    if isinstance(operations, dict) and "operations" in operations:
        operations = operations["operations"]
    if not isinstance(operations, list):
        raise typer.BadParameter("Operations file must contain a list (or an object with an 'operations' list)")

    config = EngineConfig.from_env().with_overrides(max_operations=max_operations)
    result = apply_patch(wf, operations, validate_only=validate_only, catalog=_load_catalog(catalog), config=config)

    print(f"Accepted: {result.accepted}")
    print(f"Applied:  {result.operations_applied}/{len(operations)}")
    print(result.message)
    _print_issues([i for i in result.issues if i.severity.value != "info"])

    if result.accepted and not validate_only:
        if out is not None:
            write_json(out, result.workflow)
            print(f"[ok] wrote workflow to {out}")
        else:
            print(json.dumps(result.workflow, ensure_ascii=False, indent=2))

    if not result.accepted:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
