# flowguard/validator.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from flowguard.config import DEFAULT_CONFIG, EngineConfig
from flowguard.nodes.registry import validate_node_classes
from flowguard.structural.checker import structural_check
from flowguard.structural.issues import Severity, ValidationIssue, WorkflowValidationResult, error
from flowguard.structural.metrics import compute_statistics
from flowguard.utils.graph import ERROR_PORT, build_reverse_index
from flowguard.utils.logger import get_logger
from flowguard.utils.normalizer import normalize_workflow

logger = get_logger("validator")

CONNECTION_CODES = (
    "UNKNOWN_SOURCE_NODE",
    "CONNECTION_USES_NODE_ID",
    "DANGLING_CONNECTION",
    "NO_CONNECTIONS",
)


def validate_workflow(
    workflow: Dict[str, Any],
    catalog: Any = None,
    config: Optional[EngineConfig] = None,
) -> WorkflowValidationResult:
    """
    Validate a raw workflow.

    Pipeline: normalize node types -> build reverse index once ->
    structural checks + node-class rules -> statistics + suggestions.
    The caller's workflow is never modified.
    """
    cfg = config or DEFAULT_CONFIG
    if not isinstance(workflow, dict):
        return WorkflowValidationResult(issues=[error(None, "Workflow must be an object", "INVALID_WORKFLOW_SHAPE")])

    wf = normalize_workflow(workflow)
    reverse_index = build_reverse_index(wf)

    issues: List[ValidationIssue] = structural_check(wf, reverse_index, catalog, cfg)
    if isinstance(wf.get("nodes"), list) and isinstance(wf.get("connections"), dict):
        issues.extend(validate_node_classes(wf, reverse_index, cfg))
        statistics = compute_statistics(wf)
    else:
        statistics = {}

    result = WorkflowValidationResult(issues=issues, statistics=statistics)
    result.suggestions = generate_suggestions(wf, result, cfg)
    logger.debug(
        "Validated workflow %r: %d errors, %d warnings",
        workflow.get("name"), len(result.errors), len(result.warnings),
    )
    return result


def generate_suggestions(
    workflow: Dict[str, Any],
    result: WorkflowValidationResult,
    config: Optional[EngineConfig] = None,
) -> List[str]:
    cfg = config or DEFAULT_CONFIG
    nodes = [n for n in workflow.get("nodes") or [] if isinstance(n, dict)] if isinstance(workflow.get("nodes"), list) else []
    conns = workflow.get("connections") if isinstance(workflow.get("connections"), dict) else {}
    out: List[str] = []

    if nodes and result.statistics.get("triggerNodes", 0) == 0:
        out.append("Add a trigger node (e.g. Webhook, Schedule Trigger) to automate workflow execution")

    if any(i.code in CONNECTION_CODES for i in result.errors):
        out.append(
            'Example connection structure: connections: { "Manual Trigger": { "main": '
            '[[{ "node": "Set", "type": "main", "index": 0 }]] } }'
        )
        out.append(
            "Remember: use node NAMES (not IDs) in connections. "
            "The name is what you see in the UI, not the node type."
        )

    if any(i.code in ("INCORRECT_ERROR_OUTPUT", "MISSING_ERROR_OUTPUT_CONNECTIONS", "MISSING_ON_ERROR") for i in result.issues):
        out.append("Error branches live in main[1] and need onError: 'continueErrorOutput' on the source node")
    elif len(nodes) > 3 and not any(isinstance(p, dict) and p.get(ERROR_PORT) for p in conns.values()) \
            and not any(n.get("onError") == "continueErrorOutput" for n in nodes):
        out.append("Add error handling using the error output of nodes or an Error Trigger node")

    if len(nodes) > cfg.large_workflow_nodes:
        out.append("Consider breaking this workflow into smaller sub-workflows for better maintainability")

    if len(nodes) == 1 and not conns:
        out.append(
            "A minimal workflow needs: 1) a trigger node (e.g. Manual Trigger), "
            "2) an action node (e.g. Set, HTTP Request), 3) a connection between them"
        )

    if any(n.get("continueOnFail") is True and not n.get("disabled") for n in nodes):
        out.append("Replace \"continueOnFail: true\" with \"onError: 'continueRegularOutput'\"")

    # info findings are advice; surface them next to the suggestions
    for i in result.issues:
        if i.severity == Severity.INFO:
            out.append(f"{i.node_name}: {i.message}" if i.node_name else i.message)

    return out
