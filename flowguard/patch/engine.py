# flowguard/patch/engine.py
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flowguard.config import DEFAULT_CONFIG, EngineConfig
from flowguard.errors import OperationError
from flowguard.patch.operations import NODE_OPERATION_TYPES, apply_operation
from flowguard.structural.issues import ValidationIssue, error, has_errors
from flowguard.utils.logger import get_logger
from flowguard.validator import validate_workflow

logger = get_logger("patch")


@dataclass
class PatchResult:
    workflow: Dict[str, Any]
    accepted: bool
    issues: List[ValidationIssue] = field(default_factory=list)
    operations_applied: int = 0
    message: str = ""
    validate_only: bool = False

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.is_error]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow": self.workflow,
            "accepted": self.accepted,
            "issues": [i.to_dict() for i in self.issues],
            "operationsApplied": self.operations_applied,
            "message": self.message,
            "validateOnly": self.validate_only,
        }


def _run_pass(working: Dict[str, Any], indexed_ops, issues: List[ValidationIssue]) -> int:
    applied = 0
    for idx, op in indexed_ops:
        try:
            apply_operation(working, op)
            applied += 1
        except OperationError as e:
            logger.warning("Operation %d (%s) failed: %s", idx, op.get("type") if isinstance(op, dict) else op, e.message)
            issues.append(error(None, f"Operation {idx} failed: {e.message}", e.code, {"operation": idx}))
    return applied


def apply_patch(
    workflow: Dict[str, Any],
    operations: List[Dict[str, Any]],
    validate_only: bool = False,
    catalog: Any = None,
    config: Optional[EngineConfig] = None,
) -> PatchResult:
    """
    Apply a batch of edit operations to a copy of `workflow` and validate the outcome.

    Node operations run first and everything else second, each group in input
    order, so a connection may name a node added later in the same list.
    Any failing operation or any error from validation rejects the patch and the
    caller gets its original workflow back. In validate_only mode the copy is
    checked but never returned.
    """
    cfg = config or DEFAULT_CONFIG
    if not isinstance(operations, list):
        raise TypeError(f"operations must be a list, got {type(operations).__name__}")
    if not isinstance(workflow, dict):
        raise TypeError(f"workflow must be a dict, got {type(workflow).__name__}")

    if len(operations) > cfg.max_operations:
        msg = f"Too many operations: {len(operations)} (maximum {cfg.max_operations} per request)"
        logger.info("Patch rejected: %s", msg)
        return PatchResult(
            workflow=workflow,
            accepted=False,
            issues=[error(None, msg, "TOO_MANY_OPERATIONS", {"count": len(operations), "limit": cfg.max_operations})],
            message=msg,
            validate_only=validate_only,
        )

    working = copy.deepcopy(workflow)
    indexed = list(enumerate(operations))
    node_ops = [(i, op) for i, op in indexed if isinstance(op, dict) and op.get("type") in NODE_OPERATION_TYPES]
    other_ops = [(i, op) for i, op in indexed if not (isinstance(op, dict) and op.get("type") in NODE_OPERATION_TYPES)]

    issues: List[ValidationIssue] = []
    applied = _run_pass(working, node_ops, issues)
    applied += _run_pass(working, other_ops, issues)
    issues.sort(key=lambda i: i.details.get("operation", 0) if i.details else 0)

    if issues:
        msg = f"{len(issues)} of {len(operations)} operation(s) failed; no changes were applied"
        logger.info("Patch rejected: %s", msg)
        return PatchResult(workflow, False, issues, applied, msg, validate_only)

    result = validate_workflow(working, catalog=catalog, config=cfg)
    issues = list(result.issues)
    ok = not has_errors(issues)

    if validate_only:
        msg = (
            "Validation successful. Operations are valid but not applied."
            if ok else f"Validation failed with {len(result.errors)} error(s). Operations were not applied."
        )
        logger.info("Patch checked (validate only): %s", msg)
        return PatchResult(workflow, ok, issues, applied, msg, True)

    if not ok:
        msg = f"Patch rejected: resulting workflow has {len(result.errors)} error(s)"
        logger.info(msg)
        return PatchResult(workflow, False, issues, applied, msg)

    msg = f"Applied {applied} operation(s)"
    logger.info("Patch accepted: %s", msg)
    return PatchResult(working, True, issues, applied, msg)
