# flowguard/structural/issues.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ValidationIssue:
    """
    One finding. `error` blocks a patch, `warning`/`info` never do.
    `code` is stable and machine readable; advisory findings may leave it empty.
    """
    severity: Severity
    message: str
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"severity": self.severity.value}
        if self.node_id is not None:
            out["nodeId"] = self.node_id
        if self.node_name is not None:
            out["nodeName"] = self.node_name
        out["message"] = self.message
        if self.code is not None:
            out["code"] = self.code
        if self.details:
            out["details"] = self.details
        return out

    def __str__(self) -> str:
        where = f" [{self.node_name}]" if self.node_name else ""
        code = f" {self.code}" if self.code else ""
        return f"[{self.severity.value.upper()}]{code}{where} {self.message}"


def _as_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def node_issue(
    node: Optional[Dict[str, Any]],
    severity: Severity,
    message: str,
    code: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> ValidationIssue:
    """Build an issue attached to `node` (may be None for workflow-level findings)."""
    node = node if isinstance(node, dict) else {}
    name = node.get("name")
    return ValidationIssue(
        severity=severity,
        message=message,
        node_id=_as_id(node.get("id")),
        node_name=name if isinstance(name, str) else None,
        code=code,
        details=details,
    )


def error(node, message, code=None, details=None) -> ValidationIssue:
    return node_issue(node, Severity.ERROR, message, code, details)


def warning(node, message, code=None, details=None) -> ValidationIssue:
    return node_issue(node, Severity.WARNING, message, code, details)


def info(node, message, code=None, details=None) -> ValidationIssue:
    return node_issue(node, Severity.INFO, message, code, details)


def has_errors(issues: List[ValidationIssue]) -> bool:
    return any(i.is_error for i in issues)


@dataclass
class WorkflowValidationResult:
    issues: List[ValidationIssue] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    statistics: Dict[str, Any] = field(default_factory=dict)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]

    @property
    def infos(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.INFO]

    @property
    def valid(self) -> bool:
        return not self.errors

    def codes(self) -> List[str]:
        return [i.code for i in self.issues if i.code]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [i.to_dict() for i in self.errors],
            "warnings": [i.to_dict() for i in self.warnings],
            "info": [i.to_dict() for i in self.infos],
            "suggestions": list(self.suggestions),
            "statistics": dict(self.statistics),
        }
