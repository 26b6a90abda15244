# flowguard/structural/schema.py
from typing import Any, Dict, List

from jsonschema import Draft7Validator

# Lenient on purpose for edges: malformed edge entries are reported by the
# connection checks (or dropped by the index), not rejected wholesale here.
WORKFLOW_SCHEMA = {
    "type": "object",
    "required": ["nodes", "connections"],
    "properties": {
        "name": {"type": "string"},
        "nodes": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "type"],
                "properties": {
                    "id": {"type": ["string", "number"]},
                    "name": {"type": "string", "minLength": 1},
                    "type": {"type": "string", "minLength": 1},
                    "typeVersion": {"type": ["integer", "number"]},
                    "position": {
                        "type": "array",
                        "items": {"type": "number"},
                        "minItems": 2,
                        "maxItems": 2,
                    },
                    "parameters": {"type": "object"},
                    "credentials": {"type": "object"},
                },
                "additionalProperties": True,
            },
        },
        "connections": {
            "type": "object",
            # source node name -> port type -> output buckets
            "additionalProperties": {
                "type": "object",
                "additionalProperties": {
                    "type": "array",
                    "items": {"type": ["array", "null"]},
                },
            },
        },
        "settings": {"type": "object"},
    },
    "additionalProperties": True,
}

_VALIDATOR = Draft7Validator(WORKFLOW_SCHEMA)


def _path(err) -> str:
    parts = [str(p) for p in err.absolute_path]
    return "/".join(parts) if parts else "<root>"


def schema_errors(workflow: Any) -> List[Dict[str, str]]:
    """All shape violations as {path, message}, sorted by path for stable output."""
    out = [
        {"path": _path(e), "message": e.message}
        for e in _VALIDATOR.iter_errors(workflow)
    ]
    out.sort(key=lambda d: d["path"])
    return out
