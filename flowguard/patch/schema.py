# flowguard/patch/schema.py
from typing import Any, List

from jsonschema import Draft7Validator

_NODE_REF = {
    "anyOf": [
        {"required": ["nodeId"]},
        {"required": ["nodeName"]},
    ]
}

_NODE_REF_PROPS = {
    "nodeId": {"type": ["string", "number"]},
    "nodeName": {"type": "string", "minLength": 1},
}

_CONNECTION_PROPS = {
    "source": {"type": "string", "minLength": 1},
    "target": {"type": "string", "minLength": 1},
    "sourceOutput": {"type": "string", "minLength": 1},
    "targetInput": {"type": "string", "minLength": 1},
    "sourceIndex": {"type": "integer", "minimum": 0},
    "targetIndex": {"type": "integer", "minimum": 0},
}

_POSITION = {
    "type": "array",
    "items": {"type": "number"},
    "minItems": 2,
    "maxItems": 2,
}


def _when(op_type: str, then: dict) -> dict:
    return {"if": {"required": ["type"], "properties": {"type": {"const": op_type}}}, "then": then}


OPERATION_TYPES = (
    "addNode", "removeNode", "updateNode", "moveNode", "enableNode", "disableNode",
    "addConnection", "removeConnection", "updateSettings", "updateMetadata",
)

OPERATION_SCHEMA = {
    "type": "object",
    "required": ["type"],
    "properties": {
        "type": {"type": "string", "enum": list(OPERATION_TYPES)},
        "description": {"type": "string"},
    },
    "allOf": [
        _when("addNode", {
            "required": ["node"],
            "properties": {
                "node": {
                    "type": "object",
                    "required": ["name", "type"],
                    "properties": {
                        "id": {"type": ["string", "number"]},
                        "name": {"type": "string", "minLength": 1},
                        "type": {"type": "string", "minLength": 1},
                        "typeVersion": {"type": "number"},
                        "position": _POSITION,
                        "parameters": {"type": "object"},
                        "credentials": {"type": "object"},
                    },
                },
            },
        }),
        _when("removeNode", {**_NODE_REF, "properties": _NODE_REF_PROPS}),
        _when("updateNode", {
            **_NODE_REF,
            "required": ["changes"],
            "properties": {**_NODE_REF_PROPS, "changes": {"type": "object"}},
        }),
        _when("moveNode", {
            **_NODE_REF,
            "required": ["position"],
            "properties": {**_NODE_REF_PROPS, "position": _POSITION},
        }),
        _when("enableNode", {**_NODE_REF, "properties": _NODE_REF_PROPS}),
        _when("disableNode", {**_NODE_REF, "properties": _NODE_REF_PROPS}),
        _when("addConnection", {"required": ["source", "target"], "properties": _CONNECTION_PROPS}),
        _when("removeConnection", {"required": ["source", "target"], "properties": _CONNECTION_PROPS}),
        _when("updateSettings", {"required": ["settings"], "properties": {"settings": {"type": "object"}}}),
        _when("updateMetadata", {"required": ["metadata"], "properties": {"metadata": {"type": "object"}}}),
    ],
}

_VALIDATOR = Draft7Validator(OPERATION_SCHEMA)


def operation_errors(operation: Any) -> List[str]:
    """Shape problems of one operation, most specific first."""
    errs = sorted(_VALIDATOR.iter_errors(operation), key=lambda e: (-len(e.absolute_path), e.message))
    out = []
    for e in errs:
        where = "/".join(str(p) for p in e.absolute_path)
        out.append(f"{where}: {e.message}" if where else e.message)
    return out
