# flowguard/utils/normalizer.py
from __future__ import annotations

import copy
from typing import Any, Dict, Iterable

BASE_PREFIX = "nodes-base."
LANGCHAIN_PREFIX = "nodes-langchain."

# Historical spellings -> canonical short prefix.
# Longest prefixes first so "@n8n/n8n-nodes-langchain." wins over "n8n-nodes-langchain.".
_PREFIX_MAP = (
    ("@n8n/n8n-nodes-langchain.", LANGCHAIN_PREFIX),
    ("n8n-nodes-langchain.", LANGCHAIN_PREFIX),
    ("n8n-nodes-base.", BASE_PREFIX),
)

_FULL_PREFIXES = tuple(p for p, _ in _PREFIX_MAP)


def normalize_node_type(node_type: Any) -> Any:
    """
    Canonicalize a node type identifier.

      n8n-nodes-base.webhook                  -> nodes-base.webhook
      @n8n/n8n-nodes-langchain.agent          -> nodes-langchain.agent
      n8n-nodes-langchain.agent               -> nodes-langchain.agent
      nodes-base.webhook / community types    -> unchanged

    Non-string input is returned as-is so callers never have to guard.
    """
    if not isinstance(node_type, str) or not node_type:
        return node_type
    for prefix, canonical in _PREFIX_MAP:
        if node_type.startswith(prefix):
            return canonical + node_type[len(prefix):]
    return node_type


def normalize_batch(node_types: Iterable[Any]) -> Dict[Any, Any]:
    """Map each input spelling to its canonical form."""
    out: Dict[Any, Any] = {}
    for t in node_types:
        try:
            out[t] = normalize_node_type(t)
        except TypeError:
            # unhashable junk in the input list; nothing to key on
            continue
    return out


def normalize_workflow(workflow: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of `workflow` whose node `type` fields are canonical."""
    wf = copy.deepcopy(workflow)
    nodes = wf.get("nodes") if isinstance(wf, dict) else None
    if not isinstance(nodes, list):
        return wf
    for n in nodes:
        if isinstance(n, dict) and "type" in n:
            n["type"] = normalize_node_type(n["type"])
    return wf


def detect_package(node_type: Any) -> str:
    """base | langchain | community | unknown"""
    t = normalize_node_type(node_type)
    if not isinstance(t, str) or not t:
        return "unknown"
    if t.startswith(BASE_PREFIX):
        return "base"
    if t.startswith(LANGCHAIN_PREFIX):
        return "langchain"
    if "." in t:
        return "community"
    return "unknown"


def is_full_form(node_type: Any) -> bool:
    return isinstance(node_type, str) and node_type.startswith(_FULL_PREFIXES)


def is_short_form(node_type: Any) -> bool:
    return isinstance(node_type, str) and node_type.startswith((BASE_PREFIX, LANGCHAIN_PREFIX))
