# flowguard/nodes/registry.py
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from flowguard.config import DEFAULT_CONFIG, EngineConfig
from flowguard.nodes.ai_nodes import (
    AGENT_TYPE,
    CHAT_TRIGGER_TYPE,
    LLM_CHAIN_TYPE,
    validate_agent,
    validate_chat_trigger,
    validate_llm_chain,
)
from flowguard.nodes.tools import TOOL_VALIDATORS
from flowguard.structural.issues import ValidationIssue, error
from flowguard.utils.graph import ReverseIndex, build_reverse_index
from flowguard.utils.logger import get_logger
from flowguard.utils.normalizer import LANGCHAIN_PREFIX, normalize_node_type

logger = get_logger("nodes")

NodeRule = Callable[[Dict[str, Any], Optional[ReverseIndex], Dict[str, Any], Optional[EngineConfig]], List[ValidationIssue]]

# canonical type -> rule
NODE_CLASS_VALIDATORS: Dict[str, NodeRule] = {
    AGENT_TYPE: validate_agent,
    CHAT_TRIGGER_TYPE: validate_chat_trigger,
    LLM_CHAIN_TYPE: validate_llm_chain,
    **TOOL_VALIDATORS,
}

_CATEGORY_HINTS = (
    (("openAi", "anthropic", "googleGemini", "lmChat", "ollama", "mistral"), "Language Model"),
    (("memory", "buffer"), "Memory"),
    (("vectorStore", "pinecone", "qdrant"), "Vector Store"),
    (("embedding",), "Embeddings"),
    (("outputParser",), "Output Parser"),
    (("textSplitter",), "Text Splitter"),
)


def has_node_class_rules(node_type: Any) -> bool:
    """Cheap membership test: is there a rule set for this (normalized) type?"""
    return isinstance(node_type, str) and normalize_node_type(node_type) in NODE_CLASS_VALIDATORS


def is_ai_tool_type(node_type: Any) -> bool:
    return isinstance(node_type, str) and normalize_node_type(node_type) in TOOL_VALIDATORS


def node_category(node_type: Any) -> Optional[str]:
    """Human label for AI-related node types, None for everything else."""
    t = normalize_node_type(node_type)
    if not isinstance(t, str):
        return None
    if t == AGENT_TYPE:
        return "AI Agent"
    if t == CHAT_TRIGGER_TYPE:
        return "Chat Trigger"
    if t == LLM_CHAIN_TYPE:
        return "Basic LLM Chain"
    if t in TOOL_VALIDATORS:
        return "AI Tool"
    if t.startswith(LANGCHAIN_PREFIX):
        for hints, label in _CATEGORY_HINTS:
            if any(h.lower() in t.lower() for h in hints):
                return label
        return "AI Component"
    return None


def has_ai_nodes(workflow: Dict[str, Any]) -> bool:
    nodes = workflow.get("nodes") if isinstance(workflow, dict) else None
    return any(
        isinstance(n, dict) and has_node_class_rules(n.get("type"))
        for n in (nodes if isinstance(nodes, list) else [])
    )


def validate_node(
    node: Dict[str, Any],
    reverse_index: Optional[ReverseIndex],
    workflow: Dict[str, Any],
    config: Optional[EngineConfig] = None,
) -> List[ValidationIssue]:
    """Dispatch one node to its rule set; unknown types yield nothing."""
    rule = NODE_CLASS_VALIDATORS.get(normalize_node_type(node.get("type")))
    if rule is None:
        return []
    return rule(node, reverse_index, workflow, config or DEFAULT_CONFIG)


def validate_node_classes(
    workflow: Dict[str, Any],
    reverse_index: Optional[ReverseIndex] = None,
    config: Optional[EngineConfig] = None,
) -> List[ValidationIssue]:
    """
    Run the per-class rules for every enabled node with a registered type.
    A rule that crashes is reported as NODE_VALIDATION_FAILED and the rest still run.
    """
    nodes = workflow.get("nodes") if isinstance(workflow, dict) else None
    if not isinstance(nodes, list):
        return []
    if reverse_index is None:
        reverse_index = build_reverse_index(workflow)

    issues: List[ValidationIssue] = []
    for node in nodes:
        if not isinstance(node, dict) or node.get("disabled") is True:
            continue
        if not isinstance(node.get("name"), str) or not has_node_class_rules(node.get("type")):
            continue
        try:
            issues.extend(validate_node(node, reverse_index, workflow, config))
        except Exception as e:
            logger.exception("Node rules crashed for %r", node.get("name"))
            issues.append(error(node, f"Failed to validate node: {e}", "NODE_VALIDATION_FAILED"))
    return issues
