# flowguard/nodes/ai_nodes.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from flowguard.config import DEFAULT_CONFIG, EngineConfig
from flowguard.structural.issues import ValidationIssue, error, info, warning
from flowguard.utils.graph import (
    MAIN,
    ReverseIndex,
    connections_to,
    has_outgoing,
    node_by_name,
    outgoing_buckets,
)
from flowguard.utils.normalizer import normalize_node_type

AGENT_TYPE = "nodes-langchain.agent"
CHAT_TRIGGER_TYPE = "nodes-langchain.chatTrigger"
LLM_CHAIN_TYPE = "nodes-langchain.chainLlm"

STREAMING = "streaming"
LAST_NODE = "lastNode"


def _params(node: Dict[str, Any]) -> Dict[str, Any]:
    p = node.get("parameters")
    return p if isinstance(p, dict) else {}


def _options(node: Dict[str, Any]) -> Dict[str, Any]:
    o = _params(node).get("options")
    return o if isinstance(o, dict) else {}


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _blank(v: Any) -> bool:
    return v is None or v == "" or (isinstance(v, str) and not v.strip())


def response_mode(node: Dict[str, Any]) -> str:
    """Chat trigger response mode; lives under options, older exports put it on parameters."""
    mode = _options(node).get("responseMode") or _params(node).get("responseMode")
    return mode if isinstance(mode, str) and mode else LAST_NODE


def _system_message(node: Dict[str, Any]) -> Any:
    msg = _options(node).get("systemMessage")
    if msg is None:
        msg = _params(node).get("systemMessage")
    return msg


def _check_prompt_text(node: Dict[str, Any], label: str) -> List[ValidationIssue]:
    params = _params(node)
    if params.get("promptType") == "define" and _blank(params.get("text")):
        return [error(
            node,
            f'{label} "{node.get("name")}" has promptType="define" but the text field is empty. '
            'Provide a custom prompt or switch to promptType="auto".',
            "MISSING_PROMPT_TEXT",
        )]
    return []


def is_streaming_target(node: Dict[str, Any], reverse_index: Optional[ReverseIndex], workflow: Dict[str, Any]) -> bool:
    """True if a chat trigger in streaming mode feeds `node` over `main`."""
    by_name = node_by_name(workflow)
    for conn in connections_to(node.get("name"), reverse_index, MAIN):
        src = by_name.get(conn.source_name)
        if src is None:
            continue
        if normalize_node_type(src.get("type")) == CHAT_TRIGGER_TYPE and response_mode(src) == STREAMING:
            return True
    return False


# ---------- Agent ----------

def validate_agent(
    node: Dict[str, Any],
    reverse_index: Optional[ReverseIndex],
    workflow: Dict[str, Any],
    config: Optional[EngineConfig] = None,
) -> List[ValidationIssue]:
    cfg = config or DEFAULT_CONFIG
    name = node.get("name")
    params = _params(node)
    issues: List[ValidationIssue] = []

    # 1) language models: exactly 1, or 2 with needsFallback
    models = connections_to(name, reverse_index, "ai_languageModel")
    needs_fallback = params.get("needsFallback") is True
    if not models:
        issues.append(error(
            node,
            f'AI Agent "{name}" requires an ai_languageModel connection. '
            "Connect a language model node (e.g. OpenAI Chat Model, Anthropic Chat Model).",
            "MISSING_LANGUAGE_MODEL",
        ))
    elif len(models) > 2:
        issues.append(error(
            node,
            f'AI Agent "{name}" has {len(models)} ai_languageModel connections. '
            "Maximum is 2 (for fallback model support).",
            "TOO_MANY_LANGUAGE_MODELS",
        ))
    elif len(models) == 2 and not needs_fallback:
        issues.append(warning(
            node,
            f'AI Agent "{name}" has 2 language models but needsFallback is not enabled. '
            "Set needsFallback=true or remove the second model.",
        ))
    elif len(models) == 1 and needs_fallback:
        issues.append(error(
            node,
            f'AI Agent "{name}" has needsFallback=true but only 1 language model connected. '
            "Connect a second model for fallback or disable needsFallback.",
            "FALLBACK_MISSING_SECOND_MODEL",
        ))

    # 2) output parser
    parsers = connections_to(name, reverse_index, "ai_outputParser")
    if params.get("hasOutputParser") is True:
        if not parsers:
            issues.append(error(
                node,
                f'AI Agent "{name}" has hasOutputParser=true but no ai_outputParser connection. '
                "Connect an output parser or set hasOutputParser=false.",
                "MISSING_OUTPUT_PARSER",
            ))
    elif parsers:
        issues.append(warning(
            node,
            f'AI Agent "{name}" has an output parser connected but hasOutputParser is not true. '
            "Set hasOutputParser=true to enable output parsing.",
        ))
    if len(parsers) > 1:
        issues.append(error(
            node, f'AI Agent "{name}" has {len(parsers)} output parsers. Only 1 is allowed.', "MULTIPLE_OUTPUT_PARSERS"
        ))

    # 3) prompt
    issues.extend(_check_prompt_text(node, "AI Agent"))

    # 4) system message (advice only)
    system_message = _system_message(node)
    if _blank(system_message):
        issues.append(info(
            node,
            f'AI Agent "{name}" has no systemMessage. '
            "Consider adding one to define the agent's role, capabilities and constraints.",
        ))
    elif isinstance(system_message, str) and len(system_message.strip()) < cfg.min_system_message_length:
        issues.append(info(
            node,
            f'AI Agent "{name}" systemMessage is very short '
            f"(minimum {cfg.min_system_message_length} characters recommended).",
        ))

    # 5) streaming: responses flow back through the chat trigger, never over main
    streaming_target = is_streaming_target(node, reverse_index, workflow)
    own_streaming = _options(node).get("streamResponse") is True
    if (streaming_target or own_streaming) and has_outgoing(workflow, name, MAIN):
        source = (
            'connected from Chat Trigger with responseMode="streaming"'
            if streaming_target
            else "has streamResponse=true in options"
        )
        issues.append(error(
            node,
            f'AI Agent "{name}" is in streaming mode ({source}) but has outgoing main connections. '
            "Remove all main output connections: streaming responses flow back through the Chat Trigger.",
            "STREAMING_WITH_MAIN_OUTPUT",
        ))

    # 6) memory
    memory = connections_to(name, reverse_index, "ai_memory")
    if len(memory) > 1:
        issues.append(error(
            node,
            f'AI Agent "{name}" has {len(memory)} ai_memory connections. Only 1 memory is allowed.',
            "MULTIPLE_MEMORY_CONNECTIONS",
        ))

    # 7) tools
    if not connections_to(name, reverse_index, "ai_tool"):
        issues.append(info(
            node,
            f'AI Agent "{name}" has no ai_tool connections. Consider adding tools to enhance the agent\'s capabilities.',
        ))

    # 8) maxIterations
    if "maxIterations" in params:
        max_it = params.get("maxIterations")
        if not _is_number(max_it):
            issues.append(error(
                node, f'AI Agent "{name}" has invalid maxIterations type. Must be a number.', "INVALID_MAX_ITERATIONS_TYPE"
            ))
        elif max_it < 1:
            issues.append(error(
                node, f'AI Agent "{name}" has maxIterations={max_it}. Must be at least 1.', "MAX_ITERATIONS_TOO_LOW"
            ))
        elif max_it > cfg.max_iterations_warning:
            issues.append(warning(
                node,
                f'AI Agent "{name}" has maxIterations={max_it}. Very high iteration counts '
                f"(>{cfg.max_iterations_warning}) may cause long execution times and high costs.",
            ))

    return issues


# ---------- Chat trigger ----------

def validate_chat_trigger(
    node: Dict[str, Any],
    reverse_index: Optional[ReverseIndex],
    workflow: Dict[str, Any],
    config: Optional[EngineConfig] = None,
) -> List[ValidationIssue]:
    name = node.get("name")
    mode = response_mode(node)
    issues: List[ValidationIssue] = []

    buckets = outgoing_buckets(workflow, name, MAIN)
    if not buckets or not buckets[0]:
        issues.append(error(
            node,
            f'Chat Trigger "{name}" has no outgoing connections. Connect it to an AI Agent or workflow.',
            "MISSING_CONNECTIONS",
        ))
        return issues

    first = buckets[0][0].get("node")
    target = node_by_name(workflow).get(first) if isinstance(first, str) else None
    if target is None:
        issues.append(error(
            node, f'Chat Trigger "{name}" connects to non-existent node "{first}".', "INVALID_TARGET_NODE"
        ))
        return issues

    target_type = normalize_node_type(target.get("type"))
    if mode == STREAMING:
        if target_type != AGENT_TYPE:
            issues.append(error(
                node,
                f'Chat Trigger "{name}" has responseMode="streaming" but connects to "{target.get("name")}" '
                f"({target_type}). Streaming mode only works with AI Agent. "
                'Change responseMode to "lastNode" or connect to an AI Agent.',
                "STREAMING_WRONG_TARGET",
            ))
        elif has_outgoing(workflow, target.get("name"), MAIN):
            issues.append(error(
                target,
                f'AI Agent "{target.get("name")}" is in streaming mode but has outgoing main connections. '
                "In streaming mode the AI Agent must not have main output connections; "
                "responses stream back through the Chat Trigger.",
                "STREAMING_AGENT_HAS_OUTPUT",
            ))
    elif mode == LAST_NODE and target_type == AGENT_TYPE:
        issues.append(info(
            node,
            f'Chat Trigger "{name}" uses responseMode="lastNode" with AI Agent. '
            'Consider responseMode="streaming" for real-time responses.',
        ))

    return issues


# ---------- Basic LLM chain ----------

def validate_llm_chain(
    node: Dict[str, Any],
    reverse_index: Optional[ReverseIndex],
    workflow: Dict[str, Any],
    config: Optional[EngineConfig] = None,
) -> List[ValidationIssue]:
    """Like the agent, minus tools and fallback models."""
    name = node.get("name")
    issues: List[ValidationIssue] = []

    models = connections_to(name, reverse_index, "ai_languageModel")
    if not models:
        issues.append(error(
            node,
            f'Basic LLM Chain "{name}" requires an ai_languageModel connection. Connect a language model node.',
            "MISSING_LANGUAGE_MODEL",
        ))
    elif len(models) > 1:
        issues.append(error(
            node,
            f'Basic LLM Chain "{name}" has {len(models)} ai_languageModel connections. '
            "Basic LLM Chain only supports 1 language model (no fallback).",
            "MULTIPLE_LANGUAGE_MODELS",
        ))

    memory = connections_to(name, reverse_index, "ai_memory")
    if len(memory) > 1:
        issues.append(error(
            node,
            f'Basic LLM Chain "{name}" has {len(memory)} ai_memory connections. Only 1 memory is allowed.',
            "MULTIPLE_MEMORY_CONNECTIONS",
        ))

    if connections_to(name, reverse_index, "ai_tool"):
        issues.append(error(
            node,
            f'Basic LLM Chain "{name}" has ai_tool connections. Basic LLM Chain does not support tools. '
            "Use AI Agent if you need tool support.",
            "TOOLS_NOT_SUPPORTED",
        ))

    issues.extend(_check_prompt_text(node, "Basic LLM Chain"))
    return issues
