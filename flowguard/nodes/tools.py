# flowguard/nodes/tools.py
from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Set
from urllib.parse import urlparse

from flowguard.config import DEFAULT_CONFIG
from flowguard.structural.issues import ValidationIssue, error, info, warning

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")
BODY_METHODS = ("POST", "PUT", "PATCH")

_EXPRESSION_RE = re.compile(r"\{\{.*?\}\}", re.S)
_PLACEHOLDER_RE = re.compile(r"\{([^{}]+)\}")
_LANGUAGE_RE = re.compile(r"^[a-z]{2,3}$")

ToolValidator = Callable[..., List[ValidationIssue]]


def _params(node: Dict[str, Any]) -> Dict[str, Any]:
    p = node.get("parameters")
    return p if isinstance(p, dict) else {}


def _credentials(node: Dict[str, Any]) -> Dict[str, Any]:
    c = node.get("credentials")
    return c if isinstance(c, dict) else {}


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _blank(v: Any) -> bool:
    return v is None or v == "" or (isinstance(v, str) and not v.strip())


def _description(node: Dict[str, Any]) -> Any:
    params = _params(node)
    desc = params.get("toolDescription")
    return desc if not _blank(desc) else params.get("description")


def _require_description(node: Dict[str, Any], label: str, hint: str) -> List[ValidationIssue]:
    if _blank(_description(node)):
        return [error(
            node, f'{label} "{node.get("name")}" has no toolDescription. {hint}', "MISSING_TOOL_DESCRIPTION"
        )]
    return []


def _strings(value: Any) -> List[str]:
    """Every string inside a nested body/header structure."""
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        return [s for v in value.values() for s in _strings(v)]
    if isinstance(value, list):
        return [s for v in value for s in _strings(v)]
    return []


def placeholders_in(*values: Any) -> Set[str]:
    """`{name}` tokens, ignoring `{{ expression }}` blocks."""
    found: Set[str] = set()
    for text in (s for v in values for s in _strings(v)):
        for m in _PLACEHOLDER_RE.finditer(_EXPRESSION_RE.sub("", text)):
            found.add(m.group(1).strip())
    return found


# ---------- HTTP request tool ----------

def validate_http_request_tool(node, reverse_index=None, workflow=None, config=None) -> List[ValidationIssue]:
    cfg = config or DEFAULT_CONFIG
    name = node.get("name")
    params = _params(node)
    issues: List[ValidationIssue] = []

    desc = _description(node)
    if _blank(desc):
        issues.append(error(
            node,
            f'HTTP Request Tool "{name}" has no toolDescription. '
            "Add a clear description to help the LLM know when to use this API.",
            "MISSING_TOOL_DESCRIPTION",
        ))
    elif isinstance(desc, str) and len(desc.strip()) < cfg.min_tool_description_length:
        issues.append(warning(
            node,
            f'HTTP Request Tool "{name}" toolDescription is too short '
            f"(minimum {cfg.min_tool_description_length} characters). Explain what API this calls and when to use it.",
        ))

    url = params.get("url")
    if _blank(url):
        issues.append(error(node, f'HTTP Request Tool "{name}" has no URL. Add the API endpoint URL.', "MISSING_URL"))
    elif isinstance(url, str):
        issues.extend(_check_url(node, url))

    found = placeholders_in(url, params.get("body"), params.get("headers"))
    if found:
        issues.extend(_check_placeholders(node, found))

    auth = params.get("authentication")
    if auth == "predefinedCredentialType" and not _credentials(node):
        issues.append(error(
            node, f'HTTP Request Tool "{name}" requires credentials but none are configured.', "MISSING_CREDENTIALS"
        ))

    method = params.get("method")
    if isinstance(method, str) and method:
        if method.upper() not in HTTP_METHODS:
            issues.append(error(
                node,
                f'HTTP Request Tool "{name}" has invalid HTTP method "{method}". Use one of: {", ".join(HTTP_METHODS)}.',
                "INVALID_HTTP_METHOD",
            ))
        elif method.upper() in BODY_METHODS and _blank(params.get("body")) and _blank(params.get("jsonBody")):
            issues.append(warning(
                node,
                f'HTTP Request Tool "{name}" uses {method.upper()} but has no body. '
                "Consider adding a body or using GET instead.",
            ))
    return issues


def _check_url(node: Dict[str, Any], url: str) -> List[ValidationIssue]:
    name = node.get("name")
    if url.startswith("="):
        # n8n expression field
        return []
    try:
        parsed = urlparse(url)
    except ValueError:
        parsed = None
    if parsed is None or not parsed.scheme or (parsed.scheme in ("http", "https") and not parsed.netloc):
        if "{{" in url:
            return []
        return [warning(
            node,
            f'HTTP Request Tool "{name}" has potentially invalid URL format. Ensure it is a valid URL or n8n expression.',
        )]
    if parsed.scheme not in ("http", "https"):
        return [error(
            node,
            f'HTTP Request Tool "{name}" has invalid URL protocol "{parsed.scheme}:". Use http:// or https:// only.',
            "INVALID_URL_PROTOCOL",
        )]
    return []


def _check_placeholders(node: Dict[str, Any], found: Set[str]) -> List[ValidationIssue]:
    name = node.get("name")
    definitions = _params(node).get("placeholderDefinitions")
    if not definitions:
        return [warning(
            node,
            f'HTTP Request Tool "{name}" uses placeholders but has no placeholderDefinitions. '
            "Add definitions to describe the expected inputs.",
        )]

    values = definitions.get("values") if isinstance(definitions, dict) else definitions
    defined: List[str] = []
    for d in values if isinstance(values, list) else []:
        if isinstance(d, dict) and isinstance(d.get("name"), str):
            defined.append(d["name"])

    issues: List[ValidationIssue] = []
    for ph in sorted(found):
        if ph not in defined:
            issues.append(error(
                node,
                f'HTTP Request Tool "{name}" uses placeholder "{ph}" but it is not defined in placeholderDefinitions.',
                "UNDEFINED_PLACEHOLDER",
            ))
    for d in defined:
        if d not in found:
            issues.append(warning(node, f'HTTP Request Tool "{name}" defines placeholder "{d}" but does not use it.'))
    return issues


# ---------- Code / vector store / workflow / agent tools ----------

def validate_code_tool(node, reverse_index=None, workflow=None, config=None) -> List[ValidationIssue]:
    name = node.get("name")
    params = _params(node)
    issues = _require_description(node, "Code Tool", "Add one to help the LLM understand the tool's purpose.")
    if _blank(params.get("jsCode")) and _blank(params.get("pythonCode")):
        issues.append(error(node, f'Code Tool "{name}" code is empty. Add the code to execute.', "MISSING_CODE"))
    if not params.get("inputSchema") and not params.get("specifyInputSchema"):
        issues.append(warning(
            node, f'Code Tool "{name}" has no input schema. Consider adding one to validate LLM inputs.'
        ))
    return issues


def validate_vector_store_tool(node, reverse_index=None, workflow=None, config=None) -> List[ValidationIssue]:
    cfg = config or DEFAULT_CONFIG
    name = node.get("name")
    params = _params(node)
    issues = _require_description(node, "Vector Store Tool", "Add one to explain what data it searches.")
    if "topK" in params:
        top_k = params.get("topK")
        if not _is_number(top_k) or top_k < 1:
            issues.append(error(
                node, f'Vector Store Tool "{name}" has invalid topK value. Must be a positive number.', "INVALID_TOPK"
            ))
        elif top_k > cfg.max_top_k_warning:
            issues.append(warning(
                node,
                f'Vector Store Tool "{name}" has topK={top_k}. Large values (>{cfg.max_top_k_warning}) '
                "may overwhelm the LLM context. Consider reducing to 10 or less.",
            ))
    return issues


def validate_workflow_tool(node, reverse_index=None, workflow=None, config=None) -> List[ValidationIssue]:
    issues = _require_description(node, "Workflow Tool", "Add one to help the LLM know when to use this tool.")
    workflow_id = _params(node).get("workflowId")
    # resource locator form: {"__rl": true, "value": "..."}
    if isinstance(workflow_id, dict):
        workflow_id = workflow_id.get("value")
    if _blank(workflow_id):
        issues.append(error(
            node, f'Workflow Tool "{node.get("name")}" has no workflowId. Select a workflow to execute.',
            "MISSING_WORKFLOW_ID",
        ))
    return issues


def validate_agent_tool(node, reverse_index=None, workflow=None, config=None) -> List[ValidationIssue]:
    cfg = config or DEFAULT_CONFIG
    name = node.get("name")
    params = _params(node)
    issues = _require_description(node, "AI Agent Tool", "Add one to help the LLM know when to use this tool.")
    if "maxIterations" in params:
        max_it = params.get("maxIterations")
        if not _is_number(max_it) or max_it < 1:
            issues.append(error(
                node, f'AI Agent Tool "{name}" has invalid maxIterations. Must be a positive number.',
                "INVALID_MAX_ITERATIONS",
            ))
        elif max_it > cfg.max_iterations_warning:
            issues.append(warning(
                node,
                f'AI Agent Tool "{name}" has maxIterations={max_it}. '
                f"Large values (>{cfg.max_iterations_warning}) may lead to long execution times.",
            ))
    return issues


def validate_mcp_client_tool(node, reverse_index=None, workflow=None, config=None) -> List[ValidationIssue]:
    issues = _require_description(node, "MCP Client Tool", "Add one to help the LLM know when to use this tool.")
    params = _params(node)
    if _blank(params.get("serverUrl")) and _blank(params.get("endpointUrl")) and _blank(params.get("sseEndpoint")):
        issues.append(error(
            node, f'MCP Client Tool "{node.get("name")}" has no serverUrl. Configure the MCP server URL.',
            "MISSING_SERVER_URL",
        ))
    return issues


def validate_no_config_tool(node, reverse_index=None, workflow=None, config=None) -> List[ValidationIssue]:
    """Calculator and Think ship a built-in description and need no configuration."""
    return []


# ---------- Search providers ----------

def validate_serpapi_tool(node, reverse_index=None, workflow=None, config=None) -> List[ValidationIssue]:
    issues = _require_description(node, "SerpApi Tool", "Add one to explain when to use Google search.")
    if not _credentials(node).get("serpApiApi"):
        issues.append(warning(
            node, f'SerpApi Tool "{node.get("name")}" requires SerpApi credentials. Configure your API key.'
        ))
    return issues


def validate_wikipedia_tool(node, reverse_index=None, workflow=None, config=None) -> List[ValidationIssue]:
    issues = _require_description(node, "Wikipedia Tool", "Add one to explain when to use Wikipedia.")
    language = _params(node).get("language")
    if language and not (isinstance(language, str) and _LANGUAGE_RE.match(language)):
        issues.append(warning(
            node,
            f'Wikipedia Tool "{node.get("name")}" has potentially invalid language code "{language}". '
            'Use ISO 639 codes (e.g. "en", "es", "fr").',
        ))
    return issues


def validate_searxng_tool(node, reverse_index=None, workflow=None, config=None) -> List[ValidationIssue]:
    issues = _require_description(node, "SearXNG Tool", "Add one to explain when to use SearXNG.")
    if _blank(_params(node).get("baseUrl")):
        issues.append(error(
            node, f'SearXNG Tool "{node.get("name")}" has no baseUrl. Configure your SearXNG instance URL.',
            "MISSING_BASE_URL",
        ))
    return issues


def validate_wolfram_alpha_tool(node, reverse_index=None, workflow=None, config=None) -> List[ValidationIssue]:
    name = node.get("name")
    creds = _credentials(node)
    issues: List[ValidationIssue] = []
    if not creds.get("wolframAlpha") and not creds.get("wolframAlphaApi"):
        issues.append(error(
            node, f'WolframAlpha Tool "{name}" requires Wolfram|Alpha API credentials. Configure your App ID.',
            "MISSING_CREDENTIALS",
        ))
    if _blank(_description(node)):
        issues.append(info(
            node,
            f'WolframAlpha Tool "{name}" has no custom description. '
            "Add one to explain when to use Wolfram|Alpha for computational queries.",
        ))
    return issues


TOOL_VALIDATORS: Dict[str, ToolValidator] = {
    "nodes-langchain.toolHttpRequest": validate_http_request_tool,
    "nodes-langchain.toolCode": validate_code_tool,
    "nodes-langchain.toolVectorStore": validate_vector_store_tool,
    "nodes-langchain.toolWorkflow": validate_workflow_tool,
    "nodes-langchain.agentTool": validate_agent_tool,
    "nodes-langchain.mcpClientTool": validate_mcp_client_tool,
    "nodes-langchain.toolCalculator": validate_no_config_tool,
    "nodes-langchain.toolThink": validate_no_config_tool,
    "nodes-langchain.toolSerpApi": validate_serpapi_tool,
    "nodes-langchain.toolWikipedia": validate_wikipedia_tool,
    "nodes-langchain.toolSearXng": validate_searxng_tool,
    "nodes-langchain.toolWolframAlpha": validate_wolfram_alpha_tool,
}
