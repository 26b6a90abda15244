# flowguard/structural/checker.py
from __future__ import annotations

import difflib
import json
from typing import Any, Callable, Dict, List, Optional

import networkx as nx

from flowguard.config import DEFAULT_CONFIG, EngineConfig
from flowguard.nodes.catalog import NodeDescriptor, safe_lookup
from flowguard.structural.issues import ValidationIssue, error, warning
from flowguard.structural.schema import schema_errors
from flowguard.utils.graph import (
    KNOWN_CONNECTION_TYPES,
    MAIN,
    ReverseIndex,
    build_flow_graph,
    build_reverse_index,
    is_trigger_node,
    iter_connections,
    longest_chain,
    outgoing_buckets,
)
from flowguard.utils.logger import get_logger

logger = get_logger("structural")

VALID_ON_ERROR = ("continueRegularOutput", "continueErrorOutput", "stopWorkflow")

# Name / type fragments that mark a node as an error branch target.
ERROR_HANDLER_WORDS = ("error", "fail", "catch", "exception", "handler")
ERROR_HANDLER_TYPES = ("respondtowebhook", "emailsend")

# Node types whose main[1] is a regular output, not the error branch.
MULTI_OUTPUT_TYPES = (
    "nodes-base.if",
    "nodes-base.switch",
    "nodes-base.splitInBatches",
    "nodes-base.compareDatasets",
)
LOOP_TYPES = ("nodes-base.splitInBatches",)
WEBHOOK_TYPES = ("nodes-base.webhook", "nodes-base.webhookTrigger")
STICKY_NOTE = "nodes-base.stickyNote"

NODE_LEVEL_PROPERTIES = (
    "onError", "continueOnFail", "retryOnFail", "maxTries", "waitBetweenTries",
    "alwaysOutputData", "executeOnce", "disabled", "notes", "notesInFlow", "credentials",
)
BOOLEAN_NODE_PROPERTIES = ("alwaysOutputData", "executeOnce", "disabled", "notesInFlow")


class _Context:
    """Everything the sub-checks share for one pass."""

    def __init__(self, workflow, reverse_index, catalog, config):
        self.workflow = workflow
        self.nodes: List[Dict[str, Any]] = [n for n in workflow.get("nodes") or [] if isinstance(n, dict)]
        self.by_name: Dict[str, Dict[str, Any]] = {}
        self.by_id: Dict[Any, Dict[str, Any]] = {}
        for n in self.nodes:
            name = n.get("name")
            if isinstance(name, str) and name not in self.by_name:
                self.by_name[name] = n
            nid = n.get("id")
            if isinstance(nid, (str, int)) and not isinstance(nid, bool) and nid not in self.by_id:
                self.by_id[nid] = n
        self.reverse_index = reverse_index
        self.catalog = catalog
        self.config = config

    def describe(self, node: Dict[str, Any]) -> Optional[NodeDescriptor]:
        return safe_lookup(self.catalog, node.get("type"))


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _node_type(node: Dict[str, Any]) -> str:
    t = node.get("type")
    return t if isinstance(t, str) else ""


def is_error_handler(node: Dict[str, Any]) -> bool:
    """Name/type heuristic for nodes that look like an error branch target."""
    name = str(node.get("name", "") or "").lower()
    t = _node_type(node).lower()
    return any(w in name for w in ERROR_HANDLER_WORDS) or any(k in t for k in ERROR_HANDLER_TYPES)


def _is_multi_output(ctx: _Context, node: Dict[str, Any]) -> bool:
    if _node_type(node) in MULTI_OUTPUT_TYPES:
        return True
    desc = ctx.describe(node)
    return bool(desc and desc.outputs and desc.outputs >= 2)


# ---------- Workflow structure ----------

def _check_schema(ctx: _Context) -> List[ValidationIssue]:
    return [
        error(None, f"Invalid workflow shape at {e['path']}: {e['message']}", "INVALID_WORKFLOW_SHAPE",
              {"path": e["path"]})
        for e in schema_errors(ctx.workflow)
    ]


def _check_workflow_structure(ctx: _Context) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    nodes = ctx.nodes
    conns = ctx.workflow.get("connections") or {}

    if not nodes:
        issues.append(error(None, "Workflow has no nodes", "EMPTY_WORKFLOW"))
        return issues

    if len(nodes) == 1:
        only = nodes[0]
        if _node_type(only) not in WEBHOOK_TYPES:
            issues.append(warning(
                only,
                "Single-node workflow. Add at least one more connected node to create a functional workflow.",
                "SINGLE_NODE_WORKFLOW",
            ))
        elif not conns:
            issues.append(warning(only, "Webhook node has no connections. Consider adding nodes to process the webhook data."))

    if len(nodes) > 1 and any(not n.get("disabled") for n in nodes) and not conns:
        issues.append(error(
            None,
            "Multi-node workflow has no connections. Nodes must be connected to create a workflow. "
            'Use connections: { "Source Node Name": { "main": [[{ "node": "Target Node Name", "type": "main", "index": 0 }]] } }',
            "NO_CONNECTIONS",
        ))

    seen_names, seen_ids = set(), set()
    for n in nodes:
        name, nid = n.get("name"), n.get("id")
        if isinstance(name, str):
            if name in seen_names:
                issues.append(error(n, f'Duplicate node name: "{name}"', "DUPLICATE_NODE_NAME"))
            seen_names.add(name)
        if nid is not None and isinstance(nid, (str, int)):
            if nid in seen_ids:
                issues.append(error(n, f'Duplicate node ID: "{nid}"', "DUPLICATE_NODE_ID"))
            seen_ids.add(nid)

        t = _node_type(n)
        if t and "." not in t:
            issues.append(error(
                n,
                f'Invalid node type: "{t}". Node types must include the package prefix '
                '(e.g. "n8n-nodes-base.webhook", not "webhook").',
                "INVALID_NODE_TYPE",
            ))

    enabled = [n for n in nodes if not n.get("disabled")]
    if enabled and not any(is_trigger_node(n) for n in nodes):
        issues.append(warning(None, "Workflow has no trigger nodes. It can only be executed manually.", "NO_TRIGGER"))

    return issues


# ---------- Node catalog ----------

def _known_types(catalog: Any) -> List[str]:
    try:
        return [t for t in catalog]
    except Exception as e:
        logger.warning("Node catalog is not iterable, skipping suggestions: %s", e)
        return []


def _check_node_catalog(ctx: _Context) -> List[ValidationIssue]:
    if ctx.catalog is None:
        return []
    issues: List[ValidationIssue] = []
    known = _known_types(ctx.catalog)

    for n in ctx.nodes:
        if n.get("disabled"):
            continue
        t = _node_type(n)
        if not t or "." not in t:
            continue
        desc = ctx.describe(n)
        if desc is None:
            close = difflib.get_close_matches(t, known, n=3, cutoff=0.6)
            hint = f" Did you mean: {', '.join(repr(c) for c in close)}?" if close else ""
            issues.append(warning(n, f'Unknown node type: "{t}".{hint}', "UNKNOWN_NODE_TYPE"))
            continue

        if not desc.is_versioned:
            continue
        tv = n.get("typeVersion")
        latest = desc.version
        if tv is None:
            issues.append(error(
                n, f"Missing required property 'typeVersion'. Add typeVersion: {latest or 1}", "MISSING_TYPE_VERSION"
            ))
        elif not _is_number(tv) or tv <= 0:
            issues.append(error(n, f"Invalid typeVersion: {tv!r}. Must be a positive number", "INVALID_TYPE_VERSION"))
        elif latest and tv < latest:
            issues.append(warning(n, f"Outdated typeVersion: {tv}. Latest is {latest}", "OUTDATED_TYPE_VERSION"))
        elif latest and tv > latest:
            issues.append(error(
                n, f"typeVersion {tv} exceeds maximum supported version {latest}", "TYPE_VERSION_TOO_HIGH"
            ))
    return issues


# ---------- Connections ----------

def _check_connections(ctx: _Context) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    conns = ctx.workflow.get("connections") or {}

    for src_name, ports in conns.items():
        src = ctx.by_name.get(src_name)
        if src is None:
            by_id = ctx.by_id.get(src_name)
            if by_id is not None:
                issues.append(error(
                    by_id,
                    f"Connection uses node ID '{src_name}' instead of node name '{by_id.get('name')}'. "
                    "Connections must use node names, not IDs.",
                    "CONNECTION_USES_NODE_ID",
                ))
            else:
                issues.append(error(None, f'Connection from non-existent node: "{src_name}"', "UNKNOWN_SOURCE_NODE"))
            continue
        if not isinstance(ports, dict):
            continue
        for port_type in ports:
            if port_type not in KNOWN_CONNECTION_TYPES:
                issues.append(warning(
                    src, f'Unknown connection type "{port_type}" on "{src_name}"', "UNKNOWN_CONNECTION_TYPE"
                ))
                continue
            buckets = outgoing_buckets(ctx.workflow, src_name, port_type)
            for bucket in buckets:
                seen: set = set()
                for target in bucket:
                    issues.extend(_check_edge(ctx, src, port_type, target, seen))
            if port_type == MAIN and buckets:
                issues.extend(_check_output_count(ctx, src, buckets))

    issues.extend(_check_orphans(ctx))
    issues.extend(_check_cycles(ctx))
    return issues


def _check_edge(ctx: _Context, src: Dict[str, Any], port_type: str, target: Dict[str, Any], seen: set) -> List[ValidationIssue]:
    src_name = src["name"]
    tgt_name = target.get("node")
    if not isinstance(tgt_name, str) or not tgt_name:
        return [warning(src, f'Connection from "{src_name}" ({port_type}) has no target node name', "MALFORMED_CONNECTION")]

    key = (tgt_name, str(target.get("type", port_type)), str(target.get("index", 0)))
    if key in seen:
        return [warning(src, f'Duplicate connection from "{src_name}" to "{tgt_name}"', "DUPLICATE_CONNECTION")]
    seen.add(key)

    tgt = ctx.by_name.get(tgt_name)
    if tgt is None:
        by_id = ctx.by_id.get(tgt_name)
        if by_id is not None:
            return [error(
                by_id,
                f"Connection target uses node ID '{tgt_name}' instead of node name '{by_id.get('name')}' "
                f'(from "{src_name}"). Connections must use node names, not IDs.',
                "CONNECTION_USES_NODE_ID",
            )]
        return [error(
            src, f'Connection to non-existent node: "{tgt_name}" from "{src_name}"', "DANGLING_CONNECTION",
            {"source": src_name, "target": tgt_name, "portType": port_type},
        )]

    if tgt.get("disabled"):
        return [warning(tgt, f'Connection to disabled node: "{tgt_name}" from "{src_name}"', "CONNECTION_TO_DISABLED_NODE")]

    if port_type == "ai_tool":
        desc = ctx.describe(src)
        if desc is not None and not desc.is_ai_tool and desc.package not in ("base", "langchain"):
            return [warning(
                src,
                f'Community node "{src_name}" is being used as an AI tool. '
                "Ensure N8N_COMMUNITY_PACKAGES_ALLOW_TOOL_USAGE=true is set.",
                "COMMUNITY_NODE_AS_TOOL",
            )]
    return []


def _check_output_count(ctx: _Context, src: Dict[str, Any], buckets: List[List[Dict[str, Any]]]) -> List[ValidationIssue]:
    desc = ctx.describe(src)
    if desc is None or not desc.outputs:
        return []
    allowed = desc.outputs + (1 if src.get("onError") == "continueErrorOutput" else 0)
    last_used = max((i for i, b in enumerate(buckets) if b), default=-1)
    if last_used < allowed:
        return []
    return [error(
        src,
        f'Output index {last_used} is out of range: "{src["name"]}" has {allowed} main output(s)',
        "INVALID_OUTPUT_INDEX",
    )]


def _check_orphans(ctx: _Context) -> List[ValidationIssue]:
    connected = set()
    for edge in iter_connections(ctx.workflow):
        connected.add(edge.source_name)
        tgt = edge.target.get("node")
        if isinstance(tgt, str):
            connected.add(tgt)

    issues: List[ValidationIssue] = []
    for n in ctx.nodes:
        if n.get("disabled") or is_trigger_node(n) or _node_type(n) == STICKY_NOTE:
            continue
        if n.get("name") not in connected:
            issues.append(warning(n, "Node is not connected to any other nodes", "ORPHANED_NODE"))
    return issues


def _check_cycles(ctx: _Context) -> List[ValidationIssue]:
    G = build_flow_graph(ctx.workflow)
    issues: List[ValidationIssue] = []
    for comp in nx.strongly_connected_components(G):
        members = sorted(comp)
        if len(members) == 1 and not G.has_edge(members[0], members[0]):
            continue
        if any(G.nodes[m].get("type") in LOOP_TYPES for m in members):
            continue
        issues.append(error(
            None,
            f"Workflow contains a cycle (infinite loop): {' -> '.join(members)}",
            "WORKFLOW_CYCLE",
            {"nodes": members},
        ))
    return issues


# ---------- Error outputs ----------

def _fragment(source: str, buckets: List[List[str]]) -> str:
    body = {source: {MAIN: [[{"node": t, "type": MAIN, "index": 0} for t in b] for b in buckets]}}
    return json.dumps(body, indent=2)


def _check_error_outputs(ctx: _Context) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    for name, node in ctx.by_name.items():
        buckets = outgoing_buckets(ctx.workflow, name, MAIN)
        first = buckets[0] if buckets else []
        second = buckets[1] if len(buckets) > 1 else []

        # error branch appended to main[0] instead of its own main[1] array
        if len(first) > 1:
            targets = [t.get("node") for t in first if isinstance(t.get("node"), str)]
            handlers = [t for t in targets if t in ctx.by_name and is_error_handler(ctx.by_name[t])]
            regular = [t for t in targets if t not in handlers]
            if handlers and regular:
                quoted = ", ".join(f'"{h}"' for h in handlers)
                message = (
                    f"Incorrect error output configuration. Nodes {quoted} appear to be error handlers "
                    f"but are in main[0] (success output) along with other nodes.\n\n"
                    f"INCORRECT (current):\n{_fragment(name, [targets])}\n\n"
                    f"CORRECT (should be):\n{_fragment(name, [regular, handlers])}\n\n"
                    f"main[0] = success output, main[1] = error output. "
                    f"Also add \"onError\": \"continueErrorOutput\" to the \"{name}\" node."
                )
                issues.append(error(node, message, "INCORRECT_ERROR_OUTPUT", {"errorHandlers": handlers}))

        on_error = node.get("onError")
        if on_error == "continueErrorOutput" and not second:
            issues.append(error(
                node,
                f"Node \"{name}\" has onError: 'continueErrorOutput' but no error output connections in main[1]. "
                "Add error handler connections to main[1] or change onError to 'continueRegularOutput' or 'stopWorkflow'.",
                "MISSING_ERROR_OUTPUT_CONNECTIONS",
            ))
        elif second and on_error is None and not _is_multi_output(ctx, node):
            issues.append(warning(
                node,
                f"Node \"{name}\" has error output connections in main[1] but missing onError: 'continueErrorOutput'. "
                "Add this property so the error output is used.",
                "MISSING_ON_ERROR",
            ))
    return issues


# ---------- Node-level error handling ----------

def _check_node_error_handling(ctx: _Context) -> List[ValidationIssue]:
    cfg = ctx.config
    issues: List[ValidationIssue] = []
    for n in ctx.nodes:
        if n.get("disabled") is True:
            continue

        params = n.get("parameters")
        if isinstance(params, dict):
            misplaced = [p for p in NODE_LEVEL_PROPERTIES if p in params]
            if misplaced:
                issues.append(error(
                    n,
                    f"Node-level properties {', '.join(misplaced)} are in the wrong location. "
                    "They must be at the node level, not inside parameters.",
                    "MISPLACED_NODE_PROPERTY",
                    {"properties": misplaced},
                ))

        on_error = n.get("onError")
        if on_error is not None and on_error not in VALID_ON_ERROR:
            issues.append(error(
                n, f'Invalid onError value: "{on_error}". Must be one of: {", ".join(VALID_ON_ERROR)}', "INVALID_ON_ERROR"
            ))

        cof = n.get("continueOnFail")
        if cof is not None:
            if not isinstance(cof, bool):
                issues.append(error(n, "continueOnFail must be a boolean value", "INVALID_PROPERTY_TYPE"))
            elif cof:
                issues.append(warning(
                    n,
                    "Using deprecated \"continueOnFail: true\". Use \"onError: 'continueRegularOutput'\" instead.",
                    "DEPRECATED_CONTINUE_ON_FAIL",
                ))
            if on_error is not None:
                issues.append(error(
                    n,
                    'Cannot use both "continueOnFail" and "onError" properties. Use only "onError".',
                    "CONFLICTING_ERROR_HANDLING",
                ))

        retry = n.get("retryOnFail")
        if retry is not None and not isinstance(retry, bool):
            issues.append(error(n, "retryOnFail must be a boolean value", "INVALID_PROPERTY_TYPE"))
        if retry is True:
            issues.extend(_check_retry(n, cfg))

        for prop in BOOLEAN_NODE_PROPERTIES:
            v = n.get(prop)
            if v is not None and not isinstance(v, bool):
                issues.append(error(n, f"{prop} must be a boolean value", "INVALID_PROPERTY_TYPE"))

        notes = n.get("notes")
        if notes is not None and not isinstance(notes, str):
            issues.append(error(n, "notes must be a string value", "INVALID_PROPERTY_TYPE"))
    return issues


def _check_retry(n: Dict[str, Any], cfg: EngineConfig) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    max_tries = n.get("maxTries")
    if max_tries is None:
        issues.append(warning(n, "retryOnFail is enabled but maxTries is not specified. Default is 3 attempts."))
    elif not _is_number(max_tries) or max_tries < 1:
        issues.append(error(n, "maxTries must be a positive number when retryOnFail is enabled", "INVALID_MAX_TRIES"))
    elif max_tries > cfg.max_retries_warning:
        issues.append(warning(n, f"maxTries is set to {max_tries}. Consider if this many retries is necessary."))

    wait = n.get("waitBetweenTries")
    if wait is not None:
        if not _is_number(wait) or wait < 0:
            issues.append(error(
                n, "waitBetweenTries must be a non-negative number (milliseconds)", "INVALID_WAIT_BETWEEN_TRIES"
            ))
        elif wait > cfg.max_wait_between_tries_ms:
            issues.append(warning(n, f"waitBetweenTries is set to {wait}ms ({wait / 1000:.1f}s). This seems excessive."))
    return issues


# ---------- Patterns ----------

def _check_patterns(ctx: _Context) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    length, _ = longest_chain(build_flow_graph(ctx.workflow))
    if length > ctx.config.long_chain_warning:
        issues.append(warning(
            None, f"Long linear chain detected ({length} nodes). Consider breaking into sub-workflows.", "LONG_CHAIN"
        ))

    for n in ctx.nodes:
        creds = n.get("credentials")
        if not isinstance(creds, dict):
            continue
        for cred_type, cred in creds.items():
            if not isinstance(cred, dict) or "id" not in cred:
                issues.append(warning(n, f"Missing credentials configuration for {cred_type}"))
    return issues


# ---------- Public API ----------

_CHECKS: List[Callable[[_Context], List[ValidationIssue]]] = [
    _check_schema,
    _check_workflow_structure,
    _check_node_catalog,
    _check_connections,
    _check_error_outputs,
    _check_node_error_handling,
    _check_patterns,
]


def structural_check(
    workflow: Dict[str, Any],
    reverse_index: Optional[ReverseIndex] = None,
    catalog: Any = None,
    config: Optional[EngineConfig] = None,
) -> List[ValidationIssue]:
    """
    Run every node-class-independent check and collect the findings.

    Expects normalized node types. Each check is isolated: a crash inside one
    is reported as a CHECK_FAILED error and the remaining checks still run.
    """
    if not isinstance(workflow, dict):
        return [error(None, "Workflow must be an object", "INVALID_WORKFLOW_SHAPE")]
    if not isinstance(workflow.get("nodes"), list):
        return [error(None, "Workflow must have a nodes array", "INVALID_WORKFLOW_SHAPE")]
    if not isinstance(workflow.get("connections"), dict):
        return [error(None, "Workflow must have a connections object", "INVALID_WORKFLOW_SHAPE")]

    ctx = _Context(
        workflow,
        reverse_index if reverse_index is not None else build_reverse_index(workflow),
        catalog,
        config or DEFAULT_CONFIG,
    )

    issues: List[ValidationIssue] = []
    for check in _CHECKS:
        try:
            issues.extend(check(ctx))
        except Exception as e:
            logger.exception("Structural check %s crashed", check.__name__)
            issues.append(error(None, f"Internal check {check.__name__} failed: {e}", "CHECK_FAILED"))
    return issues
