# flowguard/utils/graph.py
from __future__ import annotations

from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Tuple

import networkx as nx

MAIN = "main"
ERROR_PORT = "error"

# Port types authored consumer -> producer in the raw map
# (the language model node is the "source" key of an edge into the agent).
CAPABILITY_CONNECTION_TYPES = frozenset({
    "ai_languageModel",
    "ai_memory",
    "ai_tool",
    "ai_embedding",
    "ai_vectorStore",
    "ai_document",
    "ai_textSplitter",
    "ai_outputParser",
})

KNOWN_CONNECTION_TYPES = CAPABILITY_CONNECTION_TYPES | {MAIN, ERROR_PORT}

TRIGGER_KEYS = ("trigger", "webhook")
TRIGGER_TYPES = ("nodes-base.start", "nodes-base.manualTrigger", "nodes-base.formTrigger")


class ReverseConnection(NamedTuple):
    source_name: str
    source_type: str
    index: int


class Edge(NamedTuple):
    """One edge of the raw connection map, flattened."""
    source_name: str
    port_type: str
    output_index: int
    target: Dict[str, Any]


ReverseIndex = Dict[str, List[ReverseConnection]]


def _buckets(outputs: Any) -> List[Any]:
    # connections[src][port] is normally a list of buckets; tolerate a bare dict
    if isinstance(outputs, list):
        return outputs
    if isinstance(outputs, dict):
        return list(outputs.values())
    return []


def iter_connections(workflow: Dict[str, Any]) -> Iterator[Edge]:
    """
    Walk connections[source][portType][outputIndex][k] and yield one Edge per target dict.
    Non-dict containers and non-dict edge entries are skipped.
    """
    conns = workflow.get("connections") if isinstance(workflow, dict) else None
    if not isinstance(conns, dict):
        return
    for src_name, ports in conns.items():
        if not isinstance(ports, dict):
            continue
        for port_type, outputs in ports.items():
            for out_idx, bucket in enumerate(_buckets(outputs)):
                if isinstance(bucket, dict):
                    bucket = [bucket]
                if not isinstance(bucket, list):
                    continue
                for target in bucket:
                    if isinstance(target, dict):
                        yield Edge(src_name, port_type, out_idx, target)


def _target_index(target: Dict[str, Any]) -> int:
    idx = target.get("index", 0)
    if isinstance(idx, bool) or not isinstance(idx, int):
        return 0
    return idx


def build_reverse_index(workflow: Dict[str, Any]) -> ReverseIndex:
    """
    target name -> incoming edges.

    Edges with an empty/non-string source or target name are dropped silently.
    Nodes without incoming edges are simply absent.
    """
    index: ReverseIndex = {}
    for edge in iter_connections(workflow):
        if not isinstance(edge.source_name, str) or not edge.source_name:
            continue
        tgt = edge.target.get("node")
        if not isinstance(tgt, str) or not tgt:
            continue
        index.setdefault(tgt, []).append(
            ReverseConnection(edge.source_name, edge.port_type, _target_index(edge.target))
        )
    return index


def connections_to(
    node_name: str,
    reverse_index: Optional[ReverseIndex],
    port_type: Optional[str] = None,
) -> List[ReverseConnection]:
    """
    Incoming edges of `node_name`.
    With `port_type` only edges of that type, otherwise only capability edges (no `main`).
    """
    incoming = (reverse_index or {}).get(node_name) or []
    if port_type is not None:
        return [c for c in incoming if c.source_type == port_type]
    return [c for c in incoming if c.source_type in CAPABILITY_CONNECTION_TYPES]


def outgoing_buckets(workflow: Dict[str, Any], node_name: str, port_type: str = MAIN) -> List[List[Dict[str, Any]]]:
    """Output buckets of one node for one port type, normalized to lists of dicts."""
    conns = workflow.get("connections") if isinstance(workflow, dict) else None
    if not isinstance(conns, dict):
        return []
    ports = conns.get(node_name)
    if not isinstance(ports, dict):
        return []
    out: List[List[Dict[str, Any]]] = []
    for bucket in _buckets(ports.get(port_type)):
        if isinstance(bucket, dict):
            bucket = [bucket]
        if not isinstance(bucket, list):
            out.append([])
            continue
        out.append([t for t in bucket if isinstance(t, dict)])
    return out


def has_outgoing(workflow: Dict[str, Any], node_name: str, port_type: str = MAIN) -> bool:
    return any(bucket for bucket in outgoing_buckets(workflow, node_name, port_type))


def node_by_name(workflow: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    nodes = workflow.get("nodes") if isinstance(workflow, dict) else None
    out: Dict[str, Dict[str, Any]] = {}
    for n in nodes if isinstance(nodes, list) else []:
        if isinstance(n, dict) and isinstance(n.get("name"), str):
            out.setdefault(n["name"], n)
    return out


def is_trigger_node(node: Dict[str, Any]) -> bool:
    t = str(node.get("type", "") or "")
    if t in TRIGGER_TYPES:
        return True
    low = t.lower()
    return any(k in low for k in TRIGGER_KEYS)


def build_flow_graph(workflow: Dict[str, Any]) -> nx.DiGraph:
    """
    Directed graph of the execution flow keyed by node name.
    Only `main` and `error` edges between existing nodes; capability edges carry no execution order.
    """
    G = nx.DiGraph()
    by_name = node_by_name(workflow)
    for name, n in by_name.items():
        G.add_node(name, type=n.get("type"), disabled=bool(n.get("disabled")))

    for edge in iter_connections(workflow):
        if edge.port_type not in (MAIN, ERROR_PORT):
            continue
        tgt = edge.target.get("node")
        if isinstance(tgt, str) and edge.source_name in by_name and tgt in by_name:
            G.add_edge(edge.source_name, tgt, output_index=edge.output_index)
    return G


def longest_chain(G: nx.DiGraph) -> Tuple[int, List[str]]:
    """Length (in nodes) of the longest path of the SCC-compressed flow graph."""
    if G.number_of_nodes() == 0:
        return 0, []
    Gc = nx.condensation(G)
    path = nx.dag_longest_path(Gc)
    members = Gc.graph.get("mapping", {})
    comp_nodes: Dict[int, List[str]] = {}
    for name, cid in members.items():
        comp_nodes.setdefault(cid, []).append(name)
    names: List[str] = []
    for cid in path:
        names.extend(sorted(comp_nodes.get(cid, [])))
    return len(names), names
