# flowguard/structural/metrics.py

from typing import Any, Dict

import networkx as nx

from flowguard.utils.graph import (
    CAPABILITY_CONNECTION_TYPES,
    build_flow_graph,
    is_trigger_node,
    iter_connections,
    longest_chain,
    node_by_name,
)


def compute_statistics(workflow: Dict[str, Any]) -> Dict[str, Any]:
    """
    Summary numbers for a validation result.

      totalNodes / enabledNodes / triggerNodes
      validConnections       edges whose target exists and is enabled
      invalidConnections     edges whose source or target does not exist
      capabilityConnections  ai_* edges
      acyclic                True if the main/error flow graph has no cycle
      longestChain           nodes on the longest path (cycles compressed)
      connectedRatio         share of nodes in the largest weakly connected component
    """
    nodes = [n for n in (workflow.get("nodes") or []) if isinstance(n, dict)] if isinstance(workflow, dict) else []
    by_name = node_by_name(workflow) if isinstance(workflow, dict) else {}

    valid = invalid = capability = 0
    for edge in iter_connections(workflow):
        tgt = by_name.get(edge.target.get("node")) if isinstance(edge.target.get("node"), str) else None
        if edge.source_name not in by_name or tgt is None:
            invalid += 1
            continue
        if not tgt.get("disabled"):
            valid += 1
        if edge.port_type in CAPABILITY_CONNECTION_TYPES:
            capability += 1

    G = build_flow_graph(workflow) if isinstance(workflow, dict) else nx.DiGraph()
    # capability edges count for connectivity even though they carry no execution order
    U = G.to_undirected()
    for edge in iter_connections(workflow):
        tgt = edge.target.get("node")
        if edge.port_type in CAPABILITY_CONNECTION_TYPES and isinstance(tgt, str) and edge.source_name in U and tgt in U:
            U.add_edge(edge.source_name, tgt)

    n = U.number_of_nodes()
    largest = max((len(c) for c in nx.connected_components(U)), default=0)
    chain, _ = longest_chain(G)

    return {
        "totalNodes": len(nodes),
        "enabledNodes": sum(1 for x in nodes if not x.get("disabled")),
        "triggerNodes": sum(1 for x in nodes if is_trigger_node(x)),
        "validConnections": valid,
        "invalidConnections": invalid,
        "capabilityConnections": capability,
        "acyclic": nx.is_directed_acyclic_graph(G),
        "longestChain": chain,
        "connectedRatio": round(largest / n, 2) if n else 0.0,
    }
