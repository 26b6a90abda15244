from flowguard.utils.graph import (
    CAPABILITY_CONNECTION_TYPES,
    ReverseConnection,
    build_flow_graph,
    build_reverse_index,
    connections_to,
    has_outgoing,
    is_trigger_node,
    iter_connections,
    longest_chain,
    outgoing_buckets,
)


def _agent_workflow(node, workflow, link):
    nodes = [
        node("Chat", "nodes-langchain.chatTrigger"),
        node("Agent", "nodes-langchain.agent"),
        node("Model", "nodes-langchain.lmChatOpenAi"),
        node("Memory", "nodes-langchain.memoryBufferWindow"),
    ]
    conns = link({}, "Chat", "Agent")
    link(conns, "Model", "Agent", "ai_languageModel")
    link(conns, "Memory", "Agent", "ai_memory")
    return workflow(nodes, conns)


def test_capability_port_types():
    assert "ai_languageModel" in CAPABILITY_CONNECTION_TYPES
    assert "ai_tool" in CAPABILITY_CONNECTION_TYPES
    assert "main" not in CAPABILITY_CONNECTION_TYPES
    assert len(CAPABILITY_CONNECTION_TYPES) == 8


def test_reverse_index_lists_incoming_edges(node, workflow, link):
    idx = build_reverse_index(_agent_workflow(node, workflow, link))
    assert sorted(idx["Agent"]) == sorted([
        ReverseConnection("Chat", "main", 0),
        ReverseConnection("Model", "ai_languageModel", 0),
        ReverseConnection("Memory", "ai_memory", 0),
    ])
    # nodes without incoming edges are absent
    assert "Model" not in idx


def test_reverse_index_skips_malformed_edges():
    wf = {
        "nodes": [],
        "connections": {
            "A": {"main": [[{"node": ""}, {"type": "main"}, "junk", {"node": "B", "index": "x"}]]},
            "": {"main": [[{"node": "B"}]]},
            "C": "not a dict",
        },
    }
    idx = build_reverse_index(wf)
    assert idx == {"B": [ReverseConnection("A", "main", 0)]}


def test_connections_to_filters_by_port(node, workflow, link):
    idx = build_reverse_index(_agent_workflow(node, workflow, link))
    assert [c.source_name for c in connections_to("Agent", idx, "ai_languageModel")] == ["Model"]
    assert [c.source_name for c in connections_to("Agent", idx, "main")] == ["Chat"]
    # no port type: capability edges only
    assert {c.source_name for c in connections_to("Agent", idx)} == {"Model", "Memory"}
    assert connections_to("Nobody", idx) == []
    assert connections_to("Agent", None) == []


def test_iter_connections_accepts_bare_dict_bucket():
    wf = {"connections": {"A": {"main": [{"node": "B", "type": "main", "index": 0}]}}}
    edges = list(iter_connections(wf))
    assert len(edges) == 1
    assert edges[0].source_name == "A" and edges[0].target["node"] == "B"


def test_outgoing_buckets_and_has_outgoing(node, workflow, link):
    conns = link({}, "A", "B")
    link(conns, "A", "C", output=1)
    wf = workflow([node("A", "nodes-base.set"), node("B", "nodes-base.set"), node("C", "nodes-base.set")], conns)
    buckets = outgoing_buckets(wf, "A")
    assert [[t["node"] for t in b] for b in buckets] == [["B"], ["C"]]
    assert has_outgoing(wf, "A")
    assert not has_outgoing(wf, "B")
    assert not has_outgoing(wf, "A", "ai_tool")


def test_flow_graph_ignores_capability_edges(node, workflow, link):
    G = build_flow_graph(_agent_workflow(node, workflow, link))
    assert G.has_edge("Chat", "Agent")
    assert not G.has_edge("Model", "Agent")
    assert set(G.nodes) == {"Chat", "Agent", "Model", "Memory"}


def test_longest_chain(node, workflow, link):
    conns = link({}, "A", "B")
    link(conns, "B", "C")
    link(conns, "A", "D")
    wf = workflow([node(n, "nodes-base.set") for n in "ABCD"], conns)
    length, names = longest_chain(build_flow_graph(wf))
    assert length == 3
    assert names == ["A", "B", "C"]


def test_is_trigger_node():
    assert is_trigger_node({"type": "nodes-base.manualTrigger"})
    assert is_trigger_node({"type": "nodes-base.webhook"})
    assert is_trigger_node({"type": "nodes-langchain.chatTrigger"})
    assert is_trigger_node({"type": "nodes-base.start"})
    assert not is_trigger_node({"type": "nodes-base.set"})
    assert not is_trigger_node({})
