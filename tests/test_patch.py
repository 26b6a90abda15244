import copy

import pytest

from flowguard.config import EngineConfig
from flowguard.errors import OperationError
from flowguard.patch.engine import apply_patch
from flowguard.patch.operations import NODE_OPERATION_TYPES, OTHER_OPERATION_TYPES, apply_operation
from flowguard.patch.schema import OPERATION_SCHEMA, operation_errors

NOTIFY = {"name": "Notify", "type": "n8n-nodes-base.slack", "parameters": {"channel": "#ops"}}


def _add_notify():
    return {"type": "addNode", "node": dict(NOTIFY)}


def _connect(source="Set", target="Notify", **extra):
    return {"type": "addConnection", "source": source, "target": target, **extra}


def _codes(result):
    return [i.code for i in result.issues]


def test_operation_groups_cover_every_type():
    assert set(NODE_OPERATION_TYPES) | set(OTHER_OPERATION_TYPES) == set(OPERATION_SCHEMA["properties"]["type"]["enum"])
    assert not set(NODE_OPERATION_TYPES) & set(OTHER_OPERATION_TYPES)


def test_add_node_and_connection_in_either_order(simple_workflow):
    forward = apply_patch(simple_workflow, [_add_notify(), _connect()])
    backward = apply_patch(simple_workflow, [_connect(), _add_notify()])
    assert forward.accepted and backward.accepted
    assert forward.workflow == backward.workflow
    assert forward.workflow["connections"]["Set"]["main"] == [[{"node": "Notify", "type": "main", "index": 0}]]


def test_patch_never_mutates_input(simple_workflow):
    before = copy.deepcopy(simple_workflow)
    result = apply_patch(simple_workflow, [_add_notify(), _connect()])
    assert result.accepted
    assert simple_workflow == before
    assert result.workflow is not simple_workflow


def test_operation_cap(simple_workflow):
    before = copy.deepcopy(simple_workflow)
    ops = [{"type": "moveNode", "nodeName": "Set", "position": [i, i]} for i in range(6)]
    result = apply_patch(simple_workflow, ops)
    assert not result.accepted
    assert _codes(result) == ["TOO_MANY_OPERATIONS"]
    assert result.workflow is simple_workflow
    assert simple_workflow == before
    assert result.operations_applied == 0


def test_operation_cap_is_configurable(simple_workflow):
    ops = [{"type": "moveNode", "nodeName": "Set", "position": [i, i]} for i in range(6)]
    result = apply_patch(simple_workflow, ops, config=EngineConfig(max_operations=6))
    assert result.accepted
    assert result.workflow["nodes"][1]["position"] == [5, 5]


def test_operations_must_be_a_list(simple_workflow):
    with pytest.raises(TypeError):
        apply_patch(simple_workflow, {"type": "addNode"})


def test_bad_operation_rejects_whole_patch(simple_workflow):
    ops = [_add_notify(), {"type": "removeNode", "nodeName": "Nope"}, {"type": "explode"}]
    result = apply_patch(simple_workflow, ops)
    assert not result.accepted
    assert result.workflow is simple_workflow
    assert _codes(result) == ["NODE_NOT_FOUND", "UNKNOWN_OPERATION"]
    assert [i.details["operation"] for i in result.issues] == [1, 2]
    assert result.operations_applied == 1


def test_invalid_operation_shape(simple_workflow):
    result = apply_patch(simple_workflow, [{"type": "moveNode", "nodeName": "Set", "position": "left"}])
    assert _codes(result) == ["INVALID_OPERATION"]
    assert "position" in result.issues[0].message


def test_validation_errors_reject(simple_workflow):
    result = apply_patch(simple_workflow, [_connect("Set", "Ghost")])
    assert _codes(result) == ["NODE_NOT_FOUND"]

    # an agent without a language model fails validation after a clean apply
    agent = {"type": "addNode", "node": {"name": "Agent", "type": "@n8n/n8n-nodes-langchain.agent"}}
    result = apply_patch(simple_workflow, [agent, _connect("Set", "Agent")])
    assert not result.accepted
    assert "MISSING_LANGUAGE_MODEL" in _codes(result)
    assert result.workflow is simple_workflow
    assert result.operations_applied == 2


def test_validate_only_never_returns_copy(simple_workflow):
    result = apply_patch(simple_workflow, [_add_notify(), _connect()], validate_only=True)
    assert result.accepted
    assert result.workflow is simple_workflow
    assert result.message == "Validation successful. Operations are valid but not applied."
    assert result.to_dict()["validateOnly"] is True


def test_accepted_workflow_keeps_type_spelling(simple_workflow):
    result = apply_patch(simple_workflow, [_add_notify(), _connect()])
    assert result.workflow["nodes"][0]["type"] == "n8n-nodes-base.manualTrigger"
    assert set(result.to_dict()) == {"workflow", "accepted", "issues", "operationsApplied", "message", "validateOnly"}


# ---------- single operations ----------

def test_add_node_defaults_and_deterministic_id(simple_workflow):
    wf1, wf2 = copy.deepcopy(simple_workflow), copy.deepcopy(simple_workflow)
    apply_operation(wf1, _add_notify())
    apply_operation(wf2, _add_notify())
    added = wf1["nodes"][-1]
    assert added["typeVersion"] == 1 and added["position"] == [0, 0]
    assert added["id"] == wf2["nodes"][-1]["id"]


@pytest.mark.parametrize("node, code", [
    ({"name": "Set", "type": "n8n-nodes-base.set"}, "DUPLICATE_NODE_NAME"),
    ({"name": "Other", "type": "set"}, "INVALID_NODE_TYPE"),
    ({"name": "Other", "type": "n8n-nodes-base.set", "id": "1"}, "DUPLICATE_NODE_ID"),
])
def test_add_node_rejections(simple_workflow, node, code):
    with pytest.raises(OperationError) as exc:
        apply_operation(simple_workflow, {"type": "addNode", "node": node})
    assert exc.value.code == code


def test_remove_node_drops_edges_both_ways(simple_workflow):
    apply_operation(simple_workflow, _add_notify())
    apply_operation(simple_workflow, _connect())
    apply_operation(simple_workflow, {"type": "removeNode", "nodeName": "Set"})
    assert [n["name"] for n in simple_workflow["nodes"]] == ["Manual Trigger", "Notify"]
    assert simple_workflow["connections"] == {}


def test_remove_node_keeps_output_indexes(node, workflow, link):
    conns = link({}, "Fetch", "Store")
    link(conns, "Fetch", "Error Handler", output=1)
    wf = workflow([node("Fetch", "n8n-nodes-base.httpRequest"), node("Store", "n8n-nodes-base.set"),
                   node("Error Handler", "n8n-nodes-base.set")], conns)
    apply_operation(wf, {"type": "removeNode", "nodeName": "Store"})
    assert wf["connections"]["Fetch"]["main"] == [[], [{"node": "Error Handler", "type": "main", "index": 0}]]


def test_node_reference_by_id_falls_back_to_name(simple_workflow):
    apply_operation(simple_workflow, {"type": "disableNode", "nodeId": "2"})
    assert simple_workflow["nodes"][1]["disabled"] is True
    apply_operation(simple_workflow, {"type": "enableNode", "nodeId": "Set"})
    assert simple_workflow["nodes"][1]["disabled"] is False


def test_update_node_paths_and_rename(simple_workflow):
    apply_operation(simple_workflow, {
        "type": "updateNode",
        "nodeName": "Set",
        "changes": {"name": "Prepare", "parameters.options.dotNotation": True},
    })
    node = simple_workflow["nodes"][1]
    assert node["name"] == "Prepare"
    assert node["parameters"] == {"options": {"dotNotation": True}}
    assert simple_workflow["connections"]["Manual Trigger"]["main"][0][0]["node"] == "Prepare"

    with pytest.raises(OperationError) as exc:
        apply_operation(simple_workflow, {"type": "updateNode", "nodeName": "Prepare", "changes": {"name": "Manual Trigger"}})
    assert exc.value.code == "DUPLICATE_NODE_NAME"


def test_connection_operations(simple_workflow):
    with pytest.raises(OperationError) as exc:
        apply_operation(simple_workflow, _connect("Manual Trigger", "Set"))
    assert exc.value.code == "CONNECTION_EXISTS"

    apply_operation(simple_workflow, {"type": "removeConnection", "source": "1", "target": "Set"})
    assert simple_workflow["connections"] == {}

    with pytest.raises(OperationError) as exc:
        apply_operation(simple_workflow, {"type": "removeConnection", "source": "Manual Trigger", "target": "Set"})
    assert exc.value.code == "CONNECTION_NOT_FOUND"


def test_capability_connection_defaults_target_input(simple_workflow):
    apply_operation(simple_workflow, {"type": "addNode", "node": {"name": "Model", "type": "@n8n/n8n-nodes-langchain.lmChatOpenAi"}})
    apply_operation(simple_workflow, _connect("Model", "Set", sourceOutput="ai_languageModel"))
    edge = simple_workflow["connections"]["Model"]["ai_languageModel"][0][0]
    assert edge == {"node": "Set", "type": "ai_languageModel", "index": 0}


def test_settings_and_metadata(simple_workflow):
    apply_operation(simple_workflow, {"type": "updateSettings", "settings": {"timezone": "Europe/Berlin"}})
    apply_operation(simple_workflow, {"type": "updateMetadata", "metadata": {"name": "Renamed", "tags": ["ops"]}})
    assert simple_workflow["settings"] == {"timezone": "Europe/Berlin"}
    assert simple_workflow["name"] == "Renamed" and simple_workflow["tags"] == ["ops"]

    with pytest.raises(OperationError) as exc:
        apply_operation(simple_workflow, {"type": "updateMetadata", "metadata": {"nodes": []}})
    assert exc.value.code == "RESERVED_METADATA_KEY"


def test_operation_errors_lists_problems():
    assert operation_errors({"type": "addNode", "node": {"name": "x", "type": "y"}}) == []
    assert operation_errors({"type": "removeNode"})
    assert operation_errors("addNode")


def _abc(node, workflow, connections):
    return workflow([
        node("A", "n8n-nodes-base.manualTrigger"),
        node("B", "n8n-nodes-base.set"),
        node("C", "n8n-nodes-base.set"),
    ], connections)


@pytest.mark.parametrize("connections, op, code", [
    ({"A": [[{"node": "B", "type": "main", "index": 0}]]}, {"type": "removeConnection", "source": "A", "target": "B"}, "MALFORMED_CONNECTIONS"),
    ({"A": [[{"node": "B", "type": "main", "index": 0}]]}, _connect("A", "C"), "MALFORMED_CONNECTIONS"),
    ({"A": {"main": "B"}}, _connect("A", "C"), "MALFORMED_CONNECTIONS"),
    ({"A": {"main": ["B"]}}, {"type": "removeConnection", "source": "A", "target": "B"}, "MALFORMED_CONNECTIONS"),
    ({"A": {"main": None}}, {"type": "removeConnection", "source": "A", "target": "B"}, "CONNECTION_NOT_FOUND"),
])
def test_malformed_connections_reject_without_raising(node, workflow, connections, op, code):
    wf = _abc(node, workflow, connections)
    before = copy.deepcopy(wf)
    result = apply_patch(wf, [op])
    assert result.accepted is False
    assert _codes(result) == [code]
    assert result.issues[0].details == {"operation": 0}
    assert result.workflow is wf
    assert wf == before


def test_null_port_counts_as_empty(node, workflow):
    wf = workflow([node("A", "n8n-nodes-base.manualTrigger"), node("B", "n8n-nodes-base.set")], {"A": {"main": None}})
    result = apply_patch(wf, [_connect("A", "B")])
    assert result.accepted, _codes(result)
    assert result.workflow["connections"] == {"A": {"main": [[{"node": "B", "type": "main", "index": 0}]]}}


def test_single_edge_bucket_keeps_existing_edge(node, workflow):
    existing = {"node": "B", "type": "main", "index": 0}
    wf = _abc(node, workflow, {"A": {"main": [dict(existing)]}})
    result = apply_patch(wf, [_connect("A", "C")])
    assert result.accepted, _codes(result)
    assert result.workflow["connections"]["A"]["main"] == [[existing, {"node": "C", "type": "main", "index": 0}]]

    removed = apply_patch(wf, [{"type": "removeConnection", "source": "A", "target": "B"}, _connect("A", "C")])
    assert removed.accepted, _codes(removed)
    assert removed.workflow["connections"] == {"A": {"main": [[{"node": "C", "type": "main", "index": 0}]]}}


def test_remove_node_and_rename_see_single_edge_bucket(node, workflow):
    wf = _abc(node, workflow, {"A": {"main": [{"node": "B", "type": "main", "index": 0}]}})
    apply_operation(wf, {"type": "updateNode", "nodeName": "B", "changes": {"name": "Prepare"}})
    assert wf["connections"]["A"]["main"] == [[{"node": "Prepare", "type": "main", "index": 0}]]
    apply_operation(wf, {"type": "removeNode", "nodeName": "Prepare"})
    assert wf["connections"] == {}


def test_remove_connection_narrows_on_target_fields(node, workflow):
    wf = _abc(node, workflow, {"A": {"main": [[
        {"node": "B", "type": "main", "index": 0},
        {"node": "B", "type": "main", "index": 1},
        {"node": "B", "type": "ai_tool", "index": 0},
    ]]}})
    apply_operation(wf, {"type": "removeConnection", "source": "A", "target": "B", "targetIndex": 1})
    assert wf["connections"]["A"]["main"] == [[
        {"node": "B", "type": "main", "index": 0},
        {"node": "B", "type": "ai_tool", "index": 0},
    ]]

    apply_operation(wf, {"type": "removeConnection", "source": "A", "target": "B", "targetInput": "ai_tool"})
    assert wf["connections"]["A"]["main"] == [[{"node": "B", "type": "main", "index": 0}]]

    with pytest.raises(OperationError) as exc:
        apply_operation(wf, {"type": "removeConnection", "source": "A", "target": "B", "targetIndex": 3})
    assert exc.value.code == "CONNECTION_NOT_FOUND"

    apply_operation(wf, {"type": "removeConnection", "source": "A", "target": "B"})
    assert wf["connections"] == {}
