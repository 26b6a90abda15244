# flowguard/patch/operations.py
from __future__ import annotations

import copy
import uuid
from typing import Any, Callable, Dict, List, Optional

from flowguard.errors import OperationError
from flowguard.patch.schema import OPERATION_TYPES, operation_errors
from flowguard.utils.graph import MAIN
from flowguard.utils.logger import get_logger

logger = get_logger("patch")

NODE_OPERATION_TYPES = ("addNode", "removeNode", "updateNode", "moveNode", "enableNode", "disableNode")
OTHER_OPERATION_TYPES = ("addConnection", "removeConnection", "updateSettings", "updateMetadata")

RESERVED_METADATA_KEYS = ("nodes", "connections", "settings")

# Namespace for ids of nodes added without one, so the same patch always yields the same graph.
NODE_ID_NAMESPACE = uuid.UUID("8f2a4c8e-5d1b-4c7e-9a0f-3b6d2e1c7a94")


# ---------- Lookups ----------

def _nodes(workflow: Dict[str, Any]) -> List[Dict[str, Any]]:
    nodes = workflow.get("nodes")
    if not isinstance(nodes, list):
        nodes = []
        workflow["nodes"] = nodes
    return nodes


def _connections(workflow: Dict[str, Any]) -> Dict[str, Any]:
    conns = workflow.get("connections")
    if not isinstance(conns, dict):
        conns = {}
        workflow["connections"] = conns
    return conns


def find_node(workflow: Dict[str, Any], node_id: Any = None, node_name: Any = None) -> Optional[Dict[str, Any]]:
    """By id, then by name; an id that matches nothing is retried as a name."""
    nodes = [n for n in _nodes(workflow) if isinstance(n, dict)]
    if node_id is not None:
        for n in nodes:
            if n.get("id") == node_id:
                return n
    for candidate in (node_name, node_id):
        if isinstance(candidate, str):
            for n in nodes:
                if n.get("name") == candidate:
                    return n
    return None


def _require_node(workflow: Dict[str, Any], op: Dict[str, Any]) -> Dict[str, Any]:
    node = find_node(workflow, op.get("nodeId"), op.get("nodeName"))
    if node is None:
        ref = op.get("nodeId") if op.get("nodeId") is not None else op.get("nodeName")
        raise OperationError(f"Node not found: {ref}", "NODE_NOT_FOUND")
    return node


def _endpoint(workflow: Dict[str, Any], ref: Any, role: str) -> Dict[str, Any]:
    # connection endpoints are given by name or id
    node = find_node(workflow, ref, ref)
    if node is None:
        raise OperationError(f"{role.capitalize()} node not found: {ref}", "NODE_NOT_FOUND")
    return node


def set_nested(target: Dict[str, Any], path: str, value: Any) -> None:
    """set_nested(node, "parameters.options.topK", 5) creating dicts on the way."""
    keys = path.split(".")
    if not all(keys):
        raise OperationError(f"Invalid property path: {path!r}")
    cur = target
    for k in keys[:-1]:
        nxt = cur.get(k)
        if not isinstance(nxt, dict):
            nxt = {}
            cur[k] = nxt
        cur = nxt
    cur[keys[-1]] = value


def _rename_references(workflow: Dict[str, Any], old: str, new: str) -> None:
    conns = _connections(workflow)
    if old in conns:
        conns[new] = conns.pop(old)
    for ports in conns.values():
        if not isinstance(ports, dict):
            continue
        for buckets in ports.values():
            for bucket in buckets if isinstance(buckets, list) else []:
                for edge in _as_bucket(bucket) or []:
                    if isinstance(edge, dict) and edge.get("node") == old:
                        edge["node"] = new


def _trim_trailing(buckets: List[Any]) -> None:
    # only trailing empties: earlier indexes keep their output meaning
    while buckets and not buckets[-1]:
        buckets.pop()


def _drop_empty(conns: Dict[str, Any], source: str, port: Optional[str] = None) -> None:
    ports = conns.get(source)
    if not isinstance(ports, dict):
        return
    for p in [port] if port else list(ports):
        if p in ports and isinstance(ports[p], list) and not ports[p]:
            del ports[p]
    if not ports:
        del conns[source]


# ---------- Node operations ----------

def add_node(workflow: Dict[str, Any], op: Dict[str, Any]) -> None:
    fields = op["node"]
    name, node_type = fields["name"], fields["type"]
    if find_node(workflow, None, name) is not None:
        raise OperationError(f'Node with name "{name}" already exists', "DUPLICATE_NODE_NAME")
    if "." not in node_type:
        raise OperationError(
            f'Invalid node type "{node_type}". Must include package prefix (e.g. "n8n-nodes-base.webhook")',
            "INVALID_NODE_TYPE",
        )
    node_id = fields.get("id")
    if node_id is None:
        node_id = str(uuid.uuid5(NODE_ID_NAMESPACE, name))
    if any(isinstance(n, dict) and n.get("id") == node_id for n in _nodes(workflow)):
        raise OperationError(f'Node with id "{node_id}" already exists', "DUPLICATE_NODE_ID")

    node = copy.deepcopy(fields)
    node["id"] = node_id
    node.setdefault("typeVersion", 1)
    node.setdefault("position", [0, 0])
    node.setdefault("parameters", {})
    _nodes(workflow).append(node)


def remove_node(workflow: Dict[str, Any], op: Dict[str, Any]) -> None:
    node = _require_node(workflow, op)
    name = node.get("name")
    _nodes(workflow).remove(node)

    conns = _connections(workflow)
    dropped = 0
    if isinstance(name, str) and name in conns:
        del conns[name]
        dropped += 1
    for source in list(conns):
        ports = conns[source]
        if not isinstance(ports, dict):
            continue
        for port, buckets in ports.items():
            if not isinstance(buckets, list):
                continue
            for i, bucket in enumerate(buckets):
                bucket = _as_bucket(bucket)
                if bucket is not None:
                    kept = [e for e in bucket if not (isinstance(e, dict) and e.get("node") == name)]
                    dropped += len(bucket) - len(kept)
                    buckets[i] = kept
            _trim_trailing(buckets)
        _drop_empty(conns, source)
    if dropped:
        logger.info("Removing node %r dropped %d connection(s)", name, dropped)


def update_node(workflow: Dict[str, Any], op: Dict[str, Any]) -> None:
    node = _require_node(workflow, op)
    changes = op["changes"]
    new_name = changes.get("name")
    old_name = node.get("name")
    if new_name is not None and new_name != old_name:
        if not isinstance(new_name, str) or not new_name:
            raise OperationError("Node name must be a non-empty string")
        if find_node(workflow, None, new_name) is not None:
            raise OperationError(f'Node with name "{new_name}" already exists', "DUPLICATE_NODE_NAME")
    for path, value in changes.items():
        set_nested(node, path, value)
    if new_name is not None and new_name != old_name and isinstance(old_name, str):
        _rename_references(workflow, old_name, new_name)


def move_node(workflow: Dict[str, Any], op: Dict[str, Any]) -> None:
    _require_node(workflow, op)["position"] = list(op["position"])


def enable_node(workflow: Dict[str, Any], op: Dict[str, Any]) -> None:
    _require_node(workflow, op)["disabled"] = False


def disable_node(workflow: Dict[str, Any], op: Dict[str, Any]) -> None:
    _require_node(workflow, op)["disabled"] = True


# ---------- Connection / workflow operations ----------

def _malformed(source: str, port: Optional[str], found: Any) -> OperationError:
    where = f'"{source}".{port}' if port else f'"{source}"'
    return OperationError(
        f"Connections of {where} are malformed ({type(found).__name__}); fix the connection map before patching it",
        "MALFORMED_CONNECTIONS",
    )


def _as_bucket(bucket: Any) -> Optional[List[Any]]:
    # a single edge object stands for a one-edge bucket, null for an empty one
    if bucket is None:
        return []
    if isinstance(bucket, dict):
        return [bucket]
    return bucket if isinstance(bucket, list) else None


def _port_buckets(conns: Dict[str, Any], source: str, port: str, create: bool = False) -> Optional[List[List[Any]]]:
    """
    Output buckets of connections[source][port], normalized in place to lists.
    Missing entries give None (or are created); shapes that cannot hold edges raise MALFORMED_CONNECTIONS.
    """
    ports = conns.get(source)
    if ports is None:
        if not create:
            return None
        ports = conns[source] = {}
    if not isinstance(ports, dict):
        raise _malformed(source, None, ports)

    buckets = ports.get(port)
    if buckets is None:
        if not create:
            return None
        buckets = ports[port] = []
    if not isinstance(buckets, list):
        raise _malformed(source, port, buckets)

    for i, bucket in enumerate(buckets):
        fixed = _as_bucket(bucket)
        if fixed is None:
            raise _malformed(source, port, bucket)
        buckets[i] = fixed
    return buckets


def _edge_fields(workflow: Dict[str, Any], op: Dict[str, Any]):
    src = _endpoint(workflow, op["source"], "source")
    tgt = _endpoint(workflow, op["target"], "target")
    source_output = op.get("sourceOutput") or MAIN
    return (
        src["name"],
        tgt["name"],
        source_output,
        op.get("targetInput") or source_output,
        op.get("sourceIndex") or 0,
        op.get("targetIndex") or 0,
    )


def add_connection(workflow: Dict[str, Any], op: Dict[str, Any]) -> None:
    source, target, port, target_input, source_index, target_index = _edge_fields(workflow, op)
    conns = _connections(workflow)
    buckets = _port_buckets(conns, source, port, create=True)
    while len(buckets) <= source_index:
        buckets.append([])

    edge = {"node": target, "type": target_input, "index": target_index}
    if edge in buckets[source_index]:
        raise OperationError(
            f'Connection already exists from "{source}" to "{target}" ({port}[{source_index}])', "CONNECTION_EXISTS"
        )
    buckets[source_index].append(edge)


def _edge_matches(edge: Any, target: str, op: Dict[str, Any], target_input: str, target_index: int) -> bool:
    if not (isinstance(edge, dict) and edge.get("node") == target):
        return False
    if "targetInput" in op and edge.get("type", MAIN) != target_input:
        return False
    if "targetIndex" in op and edge.get("index", 0) != target_index:
        return False
    return True


def remove_connection(workflow: Dict[str, Any], op: Dict[str, Any]) -> None:
    source, target, port, target_input, source_index, target_index = _edge_fields(workflow, op)
    conns = _connections(workflow)
    buckets = _port_buckets(conns, source, port)
    removed = 0
    if buckets:
        # explicit sourceIndex narrows to one bucket, otherwise every bucket of the port
        indexes = [source_index] if "sourceIndex" in op else range(len(buckets))
        for i in indexes:
            if i < len(buckets):
                kept = [e for e in buckets[i] if not _edge_matches(e, target, op, target_input, target_index)]
                removed += len(buckets[i]) - len(kept)
                buckets[i] = kept
    if not removed:
        raise OperationError(f'No connection exists from "{source}" to "{target}" ({port})', "CONNECTION_NOT_FOUND")
    _trim_trailing(buckets)
    _drop_empty(conns, source, port)


def update_settings(workflow: Dict[str, Any], op: Dict[str, Any]) -> None:
    settings = workflow.get("settings")
    if not isinstance(settings, dict):
        settings = {}
        workflow["settings"] = settings
    settings.update(op["settings"])


def update_metadata(workflow: Dict[str, Any], op: Dict[str, Any]) -> None:
    metadata = op["metadata"]
    reserved = [k for k in metadata if k in RESERVED_METADATA_KEYS]
    if reserved:
        raise OperationError(
            f"updateMetadata cannot change {', '.join(reserved)}; use the node, connection or settings operations",
            "RESERVED_METADATA_KEY",
        )
    workflow.update(metadata)


OPERATION_APPLIERS: Dict[str, Callable[[Dict[str, Any], Dict[str, Any]], None]] = {
    "addNode": add_node,
    "removeNode": remove_node,
    "updateNode": update_node,
    "moveNode": move_node,
    "enableNode": enable_node,
    "disableNode": disable_node,
    "addConnection": add_connection,
    "removeConnection": remove_connection,
    "updateSettings": update_settings,
    "updateMetadata": update_metadata,
}


def apply_operation(workflow: Dict[str, Any], op: Any) -> None:
    """
    Shape-check `op` and apply it to `workflow` in place.
    Raises OperationError; the caller owns the working copy.
    """
    if not isinstance(op, dict):
        raise OperationError(f"Operation must be an object, got {type(op).__name__}")
    op_type = op.get("type")
    if op_type not in OPERATION_TYPES:
        raise OperationError(f"Unknown operation type: {op_type!r}", "UNKNOWN_OPERATION")
    problems = operation_errors(op)
    if problems:
        raise OperationError(f"Invalid {op_type} operation: {'; '.join(problems)}")
    OPERATION_APPLIERS[op_type](workflow, op)
