import logging
from typing import Any, Dict, List, Optional

import pytest

from flowguard.utils.logger import ROOT_LOGGER


def _node(name: str, node_type: str, **extra: Any) -> Dict[str, Any]:
    node = {
        "id": extra.pop("id", name.lower().replace(" ", "-")),
        "name": name,
        "type": node_type,
        "typeVersion": extra.pop("typeVersion", 1),
        "position": extra.pop("position", [0, 0]),
        "parameters": extra.pop("parameters", {}),
    }
    node.update(extra)
    return node


def _workflow(nodes: List[Dict[str, Any]], connections: Optional[Dict[str, Any]] = None, **extra: Any) -> Dict[str, Any]:
    wf = {"name": extra.pop("name", "test workflow"), "nodes": nodes, "connections": connections or {}}
    wf.update(extra)
    return wf


def _link(connections: Dict[str, Any], source: str, target: str, port: str = "main", output: int = 0) -> Dict[str, Any]:
    buckets = connections.setdefault(source, {}).setdefault(port, [])
    while len(buckets) <= output:
        buckets.append([])
    buckets[output].append({"node": target, "type": port, "index": 0})
    return connections


@pytest.fixture
def node():
    """node("Set", "n8n-nodes-base.set", parameters={...})"""
    return _node


@pytest.fixture
def workflow():
    return _workflow


@pytest.fixture
def link():
    """link(conns, "A", "B", port="ai_tool", output=1) appends one edge."""
    return _link


@pytest.fixture
def simple_workflow():
    """Manual Trigger -> Set, valid and minimal."""
    nodes = [
        _node("Manual Trigger", "n8n-nodes-base.manualTrigger", id="1"),
        _node("Set", "n8n-nodes-base.set", id="2", typeVersion=3),
    ]
    return _workflow(nodes, _link({}, "Manual Trigger", "Set"))


@pytest.fixture(autouse=True)
def _reset_logger():
    """CLI runs install stderr handlers bound to the runner's streams; drop them after each test."""
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for h in [h for h in logger.handlers if not isinstance(h, logging.NullHandler)]:
        logger.removeHandler(h)
        h.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
