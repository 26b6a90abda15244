# flowguard/nodes/catalog.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from flowguard.errors import CatalogError
from flowguard.utils.io import PathLike, load_any
from flowguard.utils.logger import get_logger
from flowguard.utils.normalizer import detect_package, normalize_node_type

logger = get_logger("catalog")


@dataclass(frozen=True)
class NodeDescriptor:
    """
    Pre-computed metadata for one node type.

    `version` is the latest known typeVersion; `outputs` the number of declared
    main outputs (None when the catalog does not know).
    """
    node_type: str
    display_name: str = ""
    is_versioned: bool = False
    version: Optional[float] = None
    inputs: Optional[int] = None
    outputs: Optional[int] = None
    is_trigger: bool = False
    is_ai_tool: bool = False
    package: str = "unknown"
    capabilities: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, node_type: str, data: Mapping[str, Any]) -> "NodeDescriptor":
        """Accepts both snake_case and camelCase keys (catalog exports use camelCase)."""
        if not isinstance(data, Mapping):
            raise CatalogError(f"Descriptor for '{node_type}' must be an object, got {type(data).__name__}")

        def pick(*keys, default=None):
            for k in keys:
                if k in data:
                    return data[k]
            return default

        t = normalize_node_type(node_type)
        version = pick("version", "latestVersion")
        if isinstance(version, list):
            nums = [v for v in version if isinstance(v, (int, float)) and not isinstance(v, bool)]
            version = max(nums) if nums else None
        if version is not None and (isinstance(version, bool) or not isinstance(version, (int, float))):
            raise CatalogError(f"Descriptor for '{node_type}' has non-numeric version {version!r}")

        return cls(
            node_type=t,
            display_name=str(pick("display_name", "displayName", default="") or ""),
            is_versioned=bool(pick("is_versioned", "isVersioned", default=False)),
            version=version,
            inputs=_opt_int(pick("inputs"), node_type, "inputs"),
            outputs=_opt_int(pick("outputs"), node_type, "outputs"),
            is_trigger=bool(pick("is_trigger", "isTrigger", default=False)),
            is_ai_tool=bool(pick("is_ai_tool", "isAITool", "isAiTool", default=False)),
            package=str(pick("package", default="") or detect_package(t)),
            capabilities=tuple(pick("capabilities", default=()) or ()),
        )


def _opt_int(value: Any, node_type: str, key: str) -> Optional[int]:
    if value is None:
        return None
    # exports sometimes list port names instead of a count
    if isinstance(value, list):
        return len(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise CatalogError(f"Descriptor for '{node_type}' has invalid {key}: {value!r}")
    return value


class NodeCatalog:
    """Read-only type -> NodeDescriptor lookup keyed by normalized type."""

    def __init__(self, descriptors: Optional[Mapping[str, NodeDescriptor]] = None):
        self._by_type: Dict[str, NodeDescriptor] = {}
        for t, d in (descriptors or {}).items():
            self._by_type[normalize_node_type(t)] = d

    def get(self, node_type: Any) -> Optional[NodeDescriptor]:
        if not isinstance(node_type, str):
            return None
        return self._by_type.get(normalize_node_type(node_type))

    def __contains__(self, node_type: Any) -> bool:
        return self.get(node_type) is not None

    def __len__(self) -> int:
        return len(self._by_type)

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_type)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "NodeCatalog":
        """
        Build from plain data:
          {"nodes-base.set": {"isVersioned": true, "version": 3.4, "outputs": 1}, ...}
        A top-level {"nodes": {...}} wrapper is accepted too.
        """
        if isinstance(data, Mapping) and isinstance(data.get("nodes"), Mapping):
            data = data["nodes"]
        if not isinstance(data, Mapping):
            raise CatalogError("Node catalog must be an object mapping node type -> descriptor")
        return cls({t: NodeDescriptor.from_dict(t, d) for t, d in data.items()})

    @classmethod
    def from_file(cls, path: PathLike) -> "NodeCatalog":
        catalog = cls.from_mapping(load_any(path))
        logger.debug("Loaded %d node descriptors from %s", len(catalog), path)
        return catalog


def safe_lookup(catalog: Optional[Any], node_type: Any) -> Optional[NodeDescriptor]:
    """
    Catalog lookup that never raises: a failing or missing catalog
    degrades to "unknown node".
    """
    if catalog is None:
        return None
    try:
        return catalog.get(node_type)
    except Exception as e:
        logger.warning("Catalog lookup failed for %r: %s", node_type, e)
        return None
