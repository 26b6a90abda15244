# flowguard/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

from flowguard.utils.logger import get_logger

logger = get_logger("config")

ENV_PREFIX = "FLOWGUARD_"


@dataclass(frozen=True)
class EngineConfig:
    """Limits and thresholds shared by the validator and the patch engine."""

    max_operations: int = 5
    max_iterations_warning: int = 50
    min_system_message_length: int = 20
    min_tool_description_length: int = 15
    max_top_k_warning: int = 20
    long_chain_warning: int = 10
    max_retries_warning: int = 10
    max_wait_between_tries_ms: int = 300000
    large_workflow_nodes: int = 20

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, prefix: str = ENV_PREFIX) -> "EngineConfig":
        """
        Read integer overrides such as FLOWGUARD_MAX_OPERATIONS=8.
        Values that do not parse are logged and ignored.
        """
        env = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(prefix + f.name.upper())
            if raw is None or raw == "":
                continue
            try:
                value = int(raw)
            except ValueError:
                logger.warning("Ignoring %s%s=%r (not an integer)", prefix, f.name.upper(), raw)
                continue
            if value < 0:
                logger.warning("Ignoring %s%s=%r (negative)", prefix, f.name.upper(), raw)
                continue
            overrides[f.name] = value
        return cls(**overrides)

    def with_overrides(self, **kwargs: Any) -> "EngineConfig":
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})


DEFAULT_CONFIG = EngineConfig()
