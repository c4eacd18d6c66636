"""Engine configuration.

Reads the "engine" section of ~/.intentflow/configuration.json, then applies
INTENTFLOW_* environment overrides. A missing or unreadable file means
defaults.

Example configuration.json:
    {
      "engine": {
        "max_concurrency": 4,
        "default_deadline_seconds": 30,
        "retry": {"max_retries": 2},
        "retry_policies": {"token_trade": {"max_retries": 1}}
      }
    }
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from intentflow.graph.builder import DEFAULT_MAX_NODES
from intentflow.graph.retry import RetryPolicy
from intentflow.runtime.progress import DEFAULT_BUFFER_SIZE
from intentflow.runtime.worker_pool import DEFAULT_POOL_SIZE

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

INTENTFLOW_CONFIG_FILE = Path.home() / ".intentflow" / "configuration.json"

ENV_PREFIX = "INTENTFLOW_"

# Keys whose environment values are JSON objects
NESTED_KEYS = ("retry", "retry_policies")


def get_intentflow_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from ~/.intentflow/configuration.json."""
    path = path or INTENTFLOW_CONFIG_FILE
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def _env_overrides() -> dict[str, Any]:
    """INTENTFLOW_MAX_CONCURRENCY=4 -> {"max_concurrency": "4"}

    INTENTFLOW_RETRY and INTENTFLOW_RETRY_POLICIES hold JSON objects.
    """
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX) :].lower()
        if name in NESTED_KEYS:
            try:
                overrides[name] = json.loads(value)
            except json.JSONDecodeError as e:
                raise ValueError(f"{key} must be a JSON object: {e}") from e
        else:
            overrides[name] = value
    return overrides


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be an object, got {type(value).__name__}")
    return value


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Limits and defaults for the intent engine."""

    max_nodes: int = DEFAULT_MAX_NODES
    max_concurrency: int = 8
    worker_pool_size: int = DEFAULT_POOL_SIZE
    default_deadline_seconds: float = 60.0
    progress_buffer_size: int = DEFAULT_BUFFER_SIZE
    cancel_grace_seconds: float = 0.1
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    retry_policies: dict[str, RetryPolicy] = field(default_factory=dict)

    _INT_FIELDS = ("max_nodes", "max_concurrency", "worker_pool_size", "progress_buffer_size")
    _FLOAT_FIELDS = ("default_deadline_seconds", "cancel_grace_seconds")
    _RETRY_FIELDS = ("max_retries", "base_backoff", "backoff_multiplier", "jitter")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineConfig":
        config = cls()
        for name in cls._INT_FIELDS:
            if name in data:
                setattr(config, name, int(data[name]))
        for name in cls._FLOAT_FIELDS:
            if name in data:
                setattr(config, name, float(data[name]))

        retry_data = dict(_section(data, "retry"))
        # Flat retry keys are accepted too (handy for env overrides)
        for name in cls._RETRY_FIELDS:
            if name in data:
                retry_data[name] = data[name]
        if retry_data:
            config.retry = RetryPolicy.from_dict(retry_data)

        for intent_type, policy in _section(data, "retry_policies").items():
            if not isinstance(policy, dict):
                raise ValueError(f"retry_policies.{intent_type} must be an object")
            config.retry_policies[intent_type] = RetryPolicy.from_dict(policy, base=config.retry)

        config.validate()
        return config

    @classmethod
    def load(cls, path: Path | None = None) -> "EngineConfig":
        """File settings, then environment overrides."""
        data = dict(get_intentflow_config(path).get("engine", {}))
        data.update(_env_overrides())
        return cls.from_dict(data)

    def validate(self) -> None:
        """
        Raises:
            ValueError: If a limit is out of range
        """
        for name in self._INT_FIELDS:
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        if self.default_deadline_seconds <= 0:
            raise ValueError("default_deadline_seconds must be positive")
        if self.cancel_grace_seconds < 0:
            raise ValueError("cancel_grace_seconds must not be negative")
        if self.retry.max_retries < 0 or self.retry.base_backoff < 0:
            raise ValueError("retry limits must not be negative")
        if not 0 <= self.retry.jitter < 1:
            raise ValueError("retry jitter must be in [0, 1)")
