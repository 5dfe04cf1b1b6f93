"""YAML config I/O and dotted-key access for the CLI."""

import hashlib
from pathlib import Path
from typing import Any

import yaml

from tradeguard.config.schema import EngineConfig


def load_config(path: str | Path) -> EngineConfig:
    """Load and validate config from YAML.

    A missing or empty file yields the defaults (memory backends, single process).
    """
    path = Path(path)
    if not path.exists():
        return EngineConfig()
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    return EngineConfig.model_validate(raw)


def save_config(config: EngineConfig, path: str | Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(config.model_dump(mode="json"), f, sort_keys=False)


def config_hash(config: EngineConfig) -> str:
    """Short deterministic fingerprint, logged at daemon start."""
    return hashlib.sha256(config.model_dump_json().encode()).hexdigest()[:16]


def _walk(data: dict[str, Any], dotted_key: str) -> tuple[dict[str, Any], str]:
    *parents, leaf = dotted_key.split(".")
    node: Any = data
    for part in parents:
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Config key not found: {dotted_key}")
        node = node[part]
    if not isinstance(node, dict) or leaf not in node:
        raise KeyError(f"Config key not found: {dotted_key}")
    return node, leaf


def get_config_value(config: EngineConfig, dotted_key: str) -> Any:
    """Look up e.g. ``risk.circuit_breaker_threshold``; sections come back as models."""
    value: Any = config
    for part in dotted_key.split("."):
        if not hasattr(value, part):
            raise KeyError(f"Config key not found: {dotted_key}")
        value = getattr(value, part)
    return value


def set_config_value(config: EngineConfig, dotted_key: str, value: Any) -> EngineConfig:
    """Return a new, re-validated config with one leaf replaced.

    String values from the command line are coerced by the schema itself, so
    ``queue.backoff_seconds=0.5`` and ``queue.backend=redis`` both work.
    """
    data = config.model_dump(mode="json")
    node, leaf = _walk(data, dotted_key)
    node[leaf] = value
    return EngineConfig.model_validate(data)
