"""
Configuration helpers for the tracker.

The config loader starts from deterministic defaults, then merges a user
provided JSON configuration file and environment overrides prefixed with
``ZNTRACKER_`` (``ZNTRACKER_CLEANUP__PEER_TTL=600`` sets ``cleanup.peer_ttl``).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

ENV_PREFIX = "ZNTRACKER_"
BACKENDS = ("sqlite", "memory")


class ConfigError(Exception):
    """Raised when configuration validation fails."""


def _expand_path(value: str) -> Path:
    return Path(os.path.expandvars(os.path.expanduser(value))).resolve()


def default_data_dir() -> Path:
    base = Path(os.getenv("ZNTRACKER_DATA", Path.home() / ".zntracker"))
    return _expand_path(str(base))


@dataclass(slots=True)
class StorageConfig:
    backend: str = "sqlite"
    path: str = ":memory:"  # a file path makes the directory persistent

    @property
    def persistent(self) -> bool:
        return self.backend == "sqlite" and self.path not in ("", ":memory:")

    def validate(self) -> None:
        if self.backend not in BACKENDS:
            raise ConfigError(f"Unknown storage backend {self.backend!r}; expected one of {', '.join(BACKENDS)}")
        if self.backend == "memory" and self.path not in ("", ":memory:"):
            raise ConfigError("The memory backend cannot be given a storage path")


@dataclass(slots=True)
class CleanupConfig:
    interval: float = 60.0  # seconds between sweeps
    peer_ttl: int = 3600  # seconds a peer survives without announcing

    def validate(self) -> None:
        if self.interval <= 0:
            raise ConfigError("cleanup interval must be > 0")
        if self.peer_ttl <= 0:
            raise ConfigError("peer_ttl must be > 0")


@dataclass(slots=True)
class MetricsConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9090
    refresh_interval: float = 15.0

    def validate(self) -> None:
        if not (1 <= self.port <= 65535):
            raise ConfigError(f"Invalid metrics port {self.port}")
        if self.refresh_interval <= 0:
            raise ConfigError("metrics refresh_interval must be > 0")


@dataclass(slots=True)
class TrackerConfig:
    storage: StorageConfig = field(default_factory=StorageConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    data_dir: Path = field(default_factory=default_data_dir)
    log_file: Path | None = None

    def ensure_data_layout(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        (self.data_dir / "logs").mkdir(parents=True, exist_ok=True)
        if self.log_file is None:
            self.log_file = self.data_dir / "logs" / "tracker.log"

    def validate(self) -> None:
        self.storage.validate()
        self.cleanup.validate()
        self.metrics.validate()
        if not isinstance(self.data_dir, Path):
            raise ConfigError("data_dir must be a Path")


def load_config(path: Path | None = None, *, overrides: dict[str, Any] | None = None) -> TrackerConfig:
    """Load configuration from disk and environment overrides."""

    def _merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
        for key, value in extra.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                base[key] = _merge(dict(base[key]), value)
            else:
                base[key] = value
        return base

    cfg_path = path or _expand_path(os.getenv("ZNTRACKER_CONFIG", str(default_data_dir() / "config.json")))
    base: dict[str, Any] = {}
    if Path(cfg_path).exists():
        try:
            with open(cfg_path, "rb") as fh:
                base = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Unable to read config file {cfg_path}: {exc}") from exc
        if not isinstance(base, dict):
            raise ConfigError(f"Config file {cfg_path} must contain a JSON object")

    env_overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        trimmed = key[len(ENV_PREFIX) :]
        if trimmed in ("CONFIG", "DATA", "REVISION"):
            continue
        parts = trimmed.lower().split("__")
        target = env_overrides
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[parts[-1]] = value

    if overrides:
        env_overrides = _merge(env_overrides, overrides)

    merged = _merge(base, env_overrides)
    config = TrackerConfig()
    _apply_dict(config, merged)
    config.ensure_data_layout()
    config.validate()
    return config


def _apply_dict(obj: Any, data: dict[str, Any]) -> None:
    for key, value in data.items():
        if not hasattr(obj, key):
            raise ConfigError(f"Unknown config field {key}")
        current = getattr(obj, key)
        if isinstance(current, Path):
            setattr(obj, key, _expand_path(str(value)))
        elif isinstance(current, (StorageConfig, CleanupConfig, MetricsConfig)):
            if not isinstance(value, dict):
                raise ConfigError(f"{key} must be a mapping")
            _apply_dict(current, value)
        elif isinstance(value, (str, os.PathLike)) and key.endswith(("dir", "file")):
            setattr(obj, key, _expand_path(str(value)))
        else:
            setattr(obj, key, _coerce_value(current, value))


def _coerce_value(current: Any, value: Any) -> Any:
    target_type = type(current)
    if target_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in {"1", "true", "yes"}:
                return True
            if normalized in {"0", "false", "no"}:
                return False
            raise ConfigError(f"Invalid boolean value {value}")
        raise ConfigError(f"Cannot coerce {value!r} to bool")
    if target_type in {int, float}:
        try:
            return target_type(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid numeric value {value!r}") from exc
    if target_type is str:
        return str(value)
    return value
