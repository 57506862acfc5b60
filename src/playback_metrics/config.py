"""Configuration management for the playback metrics engine."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

from .logging_utils import get_logger

CONFIG_PATH = Path.home() / ".config" / "playback_metrics" / "config.yaml"

DEFAULT_MIN_REBUFFER_DURATION_MS = 250.0
DEFAULT_HEARTBEAT_INTERVAL_MS = 2000.0
DEFAULT_HISTORY_CAPACITY = 100

ENV_OVERRIDES: Mapping[str, str] = {
    "min_rebuffer_duration_ms": "PLAYBACK_METRICS_MIN_REBUFFER_MS",
    "heartbeat_interval_ms": "PLAYBACK_METRICS_HEARTBEAT_MS",
    "history_capacity": "PLAYBACK_METRICS_HISTORY_CAPACITY",
}

log = get_logger(__name__)


@dataclass(slots=True)
class EngineConfig:
    """Tunable options recognised by :class:`~playback_metrics.engine.PlaybackEngine`."""

    min_rebuffer_duration_ms: float = DEFAULT_MIN_REBUFFER_DURATION_MS
    heartbeat_interval_ms: float = DEFAULT_HEARTBEAT_INTERVAL_MS
    history_capacity: int = DEFAULT_HISTORY_CAPACITY

    @property
    def min_rebuffer_duration(self) -> float:
        """Debounce threshold in seconds."""

        return self.min_rebuffer_duration_ms / 1000.0

    @property
    def heartbeat_interval(self) -> float:
        """Heartbeat period in seconds."""

        return self.heartbeat_interval_ms / 1000.0

    def as_dict(self) -> dict[str, float | int]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


def _clean_scalar(value: str) -> str:
    value = value.strip()
    if value.startswith(("'", '"')) and value.endswith(("'", '"')):
        value = value[1:-1]
    return value


def _parse_config(raw: str) -> dict[str, object]:
    """Parse a JSON object or a flat ``key: value`` document."""

    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        pass
    else:
        return data if isinstance(data, dict) else {}

    result: dict[str, object] = {}
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, separator, value = stripped.partition(":")
        if not separator:
            log.warning("Ignoring malformed configuration line: %s", stripped)
            continue
        result[key.strip()] = _clean_scalar(value.split(" #", 1)[0])
    return result


def _positive_number(
    name: str, raw: object, default: float, *, integer: bool = False
) -> float:
    """Return ``raw`` as a positive number, or ``default`` with a warning."""

    try:
        value = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        log.warning("Invalid %s value %r; using default %s", name, raw, default)
        return default
    if not value > 0 or value == float("inf"):
        log.warning("%s must be positive; using default %s", name, default)
        return default
    if integer:
        return int(value)
    return value


def _build_config(data: Mapping[str, object]) -> EngineConfig:
    config = EngineConfig()
    for key in data:
        if key not in ENV_OVERRIDES:
            log.warning("Ignoring unknown configuration option %s", key)
    if "min_rebuffer_duration_ms" in data:
        config.min_rebuffer_duration_ms = _positive_number(
            "min_rebuffer_duration_ms",
            data["min_rebuffer_duration_ms"],
            DEFAULT_MIN_REBUFFER_DURATION_MS,
        )
    if "heartbeat_interval_ms" in data:
        config.heartbeat_interval_ms = _positive_number(
            "heartbeat_interval_ms",
            data["heartbeat_interval_ms"],
            DEFAULT_HEARTBEAT_INTERVAL_MS,
        )
    if "history_capacity" in data:
        config.history_capacity = int(
            _positive_number(
                "history_capacity",
                data["history_capacity"],
                DEFAULT_HISTORY_CAPACITY,
                integer=True,
            )
        )
    return config


def _environment_overrides() -> dict[str, object]:
    overrides: dict[str, object] = {}
    for option, variable in ENV_OVERRIDES.items():
        raw_value = os.getenv(variable)
        if raw_value is not None and raw_value.strip():
            overrides[option] = raw_value.strip()
    return overrides


def load_config(path: Optional[Path] = None) -> EngineConfig:
    """Load configuration from *path*, then apply environment overrides."""

    config_path = path or CONFIG_PATH
    data: dict[str, object] = {}
    if config_path.exists():
        log.debug("Loading configuration from %s", config_path)
        data = _parse_config(config_path.read_text(encoding="utf8"))
    else:
        log.info("Configuration file missing at %s; using defaults", config_path)
    data.update(_environment_overrides())
    config = _build_config(data)
    log.debug("Effective configuration: %s", config.as_dict())
    return config


def _dump_config(config: EngineConfig) -> str:
    lines = [f"{key}: {value:g}" for key, value in config.as_dict().items()]
    lines.append("")
    return "\n".join(lines)


def save_config(config: EngineConfig, path: Optional[Path] = None) -> None:
    """Persist *config* to disk at *path*."""

    config_path = path or CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_dump_config(config), encoding="utf8")
    log.info("Configuration saved to %s", config_path)


__all__ = [
    "CONFIG_PATH",
    "DEFAULT_HEARTBEAT_INTERVAL_MS",
    "DEFAULT_HISTORY_CAPACITY",
    "DEFAULT_MIN_REBUFFER_DURATION_MS",
    "EngineConfig",
    "load_config",
    "save_config",
]
