"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from kuberelay.models.config import (
    DEFAULT_RESOURCES,
    CacheConfig,
    KubeRelayConfig,
    LogConfig,
    MetricsConfig,
    WatcherConfig,
    WebhookConfig,
)

_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBERELAY_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float) -> float:
    return float(_env(key, str(default)))


def _env_list(key: str, default: tuple[str, ...]) -> list[str]:
    raw = _env(key, ",".join(default))
    return [item.strip() for item in raw.split(",") if item.strip()]


def _validate_duration(value: str) -> str:
    if not re.match(r"^[0-9]+(s|m|h|d)$", value):
        raise ValueError(f"Invalid duration format: {value}")
    return value


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def parse_duration(value: str) -> int:
    """Convert a duration like ``30m`` into seconds."""
    _validate_duration(value)
    return int(value[:-1]) * _DURATION_UNITS[value[-1]]


def load_config() -> KubeRelayConfig:
    """Load configuration from KUBERELAY_* environment variables."""
    return KubeRelayConfig(
        cluster_id=_env("CLUSTER_ID", ""),
        webhook=WebhookConfig(
            url=_env("WEBHOOK_URL", ""),
            source=_env("WEBHOOK_SOURCE", WebhookConfig.source),
            timeout_seconds=_env_float("WEBHOOK_TIMEOUT", 10.0),
        ),
        cache=CacheConfig(
            enabled=_env_bool("CACHE_ENABLED", True),
            ttl=_validate_duration(_env("CACHE_TTL", "30m")),
            sweep_interval_seconds=_env_int("CACHE_SWEEP_INTERVAL", 60, min_val=1, max_val=3600),
        ),
        watcher=WatcherConfig(
            resources=_env_list("RESOURCES", DEFAULT_RESOURCES),
            sync_timeout_seconds=_env_int("SYNC_TIMEOUT", 10, min_val=1, max_val=300),
            relay_capacity=_env_int("RELAY_CAPACITY", 0, min_val=0),
        ),
        metrics=MetricsConfig(
            port=_env_int("METRICS_PORT", 0, min_val=0, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
