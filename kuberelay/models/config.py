"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_RESOURCES = ("deployments.v1.apps", "events.v1.events.k8s.io")


@dataclass
class WebhookConfig:
    """Remote sink configuration."""

    url: str = ""
    source: str = "https://github.com/aantn/kubewatch"
    timeout_seconds: float = 10.0


@dataclass
class CacheConfig:
    """Reference-tracking cache configuration."""

    enabled: bool = True
    ttl: str = "30m"
    sweep_interval_seconds: int = 60


@dataclass
class WatcherConfig:
    """Watch subscriptions and relay queue configuration."""

    resources: list[str] = field(default_factory=lambda: list(DEFAULT_RESOURCES))
    sync_timeout_seconds: int = 10
    relay_capacity: int = 0


@dataclass
class MetricsConfig:
    """Prometheus exporter configuration. Port 0 disables the exporter."""

    port: int = 0


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class KubeRelayConfig:
    """Top-level kuberelay configuration."""

    cluster_id: str = ""
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    log: LogConfig = field(default_factory=LogConfig)
