"""Prometheus metrics for the relay pipeline."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, start_http_server

events_enqueued_total = Counter(
    "kuberelay_events_enqueued_total",
    "Change events accepted by a relay queue",
    ["kind"],
)

events_dropped_total = Counter(
    "kuberelay_events_dropped_total",
    "Items discarded by the pipeline",
    ["reason"],
)

events_processed_total = Counter(
    "kuberelay_events_processed_total",
    "Change events handed to a processing handler",
    ["kind"],
)

owner_reference_changes_total = Counter(
    "kuberelay_owner_reference_changes_total",
    "Owner references added or removed between snapshots",
    ["change"],
)

webhook_deliveries_total = Counter(
    "kuberelay_webhook_deliveries_total",
    "Webhook delivery attempts",
    ["success"],
)

relay_queue_depth = Gauge(
    "kuberelay_relay_queue_depth",
    "Items waiting in a relay queue",
    ["relay"],
)

cache_entries = Gauge(
    "kuberelay_cache_entries",
    "Live entries in the reference-tracking cache after the last sweep",
)


def start_metrics_server(port: int) -> None:
    """Expose /metrics on *port* from a daemon thread."""
    start_http_server(port)
