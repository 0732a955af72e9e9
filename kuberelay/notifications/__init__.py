"""Outbound change notifications for kuberelay.

Exports:
    WebhookNotifier        -- Posts change envelopes to a JSON webhook.
    build_webhook_notifier -- Factory used by the application bootstrap.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from kuberelay.notifications.webhook import WebhookNotifier

if TYPE_CHECKING:
    from kuberelay.models.config import KubeRelayConfig

_log = structlog.get_logger(component="notifications")

__all__ = ["WebhookNotifier", "build_webhook_notifier"]


def build_webhook_notifier(config: KubeRelayConfig) -> WebhookNotifier | None:
    """Build a WebhookNotifier, or return None when no URL is configured."""
    url = config.webhook.url
    if not url:
        _log.info("webhook_notifier_disabled", reason="no webhook url configured")
        return None
    notifier = WebhookNotifier(
        url=url,
        source=config.webhook.source,
        cluster_id=config.cluster_id,
        timeout=config.webhook.timeout_seconds,
    )
    _log.info("webhook_notifier_enabled", url=url)
    return notifier
