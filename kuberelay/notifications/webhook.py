"""Webhook notifier for kuberelay.

Formats each ChangeEvent as a CloudEvents-style envelope and POSTs it as
JSON to the configured sink. Delivery is a single attempt: failures are
logged and the event is dropped, so one bad delivery costs the relay
consumer at most one request timeout.
"""

from __future__ import annotations

import itertools
import time
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from kuberelay.models.envelope import CONTENT_TYPE, CloudEventData, CloudEventMessage
from kuberelay.models.events import ChangeEvent, ChangeKind, DeletedFinalStateUnknown
from kuberelay.models.resources import (
    group_version_kind,
    is_object,
    object_key,
    object_name,
    object_namespace,
)
from kuberelay.observability.metrics import webhook_deliveries_total


class WebhookNotifier:
    """Delivers change envelopes by POSTing JSON to a configurable URL.

    Args:
        url:        Full endpoint URL.
        source:     Value of the envelope ``source`` field.
        cluster_id: Value of ``data.clusterUid``.
        timeout:    HTTP request timeout in seconds. Defaults to 10.
        client:     Optional shared httpx.AsyncClient (tests, connection reuse).
    """

    def __init__(
        self,
        url: str,
        source: str = "kuberelay",
        cluster_id: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not url:
            raise ValueError("Webhook url must not be empty")
        self._url = url
        self._source = source
        self._cluster_id = cluster_id
        self._start_time = int(time.time())
        self._counter = itertools.count(1)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._log = structlog.get_logger(component="webhook-handler")

    @property
    def url(self) -> str:
        return self._url

    async def dispatch(self, event: ChangeEvent) -> bool:
        """Format *event* and make one delivery attempt.

        Returns True when the sink answered with a 2xx status.
        """
        obj, old_obj = event.obj, event.old_obj
        if isinstance(obj, DeletedFinalStateUnknown):
            # the informer knows the object is gone but not its final state
            self._log.warning("deleted_final_state_unknown", key=obj.key)
            obj = obj.obj

        if not is_object(obj):
            self._log.error("object_not_unstructured", kind=event.kind.value, type=type(obj).__name__)
            return False
        if old_obj is not None and not is_object(old_obj):
            self._log.error("old_object_not_unstructured", type=type(old_obj).__name__)
            return False

        self._log.info(
            event.kind.operation,
            name=object_name(obj),
            namespace=object_namespace(obj),
            group_version_kind=str(group_version_kind(obj)),
        )
        message = self.prepare_message(obj, old_obj, event.kind)
        return await self.post_message(message)

    def prepare_message(
        self,
        obj: dict[str, Any],
        old_obj: dict[str, Any] | None,
        kind: ChangeKind,
    ) -> CloudEventMessage:
        return CloudEventMessage(
            source=self._source,
            subject=object_key(obj),
            id=f"{self._start_time}-{next(self._counter)}",
            time=datetime.now(tz=UTC),
            data=CloudEventData(
                operation=kind.operation,
                kind=str(obj.get("kind", "")),
                api_version=str(obj.get("apiVersion", "")),
                cluster_uid=self._cluster_id,
                obj=obj,
                old_obj=old_obj,
            ),
        )

    async def post_message(self, message: CloudEventMessage) -> bool:
        try:
            response = await self._client.post(
                self._url,
                json=message.to_dict(),
                headers={"Content-Type": CONTENT_TYPE},
            )
        except httpx.TimeoutException:
            webhook_deliveries_total.labels(success="false").inc()
            self._log.warning("webhook_request_timeout", id=message.id, url=self._url)
            return False
        except httpx.HTTPError as exc:
            webhook_deliveries_total.labels(success="false").inc()
            self._log.error("webhook_delivery_failed", id=message.id, error=str(exc))
            return False

        if not response.is_success:
            webhook_deliveries_total.labels(success="false").inc()
            self._log.warning(
                "webhook_non_2xx_response",
                id=message.id,
                status_code=response.status_code,
                body=response.text[:200],
            )
            return False

        webhook_deliveries_total.labels(success="true").inc()
        self._log.info("message_sent", id=message.id, destination=self._url)
        return True

    async def stop(self) -> None:
        if self._owns_client:
            await self._client.aclose()
