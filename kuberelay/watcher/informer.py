"""Shared informers built on the kubernetes dynamic client.

A SharedInformer lists one resource type, then watches it, keeping a local
indexer so that updates can be delivered with the previous object. Each
informer runs its blocking list/watch loop in a daemon thread and calls its
registered handlers from that thread; handlers must return quickly.

When the watch expires (410 Gone) or the stream fails, the informer relists
with exponential back-off. Objects that disappeared while it was not
watching are delivered as DeletedFinalStateUnknown markers.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Any, Protocol

import structlog
from kubernetes import watch
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError, ResourceNotUniqueError

from kuberelay.models.events import DeletedFinalStateUnknown
from kuberelay.models.resources import GroupVersionResource, object_key

if TYPE_CHECKING:
    from kubernetes.dynamic import DynamicClient

_HTTP_GONE = 410
_WATCH_TIMEOUT_SECONDS = 300
_BACKOFF_INITIAL_SECONDS = 1.0
_BACKOFF_MAX_SECONDS = 30.0


class WatchSetupError(Exception):
    """Raised when a resource type cannot be resolved or subscribed to."""


class ResourceEventHandler(Protocol):
    """Callbacks an informer invokes for each observed change."""

    def on_add(self, obj: Any) -> None: ...

    def on_update(self, old_obj: Any, new_obj: Any) -> None: ...

    def on_delete(self, obj: Any) -> None: ...


class _WatchExpired(Exception):
    pass


def _resource_version(obj: dict[str, Any]) -> str:
    return str((obj.get("metadata") or {}).get("resourceVersion", ""))


class SharedInformer:
    """List/watch loop for a single resource type, shared by many handlers."""

    def __init__(
        self,
        client: DynamicClient,
        gvr: GroupVersionResource,
        resource: Any,
        watch_timeout: int = _WATCH_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._gvr = gvr
        self._resource = resource
        self._watch_timeout = watch_timeout
        self._handlers: list[ResourceEventHandler] = []
        self._indexer: dict[str, dict[str, Any]] = {}
        self._synced = threading.Event()
        self._stop: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._watch: watch.Watch | None = None
        self._log = structlog.get_logger(component="informer", resource=str(gvr))

    @property
    def gvr(self) -> GroupVersionResource:
        return self._gvr

    def add_event_handler(self, handler: ResourceEventHandler) -> None:
        self._handlers.append(handler)

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_sync(self, timeout: float) -> bool:
        return self._synced.wait(timeout)

    def start(self, stop: threading.Event) -> None:
        if self._thread is not None:
            return
        self._stop = stop
        self._thread = threading.Thread(target=self._run, name=f"informer-{self._gvr}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._watch is not None:
            self._watch.stop()

    # ------------------------------------------------------------------
    # List / watch loop
    # ------------------------------------------------------------------

    def _run(self) -> None:
        assert self._stop is not None
        backoff = _BACKOFF_INITIAL_SECONDS
        while not self._stop.is_set():
            try:
                resource_version = self._list()
                backoff = _BACKOFF_INITIAL_SECONDS
                while not self._stop.is_set():
                    resource_version = self._watch_once(resource_version)
            except _WatchExpired:
                self._log.info("watch_expired_relisting")
                continue
            except Exception as exc:
                self._log.warning("list_watch_failed", error=str(exc), retry_in=backoff)
                if self._stop.wait(backoff):
                    break
                backoff = min(backoff * 2, _BACKOFF_MAX_SECONDS)
        self._log.info("informer_stopped")

    def _list(self) -> str:
        listing = self._client.get(self._resource).to_dict()
        items: list[dict[str, Any]] = listing.get("items") or []
        fresh: dict[str, dict[str, Any]] = {}
        for item in items:
            fresh[object_key(item)] = item

        previous = self._indexer
        self._indexer = fresh
        for key, obj in fresh.items():
            old = previous.get(key)
            if old is None:
                self._notify_add(obj)
            elif _resource_version(old) != _resource_version(obj):
                self._notify_update(old, obj)
        for key, old in previous.items():
            if key not in fresh:
                self._notify_delete(DeletedFinalStateUnknown(key=key, obj=old))

        if not self._synced.is_set():
            self._synced.set()
            self._log.info("informer_synced", objects=len(fresh))
        return str((listing.get("metadata") or {}).get("resourceVersion", ""))

    def _watch_once(self, resource_version: str) -> str:
        self._watch = watch.Watch()
        try:
            for event in self._client.watch(
                self._resource,
                resource_version=resource_version,
                timeout=self._watch_timeout,
                watcher=self._watch,
            ):
                if self._stop is not None and self._stop.is_set():
                    self._watch.stop()
                    break
                resource_version = self._handle_watch_event(event, resource_version)
        except ApiException as exc:
            if exc.status == _HTTP_GONE:
                raise _WatchExpired() from exc
            raise
        return resource_version

    def _handle_watch_event(self, event: dict[str, Any], resource_version: str) -> str:
        event_type = event.get("type")
        obj = event.get("raw_object")
        if not isinstance(obj, dict):
            return resource_version
        if event_type == "BOOKMARK":
            return _resource_version(obj) or resource_version

        key = object_key(obj)
        if event_type in ("ADDED", "MODIFIED"):
            old = self._indexer.get(key)
            self._indexer[key] = obj
            if old is None:
                self._notify_add(obj)
            else:
                self._notify_update(old, obj)
        elif event_type == "DELETED":
            self._indexer.pop(key, None)
            self._notify_delete(obj)
        else:
            self._log.warning("unknown_watch_event", type=event_type)
        return _resource_version(obj) or resource_version

    # ------------------------------------------------------------------
    # Handler fan-out
    # ------------------------------------------------------------------

    def _notify_add(self, obj: dict[str, Any]) -> None:
        for handler in self._handlers:
            handler.on_add(obj)

    def _notify_update(self, old: dict[str, Any], new: dict[str, Any]) -> None:
        for handler in self._handlers:
            handler.on_update(old, new)

    def _notify_delete(self, obj: Any) -> None:
        for handler in self._handlers:
            handler.on_delete(obj)


class InformerFactory:
    """Hands out one SharedInformer per resource type and starts them together."""

    def __init__(self, client: DynamicClient) -> None:
        self._client = client
        self._informers: dict[GroupVersionResource, SharedInformer] = {}
        self._started: set[GroupVersionResource] = set()
        self._log = structlog.get_logger(component="informer-factory")

    def for_resource(self, gvr: GroupVersionResource) -> SharedInformer:
        """Return the shared informer for *gvr*, resolving it via API discovery.

        Raises:
            WatchSetupError: if the API server does not serve the resource.
        """
        informer = self._informers.get(gvr)
        if informer is not None:
            return informer
        try:
            resource = self._client.resources.get(
                group=gvr.group or None,
                api_version=gvr.version,
                name=gvr.resource,
            )
        except (ResourceNotFoundError, ResourceNotUniqueError, ApiException) as exc:
            raise WatchSetupError(f"could not create informer for {gvr}: {exc}") from exc
        informer = SharedInformer(self._client, gvr, resource)
        self._informers[gvr] = informer
        return informer

    def start(self, stop: threading.Event) -> None:
        for gvr, informer in self._informers.items():
            if gvr in self._started:
                continue
            informer.start(stop)
            self._started.add(gvr)

    def stop(self) -> None:
        for informer in self._informers.values():
            informer.stop()

    def wait_for_cache_sync(self, timeout: float) -> dict[GroupVersionResource, bool]:
        """Block until every started informer synced or *timeout* elapsed overall."""
        deadline = time.monotonic() + timeout
        result: dict[GroupVersionResource, bool] = {}
        for gvr, informer in self._informers.items():
            remaining = max(deadline - time.monotonic(), 0.0)
            result[gvr] = informer.wait_for_sync(remaining)
        return result
