"""Integration tests for the Watcher pipeline.

Informers are replaced by in-memory fakes that emit events from a worker
thread; the real RelayQueue, ReferenceTrackingCache and WebhookNotifier are
wired together the way the application bootstrap does it.
"""

from __future__ import annotations

import asyncio
import json
import threading
from typing import Any

import httpx
import pytest
import respx
from structlog.testing import capture_logs

from kuberelay.cache import ReferenceTrackingCache
from kuberelay.models.resources import GroupVersionResource
from kuberelay.notifications import WebhookNotifier
from kuberelay.watcher import Watcher, WatchSetupError

pytestmark = pytest.mark.integration

_URL = "https://sink.example.com/events"
_DEPLOYMENTS = GroupVersionResource(group="apps", version="v1", resource="deployments")
_PARENT_1 = ("apps/v1", "ReplicaSet", "p1")
_PARENT_2 = ("apps/v1", "ReplicaSet", "p2")

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeInformer:
    def __init__(self) -> None:
        self.handlers: list[Any] = []

    def add_event_handler(self, handler: Any) -> None:
        self.handlers.append(handler)

    def emit_add(self, obj: Any) -> None:
        for handler in self.handlers:
            handler.on_add(obj)

    def emit_update(self, old: Any, new: Any) -> None:
        for handler in self.handlers:
            handler.on_update(old, new)

    def emit_delete(self, obj: Any) -> None:
        for handler in self.handlers:
            handler.on_delete(obj)


class FakeInformerFactory:
    """Serves informers for a fixed set of resource types."""

    def __init__(self, known: dict[GroupVersionResource, bool]) -> None:
        self._synced = known
        self.informers: dict[GroupVersionResource, FakeInformer] = {}
        self.stop_event: threading.Event | None = None
        self.stopped = False

    def for_resource(self, gvr: GroupVersionResource) -> FakeInformer:
        if gvr not in self._synced:
            raise WatchSetupError(f"could not create informer for {gvr}: not served")
        return self.informers.setdefault(gvr, FakeInformer())

    def start(self, stop: threading.Event) -> None:
        self.stop_event = stop

    def stop(self) -> None:
        self.stopped = True

    def wait_for_cache_sync(self, timeout: float) -> dict[GroupVersionResource, bool]:
        return {gvr: self._synced[gvr] for gvr in self.informers}


async def _emit_from_thread(fn: Any) -> None:
    thread = threading.Thread(target=fn)
    thread.start()
    await asyncio.get_running_loop().run_in_executor(None, thread.join)
    await asyncio.sleep(0)


async def _drain(watcher: Watcher) -> None:
    for relay in watcher.relays:
        await relay._queue.join()


# ---------------------------------------------------------------------------
# Setup errors
# ---------------------------------------------------------------------------


class TestSetup:
    def test_unparseable_resource(self) -> None:
        watcher = Watcher(FakeInformerFactory({_DEPLOYMENTS: True}))
        with pytest.raises(WatchSetupError, match="could not parse"):
            watcher.add_handler(lambda event: None, ["deployments"])

    def test_unknown_resource(self) -> None:
        watcher = Watcher(FakeInformerFactory({_DEPLOYMENTS: True}))
        with pytest.raises(WatchSetupError, match="could not create informer"):
            watcher.add_handler(lambda event: None, ["widgets.v1.example.com"])

    def test_one_relay_per_handler_shared_informer(self) -> None:
        factory = FakeInformerFactory({_DEPLOYMENTS: True})
        watcher = Watcher(factory)
        first = watcher.add_handler(lambda event: None, ["deployments.v1.apps"], name="a")
        second = watcher.add_handler(lambda event: None, ["deployments.v1.apps"], name="b")

        assert watcher.relays == [first, second]
        assert factory.informers[_DEPLOYMENTS].handlers == [first, second]

    async def test_unsynced_resource_does_not_abort_start(self, make_obj) -> None:
        pods = GroupVersionResource(group="", version="v1", resource="pods")
        factory = FakeInformerFactory({_DEPLOYMENTS: True, pods: False})
        watcher = Watcher(factory, sync_timeout=0.1)
        received: list[Any] = []
        watcher.add_handler(received.append, ["deployments.v1.apps", "pods.v1"])

        with capture_logs() as logs:
            await watcher.start()

        failed = [e for e in logs if e["event"] == "informer_sync_failed"]
        assert [e["resource"] for e in failed] == ["pods.v1"]
        assert logs[-1]["event"] == "watcher_started"

        factory.informers[_DEPLOYMENTS].emit_add(make_obj())
        await _drain(watcher)
        assert len(received) == 1
        await watcher.stop()


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


class TestEndToEnd:
    async def test_owner_reference_churn_reaches_cache_and_sink(self, make_obj) -> None:
        """Three versions of one object flow through both handlers in order."""
        factory = FakeInformerFactory({_DEPLOYMENTS: True})
        watcher = Watcher(factory)
        cache = ReferenceTrackingCache()
        notifier = WebhookNotifier(url=_URL, source="test")
        watcher.add_handler(cache.observe, ["deployments.v1.apps"], name="cache")
        watcher.add_handler(notifier.dispatch, ["deployments.v1.apps"], name="webhook")

        v1 = make_obj(resource_version="1")
        v2 = make_obj(owners=[_PARENT_1], resource_version="2")
        v3 = make_obj(owners=[_PARENT_1, _PARENT_2], resource_version="3")
        informer = factory.informers[_DEPLOYMENTS]

        def produce() -> None:
            informer.emit_add(v1)
            informer.emit_update(v1, v2)
            informer.emit_update(v2, v3)

        with respx.mock() as router, capture_logs() as logs:
            route = router.post(_URL).mock(return_value=httpx.Response(200))
            await watcher.start()
            await _emit_from_thread(produce)
            await _drain(watcher)
            await watcher.stop()
            await notifier.stop()

        cache_events = [(e["event"], e.get("references")) for e in logs if e.get("component") == "cache-handler"]
        assert cache_events == [
            ("owner_references", None),
            ("owner_references_added", ["apps/v1/ReplicaSet/p1"]),
            ("multiple_owner_references", ["apps/v1/ReplicaSet/p1", "apps/v1/ReplicaSet/p2"]),
            ("owner_references", None),
            ("owner_references_added", ["apps/v1/ReplicaSet/p2"]),
        ]

        snapshot = cache.lookup("apps/v1/Deployment/default/web")
        assert snapshot is not None
        assert [ref["name"] for ref in snapshot["metadata"]["ownerReferences"]] == ["p1", "p2"]
        assert snapshot is not v3

        operations = [json.loads(call.request.content)["data"]["operation"] for call in route.calls]
        assert operations == ["create", "update", "update"]

    async def test_delete_refreshes_snapshot_and_is_forwarded(self, make_obj) -> None:
        """A delete refreshes the cached snapshot and is still sent to the sink."""
        factory = FakeInformerFactory({_DEPLOYMENTS: True})
        watcher = Watcher(factory)
        cache = ReferenceTrackingCache()
        notifier = WebhookNotifier(url=_URL)
        watcher.add_handler(cache.observe, ["deployments.v1.apps"], name="cache")
        watcher.add_handler(notifier.dispatch, ["deployments.v1.apps"], name="webhook")
        obj = make_obj()

        with respx.mock() as router:
            route = router.post(_URL).mock(return_value=httpx.Response(200))
            await watcher.start()
            factory.informers[_DEPLOYMENTS].emit_delete(obj)
            await _drain(watcher)
            await watcher.stop()
            await notifier.stop()

        assert cache.lookup("apps/v1/Deployment/default/web") == obj
        assert route.call_count == 1


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestStop:
    async def test_stop_signals_informers_and_relays(self, make_obj) -> None:
        factory = FakeInformerFactory({_DEPLOYMENTS: True})
        watcher = Watcher(factory)
        received: list[Any] = []
        relay = watcher.add_handler(received.append, ["deployments.v1.apps"])

        await watcher.start()
        await watcher.stop()

        assert factory.stop_event is not None and factory.stop_event.is_set()
        assert factory.stopped is True

        factory.informers[_DEPLOYMENTS].emit_add(make_obj())
        assert relay.qsize() <= 1
        assert received == []
