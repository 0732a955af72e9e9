"""Pipeline orchestrator: binds informers to relay queues and handlers.

Each ``add_handler`` call creates one RelayQueue feeding one processing
handler, and subscribes that queue to every requested resource type. All
informers for all handlers run concurrently and hand their events to the
queues; every queue is drained by exactly one consumer task.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Protocol

import structlog

from kuberelay.models.resources import GroupVersionResource, parse_resource_arg
from kuberelay.relay.queue import ChangeHandler, RelayQueue
from kuberelay.watcher.informer import ResourceEventHandler, WatchSetupError

_DEFAULT_SYNC_TIMEOUT_SECONDS = 10.0


class Informer(Protocol):
    def add_event_handler(self, handler: ResourceEventHandler) -> None: ...


class InformerSource(Protocol):
    """What the orchestrator needs from an informer factory."""

    def for_resource(self, gvr: GroupVersionResource) -> Informer: ...

    def start(self, stop: threading.Event) -> None: ...

    def stop(self) -> None: ...

    def wait_for_cache_sync(self, timeout: float) -> dict[GroupVersionResource, bool]: ...


class Watcher:
    """Owns the lifecycle of informers and relay queues.

    Args:
        informers:     Informer factory resolving resource types.
        sync_timeout:  Seconds to wait for initial sync before logging errors.
        relay_capacity: Capacity of each relay queue; 0 means unbounded.
    """

    def __init__(
        self,
        informers: InformerSource,
        sync_timeout: float = _DEFAULT_SYNC_TIMEOUT_SECONDS,
        relay_capacity: int = 0,
    ) -> None:
        self._informers = informers
        self._sync_timeout = sync_timeout
        self._relay_capacity = relay_capacity
        self._relays: list[RelayQueue] = []
        self._stop = threading.Event()
        self._log = structlog.get_logger(component="watcher")

    @property
    def relays(self) -> list[RelayQueue]:
        return list(self._relays)

    def add_handler(self, handler: ChangeHandler, resources: list[str], name: str = "") -> RelayQueue:
        """Subscribe *handler* to every resource in *resources*.

        If one of the resources fails, the watcher is left partially
        initialised; callers must treat WatchSetupError as fatal.

        Raises:
            WatchSetupError: if a resource cannot be parsed or resolved.
        """
        relay = RelayQueue(
            handler,
            capacity=self._relay_capacity,
            name=name or f"relay-{len(self._relays)}",
        )
        self._relays.append(relay)

        for resource in resources:
            try:
                gvr = parse_resource_arg(resource)
            except ValueError as exc:
                raise WatchSetupError(f"could not parse {resource}: {exc}") from exc
            informer = self._informers.for_resource(gvr)
            informer.add_event_handler(relay)
            self._log.info("handler_subscribed", relay=relay.name, resource=str(gvr))
        return relay

    async def start(self) -> None:
        """Start relay consumers, then informers, then wait for the initial sync.

        Relays run without waiting for sync, so a resource that never syncs
        does not hold back the others.
        """
        for relay in self._relays:
            await relay.start()
        self._informers.start(self._stop)

        loop = asyncio.get_running_loop()
        synced: dict[Any, bool] = await loop.run_in_executor(
            None, self._informers.wait_for_cache_sync, self._sync_timeout
        )
        for gvr, success in synced.items():
            if not success:
                self._log.error("informer_sync_failed", resource=str(gvr), timeout=self._sync_timeout)
        self._log.info("watcher_started", relays=len(self._relays), resources=len(synced))

    async def stop(self) -> None:
        """Signal all informers to stop, then stop the relays.

        Each relay lets its in-flight handler call finish, bounded by the
        relay stop grace. Informer threads may still run briefly after this
        returns; their late events are discarded.
        """
        self._stop.set()
        self._informers.stop()
        await asyncio.gather(*(relay.stop() for relay in self._relays))
        self._log.info("watcher_stopped")
