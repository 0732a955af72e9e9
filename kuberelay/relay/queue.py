"""Single-consumer relay queue between informers and processing handlers.

Informer callbacks must return immediately, yet processing (cache diffing,
JSON encoding, webhook I/O) can be slow. A RelayQueue sits between the two:
its ``on_add``/``on_update``/``on_delete`` callbacks only enqueue a
ChangeEvent, and one consumer task drains the queue in arrival order,
invoking the processing handler for one event at a time.

Callbacks may come from informer threads; they hop onto the event loop with
``call_soon_threadsafe`` and never wait for processing.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import threading
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from kuberelay.models.events import ChangeEvent, ChangeKind
from kuberelay.observability.metrics import (
    events_dropped_total,
    events_enqueued_total,
    events_processed_total,
    relay_queue_depth,
)

ChangeHandler = Callable[[ChangeEvent], Awaitable[None] | None]

# Wakes a consumer blocked on an empty queue during shutdown.
_SHUTDOWN = object()

_STOP_GRACE_SECONDS = 10.0


class RelayQueue:
    """FIFO hand-off from many producers to exactly one consumer.

    Args:
        handler:  Called with every ChangeEvent; may return an awaitable.
        capacity: Maximum queued items; 0 means unbounded. When a bounded
                  queue is full the event is dropped rather than blocking.
        name:     Identifier used in logs and task names.
    """

    def __init__(self, handler: ChangeHandler, capacity: int = 0, name: str = "relay") -> None:
        self._handler = handler
        self._name = name
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=capacity)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None
        self._shutdown = threading.Event()
        self._depth = relay_queue_depth.labels(relay=name)
        self._log = structlog.get_logger(component="relay-queue", relay=name)

    @property
    def name(self) -> str:
        return self._name

    def qsize(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Upstream handler interface
    # ------------------------------------------------------------------

    def on_add(self, obj: Any) -> None:
        self.enqueue(ChangeEvent(kind=ChangeKind.ADDED, obj=obj))

    def on_update(self, old_obj: Any, new_obj: Any) -> None:
        self.enqueue(ChangeEvent(kind=ChangeKind.UPDATED, obj=new_obj, old_obj=old_obj))

    def on_delete(self, obj: Any) -> None:
        self.enqueue(ChangeEvent(kind=ChangeKind.DELETED, obj=obj))

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, item: Any) -> None:
        """Queue *item* for the consumer. No-op after ``stop()``; never blocks on processing."""
        if self._shutdown.is_set():
            return
        loop = self._loop
        if loop is None or _running_loop() is loop:
            self._put(item)
            return
        try:
            loop.call_soon_threadsafe(self._put, item)
        except RuntimeError:
            # loop already closed
            events_dropped_total.labels(reason="loop_closed").inc()

    def _put(self, item: Any) -> None:
        if self._shutdown.is_set():
            return
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            events_dropped_total.labels(reason="queue_full").inc()
            self._log.error("relay_queue_full", capacity=self._queue.maxsize)
            return
        self._depth.inc()
        kind = item.kind.value if isinstance(item, ChangeEvent) else "unknown"
        events_enqueued_total.labels(kind=kind).inc()

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bind to the running loop and start the single consumer task."""
        if self._task is not None and not self._task.done():
            return
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self.run(), name=f"relay-{self._name}")

    async def run(self) -> None:
        """Consume items until ``stop()`` is called."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        while True:
            item = await self._queue.get()
            if item is not _SHUTDOWN:
                self._depth.dec()
            try:
                if self._shutdown.is_set():
                    abandoned = self._abandon_pending(dequeued=int(item is not _SHUTDOWN))
                    self._log.info("relay_queue_quitting", abandoned=abandoned)
                    return
                await self._process(item)
            finally:
                self._queue.task_done()

    def _abandon_pending(self, dequeued: int = 0) -> int:
        """Empty the queue after shutdown; returns how many events were abandoned.

        *dequeued* counts events already taken off the queue but not processed.
        """
        abandoned = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is not _SHUTDOWN:
                abandoned += 1
            self._queue.task_done()
        if abandoned:
            self._depth.dec(abandoned)
        abandoned += dequeued
        if abandoned:
            events_dropped_total.labels(reason="shutdown").inc(abandoned)
        return abandoned

    async def _process(self, item: Any) -> None:
        if not isinstance(item, ChangeEvent) or not isinstance(item.kind, ChangeKind):
            events_dropped_total.labels(reason="malformed").inc()
            self._log.error("relay_item_malformed", type=type(item).__name__)
            return
        try:
            result = self._handler(item)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            self._log.error(
                "relay_handler_error",
                kind=item.kind.value,
                error=str(exc),
                exc_info=True,
            )
            return
        events_processed_total.labels(kind=item.kind.value).inc()

    async def stop(self, timeout: float = _STOP_GRACE_SECONDS) -> None:
        """Signal shutdown and wait up to *timeout* seconds for the consumer to exit.

        An in-flight handler call finishes; queued items are abandoned.
        """
        if self._shutdown.is_set():
            return
        self._shutdown.set()
        # A full queue needs no marker: the consumer exits on its next get().
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_SHUTDOWN)
        self._log.info("relay_queue_stopping", pending=self._queue.qsize())

        task = self._task
        if task is None or task.done():
            self._abandon_pending()
            return
        if task is asyncio.current_task():
            return
        _, pending = await asyncio.wait({task}, timeout=timeout)
        if pending:
            self._log.warning("relay_queue_stop_timed_out", timeout=timeout)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class CompositeHandler:
    """Fans one ChangeEvent out to several handlers, in order.

    A failing handler is logged and does not prevent the rest from running.
    """

    def __init__(self, handlers: list[ChangeHandler]) -> None:
        self._handlers = list(handlers)
        self._log = structlog.get_logger(component="composite-handler")

    async def __call__(self, event: ChangeEvent) -> None:
        for handler in self._handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                self._log.error("handler_error", handler=_handler_name(handler), error=str(exc))


def _handler_name(handler: object) -> str:
    return getattr(handler, "__qualname__", type(handler).__name__)
