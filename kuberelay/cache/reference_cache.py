"""Reference-tracking cache.

Keeps a time-bounded snapshot of every recently seen object and reports
ownerReference churn between successive versions of the same object as
log signals. Objects handed in by informers are shared with other
subscribers: the cache stores deep copies and never mutates its input.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
from collections.abc import Iterable
from typing import Any

import structlog

from kuberelay.cache.ttl_store import StoreError, TTLStore, get_key_func
from kuberelay.models.events import ChangeEvent, ChangeKind, DeletedFinalStateUnknown
from kuberelay.models.resources import (
    GroupVersionKind,
    OwnerReference,
    get_key,
    is_object,
    object_namespace,
    owner_references,
)
from kuberelay.observability.metrics import cache_entries, owner_reference_changes_total

_DEFAULT_TTL_SECONDS = 30 * 60
_DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


def owner_references_to_map(references: Iterable[OwnerReference]) -> dict[str, OwnerReference]:
    """Index references by their apiVersion/kind/name key."""
    return {ref.key: ref for ref in references}


def references_diff(a: dict[str, OwnerReference], b: dict[str, OwnerReference]) -> list[OwnerReference]:
    """Return the references present in *a* but not in *b*."""
    return [ref for key, ref in a.items() if key not in b]


class ReferenceTrackingCache:
    """TTL cache of object snapshots that surfaces ownerReference diffs.

    ``observe`` is the processing handler plugged into a relay queue.
    ``start``/``stop`` control the periodic sweep that reclaims entries for
    objects that are no longer being observed.
    """

    def __init__(
        self,
        store: TTLStore[dict[str, Any]] | None = None,
        ttl_seconds: float = _DEFAULT_TTL_SECONDS,
        sweep_interval: float = _DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._store: TTLStore[dict[str, Any]] = store if store is not None else TTLStore(get_key_func, ttl_seconds)
        self._sweep_interval = sweep_interval
        self._sweep_task: asyncio.Task[None] | None = None
        self._log = structlog.get_logger(component="cache-handler")

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def observe(self, event: ChangeEvent) -> None:
        """Diff ownerReferences against the cached snapshot, then cache the new state."""
        if event.kind is ChangeKind.DELETED and isinstance(event.obj, DeletedFinalStateUnknown):
            self._log.warning("ignoring_deleted_final_state_unknown", key=event.obj.key)
            return
        self._update(event.obj)

    def _update(self, obj: Any) -> None:
        if not is_object(obj):
            self._log.error("object_not_unstructured", type=type(obj).__name__)
            return

        refs = owner_references(obj)
        if len(refs) > 1:
            self._log.warning("multiple_owner_references", references=[ref.key for ref in refs])

        self._check_owner_references(obj)

        try:
            self._store.add(copy.deepcopy(obj))
        except StoreError as exc:
            self._log.error("cache_add_failed", error=str(exc))

    def _check_owner_references(self, new: dict[str, Any]) -> None:
        try:
            old, exists = self._store.get(new)
        except StoreError as exc:
            self._log.error("cache_get_failed", error=str(exc))
            return
        if not exists or old is None:
            return
        self.compare_owner_references(old, new)

    def compare_owner_references(self, old: dict[str, Any], new: dict[str, Any]) -> None:
        old_refs = owner_references_to_map(owner_references(old))
        new_refs = owner_references_to_map(owner_references(new))

        if old_refs or new_refs:
            self._log.info("owner_references", old=sorted(old_refs), new=sorted(new_refs))

        removed = references_diff(old_refs, new_refs)
        added = references_diff(new_refs, old_refs)

        if removed:
            owner_reference_changes_total.labels(change="removed").inc(len(removed))
            self._log.warning("owner_references_removed", references=[ref.key for ref in removed])
        if added:
            owner_reference_changes_total.labels(change="added").inc(len(added))
            self._log.warning("owner_references_added", references=[ref.key for ref in added])

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lookup(self, key: str) -> dict[str, Any] | None:
        """Return the cached snapshot for a ``group/version/kind/namespace/name`` key."""
        try:
            value, exists = self._store.get_by_key(key)
        except StoreError as exc:
            self._log.error("cache_get_failed", key=key, error=str(exc))
            return None
        return value if exists else None

    def get_owner(self, obj: dict[str, Any]) -> dict[str, Any] | None:
        """Resolve the cached snapshot of *obj*'s single owner.

        Returns None when the object has no owner, more than one owner, or
        when the owner is not in the cache. Only one level is resolved.
        """
        refs = owner_references(obj)
        if not refs:
            return None
        if len(refs) > 1:
            self._log.warning("owner_ambiguous", references=[ref.key for ref in refs])
            return None

        ref = refs[0]
        group, _, version = ref.api_version.rpartition("/")
        gvk = GroupVersionKind(group=group, version=version, kind=ref.kind)
        owner = self.lookup(get_key(gvk, ref.name, object_namespace(obj)))
        if owner is None:
            # cluster-scoped owner
            owner = self.lookup(get_key(gvk, ref.name, ""))
        return owner

    def __len__(self) -> int:
        return len(self._store)

    # ------------------------------------------------------------------
    # Sweep lifecycle
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Reclaim expired entries; entries are otherwise only purged on read."""
        removed = self._store.purge_expired()
        remaining = len(self._store)
        cache_entries.set(remaining)
        if removed:
            self._log.debug("cache_swept", removed=removed, remaining=remaining)
        return removed

    async def start(self) -> None:
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="cache-sweep")
        self._log.info("cache_sweep_started", interval=self._sweep_interval, ttl=self._store.ttl)

    async def stop(self) -> None:
        task = self._sweep_task
        self._sweep_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._log.info("cache_sweep_stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                self.sweep()
            except Exception as exc:
                self._log.error("cache_sweep_error", error=str(exc))
