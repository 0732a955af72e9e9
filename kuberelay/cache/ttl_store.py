"""Thread-safe key/value store whose entries expire after a fixed TTL.

Expired entries are reclaimed lazily: a lookup that finds an expired entry
removes it, and ``list()``/``purge_expired()`` reclaim every expired entry in
one pass. Both paths run under the same lock.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from kuberelay.models.events import DeletedFinalStateUnknown
from kuberelay.models.resources import is_object, object_key

V = TypeVar("V")


class StoreError(Exception):
    """Raised when the store cannot derive a key or is otherwise faulty."""


@dataclass
class TTLEntry(Generic[V]):
    key: str
    value: V
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


def get_key_func(obj: Any) -> str:
    """Key function encoding the object's group/version/kind in its key.

    A DeletedFinalStateUnknown marker resolves to the key it carries.
    """
    if isinstance(obj, DeletedFinalStateUnknown):
        return obj.key
    if not is_object(obj):
        raise StoreError(f"object is not an unstructured Kubernetes object: {type(obj).__name__}")
    return object_key(obj)


class TTLStore(Generic[V]):
    """Map of key -> value with insertion-time expiry.

    Args:
        key_func: Derives the store key from a value.
        ttl:      Lifetime of an entry in seconds.
        clock:    Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        key_func: Callable[[Any], str] = get_key_func,
        ttl: float = 30 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._key_func = key_func
        self._ttl = ttl
        self._clock = clock
        self._items: dict[str, TTLEntry[V]] = {}
        self._lock = threading.RLock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def key_for(self, obj: Any) -> str:
        try:
            return self._key_func(obj)
        except StoreError:
            raise
        except Exception as exc:
            raise StoreError(f"cannot compute key: {exc}") from exc

    def add(self, obj: V) -> None:
        """Insert *obj*, overwriting any entry with the same key."""
        key = self.key_for(obj)
        with self._lock:
            now = self._clock()
            self._items[key] = TTLEntry(key=key, value=obj, expires_at=now + self._ttl)

    def get(self, obj: Any) -> tuple[V | None, bool]:
        """Look up the entry sharing *obj*'s key."""
        return self.get_by_key(self.key_for(obj))

    def get_by_key(self, key: str) -> tuple[V | None, bool]:
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return None, False
            if entry.expired(self._clock()):
                del self._items[key]
                return None, False
            return entry.value, True

    def list(self) -> list[V]:
        """Return all live values, reclaiming expired entries on the way."""
        with self._lock:
            self._purge_locked()
            return [entry.value for entry in self._items.values()]

    def purge_expired(self) -> int:
        """Reclaim every expired entry; returns how many were removed."""
        with self._lock:
            return self._purge_locked()

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._items.items() if entry.expired(now)]
        for key in expired:
            del self._items[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
