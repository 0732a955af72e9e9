"""Unit tests for kuberelay.cache.ttl_store.TTLStore."""

from __future__ import annotations

import threading

import pytest

from kuberelay.cache.ttl_store import StoreError, TTLStore, get_key_func
from kuberelay.models.events import DeletedFinalStateUnknown

_TTL = 30 * 60


def _store(clock) -> TTLStore[dict]:
    return TTLStore(get_key_func, ttl=_TTL, clock=clock)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


class TestKeyFunc:
    def test_object_key(self, make_obj) -> None:
        assert get_key_func(make_obj()) == "apps/v1/Deployment/default/web"

    def test_tombstone_uses_its_key(self) -> None:
        """A DeletedFinalStateUnknown marker resolves to the key it carries."""
        marker = DeletedFinalStateUnknown(key="apps/v1/Deployment/default/gone")
        assert get_key_func(marker) == "apps/v1/Deployment/default/gone"

    @pytest.mark.parametrize("value", [None, "web", 42, {"kind": "Deployment"}])
    def test_non_object_raises_store_error(self, value) -> None:
        with pytest.raises(StoreError):
            get_key_func(value)

    def test_key_func_failure_wrapped(self, fake_clock) -> None:
        """Arbitrary key-function errors surface as StoreError."""

        def broken(_obj):
            raise KeyError("metadata")

        store: TTLStore[dict] = TTLStore(broken, ttl=10, clock=fake_clock)
        with pytest.raises(StoreError):
            store.add({})

    def test_ttl_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            TTLStore(get_key_func, ttl=0)


# ---------------------------------------------------------------------------
# Insert and lookup
# ---------------------------------------------------------------------------


class TestAddGet:
    def test_get_after_add(self, fake_clock, make_obj) -> None:
        store = _store(fake_clock)
        obj = make_obj()
        store.add(obj)
        value, found = store.get(obj)
        assert found
        assert value is obj

    def test_miss(self, fake_clock, make_obj) -> None:
        store = _store(fake_clock)
        assert store.get(make_obj()) == (None, False)
        assert store.get_by_key("nope") == (None, False)

    def test_overwrite_keeps_single_entry(self, fake_clock, make_obj) -> None:
        """Adding the same identity twice leaves one entry holding the latest value."""
        store = _store(fake_clock)
        store.add(make_obj(resource_version="1"))
        store.add(make_obj(resource_version="2"))
        assert len(store) == 1
        value, _ = store.get_by_key("apps/v1/Deployment/default/web")
        assert value["metadata"]["resourceVersion"] == "2"

    def test_overwrite_refreshes_expiry(self, fake_clock, make_obj) -> None:
        store = _store(fake_clock)
        store.add(make_obj())
        fake_clock.advance(_TTL - 1)
        store.add(make_obj())
        fake_clock.advance(_TTL - 1)
        _, found = store.get(make_obj())
        assert found


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class TestExpiry:
    def test_lookup_before_ttl_hits(self, fake_clock, make_obj) -> None:
        store = _store(fake_clock)
        store.add(make_obj())
        fake_clock.advance(_TTL - 0.001)
        assert store.get(make_obj())[1] is True

    def test_lookup_after_ttl_misses_and_evicts(self, fake_clock, make_obj) -> None:
        """An entry is absent at T0+TTL+epsilon and the lookup reclaims it."""
        store = _store(fake_clock)
        store.add(make_obj())
        fake_clock.advance(_TTL + 0.001)
        assert store.get(make_obj()) == (None, False)
        assert len(store) == 0

    def test_purge_without_lookup(self, fake_clock, make_obj) -> None:
        """A full sweep reclaims expired entries that are never read again."""
        store = _store(fake_clock)
        store.add(make_obj(name="old"))
        fake_clock.advance(_TTL / 2)
        store.add(make_obj(name="young"))
        fake_clock.advance(_TTL / 2 + 1)

        assert len(store) == 2  # nothing reclaimed yet
        assert store.purge_expired() == 1
        assert [obj["metadata"]["name"] for obj in store.list()] == ["young"]

    def test_list_reclaims_expired(self, fake_clock, make_obj) -> None:
        store = _store(fake_clock)
        store.add(make_obj())
        fake_clock.advance(_TTL + 1)
        assert store.list() == []
        assert len(store) == 0


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrentAccess:
    def test_concurrent_add_and_purge(self, make_obj) -> None:
        """Inserts racing with sweeps never corrupt the store."""
        store: TTLStore[dict] = TTLStore(get_key_func, ttl=_TTL)
        errors: list[Exception] = []

        def writer(offset: int) -> None:
            try:
                for i in range(500):
                    store.add(make_obj(name=f"obj-{offset}-{i}"))
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        def sweeper() -> None:
            try:
                for _ in range(200):
                    store.purge_expired()
                    store.list()
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        threads.append(threading.Thread(target=sweeper))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(store) == 2000
