"""
Store contract tests, run against every local adapter.

Each adapter shares a ManualClock so expiry is deterministic.
"""

import asyncio
import os

import pytest

from steadykey.core.clock import ManualClock
from steadykey.core.errors import MissingKeyError, StoreError
from steadykey.store import (
    FileIdempotencyStore,
    InMemoryIdempotencyStore,
    SqliteIdempotencyStore,
    StoreValue,
)


@pytest.fixture(params=["memory", "file", "sqlite"])
def clock_and_store(request, tmp_path):
    clock = ManualClock(current=1000.0)
    if request.param == "memory":
        store = InMemoryIdempotencyStore(clock=clock)
    elif request.param == "file":
        store = FileIdempotencyStore(str(tmp_path / "records"), clock=clock)
    else:
        store = SqliteIdempotencyStore(str(tmp_path / "records.db"), clock=clock)
    yield clock, store
    if isinstance(store, SqliteIdempotencyStore):
        store.close()


def test_set_if_absent_inserts_once(clock_and_store):
    _, store = clock_and_store

    assert asyncio.run(store.set_if_absent("k", "v1", None)) is True
    assert asyncio.run(store.set_if_absent("k", "v2", None)) is False
    assert asyncio.run(store.get("k")) == StoreValue("v1", None)


def test_get_missing_returns_none(clock_and_store):
    _, store = clock_and_store
    assert asyncio.run(store.get("missing")) is None


def test_remaining_ttl_rounds_up(clock_and_store):
    clock, store = clock_and_store
    asyncio.run(store.set_if_absent("k", "v", 10))

    assert asyncio.run(store.get("k")).ttl_seconds == 10
    clock.advance(0.5)
    assert asyncio.run(store.get("k")).ttl_seconds == 10
    clock.advance(9.0)
    assert asyncio.run(store.get("k")).ttl_seconds == 1


def test_expired_key_is_absent_and_reusable(clock_and_store):
    clock, store = clock_and_store
    asyncio.run(store.set_if_absent("k", "old", 5))

    clock.advance(5)
    assert asyncio.run(store.get("k")) is None
    assert asyncio.run(store.set_if_absent("k", "new", None)) is True
    assert asyncio.run(store.get("k")) == StoreValue("new", None)


def test_update_missing_key_raises(clock_and_store):
    _, store = clock_and_store

    with pytest.raises(MissingKeyError):
        asyncio.run(store.update("missing", "v", None))
    assert asyncio.run(store.get("missing")) is None


def test_update_expired_key_raises(clock_and_store):
    clock, store = clock_and_store
    asyncio.run(store.set_if_absent("k", "v", 1))
    clock.advance(2)

    with pytest.raises(MissingKeyError):
        asyncio.run(store.update("k", "v2", None))


def test_update_overwrites_value_and_ttl(clock_and_store):
    _, store = clock_and_store
    asyncio.run(store.set_if_absent("k", "v1", 30))

    asyncio.run(store.update("k", "v2", None))
    assert asyncio.run(store.get("k")) == StoreValue("v2", None)

    asyncio.run(store.update("k", "v3", 7))
    assert asyncio.run(store.get("k")) == StoreValue("v3", 7)


def test_delete_reports_existence(clock_and_store):
    _, store = clock_and_store
    asyncio.run(store.set_if_absent("k", "v", None))

    assert asyncio.run(store.delete("k")) is True
    assert asyncio.run(store.delete("k")) is False
    assert asyncio.run(store.get("k")) is None


def test_delete_expired_reports_false(clock_and_store):
    clock, store = clock_and_store
    asyncio.run(store.set_if_absent("k", "v", 1))
    clock.advance(1)

    assert asyncio.run(store.delete("k")) is False


def test_concurrent_inserts_have_one_winner(clock_and_store):
    _, store = clock_and_store

    async def race():
        return await asyncio.gather(*(store.set_if_absent("k", f"v{i}", None) for i in range(20)))

    results = asyncio.run(race())
    assert results.count(True) == 1


def test_memory_store_advance_time_without_manual_clock():
    store = InMemoryIdempotencyStore()
    asyncio.run(store.set_if_absent("a", "v", 10))
    asyncio.run(store.set_if_absent("b", "v", None))

    store.advance_time(10)

    assert asyncio.run(store.get("a")) is None
    assert len(store) == 1


def test_file_store_corrupt_record_raises_store_error(tmp_path):
    store = FileIdempotencyStore(str(tmp_path))
    asyncio.run(store.set_if_absent("k", "v", None))
    for name in os.listdir(tmp_path):
        if name.endswith(".json"):
            (tmp_path / name).write_text("{broken")

    with pytest.raises(StoreError):
        asyncio.run(store.get("k"))


def test_file_store_expired_read_removes_file(tmp_path):
    clock = ManualClock(current=0.0)
    store = FileIdempotencyStore(str(tmp_path), clock=clock)
    asyncio.run(store.set_if_absent("k", "v", 1))
    clock.advance(1)

    assert asyncio.run(store.get("k")) is None
    assert [n for n in os.listdir(tmp_path) if n.endswith(".json")] == []


def test_sqlite_store_persists_across_instances(tmp_path):
    path = str(tmp_path / "records.db")
    first = SqliteIdempotencyStore(path)
    asyncio.run(first.set_if_absent("k", "v", None))
    first.close()

    second = SqliteIdempotencyStore(path)
    try:
        assert asyncio.run(second.set_if_absent("k", "other", None)) is False
        assert asyncio.run(second.get("k")) == StoreValue("v", None)
    finally:
        second.close()


class FailingPurgeFileStore(FileIdempotencyStore):
    async def purge_expired(self, key):
        raise StoreError("disk unavailable")


class FailingPurgeSqliteStore(SqliteIdempotencyStore):
    async def purge_expired(self, key):
        raise StoreError("database is locked")


@pytest.mark.parametrize("store_cls", [FailingPurgeFileStore, FailingPurgeSqliteStore])
def test_expired_read_ignores_failed_purge(store_cls, tmp_path):
    """A failing cleanup delete must not turn an expired read into an error."""
    clock = ManualClock(current=1000.0)
    if store_cls is FailingPurgeFileStore:
        store = store_cls(str(tmp_path / "records"), clock=clock)
    else:
        store = store_cls(str(tmp_path / "records.db"), clock=clock)
    asyncio.run(store.set_if_absent("k", "v", 1))
    clock.advance(1)

    try:
        assert asyncio.run(store.get("k")) is None
        # Expired row is still present, yet a fresh insert succeeds
        assert asyncio.run(store.set_if_absent("k", "new", None)) is True
    finally:
        if isinstance(store, SqliteIdempotencyStore):
            store.close()
