"""
Registration manager tests.

Goal: first registration is recorded exactly once, duplicates return the
original record, collisions and vanished records are surfaced.
"""

import asyncio

import pytest

from steadykey.config import ManagerConfig
from steadykey.core.clock import ManualClock
from steadykey.core.errors import (
    IdempotencyCollisionError,
    IdempotencyConfigurationError,
    IdempotencyConsistencyError,
    IdempotencyError,
    IdempotencySerializationError,
    MissingKeyError,
)
from steadykey.core.hashing import steady_key
from steadykey.core.record import IdempotencyRecord, serialize_record
from steadykey.manager import IdempotencyManager
from steadykey.store import IdempotencyStore, InMemoryIdempotencyStore, StoreValue


class YieldingStore(InMemoryIdempotencyStore):
    """In-memory store that suspends before every operation to interleave callers."""

    async def set_if_absent(self, key, value, ttl_seconds):
        await asyncio.sleep(0)
        return await super().set_if_absent(key, value, ttl_seconds)

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)


class UntouchableStore(IdempotencyStore):
    """Fails the test if any I/O is attempted."""

    async def set_if_absent(self, key, value, ttl_seconds):
        raise AssertionError("set_if_absent called")

    async def get(self, key):
        raise AssertionError("get called")

    async def update(self, key, value, ttl_seconds):
        raise AssertionError("update called")

    async def delete(self, key):
        raise AssertionError("delete called")


class VanishingStore(InMemoryIdempotencyStore):
    """Reports 'already present' but the record is gone by the follow-up read."""

    async def set_if_absent(self, key, value, ttl_seconds):
        return False


class NoTtlReportStore(InMemoryIdempotencyStore):
    """Backend that cannot report remaining TTL."""

    async def get(self, key):
        stored = await super().get(key)
        return None if stored is None else StoreValue(stored.value, None)


@pytest.fixture
def clock():
    return ManualClock(current=1_700_000_000.0)


@pytest.fixture
def store(clock):
    return InMemoryIdempotencyStore(clock=clock)


@pytest.fixture
def manager(store, clock):
    return IdempotencyManager(store, clock=clock)


def test_register_then_duplicate_keeps_first_metadata(manager):
    first = asyncio.run(manager.register("simple-payload", ttl_seconds=15, metadata="initial"))
    second = asyncio.run(manager.register("simple-payload", ttl_seconds=15, metadata="second"))

    assert first.stored is True
    assert second.stored is False
    assert second.record.metadata == "initial"
    assert second.record == first.record
    assert second.key == first.key == manager.build_key(first.id)


def test_generate_id_is_order_independent(manager):
    a = {"orderId": "order-123", "total": 42.5, "items": [{"sku": "A-1", "quantity": 1}]}
    b = {"items": [{"quantity": 1, "sku": "A-1"}], "total": 42.5, "orderId": "order-123"}

    assert manager.generate_id(a) == manager.generate_id(b)
    assert manager.generate_id(a) == manager.generate_id(a)
    assert manager.generate_id(a) == steady_key(a)


def test_record_fields_on_first_registration(manager):
    result = asyncio.run(manager.register({"a": 1}, metadata={"user": "u-1"}))

    assert result.record.id == result.id
    assert result.record.payload_hash == result.id
    assert result.record.created_at == "2023-11-14T22:13:20.000Z"
    assert result.record.canonical_payload is None
    assert result.record.ttl_seconds is None


def test_store_canonical_payload_default_and_override(store, clock):
    keeping = IdempotencyManager(store, store_canonical_payload=True, clock=clock)

    kept = asyncio.run(keeping.register({"b": 1, "a": 2}))
    skipped = asyncio.run(keeping.register({"c": 3}, store_canonical_payload=False))

    assert kept.record.canonical_payload == '{"a":2,"b":1}'
    assert skipped.record.canonical_payload is None


def test_collision_is_raised_not_overwritten(manager, store):
    payload = {"order": 1}
    record_id = manager.generate_id(payload)
    key = manager.build_key(record_id)
    foreign = IdempotencyRecord(id=record_id, payload_hash="something-else", created_at="t")
    asyncio.run(store.set_if_absent(key, serialize_record(foreign), None))

    with pytest.raises(IdempotencyCollisionError):
        asyncio.run(manager.register(payload))

    # Stored record untouched
    assert asyncio.run(manager.lookup_by_id(record_id)).record == foreign


def test_concurrent_registrations_have_one_winner(clock):
    manager = IdempotencyManager(YieldingStore(clock=clock), clock=clock)

    async def race():
        return await asyncio.gather(
            *(manager.register({"order": "o-1"}, metadata=f"caller-{i}") for i in range(10))
        )

    results = asyncio.run(race())
    winners = [r for r in results if r.stored]

    assert len(winners) == 1
    assert all(r.record == winners[0].record for r in results)


def test_vanished_record_raises_consistency_error(clock):
    manager = IdempotencyManager(VanishingStore(clock=clock), clock=clock)

    with pytest.raises(IdempotencyConsistencyError) as excinfo:
        asyncio.run(manager.register({"a": 1}))
    assert isinstance(excinfo.value, IdempotencyError)


def test_ttl_roundtrip(manager):
    result = asyncio.run(manager.register({"a": 1}, ttl_seconds=30))

    found = asyncio.run(manager.lookup_by_payload({"a": 1}))
    assert 0 < found.ttl_seconds <= 30
    assert found.record.ttl_seconds == 30

    asyncio.run(manager.update_ttl(result.id, None))
    found = asyncio.run(manager.lookup_by_id(result.id))
    assert found.ttl_seconds is None
    assert found.record.ttl_seconds is None
    assert found.record.created_at == result.record.created_at


def test_update_ttl_zero_means_persistent(manager, clock):
    result = asyncio.run(manager.register({"a": 1}, ttl_seconds=5))

    asyncio.run(manager.update_ttl(result.id, 0))
    clock.advance(60)

    assert asyncio.run(manager.lookup_by_id(result.id)) is not None


def test_update_ttl_extends_expiry(manager, clock):
    result = asyncio.run(manager.register({"a": 1}, ttl_seconds=5))

    asyncio.run(manager.update_ttl(result.id, 100))
    clock.advance(50)

    found = asyncio.run(manager.lookup_by_id(result.id))
    assert found.ttl_seconds == 50
    assert found.record.ttl_seconds == 100


def test_expiry_removes_record(manager, clock):
    result = asyncio.run(manager.register({"a": 1}, ttl_seconds=30))

    clock.advance(31)

    assert asyncio.run(manager.lookup_by_id(result.id)) is None
    again = asyncio.run(manager.register({"a": 1}, ttl_seconds=30))
    assert again.stored is True


def test_update_ttl_missing_key_does_not_create(manager, store):
    with pytest.raises(MissingKeyError):
        asyncio.run(manager.update_ttl("never-registered", 10))

    assert len(store) == 0


def test_clear(manager):
    result = asyncio.run(manager.register({"a": 1}))

    assert asyncio.run(manager.clear(result.id)) is True
    assert asyncio.run(manager.clear(result.id)) is False
    assert asyncio.run(manager.lookup_by_id(result.id)) is None


def test_lookup_missing_returns_none(manager):
    assert asyncio.run(manager.lookup_by_payload({"nothing": True})) is None


def test_lookup_falls_back_to_record_ttl(clock):
    manager = IdempotencyManager(NoTtlReportStore(clock=clock), clock=clock)
    asyncio.run(manager.register({"a": 1}, ttl_seconds=45))

    assert asyncio.run(manager.lookup_by_payload({"a": 1})).ttl_seconds == 45


def test_default_ttl_applies_and_can_be_disabled(store, clock):
    manager = IdempotencyManager(store, default_ttl_seconds=60, clock=clock)

    defaulted = asyncio.run(manager.register({"a": 1}))
    disabled = asyncio.run(manager.register({"b": 1}, ttl_seconds=0))
    explicit_none = asyncio.run(manager.register({"c": 1}, ttl_seconds=None))

    assert defaulted.record.ttl_seconds == 60
    assert disabled.record.ttl_seconds is None
    assert explicit_none.record.ttl_seconds is None


@pytest.mark.parametrize("ttl", [-1, 1.5, "10", True])
def test_invalid_call_ttl_fails_before_io(ttl):
    manager = IdempotencyManager(UntouchableStore())

    with pytest.raises(IdempotencyConfigurationError):
        asyncio.run(manager.register({"a": 1}, ttl_seconds=ttl))
    with pytest.raises(IdempotencyConfigurationError):
        asyncio.run(manager.update_ttl("abc", ttl))


def test_unsupported_payload_fails_before_io():
    manager = IdempotencyManager(UntouchableStore())

    with pytest.raises(IdempotencySerializationError):
        asyncio.run(manager.register({"a": object()}))


def test_constructor_requires_store():
    with pytest.raises(IdempotencyConfigurationError):
        IdempotencyManager(None)


@pytest.mark.parametrize("ttl", [0, -5, 2.5, True, "60"])
def test_constructor_rejects_bad_default_ttl(ttl):
    with pytest.raises(IdempotencyConfigurationError):
        IdempotencyManager(InMemoryIdempotencyStore(), default_ttl_seconds=ttl)


def test_constructor_rejects_bad_hash_algorithm():
    with pytest.raises(IdempotencyConfigurationError):
        IdempotencyManager(InMemoryIdempotencyStore(), hash_algorithm="md5")


def test_key_prefix_handling():
    store = InMemoryIdempotencyStore()

    assert IdempotencyManager(store).build_key("abc") == "idempotency:abc"
    assert IdempotencyManager(store, key_prefix="orders:::").build_key("abc") == "orders:abc"
    with pytest.raises(IdempotencyConfigurationError):
        IdempotencyManager(store, key_prefix=":::")
    with pytest.raises(IdempotencyConfigurationError):
        IdempotencyManager(store, key_prefix=42)


def test_sha512_manager(store):
    manager = IdempotencyManager(store, hash_algorithm="sha512")
    result = asyncio.run(manager.register({"a": 1}))

    assert len(result.id) == 128
    assert result.id == steady_key({"a": 1}, hash_algorithm="sha512")


def test_from_config(store):
    config = ManagerConfig(key_prefix="jobs", default_ttl_seconds=120, store_canonical_payload=True)
    manager = IdempotencyManager.from_config(store, config)

    result = asyncio.run(manager.register({"job": 7}))
    assert result.key.startswith("jobs:")
    assert result.record.ttl_seconds == 120
    assert result.record.canonical_payload == '{"job":7}'
