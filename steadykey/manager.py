"""
Registration manager: exactly-once recording of first-seen payloads.

State per idempotency key lives in the store, never in memory:
  absent -> present(record, ttl) via register()
  present -> present with a new TTL via update_ttl()
  present -> absent via clear() or backend expiry

Concurrency rests on a single primitive, the store's atomic
set_if_absent. The manager takes no locks of its own.
"""

from typing import Any, Optional

from .config import (
    DEFAULT_KEY_PREFIX,
    ManagerConfig,
    normalize_key_prefix,
    validate_default_ttl,
)
from .core.canonical import ABSENT, canonicalize
from .core.clock import SystemClock, utc_timestamp
from .core.errors import (
    IdempotencyCollisionError,
    IdempotencyConfigurationError,
    IdempotencyConsistencyError,
    MissingKeyError,
)
from .core.hashing import DEFAULT_HASH_ALGORITHM, hash_canonical_value, validate_hash_algorithm
from .core.record import (
    IdempotencyRecord,
    LookupResult,
    RegistrationResult,
    deserialize_record,
    serialize_record,
)
from .logging_config import get_logger
from .store.base import IdempotencyStore


class IdempotencyManager:
    """
    Builds keys, resolves TTLs, detects collisions and drives the store.

    Example:
        manager = IdempotencyManager(InMemoryIdempotencyStore(), default_ttl_seconds=3600)
        result = await manager.register({"order_id": "order-123"})
        if result.stored:
            ...  # first time this payload was seen
    """

    def __init__(
        self,
        store: IdempotencyStore,
        key_prefix: Optional[str] = None,
        default_ttl_seconds: Optional[int] = None,
        hash_algorithm: str = DEFAULT_HASH_ALGORITHM,
        store_canonical_payload: bool = False,
        clock=None,
    ) -> None:
        """
        Args:
            store: Storage adapter implementing IdempotencyStore
            key_prefix: Prefix for storage keys (default "idempotency"); trailing ":" trimmed
            default_ttl_seconds: Positive TTL applied when a call gives none
            hash_algorithm: "sha256" or "sha512"
            store_canonical_payload: Keep the canonical payload in records by default
            clock: Object with now() -> epoch seconds, used for created_at

        Raises:
            IdempotencyConfigurationError: On any invalid argument
        """
        if store is None:
            raise IdempotencyConfigurationError("A storage adapter instance is required")
        self.store = store
        self.key_prefix = normalize_key_prefix(DEFAULT_KEY_PREFIX if key_prefix is None else key_prefix)
        self.default_ttl_seconds = validate_default_ttl(default_ttl_seconds)
        self.hash_algorithm = validate_hash_algorithm(hash_algorithm)
        self.store_canonical_payload = bool(store_canonical_payload)
        self.clock = clock or SystemClock()

    @classmethod
    def from_config(cls, store: IdempotencyStore, config: Optional[ManagerConfig] = None, clock=None):
        """Build a manager from a ManagerConfig (default: ManagerConfig.from_env())."""
        config = config or ManagerConfig.from_env()
        return cls(
            store,
            key_prefix=config.key_prefix,
            default_ttl_seconds=config.default_ttl_seconds,
            hash_algorithm=config.hash_algorithm,
            store_canonical_payload=config.store_canonical_payload,
            clock=clock,
        )

    def generate_id(self, payload: Any) -> str:
        """Canonicalize and hash a payload. Pure, no I/O."""
        return hash_canonical_value(canonicalize(payload), self.hash_algorithm)

    def build_key(self, record_id: str) -> str:
        return f"{self.key_prefix}:{record_id}"

    def resolve_ttl(self, ttl_seconds: Any = ABSENT) -> Optional[int]:
        """
        Resolve a per-call TTL against the manager default.

        ABSENT -> default; None or 0 -> no expiry; positive int -> itself.

        Raises:
            IdempotencyConfigurationError: Negative or non-integer TTL
        """
        if ttl_seconds is ABSENT:
            return self.default_ttl_seconds
        if ttl_seconds is None:
            return None
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds < 0:
            raise IdempotencyConfigurationError("TTL must be a non-negative integer or None")
        if ttl_seconds == 0:
            return None
        return ttl_seconds

    async def register(
        self,
        payload: Any,
        ttl_seconds: Any = ABSENT,
        metadata: Any = None,
        store_canonical_payload: Any = ABSENT,
    ) -> RegistrationResult:
        """
        Record payload as seen, exactly once across all callers.

        Args:
            payload: Any canonicalizable value
            ttl_seconds: Override of the default TTL (None/0 = no expiry)
            metadata: JSON value stored with the first registration only
            store_canonical_payload: Override of the manager default

        Returns:
            RegistrationResult with stored=True for the first registration,
            otherwise stored=False and the existing record

        Raises:
            IdempotencyConfigurationError: Invalid TTL (before any I/O)
            IdempotencySerializationError: Payload cannot be canonicalized
            IdempotencyCollisionError: Existing record has a different payload hash
            IdempotencyConsistencyError: Record vanished after the failed insert
            StoreError: Backend failure
        """
        canonical_payload = canonicalize(payload)
        record_id = hash_canonical_value(canonical_payload, self.hash_algorithm)
        key = self.build_key(record_id)
        ttl = self.resolve_ttl(ttl_seconds)
        if store_canonical_payload is ABSENT:
            store_canonical_payload = self.store_canonical_payload
        logger = get_logger(__name__, trace_id=key)

        record = IdempotencyRecord(
            id=record_id,
            payload_hash=record_id,
            created_at=utc_timestamp(self.clock.now()),
            metadata=metadata,
            canonical_payload=canonical_payload if store_canonical_payload else None,
            ttl_seconds=ttl,
        )

        inserted = await self.store.set_if_absent(key, serialize_record(record), ttl)
        if inserted:
            logger.debug("Registered new idempotency record")
            return RegistrationResult(id=record_id, key=key, stored=True, record=record)

        existing_value = await self.store.get(key)
        if existing_value is None:
            logger.warning("Idempotency record vanished between insert and read")
            raise IdempotencyConsistencyError(
                f"Failed to persist idempotency record for {key} due to concurrent deletion"
            )

        existing = deserialize_record(existing_value.value)
        if existing.payload_hash != record.payload_hash:
            logger.error(
                "Idempotency collision: stored payload_hash %s does not match %s",
                existing.payload_hash,
                record.payload_hash,
            )
            raise IdempotencyCollisionError(f"Collision detected for key {key}")

        logger.debug("Duplicate registration")
        return RegistrationResult(id=record_id, key=key, stored=False, record=existing)

    async def lookup_by_payload(self, payload: Any) -> Optional[LookupResult]:
        return await self.lookup_by_id(self.generate_id(payload))

    async def lookup_by_id(self, record_id: str) -> Optional[LookupResult]:
        """
        Read a record without modifying it.

        The store's remaining TTL wins over the TTL embedded in the record.
        """
        key = self.build_key(record_id)
        stored = await self.store.get(key)
        if stored is None:
            return None
        record = deserialize_record(stored.value)
        ttl = stored.ttl_seconds if stored.ttl_seconds is not None else record.ttl_seconds
        return LookupResult(id=record_id, key=key, record=record, ttl_seconds=ttl)

    async def update_ttl(self, record_id: str, ttl_seconds: Any = ABSENT) -> None:
        """
        Rewrite a record with only ttl_seconds changed.

        Raises:
            IdempotencyConfigurationError: Invalid TTL (before any I/O)
            MissingKeyError: No record under record_id
        """
        key = self.build_key(record_id)
        ttl = self.resolve_ttl(ttl_seconds)

        stored = await self.store.get(key)
        if stored is None:
            raise MissingKeyError(f"Cannot update TTL for missing key {key}")

        record = deserialize_record(stored.value).with_ttl(ttl)
        await self.store.update(key, serialize_record(record), ttl)
        get_logger(__name__, trace_id=key).debug("Updated TTL to %s", ttl)

    async def clear(self, record_id: str) -> bool:
        """Delete a record. Returns True iff one existed and was removed."""
        return await self.store.delete(self.build_key(record_id))
