"""
Core idempotency primitives.

This module provides the building blocks the manager composes:
- Canonical: Deterministic payload serialization
- Hashing: Digest of the canonical form
- Record: Stored record model and its JSON serialization
- Clock: Time sources for expiry
- Errors: Exception taxonomy
"""

from .canonical import ABSENT, canonicalize, normalize, compact_json
from .hashing import (
    DEFAULT_HASH_ALGORITHM,
    SUPPORTED_HASH_ALGORITHMS,
    hash_canonical_value,
    steady_key,
)
from .record import (
    IdempotencyRecord,
    LookupResult,
    RegistrationResult,
    deserialize_record,
    serialize_record,
)
from .clock import ManualClock, SystemClock, utc_timestamp
from .errors import (
    IdempotencyError,
    IdempotencyConfigurationError,
    IdempotencySerializationError,
    IdempotencyCollisionError,
    IdempotencyConsistencyError,
    StoreError,
    MissingKeyError,
)

__all__ = [
    "ABSENT",
    "canonicalize",
    "normalize",
    "compact_json",
    "DEFAULT_HASH_ALGORITHM",
    "SUPPORTED_HASH_ALGORITHMS",
    "hash_canonical_value",
    "steady_key",
    "IdempotencyRecord",
    "LookupResult",
    "RegistrationResult",
    "deserialize_record",
    "serialize_record",
    "ManualClock",
    "SystemClock",
    "utc_timestamp",
    "IdempotencyError",
    "IdempotencyConfigurationError",
    "IdempotencySerializationError",
    "IdempotencyCollisionError",
    "IdempotencyConsistencyError",
    "StoreError",
    "MissingKeyError",
]
