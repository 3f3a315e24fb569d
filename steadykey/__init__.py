"""
steadykey: deterministic idempotency keys and duplicate suppression.

Canonicalizes structured payloads, digests them into stable ids and records
first-seen status exactly once through a pluggable store.
"""

__version__ = "0.1.0"

from .core import (
    ABSENT,
    canonicalize,
    hash_canonical_value,
    steady_key,
    IdempotencyRecord,
    LookupResult,
    RegistrationResult,
    IdempotencyError,
    IdempotencyConfigurationError,
    IdempotencySerializationError,
    IdempotencyCollisionError,
    IdempotencyConsistencyError,
    StoreError,
    MissingKeyError,
)
from .config import ManagerConfig
from .manager import IdempotencyManager
from .store import (
    IdempotencyStore,
    StoreValue,
    InMemoryIdempotencyStore,
    FileIdempotencyStore,
    SqliteIdempotencyStore,
)

__all__ = [
    "ABSENT",
    "canonicalize",
    "hash_canonical_value",
    "steady_key",
    "IdempotencyRecord",
    "LookupResult",
    "RegistrationResult",
    "IdempotencyError",
    "IdempotencyConfigurationError",
    "IdempotencySerializationError",
    "IdempotencyCollisionError",
    "IdempotencyConsistencyError",
    "StoreError",
    "MissingKeyError",
    "ManagerConfig",
    "IdempotencyManager",
    "IdempotencyStore",
    "StoreValue",
    "InMemoryIdempotencyStore",
    "FileIdempotencyStore",
    "SqliteIdempotencyStore",
]
