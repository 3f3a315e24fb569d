"""
Idempotency storage adapters.

This module provides:
- IdempotencyStore: Abstract four-operation contract
- InMemoryIdempotencyStore: Dict-backed store for tests and single processes
- FileIdempotencyStore: One JSON file per key
- SqliteIdempotencyStore: SQLite table keyed by storage key
- S3IdempotencyStore: One S3 object per key (conditional writes)
"""

from .base import IdempotencyStore, StoreValue
from .memory_store import InMemoryIdempotencyStore
from .file_store import FileIdempotencyStore
from .sqlite_store import SqliteIdempotencyStore

# S3IdempotencyStore is optional (requires boto3)
try:
    from .s3_store import S3IdempotencyStore

    __all__ = [
        "IdempotencyStore",
        "StoreValue",
        "InMemoryIdempotencyStore",
        "FileIdempotencyStore",
        "SqliteIdempotencyStore",
        "S3IdempotencyStore",
    ]
except ImportError:
    __all__ = [
        "IdempotencyStore",
        "StoreValue",
        "InMemoryIdempotencyStore",
        "FileIdempotencyStore",
        "SqliteIdempotencyStore",
    ]
