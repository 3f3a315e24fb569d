"""
Exception types for idempotency key generation and registration.
"""


class IdempotencyError(Exception):
    """Base class for every error raised by steadykey."""
    pass


class IdempotencyConfigurationError(IdempotencyError):
    """Raised for invalid constructor or call arguments (before any I/O)."""
    pass


class IdempotencySerializationError(IdempotencyError):
    """Raised when a payload cannot be canonicalized or a stored record cannot be parsed."""
    pass


class IdempotencyCollisionError(IdempotencyError):
    """
    Raised when a stored record under a key carries a different payload hash.

    Two distinct payloads mapped to the same storage key. Callers should
    alert on this; it is never retried.
    """
    pass


class IdempotencyConsistencyError(IdempotencyError):
    """Raised when a record vanished between a failed insert and the follow-up read."""
    pass


class StoreError(IdempotencyError):
    """Raised when a storage backend operation fails."""
    pass


class MissingKeyError(StoreError):
    """Raised when an update targets a key that does not exist."""
    pass
