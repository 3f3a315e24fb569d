"""
Idempotency record model and its storage serialization.

A record is created once per distinct canonical payload. Only ttl_seconds
may change afterwards; everything else is fixed at creation.
"""

import json
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from .errors import IdempotencySerializationError


@dataclass(frozen=True)
class IdempotencyRecord:
    """
    Immutable idempotency record.

    Fields:
        id: Digest of the canonical payload
        payload_hash: Same digest, kept separately for integrity checks
        created_at: ISO-8601 UTC timestamp of first registration
        metadata: Caller-supplied JSON value from the first registration
        canonical_payload: Canonical form, kept only when requested
        ttl_seconds: TTL applied at the last write (None = no expiry)
    """
    id: str
    payload_hash: str
    created_at: str
    metadata: Any = None
    canonical_payload: Optional[str] = None
    ttl_seconds: Optional[int] = None

    def with_ttl(self, ttl_seconds: Optional[int]) -> "IdempotencyRecord":
        """Copy with only ttl_seconds changed."""
        return replace(self, ttl_seconds=ttl_seconds)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "payload_hash": self.payload_hash,
            "created_at": self.created_at,
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata
        if self.canonical_payload is not None:
            data["canonical_payload"] = self.canonical_payload
        data["ttl_seconds"] = self.ttl_seconds
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdempotencyRecord":
        """
        Build a record from parsed JSON, validating its shape.

        Raises:
            IdempotencySerializationError: If data is not a record object
        """
        if not isinstance(data, dict):
            raise IdempotencySerializationError("Stored idempotency record has invalid shape")
        record_id = data.get("id")
        if not isinstance(record_id, str):
            raise IdempotencySerializationError("Stored idempotency record has invalid shape: missing id")
        payload_hash = data.get("payload_hash", record_id)
        if not isinstance(payload_hash, str):
            raise IdempotencySerializationError("Stored idempotency record has invalid payload_hash")
        created_at = data.get("created_at", "")
        if not isinstance(created_at, str):
            raise IdempotencySerializationError("Stored idempotency record has invalid created_at")
        ttl_seconds = data.get("ttl_seconds")
        if ttl_seconds is not None and (isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int)):
            raise IdempotencySerializationError("Stored idempotency record has invalid ttl_seconds")
        return cls(
            id=record_id,
            payload_hash=payload_hash,
            created_at=created_at,
            metadata=data.get("metadata"),
            canonical_payload=data.get("canonical_payload"),
            ttl_seconds=ttl_seconds,
        )


@dataclass(frozen=True)
class RegistrationResult:
    """
    Result of IdempotencyManager.register().

    stored is True only for the call that performed first registration.
    """
    id: str
    key: str
    stored: bool
    record: IdempotencyRecord


@dataclass(frozen=True)
class LookupResult:
    id: str
    key: str
    record: IdempotencyRecord
    ttl_seconds: Optional[int] = None


def serialize_record(record: IdempotencyRecord) -> str:
    """Serialize record to JSON for storage."""
    try:
        return json.dumps(record.to_dict(), separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise IdempotencySerializationError(f"Failed to serialize idempotency record: {e}") from e


def deserialize_record(value: str) -> IdempotencyRecord:
    """
    Parse a stored record.

    Raises:
        IdempotencySerializationError: Invalid JSON or invalid shape
    """
    try:
        data = json.loads(value)
    except (TypeError, ValueError) as e:
        raise IdempotencySerializationError(f"Failed to deserialize idempotency record: {e}") from e
    return IdempotencyRecord.from_dict(data)
