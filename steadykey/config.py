"""
Manager configuration.

Environment Variables:
    STEADYKEY_KEY_PREFIX: Storage key prefix - default: idempotency
    STEADYKEY_DEFAULT_TTL_SECONDS: Positive integer TTL - default: unset (no expiry)
    STEADYKEY_HASH_ALGORITHM: sha256 or sha512 - default: sha256
    STEADYKEY_STORE_CANONICAL_PAYLOAD: 1/true to keep canonical payloads - default: false
"""

import os
from dataclasses import dataclass
from typing import Any, Optional

from .core.errors import IdempotencyConfigurationError
from .core.hashing import DEFAULT_HASH_ALGORITHM, validate_hash_algorithm

DEFAULT_KEY_PREFIX = "idempotency"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("", "0", "false", "no", "off")


def normalize_key_prefix(prefix: Any) -> str:
    """Trim trailing ':' separators; reject non-strings and empty prefixes."""
    if not isinstance(prefix, str):
        raise IdempotencyConfigurationError("key_prefix must be a string")
    trimmed = prefix.rstrip(":")
    if not trimmed:
        raise IdempotencyConfigurationError("key_prefix must not be empty")
    return trimmed


def validate_default_ttl(ttl_seconds: Any) -> Optional[int]:
    if ttl_seconds is None:
        return None
    if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds <= 0:
        raise IdempotencyConfigurationError(
            "default_ttl_seconds must be a positive integer when provided"
        )
    return ttl_seconds


@dataclass(frozen=True)
class ManagerConfig:
    key_prefix: str = DEFAULT_KEY_PREFIX
    default_ttl_seconds: Optional[int] = None
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    store_canonical_payload: bool = False

    @staticmethod
    def from_env() -> "ManagerConfig":
        raw_ttl = os.getenv("STEADYKEY_DEFAULT_TTL_SECONDS", "").strip()
        if raw_ttl:
            try:
                default_ttl = int(raw_ttl)
            except ValueError:
                raise IdempotencyConfigurationError(
                    f"STEADYKEY_DEFAULT_TTL_SECONDS must be an integer, got {raw_ttl!r}"
                ) from None
        else:
            default_ttl = None

        raw_store = os.getenv("STEADYKEY_STORE_CANONICAL_PAYLOAD", "").strip().lower()
        if raw_store not in _TRUE_VALUES + _FALSE_VALUES:
            raise IdempotencyConfigurationError(
                f"STEADYKEY_STORE_CANONICAL_PAYLOAD must be a boolean, got {raw_store!r}"
            )

        return ManagerConfig(
            key_prefix=normalize_key_prefix(os.getenv("STEADYKEY_KEY_PREFIX", DEFAULT_KEY_PREFIX)),
            default_ttl_seconds=validate_default_ttl(default_ttl),
            hash_algorithm=validate_hash_algorithm(
                os.getenv("STEADYKEY_HASH_ALGORITHM", DEFAULT_HASH_ALGORITHM).strip().lower()
            ),
            store_canonical_payload=raw_store in _TRUE_VALUES,
        )
