"""
Stable identifier generation.

Digests the canonical form of a payload into a fixed-length hex id.
"""

import hashlib
from typing import Any

from .canonical import canonicalize
from .errors import IdempotencyConfigurationError

SUPPORTED_HASH_ALGORITHMS = ("sha256", "sha512")
DEFAULT_HASH_ALGORITHM = "sha256"


def validate_hash_algorithm(algorithm: Any) -> str:
    """Return the algorithm name or raise IdempotencyConfigurationError."""
    if algorithm not in SUPPORTED_HASH_ALGORITHMS:
        raise IdempotencyConfigurationError(
            f"hash_algorithm must be one of {', '.join(SUPPORTED_HASH_ALGORITHMS)}, got {algorithm!r}"
        )
    return algorithm


def hash_canonical_value(canonical_value: str, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """
    Digest a canonical string.

    Args:
        canonical_value: Output of canonicalize()
        algorithm: "sha256" or "sha512"

    Returns:
        Lowercase hex digest (64 or 128 chars)
    """
    validate_hash_algorithm(algorithm)
    return hashlib.new(algorithm, canonical_value.encode("utf-8")).hexdigest()


def steady_key(payload: Any, hash_algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """
    Generate the idempotency id for a payload (no I/O).

    Example:
        steady_key({"order": 1, "sku": "A"}) == steady_key({"sku": "A", "order": 1})
    """
    return hash_canonical_value(canonicalize(payload), hash_algorithm)
