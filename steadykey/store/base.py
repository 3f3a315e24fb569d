"""
IdempotencyStore abstract interface.

Defines the contract every persistence adapter implements. The manager
only ever talks to these four operations and never branches on backend.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..core.errors import StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreValue:
    """
    Value read back from a store.

    ttl_seconds is the best-effort remaining TTL, or None when the record
    never expires or the backend cannot report it.
    """

    value: str
    ttl_seconds: Optional[int] = None


class IdempotencyStore(ABC):
    """
    Abstract idempotency storage interface.

    All implementations must guarantee:
    - set_if_absent is atomic: of N concurrent calls for one key, exactly
      one returns True
    - get returns None for absent or expired keys
    - update never creates a key (raises MissingKeyError instead)
    """

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int]) -> bool:
        """
        Insert value only if key is absent.

        Args:
            key: Opaque storage key
            value: Serialized record
            ttl_seconds: Positive TTL, or None for no expiry

        Returns:
            True if this call performed the insert

        Raises:
            StoreError: If the backend fails
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[StoreValue]:
        """Return the stored value and remaining TTL, or None if absent/expired."""
        ...

    @abstractmethod
    async def update(self, key: str, value: str, ttl_seconds: Optional[int]) -> None:
        """
        Overwrite value and TTL of an existing key.

        Raises:
            MissingKeyError: If key does not exist
            StoreError: If the backend fails
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key. Returns True iff a live record existed and was removed."""
        ...

    async def purge_expired(self, key: str) -> None:
        """
        Remove key if its record is expired.

        Adapters override this with a conditional delete so a record
        re-registered since the expired read is left alone.
        """
        await self.delete(key)

    async def discard_expired(self, key: str) -> None:
        """
        Best-effort delete of a record already known to be expired.

        The record is semantically gone, so a failure here is logged and
        dropped rather than surfaced to the reader.
        """
        try:
            await self.purge_expired(key)
        except StoreError as e:
            logger.debug("Best-effort delete of expired key %s failed: %s", key, e)


def expires_at(ttl_seconds: Optional[int], now: float) -> Optional[float]:
    """Absolute expiry time for a TTL, or None for no expiry."""
    if ttl_seconds is not None and ttl_seconds > 0:
        return now + ttl_seconds
    return None


def is_expired(expiry: Optional[float], now: float) -> bool:
    return expiry is not None and expiry <= now


def remaining_ttl(expiry: Optional[float], now: float) -> Optional[int]:
    """
    Remaining whole seconds, rounded up so a live record never reports 0.
    """
    if expiry is None:
        return None
    return max(1, math.ceil(expiry - now))
