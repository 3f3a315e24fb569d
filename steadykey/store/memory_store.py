"""
In-memory idempotency store.

Single-process only; intended for tests, examples and short-lived workers.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Optional

from ..core.clock import ManualClock, SystemClock
from ..core.errors import MissingKeyError
from .base import IdempotencyStore, StoreValue, expires_at, is_expired, remaining_ttl


@dataclass
class _Entry:
    value: str
    expires_at: Optional[float]


class InMemoryIdempotencyStore(IdempotencyStore):
    """
    Dict-backed store with lazy expiry.

    set_if_absent never suspends, and the lock covers callers sharing the
    store across threads, so the check-and-insert is atomic.
    """

    def __init__(self, clock=None) -> None:
        self.clock = clock or SystemClock()
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._offset = 0.0

    def _now(self) -> float:
        return self.clock.now() + self._offset

    def _evict_if_expired(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is not None and is_expired(entry.expires_at, self._now()):
            del self._entries[key]

    async def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int]) -> bool:
        with self._lock:
            self._evict_if_expired(key)
            if key in self._entries:
                return False
            self._entries[key] = _Entry(value, expires_at(ttl_seconds, self._now()))
            return True

    async def get(self, key: str) -> Optional[StoreValue]:
        with self._lock:
            self._evict_if_expired(key)
            entry = self._entries.get(key)
            if entry is None:
                return None
            return StoreValue(entry.value, remaining_ttl(entry.expires_at, self._now()))

    async def update(self, key: str, value: str, ttl_seconds: Optional[int]) -> None:
        with self._lock:
            self._evict_if_expired(key)
            if key not in self._entries:
                raise MissingKeyError(f"Key {key} does not exist in InMemoryIdempotencyStore")
            self._entries[key] = _Entry(value, expires_at(ttl_seconds, self._now()))

    async def delete(self, key: str) -> bool:
        with self._lock:
            self._evict_if_expired(key)
            return self._entries.pop(key, None) is not None

    def advance_time(self, seconds: float) -> None:
        """
        Move this store's clock forward and purge expired entries.

        With a shared ManualClock, advance the clock instead so every
        component sees the same time.
        """
        if seconds <= 0:
            return
        if isinstance(self.clock, ManualClock):
            self.clock.advance(seconds)
        else:
            self._offset += seconds
        with self._lock:
            for key in list(self._entries):
                self._evict_if_expired(key)

    def __len__(self) -> int:
        with self._lock:
            for key in list(self._entries):
                self._evict_if_expired(key)
            return len(self._entries)
