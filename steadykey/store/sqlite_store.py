"""
SQLite-backed idempotency store.

Schema:
  idempotency_records(key TEXT PRIMARY KEY, value TEXT, expires_at REAL)

The primary key constraint carries the conditional insert: INSERT OR IGNORE
inside BEGIN IMMEDIATE either writes the row or reports zero changes.
Expired rows are cleared in the same transaction before inserting.
"""

import asyncio
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from ..core.clock import SystemClock
from ..core.errors import MissingKeyError, StoreError
from .base import IdempotencyStore, StoreValue, expires_at, is_expired, remaining_ttl

SCHEMA = """
CREATE TABLE IF NOT EXISTS idempotency_records(
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  expires_at REAL                    -- epoch seconds; NULL = never expires
);
CREATE INDEX IF NOT EXISTS idx_idempotency_expires ON idempotency_records(expires_at);
"""


class SqliteIdempotencyStore(IdempotencyStore):
    """
    One shared connection guarded by a lock; blocking calls run in a worker thread.
    """

    def __init__(self, path: str = ":memory:", clock=None) -> None:
        self.path = path
        self.clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._conn = self._connect()
        for stmt in SCHEMA.strip().split(";\n"):
            s = stmt.strip()
            if s:
                self._conn.execute(s)

    # -- Connection plumbing --
    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None => autocommit; BEGIN/COMMIT managed in _tx()
        conn = sqlite3.connect(self.path, timeout=30, isolation_level=None, check_same_thread=False)
        conn.execute("PRAGMA busy_timeout=5000")
        if self.path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._conn
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- Blocking operations --
    def _set_if_absent_sync(self, key: str, value: str, ttl_seconds: Optional[int]) -> bool:
        now = self.clock.now()
        with self._tx() as c:
            c.execute(
                "DELETE FROM idempotency_records WHERE key=? AND expires_at IS NOT NULL AND expires_at<=?",
                (key, now),
            )
            cur = c.execute(
                "INSERT OR IGNORE INTO idempotency_records(key, value, expires_at) VALUES(?,?,?)",
                (key, value, expires_at(ttl_seconds, now)),
            )
            return cur.rowcount == 1

    def _get_sync(self, key: str):
        with self._lock:
            row = self._conn.execute(
                "SELECT value, expires_at FROM idempotency_records WHERE key=?", (key,)
            ).fetchone()
        if row is None:
            return None, False
        value, expiry = row
        now = self.clock.now()
        if is_expired(expiry, now):
            return None, True
        return StoreValue(value, remaining_ttl(expiry, now)), False

    def _update_sync(self, key: str, value: str, ttl_seconds: Optional[int]) -> None:
        now = self.clock.now()
        with self._tx() as c:
            cur = c.execute(
                "UPDATE idempotency_records SET value=?, expires_at=? "
                "WHERE key=? AND (expires_at IS NULL OR expires_at>?)",
                (value, expires_at(ttl_seconds, now), key, now),
            )
            if cur.rowcount == 0:
                raise MissingKeyError(f"Key {key} does not exist in SqliteIdempotencyStore")

    def _delete_sync(self, key: str) -> bool:
        now = self.clock.now()
        with self._tx() as c:
            row = c.execute("SELECT expires_at FROM idempotency_records WHERE key=?", (key,)).fetchone()
            if row is None:
                return False
            c.execute("DELETE FROM idempotency_records WHERE key=?", (key,))
            return not is_expired(row[0], now)

    def _purge_expired_sync(self, key: str) -> None:
        with self._tx() as c:
            c.execute(
                "DELETE FROM idempotency_records WHERE key=? AND expires_at IS NOT NULL AND expires_at<=?",
                (key, self.clock.now()),
            )

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as e:
            raise StoreError(f"SQLite store operation failed: {e}") from e

    async def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int]) -> bool:
        return await self._run(self._set_if_absent_sync, key, value, ttl_seconds)

    async def get(self, key: str) -> Optional[StoreValue]:
        stored, expired = await self._run(self._get_sync, key)
        if expired:
            await self.discard_expired(key)
        return stored

    async def update(self, key: str, value: str, ttl_seconds: Optional[int]) -> None:
        await self._run(self._update_sync, key, value, ttl_seconds)

    async def delete(self, key: str) -> bool:
        return await self._run(self._delete_sync, key)

    async def purge_expired(self, key: str) -> None:
        await self._run(self._purge_expired_sync, key)
