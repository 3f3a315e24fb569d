"""
File-based idempotency store: one JSON envelope per key.

Layout: {directory}/{sha256(key)}.json
Body: {"key": "...", "value": "...", "expires_at": 1700000000.0 | null}

New records are written to a temp file, fsync'd and hard-linked into place;
os.link fails if the target exists, which makes the insert atomic even
without fcntl. Overwrites go through os.replace.
"""

import asyncio
import hashlib
import json
import os
import tempfile
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from ..core.canonical import compact_json
from ..core.clock import SystemClock
from ..core.errors import MissingKeyError, StoreError
from .base import IdempotencyStore, StoreValue, expires_at, is_expired, remaining_ttl

try:
    import fcntl
except ImportError:  # Windows or unsupported platform
    fcntl = None


class FileIdempotencyStore(IdempotencyStore):
    """
    Directory-backed store with lazy expiry.

    Guarantees:
    - Atomic conditional insert (hard link, no overwrite)
    - Fsync before a record becomes visible
    - Mutations serialized across processes with an fcntl lock file
    """

    def __init__(self, directory: str, clock=None) -> None:
        """
        Initialize file store.

        Args:
            directory: Directory holding one file per key (created if missing)
            clock: Object with now() -> epoch seconds (default: SystemClock)
        """
        self.directory = directory
        self.clock = clock or SystemClock()
        self.lock_path = os.path.join(directory, ".lock")
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return os.path.join(self.directory, f"{digest}.json")

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with open(self.lock_path, "a+b") as f:
            if fcntl:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                if fcntl:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def _read(self, path: str) -> Optional[Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None

    def _write_temp(self, key: str, value: str, expiry: Optional[float]) -> str:
        body = compact_json({"key": key, "value": value, "expires_at": expiry})
        fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", dir=self.directory)
        with os.fdopen(fd, "wb") as f:
            f.write(body.encode("utf-8"))
            f.flush()
            os.fsync(f.fileno())
        return tmp_path

    def _remove(self, path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False

    def _set_if_absent_sync(self, key: str, value: str, ttl_seconds: Optional[int]) -> bool:
        path = self._path(key)
        with self._locked():
            now = self.clock.now()
            current = self._read(path)
            if current is not None and is_expired(current.get("expires_at"), now):
                self._remove(path)
            tmp_path = self._write_temp(key, value, expires_at(ttl_seconds, now))
            try:
                os.link(tmp_path, path)
                return True
            except FileExistsError:
                return False
            finally:
                self._remove(tmp_path)

    def _get_sync(self, key: str):
        current = self._read(self._path(key))
        if current is None:
            return None, False
        now = self.clock.now()
        expiry = current.get("expires_at")
        if is_expired(expiry, now):
            return None, True
        return StoreValue(current["value"], remaining_ttl(expiry, now)), False

    def _update_sync(self, key: str, value: str, ttl_seconds: Optional[int]) -> None:
        path = self._path(key)
        with self._locked():
            now = self.clock.now()
            current = self._read(path)
            if current is None or is_expired(current.get("expires_at"), now):
                raise MissingKeyError(f"Key {key} does not exist in FileIdempotencyStore")
            tmp_path = self._write_temp(key, value, expires_at(ttl_seconds, now))
            os.replace(tmp_path, path)

    def _delete_sync(self, key: str, only_expired: bool = False) -> bool:
        path = self._path(key)
        with self._locked():
            current = self._read(path)
            if current is None:
                return False
            expired = is_expired(current.get("expires_at"), self.clock.now())
            if only_expired and not expired:
                return False
            return self._remove(path) and not expired

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except StoreError:
            raise
        except (OSError, ValueError, KeyError) as e:
            raise StoreError(f"File store operation failed: {e}") from e

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
        await self._run(self._delete_sync, key, True)
