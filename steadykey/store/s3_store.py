"""
S3-based idempotency store using one-object-per-key pattern.

Each record is stored as a separate S3 object with key: {prefix}/{storage key}
Body format: {"key": "...", "value": "...", "expires_at": 1700000000.0 | null}

This provides:
- Atomic conditional insert (PutObject with If-None-Match: *)
- Strong read-after-write consistency (AWS S3 guarantee as of Dec 2020)
- No native per-object TTL: expiry is tracked in the body and checked on read
"""

import asyncio
import json
import os
from typing import Any, Dict, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..core.canonical import compact_json
from ..core.clock import SystemClock
from ..core.errors import MissingKeyError, StoreError
from .base import IdempotencyStore, StoreValue, expires_at, is_expired, remaining_ttl

# 412 when the precondition fails, 409 when a concurrent conditional write wins
CONDITION_FAILED_CODES = ("PreconditionFailed", "412", "ConditionalRequestConflict", "409")
NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


class S3IdempotencyStore(IdempotencyStore):
    """
    S3-backed store.

    Guarantees:
    - set_if_absent never overwrites a live object
    - An expired object is replaced only if its ETag is unchanged (If-Match)
    - update() fails with MissingKeyError for absent or expired keys
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "idempotency",
        endpoint_url: Optional[str] = None,
        region: str = "us-east-1",
        clock=None,
    ) -> None:
        """
        Initialize S3 idempotency store.

        Args:
            bucket: S3 bucket name
            prefix: Object key prefix (default: "idempotency")
            endpoint_url: S3 endpoint URL (for MinIO, localstack, etc.)
            region: AWS region (default: us-east-1)
            clock: Object with now() -> epoch seconds (default: SystemClock)

        Raises:
            StoreError: If S3 client creation fails or the bucket is not accessible
        """
        self.bucket = bucket
        self.prefix = prefix.rstrip("/")
        self.endpoint_url = endpoint_url
        self.region = region
        self.clock = clock or SystemClock()

        # Credentials from environment: AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY
        try:
            self.s3_client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                region_name=region,
            )
        except (BotoCoreError, ValueError) as e:
            raise StoreError(f"Failed to create S3 client: {e}") from e

        if os.getenv("STEADYKEY_S3_SKIP_BUCKET_CHECK", "").lower() != "true":
            try:
                self.s3_client.head_bucket(Bucket=bucket)
            except ClientError as e:
                raise StoreError(
                    f"Bucket '{bucket}' not accessible (code: {_error_code(e) or 'Unknown'})"
                ) from e

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}/{key}"

    def _body(self, key: str, value: str, ttl_seconds: Optional[int], now: float) -> bytes:
        return compact_json(
            {"key": key, "value": value, "expires_at": expires_at(ttl_seconds, now)}
        ).encode("utf-8")

    def _put(self, object_key: str, body: bytes, **conditions: str) -> bool:
        """
        Put object, honoring If-None-Match / If-Match conditions.

        Returns:
            True if written, False if the condition failed
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=object_key,
                Body=body,
                ContentType="application/json",
                **conditions,
            )
            return True
        except ClientError as e:
            if _error_code(e) in CONDITION_FAILED_CODES:
                return False
            raise

    def _read(self, object_key: str) -> Optional[Tuple[Dict[str, Any], str]]:
        """Return (envelope, etag) or None if the object does not exist."""
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=object_key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return None
            raise
        body = response["Body"].read().decode("utf-8")
        return json.loads(body), response.get("ETag", "").strip('"')

    def _set_if_absent_sync(self, key: str, value: str, ttl_seconds: Optional[int]) -> bool:
        object_key = self._object_key(key)
        now = self.clock.now()
        body = self._body(key, value, ttl_seconds, now)
        if self._put(object_key, body, IfNoneMatch="*"):
            return True

        existing = self._read(object_key)
        if existing is None:
            # Deleted between the failed put and the read; one more attempt.
            return self._put(object_key, body, IfNoneMatch="*")
        envelope, etag = existing
        if not is_expired(envelope.get("expires_at"), now):
            return False
        if etag:
            return self._put(object_key, body, IfMatch=etag)
        return False

    def _get_sync(self, key: str):
        existing = self._read(self._object_key(key))
        if existing is None:
            return None, False
        envelope, _ = existing
        now = self.clock.now()
        expiry = envelope.get("expires_at")
        if is_expired(expiry, now):
            return None, True
        return StoreValue(envelope["value"], remaining_ttl(expiry, now)), False

    def _update_sync(self, key: str, value: str, ttl_seconds: Optional[int]) -> None:
        object_key = self._object_key(key)
        now = self.clock.now()
        existing = self._read(object_key)
        if existing is None or is_expired(existing[0].get("expires_at"), now):
            raise MissingKeyError(f"Key {key} does not exist in S3IdempotencyStore")
        body = self._body(key, value, ttl_seconds, now)
        etag = existing[1]
        written = self._put(object_key, body, IfMatch=etag) if etag else self._put(object_key, body)
        if not written:
            # Replaced or deleted since the read
            raise MissingKeyError(f"Key {key} changed during update in S3IdempotencyStore")

    def _delete_sync(self, key: str, only_expired: bool = False) -> bool:
        object_key = self._object_key(key)
        existing = self._read(object_key)
        if existing is None:
            return False
        expired = is_expired(existing[0].get("expires_at"), self.clock.now())
        if only_expired and not expired:
            return False
        self.s3_client.delete_object(Bucket=self.bucket, Key=object_key)
        return not expired

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except StoreError:
            raise
        except (BotoCoreError, ClientError, ValueError, KeyError) as e:
            raise StoreError(f"S3 store operation failed: {e}") from e

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
