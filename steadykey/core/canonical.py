"""
Canonical serialization for idempotency keys.

This module is the heart of key stability. Every payload goes through
normalize() before hashing, so that two logically equal payloads produce
byte-identical JSON regardless of key order or container type.

Rules (checked in this order):
- ABSENT: dropped from keyed records, rejected anywhere else
- None, bool, str, safe-range int, finite float: unchanged
  (integral floats in the safe range become ints)
- int outside the IEEE-754 safe range: "bigint:<digits>"
- bytes, bytearray, memoryview: "buffer:<base64>"
- datetime (naive = UTC), date: ISO-8601
- list, tuple: element-wise, order preserved
- dict with str keys: keyed record, keys sorted by code point
- any other Mapping: sorted "map:<key>:<json value>" strings
- set, frozenset: sorted "set:<json member>" strings
- everything else: IdempotencySerializationError
"""

import base64
import json
import math
from collections.abc import Mapping
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Iterator, List, Set

from .errors import IdempotencySerializationError

BIGINT_PREFIX = "bigint:"
BUFFER_PREFIX = "buffer:"
MAP_PREFIX = "map:"
SET_PREFIX = "set:"

# Largest integer a double represents exactly; larger ints are tagged strings.
MAX_SAFE_INTEGER = 2**53 - 1


class _Absent:
    """
    Marker for "not supplied", distinct from an explicit None.

    Keyed record entries holding ABSENT are dropped during normalization.
    """

    _instance = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self):
        return (_Absent, ())


ABSENT = _Absent()


def compact_json(value: Any) -> str:
    """
    Deterministic JSON string without whitespace.

    ensure_ascii=False keeps UTF-8 stable; allow_nan=False rejects NaN/Infinity.
    """
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


@contextmanager
def _guard(container: Any, active: Set[int]) -> Iterator[None]:
    marker = id(container)
    if marker in active:
        raise IdempotencySerializationError(
            f"Circular reference detected in {type(container).__name__}"
        )
    active.add(marker)
    try:
        yield
    finally:
        active.discard(marker)


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    timespec = "milliseconds" if value.microsecond % 1000 == 0 else "microseconds"
    return value.replace(tzinfo=None).isoformat(timespec=timespec) + "Z"


def _integral(value: float) -> Any:
    """Integral floats in the safe range collapse to int, so 42.0 and 42 agree."""
    if value.is_integer() and abs(value) <= MAX_SAFE_INTEGER:
        return int(value)
    return value


def _map_key(key: Any) -> str:
    if isinstance(key, float) and math.isfinite(key):
        key = _integral(key)
    return str(key)


def _normalize_map(value: Mapping, active: Set[int]) -> List[str]:
    encoded = [(_map_key(k), compact_json(_normalize(v, active))) for k, v in value.items()]
    # Ties on str(key) (e.g. 1 and "1") fall back to the encoded value.
    encoded.sort()
    return [f"{MAP_PREFIX}{k}:{v}" for k, v in encoded]


def _normalize_set(value: Any, active: Set[int]) -> List[str]:
    encoded = sorted(compact_json(_normalize(member, active)) for member in value)
    return [f"{SET_PREFIX}{member}" for member in encoded]


def _normalize(value: Any, active: Set[int]) -> Any:
    if value is ABSENT:
        raise IdempotencySerializationError(
            "ABSENT is only allowed as a keyed record value"
        )

    if value is None or isinstance(value, (str, bool)):
        return value

    if isinstance(value, int):
        if abs(value) > MAX_SAFE_INTEGER:
            return f"{BIGINT_PREFIX}{int(value)}"
        return int(value)

    if isinstance(value, float):
        if not math.isfinite(value):
            raise IdempotencySerializationError(f"Non-finite number: {value!r}")
        return _integral(value)

    if isinstance(value, (bytes, bytearray, memoryview)):
        return BUFFER_PREFIX + base64.b64encode(bytes(value)).decode("ascii")

    if isinstance(value, datetime):
        return _format_datetime(value)

    if isinstance(value, date):
        return value.isoformat()

    if isinstance(value, (list, tuple)):
        with _guard(value, active):
            return [_normalize(item, active) for item in value]

    if isinstance(value, dict) and all(isinstance(k, str) for k in value):
        with _guard(value, active):
            record = {}
            for key in sorted(k for k, v in value.items() if v is not ABSENT):
                record[key] = _normalize(value[key], active)
            return record

    if isinstance(value, Mapping):
        with _guard(value, active):
            return _normalize_map(value, active)

    if isinstance(value, (set, frozenset)):
        with _guard(value, active):
            return _normalize_set(value, active)

    raise IdempotencySerializationError(f"Unsupported value type: {type(value).__name__}")


def normalize(value: Any) -> Any:
    """
    Convert an arbitrary payload to its canonical value tree.

    The result contains only JSON types (dict, list, str, int, float,
    bool, None). Dicts are built in sorted key order.

    Raises:
        IdempotencySerializationError: unsupported type, non-finite float,
            misplaced ABSENT, or a cyclic structure
    """
    try:
        return _normalize(value, set())
    except RecursionError as e:
        raise IdempotencySerializationError("Payload is nested too deeply to canonicalize") from e


def canonicalize(value: Any) -> str:
    """
    Canonical JSON string for a payload.

    Example:
        canonicalize({"b": 2, "a": [1, {3}]}) -> '{"a":[1,["set:3"]],"b":2}'
    """
    normalized = normalize(value)
    try:
        return compact_json(normalized)
    except (TypeError, ValueError) as e:
        raise IdempotencySerializationError(str(e)) from e
