"""
Time sources for stores and the manager.

Stores without native expiry compare absolute expiry times against a
clock. Tests swap in ManualClock to move time forward deterministically.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone


class SystemClock:
    """Wall-clock time in epoch seconds."""

    def now(self) -> float:
        return time.time()


@dataclass
class ManualClock:
    """
    Clock that only moves when told to.

    Unlike a frozen clock, advance() mutates in place so every store and
    manager sharing the instance observes the same time.
    """
    current: float = 0.0

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        if seconds <= 0:
            return
        self.current += seconds


def utc_timestamp(epoch_seconds: float) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    dt = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return dt.replace(tzinfo=None).isoformat(timespec="milliseconds") + "Z"
