from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Source of monotonic seconds.

    Sessions, timers and the UI read time only through this interface so that
    tests can drive them with a fake clock.
    """

    def now(self) -> float:
        """Return monotonic seconds."""
        ...


class RealClock:
    """Clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


def utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))
