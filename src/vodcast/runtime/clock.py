"""Wall-clock abstractions used for channel timing.

The channel clock supplies *server time* in epoch milliseconds. Unlike a
monotonic timer it is comparable across processes, which is what lets
stateless instances agree on a shared reference epoch.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Protocol, runtime_checkable

WallClockFn = Callable[[], float]


@runtime_checkable
class Clock(Protocol):
    """Protocol implemented by channel clock providers."""

    def now_ms(self) -> int:
        """Return the current server time in epoch milliseconds."""


@dataclass
class SystemClock:
    """Clock backed by the host wall clock.

    Parameters
    ----------
    time_fn:
        Injectable wall-clock function returning epoch seconds, defaults to
        :func:`time.time`.
    """

    time_fn: WallClockFn = field(default=time.time)

    def now_ms(self) -> int:
        return int(self.time_fn() * 1000)


class SteppedClock:
    """Deterministic clock used for tests.

    Time advances only when :meth:`advance` or :meth:`set` is called.
    """

    def __init__(self, start_ms: int = 0) -> None:
        self._current = int(start_ms)
        self._lock = Lock()

    def now_ms(self) -> int:
        with self._lock:
            return self._current

    def advance(self, seconds: float) -> int:
        """Advance the clock by ``seconds`` (must be non-negative)."""
        if seconds < 0.0:
            raise ValueError("seconds must be non-negative")
        with self._lock:
            self._current += int(round(seconds * 1000))
            return self._current

    def set(self, now_ms: int) -> None:
        """Jump to an absolute time. May move backwards to simulate skew."""
        with self._lock:
            self._current = int(now_ms)


def ms_to_iso(epoch_ms: int) -> str:
    """Format epoch milliseconds as an ISO-8601 UTC string."""
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_to_seconds(value: str) -> float:
    """Parse an ISO-8601 timestamp into epoch seconds.

    Naive timestamps are taken as UTC.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()
