"""Time sources used by the metrics engine."""
from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Anything that can report a monotonic timestamp in seconds."""

    def now(self) -> float:
        ...


class MonotonicClock:
    """Clock backed by :func:`time.monotonic`."""

    __slots__ = ()

    def now(self) -> float:
        return time.monotonic()


class ManualClock:
    """Clock that only moves when told to.

    Pair it with :class:`~playback_metrics.scheduler.ManualScheduler` to
    replay a session deterministically.
    """

    __slots__ = ("_now",)

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def set(self, value: float) -> None:
        """Move the clock to ``value``; going backwards is not allowed."""

        if value < self._now:
            raise ValueError(f"Cannot move clock backwards from {self._now} to {value}")
        self._now = float(value)


__all__ = ["Clock", "ManualClock", "MonotonicClock"]
