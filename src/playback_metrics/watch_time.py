"""Cumulative watch-time bookkeeping."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from .clock import Clock
from .logging_utils import get_logger

log = get_logger(__name__)


@dataclass(slots=True)
class WatchTimeLedger:
    """Seconds of actively advancing playback."""

    accumulated_seconds: float = 0.0
    open_segment_start: Optional[float] = None


class WatchTimeAccumulator:
    """Track time during which playback was actually advancing.

    Segments are opened with :meth:`resume` and folded into the ledger with
    :meth:`checkpoint`. ``is_playing`` reports whether the stall classifier
    currently sits in its playing state; resuming is refused otherwise.
    """

    __slots__ = ("_clock", "_is_playing", "ledger")

    def __init__(self, clock: Clock, is_playing: Callable[[], bool]) -> None:
        self._clock = clock
        self._is_playing = is_playing
        self.ledger = WatchTimeLedger()

    @property
    def is_open(self) -> bool:
        return self.ledger.open_segment_start is not None

    def checkpoint(self) -> float:
        """Close the open segment, if any, and return the accumulated total."""

        start = self.ledger.open_segment_start
        if start is None:
            return self.ledger.accumulated_seconds
        elapsed = max(0.0, self._clock.now() - start)
        self.ledger.accumulated_seconds += elapsed
        self.ledger.open_segment_start = None
        log.debug(
            "Watch time checkpointed: +%.3fs, total %.3fs",
            elapsed,
            self.ledger.accumulated_seconds,
        )
        return self.ledger.accumulated_seconds

    def resume(self) -> bool:
        """Open a new segment at the current time; return whether one opened."""

        if not self._is_playing():
            log.debug("Ignoring watch-time resume while playback is not active")
            return False
        if self.ledger.open_segment_start is not None:
            return False
        self.ledger.open_segment_start = self._clock.now()
        return True

    def read(self) -> float:
        """Return accumulated seconds including the open segment."""

        total = self.ledger.accumulated_seconds
        start = self.ledger.open_segment_start
        if start is not None:
            total += max(0.0, self._clock.now() - start)
        return total

    def reset(self) -> None:
        self.ledger = WatchTimeLedger()


__all__ = ["WatchTimeAccumulator", "WatchTimeLedger"]
