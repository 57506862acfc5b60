"""Filter transient stalls before they count as rebuffers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .logging_utils import get_logger
from .scheduler import Scheduler, TimerHandle

if TYPE_CHECKING:  # pragma: no cover - only for typing
    from .classifier import StallInterval

DEFAULT_MIN_REBUFFER_SECONDS = 0.25

log = get_logger(__name__)


@dataclass(slots=True)
class RebufferRecord:
    """Validated rebuffer events for a session."""

    count: int = 0
    total_duration_seconds: float = 0.0


@dataclass(slots=True)
class _PendingStall:
    generation: int
    interval: "StallInterval"
    timer: Optional[TimerHandle]
    validated: bool = False


class RebufferDebouncer:
    """Count a stall only once it has lasted ``min_duration`` seconds.

    Every tracked stall gets a fresh generation id. The validation timer
    carries that id, so a timer left over from a stall that has since closed,
    or from before a reset, finds a different generation and does nothing.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        min_duration: float = DEFAULT_MIN_REBUFFER_SECONDS,
    ) -> None:
        self._scheduler = scheduler
        self.min_duration = max(0.0, min_duration)
        self.record = RebufferRecord()
        self._generation = 0
        self._pending: Optional[_PendingStall] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending(self) -> Optional["StallInterval"]:
        return self._pending.interval if self._pending is not None else None

    def track(self, interval: "StallInterval") -> int:
        """Start watching an open rebuffer interval; return its generation."""

        if self._pending is not None:
            log.debug(
                "Superseding pending stall generation %s", self._pending.generation
            )
            self._cancel_pending()
        generation = self._generation + 1
        # Scheduling may raise; nothing is recorded until the timer exists.
        timer = self._scheduler.call_later(
            self.min_duration, lambda: self._validate(generation)
        )
        self._generation = generation
        self._pending = _PendingStall(generation=generation, interval=interval, timer=timer)
        return generation

    def _validate(self, generation: int) -> None:
        pending = self._pending
        if pending is None or pending.generation != generation:
            log.debug("Ignoring stale rebuffer check for generation %s", generation)
            return
        pending.timer = None
        if not pending.interval.is_open:
            return
        pending.validated = True
        self.record.count += 1
        log.info("Rebuffer validated (count %d)", self.record.count)

    def close(self, interval: "StallInterval") -> bool:
        """Settle a closed interval; return whether it counted as a rebuffer."""

        pending = self._pending
        if pending is None or pending.interval is not interval:
            return False
        self._pending = None
        if not pending.validated:
            if pending.timer is not None:
                pending.timer.cancel()
            log.debug(
                "Discarding stall of %.3fs (below %.3fs)",
                interval.duration,
                self.min_duration,
            )
            return False
        self.record.total_duration_seconds += interval.duration
        log.info(
            "Rebuffer ended after %.2fs; total %.2fs",
            interval.duration,
            self.record.total_duration_seconds,
        )
        return True

    def _cancel_pending(self) -> None:
        pending = self._pending
        self._pending = None
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()

    def reset(self) -> None:
        self._cancel_pending()
        self._generation += 1
        self.record = RebufferRecord()


__all__ = ["DEFAULT_MIN_REBUFFER_SECONDS", "RebufferDebouncer", "RebufferRecord"]
