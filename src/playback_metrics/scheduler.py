"""One-shot timer scheduling for debounce checks and heartbeats."""
from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from .clock import ManualClock
from .logging_utils import get_logger

log = get_logger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Run ``callback`` once after ``delay`` seconds on the engine timeline."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class AsyncioScheduler:
    """Schedule callbacks on an asyncio event loop.

    Without an explicit ``loop`` the running loop is bound at construction,
    so creating the scheduler outside a loop fails immediately instead of on
    the first timer.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                raise RuntimeError(
                    "AsyncioScheduler needs a running event loop; create it inside "
                    "the loop or pass an explicit scheduler"
                ) from None
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._loop.call_later(max(0.0, delay), callback)


@dataclass(order=True)
class _ManualTimer:
    due: float
    sequence: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose timers fire only when the paired clock is advanced.

    Timers due at the same instant fire in the order they were scheduled,
    and the clock reads each timer's due time while its callback runs.
    """

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self._timers: list[_ManualTimer] = []
        self._sequence = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(
            due=self.clock.now() + max(0.0, delay),
            sequence=next(self._sequence),
            callback=callback,
        )
        heapq.heappush(self._timers, timer)
        return timer

    @property
    def pending(self) -> int:
        """Number of timers that have not fired or been cancelled."""

        return sum(1 for timer in self._timers if not timer.cancelled)

    def advance_to(self, when: float) -> None:
        """Move the clock to ``when``, firing every timer due on the way."""

        while self._timers and self._timers[0].due <= when:
            timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self.clock.set(max(self.clock.now(), timer.due))
            timer.callback()
        self.clock.set(max(self.clock.now(), when))

    def advance(self, seconds: float) -> None:
        self.advance_to(self.clock.now() + seconds)


__all__ = [
    "AsyncioScheduler",
    "ManualScheduler",
    "Scheduler",
    "TimerHandle",
]
