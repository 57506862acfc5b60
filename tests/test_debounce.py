from __future__ import annotations

from typing import Callable

import pytest

from playback_metrics.classifier import StallInterval, StallKind
from playback_metrics.clock import ManualClock
from playback_metrics.debounce import RebufferDebouncer
from playback_metrics.scheduler import ManualScheduler


class _UncancellableScheduler:
    """Collects callbacks and ignores cancellation, like a timer that already fired."""

    def __init__(self) -> None:
        self.callbacks: list[Callable[[], None]] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> "_UncancellableScheduler":
        self.callbacks.append(callback)
        return self

    def cancel(self) -> None:
        pass


def _close(interval: StallInterval, at: float) -> None:
    interval.end = at


def test_stall_shorter_than_threshold_is_discarded() -> None:
    clock = ManualClock()
    scheduler = ManualScheduler(clock)
    debouncer = RebufferDebouncer(scheduler, min_duration=0.25)
    interval = StallInterval(StallKind.REBUFFER, start=0.0)
    debouncer.track(interval)
    scheduler.advance(0.1)
    _close(interval, clock.now())
    assert debouncer.close(interval) is False
    assert scheduler.pending == 0
    scheduler.advance(1.0)
    assert debouncer.record.count == 0
    assert debouncer.record.total_duration_seconds == 0.0


def test_validated_stall_counts_once_and_adds_full_duration() -> None:
    clock = ManualClock()
    scheduler = ManualScheduler(clock)
    debouncer = RebufferDebouncer(scheduler, min_duration=0.25)
    interval = StallInterval(StallKind.REBUFFER, start=0.0)
    debouncer.track(interval)
    scheduler.advance(0.3)
    assert debouncer.record.count == 1
    assert debouncer.record.total_duration_seconds == 0.0

    scheduler.advance(0.1)
    _close(interval, clock.now())
    assert debouncer.close(interval) is True
    assert debouncer.record.count == 1
    assert debouncer.record.total_duration_seconds == pytest.approx(0.4)
    assert debouncer.pending is None


def test_stale_check_does_not_validate_newer_stall() -> None:
    scheduler = _UncancellableScheduler()
    debouncer = RebufferDebouncer(scheduler, min_duration=0.25)
    first = StallInterval(StallKind.REBUFFER, start=0.0)
    first_generation = debouncer.track(first)
    _close(first, 0.1)
    debouncer.close(first)

    second = StallInterval(StallKind.REBUFFER, start=0.2)
    second_generation = debouncer.track(second)
    assert second_generation == first_generation + 1

    # The first stall's check fires late while the second stall is still young.
    scheduler.callbacks[0]()
    assert debouncer.record.count == 0

    scheduler.callbacks[1]()
    assert debouncer.record.count == 1


def test_reset_invalidates_outstanding_check() -> None:
    scheduler = _UncancellableScheduler()
    debouncer = RebufferDebouncer(scheduler, min_duration=0.25)
    interval = StallInterval(StallKind.REBUFFER, start=0.0)
    debouncer.track(interval)
    debouncer.reset()
    scheduler.callbacks[0]()
    assert debouncer.record.count == 0
    assert debouncer.pending is None


def test_check_after_interval_closed_does_nothing() -> None:
    scheduler = _UncancellableScheduler()
    debouncer = RebufferDebouncer(scheduler, min_duration=0.25)
    interval = StallInterval(StallKind.REBUFFER, start=0.0)
    debouncer.track(interval)
    _close(interval, 0.5)
    scheduler.callbacks[0]()
    assert debouncer.record.count == 0


def test_closing_unknown_interval_is_ignored() -> None:
    clock = ManualClock()
    debouncer = RebufferDebouncer(ManualScheduler(clock))
    stray = StallInterval(StallKind.REBUFFER, start=0.0, end=1.0)
    assert debouncer.close(stray) is False
    assert debouncer.record.total_duration_seconds == 0.0


class _FailingScheduler:
    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        raise RuntimeError("no event loop")


def test_failed_scheduling_records_nothing() -> None:
    debouncer = RebufferDebouncer(_FailingScheduler(), min_duration=0.25)
    with pytest.raises(RuntimeError):
        debouncer.track(StallInterval(StallKind.REBUFFER, start=0.0))
    assert debouncer.pending is None
    assert debouncer.generation == 0
