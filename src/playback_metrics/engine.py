"""Playback metrics engine: one instance per playback session."""
from __future__ import annotations

import functools
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Optional, TypeVar
from uuid import uuid4

from .classifier import PlaybackState, Signal, SignalEvent, StallClassifier
from .clock import Clock, MonotonicClock
from .config import EngineConfig
from .data_usage import DataUsageTracker
from .debounce import RebufferDebouncer
from .errors import ErrorTracker
from .logging_utils import get_logger
from .scheduler import AsyncioScheduler, Scheduler, TimerHandle
from .stats import MetricsSnapshot, SnapshotStore
from .units import bps_to_kbps, coerce_finite
from .watch_time import WatchTimeAccumulator
from .weighted import WeightedAverage

log = get_logger(__name__)

_F = TypeVar("_F", bound=Callable[..., Any])


@dataclass(slots=True)
class PlaybackSession:
    """Identity of the stream currently being observed."""

    session_id: str
    started_at: float
    stream_id: Optional[str] = None
    is_live: bool = False


@dataclass(frozen=True, slots=True)
class BitrateChange:
    """A quality switch reported by the streaming library."""

    at: float
    bitrate_kbps: float
    level: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None


def _guarded(handler: _F) -> _F:
    """Log and swallow failures so one bad signal cannot stop the engine."""

    @functools.wraps(handler)
    def wrapper(self: "PlaybackEngine", *args: Any, **kwargs: Any) -> Any:
        try:
            return handler(self, *args, **kwargs)
        except Exception:
            log.exception("Error while handling %s", handler.__name__)
            return None

    return wrapper  # type: ignore[return-value]


_SIGNAL_HANDLERS: dict[str, str] = {
    "startup-begin": "on_startup_begin",
    "playing": "on_playing",
    "waiting": "on_waiting",
    "stalled": "on_stalled",
    "pause": "on_pause",
    "play": "on_play",
    "seeking": "on_seeking",
    "seeked": "on_seeked",
    "visibility-change": "on_visibility_change",
    "timeupdate": "on_timeupdate",
    "level-change": "on_level_change",
    "transfer-complete": "on_transfer_complete",
    "bandwidth-estimate": "on_bandwidth_estimate",
    "error": "on_error",
}

_PAYLOAD_ALIASES: dict[str, str] = {
    "readyState": "ready_state",
    "currentPosition": "position",
    "current_position": "position",
    "bitrateBps": "bitrate_bps",
    "bytes": "size_bytes",
    "loadDurationMs": "load_duration_ms",
    "type": "error_type",
    "details": "message",
    "reason": "description",
}


def normalize_signal_name(name: str) -> str:
    return name.strip().lower().replace("_", "-")


def _ready_state(value: object) -> Optional[int]:
    if value is None:
        return None
    return int(coerce_finite(value))


class PlaybackEngine:
    """Classify playback signals and aggregate metrics for one session.

    The engine owns every ledger. Signals are applied synchronously, in the
    order the ``on_*`` methods are called; timers (debounce checks and the
    heartbeat) run on ``scheduler`` and observe the same ``clock``. Read the
    results with :meth:`snapshot`.

    Without an explicit ``scheduler`` the engine must be created inside a
    running asyncio loop; otherwise construction raises ``RuntimeError``.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.clock: Clock = clock or MonotonicClock()
        self.scheduler: Scheduler = scheduler or AsyncioScheduler()
        capacity = self.config.history_capacity
        self.session = self._new_session()
        self.watch_time = WatchTimeAccumulator(self.clock, is_playing=self._is_playing)
        self.debouncer = RebufferDebouncer(
            self.scheduler, min_duration=self.config.min_rebuffer_duration
        )
        self.classifier = StallClassifier(
            self.clock, self.watch_time, self.debouncer, history_capacity=capacity
        )
        self.bitrate = WeightedAverage()
        self.bitrate_history: Deque[BitrateChange] = deque(maxlen=capacity)
        self.data_usage = DataUsageTracker(
            self.clock,
            self.watch_time.read,
            session_start=self.session.started_at,
            history_capacity=capacity,
        )
        self.errors = ErrorTracker(self.clock, history_capacity=capacity)
        self.store = SnapshotStore(self)
        self._heartbeat_generation = 0
        self._heartbeat_timer: Optional[TimerHandle] = None
        self._heartbeat_running = False

    def _new_session(
        self, stream_id: Optional[str] = None, is_live: bool = False
    ) -> PlaybackSession:
        return PlaybackSession(
            session_id=uuid4().hex,
            started_at=self.clock.now(),
            stream_id=stream_id,
            is_live=is_live,
        )

    def _is_playing(self) -> bool:
        return self.classifier.state is PlaybackState.PLAYING

    @property
    def state(self) -> PlaybackState:
        return self.classifier.state

    # Session lifecycle ---------------------------------------------------

    def load(self, stream_id: Optional[str] = None, *, is_live: bool = False) -> PlaybackSession:
        """Start observing a new stream, discarding the previous session."""

        restart_heartbeat = self._heartbeat_running
        self.reset()
        self.session = self._new_session(stream_id, is_live)
        self.data_usage.reset(self.session.started_at)
        log.info(
            "Loaded stream %s (%s) as session %s",
            stream_id or "<unknown>",
            "live" if is_live else "VOD",
            self.session.session_id,
        )
        if restart_heartbeat:
            self.start_heartbeat()
        return self.session

    def reset(self) -> None:
        """Cancel all timers and zero every ledger."""

        self.stop_heartbeat()
        self.debouncer.reset()
        self.classifier.reset()
        self.watch_time.reset()
        self.bitrate.reset()
        self.bitrate_history.clear()
        self.data_usage.reset(self.session.started_at)
        self.errors.reset()
        self.store.reset()
        log.debug("Engine reset for session %s", self.session.session_id)

    # Heartbeat -----------------------------------------------------------

    def start_heartbeat(self) -> None:
        """Begin periodic refreshes every ``heartbeat_interval_ms``."""

        self.stop_heartbeat()
        self._heartbeat_running = True
        self._schedule_heartbeat(self._heartbeat_generation)

    def stop_heartbeat(self) -> None:
        self._heartbeat_generation += 1
        self._heartbeat_running = False
        timer = self._heartbeat_timer
        self._heartbeat_timer = None
        if timer is not None:
            timer.cancel()

    def _schedule_heartbeat(self, generation: int) -> None:
        self._heartbeat_timer = self.scheduler.call_later(
            self.config.heartbeat_interval, lambda: self._beat(generation)
        )

    def _beat(self, generation: int) -> None:
        if generation != self._heartbeat_generation:
            return
        self.heartbeat()
        self._schedule_heartbeat(generation)

    @_guarded
    def heartbeat(self) -> MetricsSnapshot:
        """Fold elapsed time into the running averages and refresh the store."""

        now = self.clock.now()
        self.bitrate.tick(now)
        self.data_usage.refresh()
        return self.store.refresh()

    def snapshot(self) -> MetricsSnapshot:
        return self.store.snapshot()

    # Signals -------------------------------------------------------------

    def dispatch(self, name: str, **payload: Any) -> None:
        """Route a signal by its wire name, e.g. ``"transfer-complete"``."""

        method_name = _SIGNAL_HANDLERS.get(normalize_signal_name(name))
        if method_name is None:
            log.warning("Ignoring unknown signal %r", name)
            return
        arguments = {_PAYLOAD_ALIASES.get(key, key): value for key, value in payload.items()}
        getattr(self, method_name)(**arguments)

    def _classify(self, signal: Signal, **details: Any) -> None:
        self.classifier.handle(SignalEvent(signal, **details))

    @_guarded
    def on_startup_begin(self) -> None:
        self._classify(Signal.STARTUP_BEGIN)

    @_guarded
    def on_playing(self) -> None:
        self._classify(Signal.PLAYING)

    @_guarded
    def on_waiting(
        self,
        ready_state: Optional[int] = None,
        paused: bool = False,
        seeking: bool = False,
    ) -> None:
        self._classify(
            Signal.WAITING,
            ready_state=_ready_state(ready_state),
            paused=bool(paused),
            seeking=bool(seeking),
        )

    @_guarded
    def on_stalled(
        self,
        ready_state: Optional[int] = None,
        paused: bool = False,
        seeking: bool = False,
    ) -> None:
        self._classify(
            Signal.STALLED,
            ready_state=_ready_state(ready_state),
            paused=bool(paused),
            seeking=bool(seeking),
        )

    @_guarded
    def on_pause(self) -> None:
        self._classify(Signal.PAUSE)

    @_guarded
    def on_play(self) -> None:
        self._classify(Signal.PLAY)

    @_guarded
    def on_seeking(self) -> None:
        self._classify(Signal.SEEKING)

    @_guarded
    def on_seeked(self) -> None:
        self._classify(Signal.SEEKED)

    @_guarded
    def on_visibility_change(self, hidden: bool) -> None:
        self._classify(Signal.HIDDEN if hidden else Signal.VISIBLE)

    @_guarded
    def on_timeupdate(self, position: float) -> None:
        self._classify(Signal.TIMEUPDATE, position=coerce_finite(position))

    @_guarded
    def on_level_change(
        self,
        bitrate_bps: float,
        level: Optional[int] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> None:
        bitrate = coerce_finite(bitrate_bps)
        if bitrate <= 0:
            log.debug("Ignoring level change without a usable bitrate: %r", bitrate_bps)
            return
        now = self.clock.now()
        self.bitrate.update(bitrate, now)
        change = BitrateChange(
            at=now,
            bitrate_kbps=bps_to_kbps(bitrate),
            level=level,
            width=width,
            height=height,
        )
        self.bitrate_history.append(change)
        log.info(
            "Quality changed to level %s: %.0f kbps (%sx%s)",
            level if level is not None else "?",
            change.bitrate_kbps,
            width or "?",
            height or "?",
        )

    @_guarded
    def on_transfer_complete(self, size_bytes: float, load_duration_ms: float) -> None:
        self.data_usage.record_transfer(size_bytes, load_duration_ms)

    @_guarded
    def on_bandwidth_estimate(self, bps: float) -> None:
        self.data_usage.record_bandwidth_estimate(bps)

    @_guarded
    def on_error(
        self,
        error_type: str = "other",
        message: Optional[str] = None,
        description: Optional[str] = None,
        fatal: bool = False,
    ) -> None:
        self.errors.record(error_type, message, description, fatal)


__all__ = [
    "BitrateChange",
    "PlaybackEngine",
    "PlaybackSession",
    "normalize_signal_name",
]
