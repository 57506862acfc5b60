"""Playback state machine that classifies stalls into intervals."""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Optional

from .clock import Clock
from .debounce import RebufferDebouncer
from .logging_utils import get_logger
from .units import coerce_finite
from .watch_time import WatchTimeAccumulator

log = get_logger(__name__)

# HTMLMediaElement.HAVE_FUTURE_DATA: enough is buffered to keep advancing.
HAVE_FUTURE_DATA = 3


class PlaybackState(Enum):
    STARTING = "starting"
    PLAYING = "playing"
    STALLED = "stalled"
    PAUSED = "paused"
    SEEKING = "seeking"
    HIDDEN = "hidden"


class StallKind(Enum):
    STARTUP = "startup"
    REBUFFER = "rebuffer"
    PAUSE = "pause"
    SEEK = "seek"
    HIDDEN = "hidden"


class Signal(Enum):
    """Lifecycle signals the classifier understands."""

    STARTUP_BEGIN = "startup-begin"
    PLAYING = "playing"
    WAITING = "waiting"
    STALLED = "stalled"
    PAUSE = "pause"
    PLAY = "play"
    SEEKING = "seeking"
    SEEKED = "seeked"
    HIDDEN = "hidden"
    VISIBLE = "visible"
    TIMEUPDATE = "timeupdate"


@dataclass(frozen=True, slots=True)
class SignalEvent:
    """A signal together with the decoder state reported alongside it."""

    signal: Signal
    ready_state: Optional[int] = None
    paused: bool = False
    seeking: bool = False
    position: Optional[float] = None


@dataclass(slots=True)
class StartupRecord:
    """When startup was requested and when the first frame arrived."""

    requested_at: Optional[float] = None
    first_frame_at: Optional[float] = None

    @property
    def startup_time_seconds(self) -> Optional[float]:
        if self.requested_at is None or self.first_frame_at is None:
            return None
        return max(0.0, self.first_frame_at - self.requested_at)


@dataclass(slots=True)
class StallInterval:
    """A span of time during which playback was not advancing."""

    kind: StallKind
    start: float
    end: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.end is None

    @property
    def duration(self) -> float:
        if self.end is None:
            return 0.0
        return max(0.0, self.end - self.start)

    def duration_at(self, now: float) -> float:
        end = now if self.end is None else self.end
        return max(0.0, end - self.start)


_INTERVAL_FOR_STATE: dict[PlaybackState, Optional[StallKind]] = {
    PlaybackState.PLAYING: None,
    PlaybackState.STALLED: StallKind.REBUFFER,
    PlaybackState.PAUSED: StallKind.PAUSE,
    PlaybackState.SEEKING: StallKind.SEEK,
    PlaybackState.HIDDEN: StallKind.HIDDEN,
}


class StallClassifier:
    """Turn raw decoder signals into exclusive playback states.

    Signals are applied strictly in delivery order through a table keyed by
    ``(state, signal)``. Pairs absent from the table leave the machine
    untouched, which is how stalls during startup, pauses and seeks are kept
    out of the rebuffer counters.
    """

    def __init__(
        self,
        clock: Clock,
        watch_time: WatchTimeAccumulator,
        debouncer: RebufferDebouncer,
        *,
        history_capacity: int = 100,
    ) -> None:
        self._clock = clock
        self._watch_time = watch_time
        self._debouncer = debouncer
        self.history: Deque[StallInterval] = deque(maxlen=history_capacity)
        self._reset_state()

        starting = PlaybackState.STARTING
        playing = PlaybackState.PLAYING
        stalled = PlaybackState.STALLED
        paused = PlaybackState.PAUSED
        seeking = PlaybackState.SEEKING
        hidden = PlaybackState.HIDDEN
        self._transitions: dict[
            tuple[PlaybackState, Signal], Callable[[SignalEvent], None]
        ] = {
            (starting, Signal.STARTUP_BEGIN): self._begin_startup,
            (starting, Signal.PLAYING): self._complete_startup,
            (starting, Signal.WAITING): self._ignore_stall,
            (starting, Signal.STALLED): self._ignore_stall,
            (playing, Signal.WAITING): self._stall,
            (playing, Signal.STALLED): self._stall,
            (playing, Signal.PAUSE): self._pause,
            (playing, Signal.SEEKING): self._seek,
            (playing, Signal.HIDDEN): self._hide,
            (stalled, Signal.PLAYING): self._recover,
            (stalled, Signal.TIMEUPDATE): self._recover_on_progress,
            (stalled, Signal.PAUSE): self._pause,
            (stalled, Signal.SEEKING): self._seek,
            (stalled, Signal.HIDDEN): self._hide,
            (paused, Signal.PLAY): self._play,
            (paused, Signal.PLAYING): self._play,
            (paused, Signal.SEEKING): self._seek,
            (paused, Signal.HIDDEN): self._hide,
            (paused, Signal.WAITING): self._ignore_stall,
            (paused, Signal.STALLED): self._ignore_stall,
            (seeking, Signal.SEEKED): self._finish_seek,
            (seeking, Signal.PAUSE): self._pause_while_seeking,
            (seeking, Signal.PLAY): self._play_while_seeking,
            (seeking, Signal.HIDDEN): self._hide,
            (seeking, Signal.WAITING): self._ignore_stall,
            (seeking, Signal.STALLED): self._ignore_stall,
            (hidden, Signal.VISIBLE): self._show,
            (hidden, Signal.PAUSE): self._pause_while_hidden,
            (hidden, Signal.PLAY): self._play_while_hidden,
            (hidden, Signal.SEEKING): self._seek_while_hidden,
            (hidden, Signal.SEEKED): self._seeked_while_hidden,
            (hidden, Signal.WAITING): self._ignore_stall,
            (hidden, Signal.STALLED): self._ignore_stall,
        }

    def _reset_state(self) -> None:
        self.state = PlaybackState.STARTING
        self.current: Optional[StallInterval] = None
        self.startup = StartupRecord()
        self._seek_return = PlaybackState.PLAYING
        self._hidden_return = PlaybackState.PLAYING
        self._last_position: Optional[float] = None
        self._progressed = False

    @property
    def startup_complete(self) -> bool:
        return self.startup.first_frame_at is not None

    @property
    def startup_time(self) -> Optional[float]:
        """Seconds from the startup request to the first frame, if known."""

        return self.startup.startup_time_seconds

    def handle(self, event: SignalEvent) -> PlaybackState:
        """Apply ``event`` and return the resulting state."""

        if event.signal is Signal.TIMEUPDATE:
            self._track_position(event.position)
        handler = self._transitions.get((self.state, event.signal))
        if handler is None:
            if event.signal is Signal.TIMEUPDATE:
                return self.state
            log.debug(
                "No transition for %s in state %s", event.signal.value, self.state.value
            )
            return self.state
        handler(event)
        return self.state

    def _track_position(self, position: Optional[float]) -> None:
        if position is None:
            self._progressed = False
            return
        value = coerce_finite(position)
        previous = self._last_position
        self._progressed = previous is not None and value > previous
        self._last_position = value

    def _enter(self, state: PlaybackState) -> None:
        now = self._clock.now()
        previous = self.state
        kind = _INTERVAL_FOR_STATE.get(state)
        opened = StallInterval(kind=kind, start=now) if kind is not None else None
        if opened is not None and kind is StallKind.REBUFFER:
            # Arm the debounce check first so a scheduler failure leaves the
            # machine in its previous state.
            self._debouncer.track(opened)
        if previous is PlaybackState.PLAYING:
            self._watch_time.checkpoint()
        self._close_current(now)
        self.state = state
        self.current = opened
        if state is PlaybackState.PLAYING:
            self._watch_time.resume()
        log.debug("Playback state %s -> %s", previous.value, state.value)

    def _close_current(self, now: float) -> None:
        interval = self.current
        if interval is None:
            return
        interval.end = now
        self.current = None
        self.history.append(interval)
        if interval.kind is StallKind.REBUFFER:
            self._debouncer.close(interval)

    # Transition handlers -------------------------------------------------

    def _begin_startup(self, event: SignalEvent) -> None:
        if self.startup.requested_at is not None:
            return
        now = self._clock.now()
        self.startup.requested_at = now
        self.current = StallInterval(kind=StallKind.STARTUP, start=now)
        log.debug("Startup measurement started")

    def _complete_startup(self, event: SignalEvent) -> None:
        self.startup.first_frame_at = self._clock.now()
        self._enter(PlaybackState.PLAYING)
        startup = self.startup_time
        if startup is not None:
            log.info("First frame after %.3fs", startup)
        else:
            log.info("First frame rendered; startup complete")

    def _ignore_stall(self, event: SignalEvent) -> None:
        log.debug(
            "Ignoring %s while %s", event.signal.value, self.state.value
        )

    def _stall(self, event: SignalEvent) -> None:
        if event.paused or event.seeking:
            log.debug("Ignoring %s during pause/seek", event.signal.value)
            return
        if event.ready_state is not None and event.ready_state >= HAVE_FUTURE_DATA:
            log.debug(
                "Ignoring %s with sufficient data (readyState %s)",
                event.signal.value,
                event.ready_state,
            )
            return
        self._enter(PlaybackState.STALLED)

    def _recover(self, event: SignalEvent) -> None:
        self._enter(PlaybackState.PLAYING)

    def _recover_on_progress(self, event: SignalEvent) -> None:
        if self._progressed:
            log.debug("Playback progressed during stall; ending it")
            self._enter(PlaybackState.PLAYING)

    def _pause(self, event: SignalEvent) -> None:
        self._enter(PlaybackState.PAUSED)

    def _play(self, event: SignalEvent) -> None:
        self._enter(PlaybackState.PLAYING)

    def _seek(self, event: SignalEvent) -> None:
        if self.state is PlaybackState.PAUSED:
            self._seek_return = PlaybackState.PAUSED
        else:
            self._seek_return = PlaybackState.PLAYING
        self._enter(PlaybackState.SEEKING)

    def _finish_seek(self, event: SignalEvent) -> None:
        self._enter(self._seek_return)

    def _pause_while_seeking(self, event: SignalEvent) -> None:
        self._seek_return = PlaybackState.PAUSED

    def _play_while_seeking(self, event: SignalEvent) -> None:
        self._seek_return = PlaybackState.PLAYING

    def _hide(self, event: SignalEvent) -> None:
        if self.state is PlaybackState.STALLED:
            self._hidden_return = PlaybackState.PLAYING
        else:
            self._hidden_return = self.state
        self._enter(PlaybackState.HIDDEN)

    def _show(self, event: SignalEvent) -> None:
        self._enter(self._hidden_return)

    def _pause_while_hidden(self, event: SignalEvent) -> None:
        if self._hidden_return is PlaybackState.SEEKING:
            self._seek_return = PlaybackState.PAUSED
        else:
            self._hidden_return = PlaybackState.PAUSED

    def _play_while_hidden(self, event: SignalEvent) -> None:
        if self._hidden_return is PlaybackState.SEEKING:
            self._seek_return = PlaybackState.PLAYING
        else:
            self._hidden_return = PlaybackState.PLAYING

    def _seek_while_hidden(self, event: SignalEvent) -> None:
        if self._hidden_return is not PlaybackState.SEEKING:
            self._seek_return = self._hidden_return
            self._hidden_return = PlaybackState.SEEKING

    def _seeked_while_hidden(self, event: SignalEvent) -> None:
        if self._hidden_return is PlaybackState.SEEKING:
            self._hidden_return = self._seek_return

    def reset(self) -> None:
        """Return to the initial state and forget all intervals."""

        self._reset_state()
        self.history.clear()


__all__ = [
    "HAVE_FUTURE_DATA",
    "PlaybackState",
    "Signal",
    "SignalEvent",
    "StallClassifier",
    "StallInterval",
    "StallKind",
    "StartupRecord",
]
