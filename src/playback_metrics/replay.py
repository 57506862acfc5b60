"""Replay recorded playback signals through an engine.

A signal log is JSON lines, one object per signal::

    {"t": 0.0, "signal": "startup-begin"}
    {"t": 0.8, "signal": "playing"}
    {"t": 5.2, "signal": "waiting", "ready_state": 2}
    {"t": 6.1, "signal": "transfer-complete", "bytes": 1048576, "load_duration_ms": 420}

``t`` is in seconds and must not decrease; every other key is passed to
:meth:`PlaybackEngine.dispatch` as the signal payload.
"""
from __future__ import annotations

import asyncio
import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from .clock import ManualClock
from .config import EngineConfig
from .engine import PlaybackEngine
from .logging_utils import get_logger
from .scheduler import ManualScheduler

log = get_logger(__name__)


class ReplayError(ValueError):
    """Raised when a signal log cannot be parsed."""


@dataclass(frozen=True, slots=True)
class RecordedSignal:
    at: float
    name: str
    payload: dict[str, Any] = field(default_factory=dict)


def parse_signal_log(lines: Iterable[str]) -> list[RecordedSignal]:
    signals: list[RecordedSignal] = []
    previous: Optional[float] = None
    for line_number, raw_line in enumerate(lines, start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ReplayError(f"line {line_number}: invalid JSON ({exc.msg})") from exc
        if not isinstance(entry, dict):
            raise ReplayError(f"line {line_number}: expected a JSON object")
        at = entry.pop("t", None)
        name = entry.pop("signal", None)
        if isinstance(at, bool) or not isinstance(at, (int, float)) or not math.isfinite(at):
            raise ReplayError(f"line {line_number}: 't' must be a finite number")
        if not isinstance(name, str) or not name.strip():
            raise ReplayError(f"line {line_number}: 'signal' must be a non-empty string")
        if previous is not None and at < previous:
            raise ReplayError(
                f"line {line_number}: timestamp {at} is earlier than {previous}"
            )
        previous = float(at)
        signals.append(RecordedSignal(at=float(at), name=name, payload=entry))
    return signals


def load_signal_log(path: Path) -> list[RecordedSignal]:
    """Read and parse the signal log at *path*."""

    with path.open("r", encoding="utf8") as handle:
        signals = parse_signal_log(handle)
    log.info("Loaded %d signal(s) from %s", len(signals), path)
    return signals


def replay_simulated(
    signals: Sequence[RecordedSignal],
    config: Optional[EngineConfig] = None,
    *,
    stream_id: Optional[str] = None,
    is_live: bool = False,
    settle: bool = False,
) -> PlaybackEngine:
    """Replay ``signals`` on a simulated clock and return the engine.

    Debounce checks and heartbeats fire at their exact simulated times. With
    ``settle`` the clock is finally advanced past the debounce window so a
    stall still open at the end of the log gets its validation check.
    """

    clock = ManualClock(signals[0].at if signals else 0.0)
    scheduler = ManualScheduler(clock)
    engine = PlaybackEngine(config, clock=clock, scheduler=scheduler)
    engine.load(stream_id, is_live=is_live)
    engine.start_heartbeat()
    for signal in signals:
        scheduler.advance_to(signal.at)
        engine.dispatch(signal.name, **signal.payload)
    if settle:
        scheduler.advance(engine.config.min_rebuffer_duration)
    engine.heartbeat()
    engine.stop_heartbeat()
    return engine


async def replay_realtime(
    engine: PlaybackEngine,
    signals: Sequence[RecordedSignal],
    *,
    speed: float = 1.0,
) -> None:
    """Feed ``signals`` to ``engine`` with their recorded spacing.

    ``speed`` compresses the gaps between signals; the engine's own timers
    keep running in real time.
    """

    if not signals:
        return
    if speed <= 0:
        raise ValueError("speed must be positive")
    loop = asyncio.get_running_loop()
    origin = signals[0].at
    started = loop.time()
    for signal in signals:
        delay = (signal.at - origin) / speed - (loop.time() - started)
        if delay > 0:
            await asyncio.sleep(delay)
        engine.dispatch(signal.name, **signal.payload)
    log.info("Replay finished after %d signal(s)", len(signals))


__all__ = [
    "RecordedSignal",
    "ReplayError",
    "load_signal_log",
    "parse_signal_log",
    "replay_realtime",
    "replay_simulated",
]
