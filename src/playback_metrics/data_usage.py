"""Byte accounting, throughput and bandwidth estimates."""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional

from .clock import Clock
from .logging_utils import get_logger
from .units import bytes_to_gb, bytes_to_mb, coerce_finite
from .weighted import WeightedAverage

log = get_logger(__name__)


@dataclass(slots=True)
class ByteLedger:
    """Bytes delivered by the network layer during the session."""

    bytes_loaded: float = 0.0
    session_elapsed_seconds: float = 0.0
    request_count: int = 0


@dataclass(frozen=True, slots=True)
class TransferRecord:
    """A completed transfer as reported by the network layer."""

    at: float
    size_bytes: float
    load_seconds: float
    throughput_mbps: float


class DataUsageTracker:
    """Cumulative data consumption and bandwidth for one session.

    ``watch_time`` returns the seconds of actual playback so far and is used
    for :attr:`data_efficiency`; ``session_start`` is the wall-clock origin
    for :attr:`data_rate`.
    """

    def __init__(
        self,
        clock: Clock,
        watch_time: Callable[[], float],
        *,
        session_start: Optional[float] = None,
        history_capacity: int = 100,
    ) -> None:
        self._clock = clock
        self._watch_time = watch_time
        self._session_start = clock.now() if session_start is None else session_start
        self.ledger = ByteLedger()
        self.history: Deque[TransferRecord] = deque(maxlen=history_capacity)
        self.bandwidth = WeightedAverage()
        self._transfer_bps = 0.0
        self._external_bps = 0.0

    def reset(self, session_start: Optional[float] = None) -> None:
        self._session_start = self._clock.now() if session_start is None else session_start
        self.ledger = ByteLedger()
        self.history.clear()
        self.bandwidth.reset()
        self._transfer_bps = 0.0
        self._external_bps = 0.0

    def record_transfer(self, size_bytes: float, load_duration_ms: float) -> None:
        """Account for a completed transfer of ``size_bytes``."""

        size = max(0.0, coerce_finite(size_bytes))
        load_seconds = max(0.0, coerce_finite(load_duration_ms) / 1000.0)
        now = self._clock.now()
        self.ledger.bytes_loaded += size
        self.ledger.request_count += 1
        throughput = 0.0
        if load_seconds > 0:
            throughput = bytes_to_mb(size) / load_seconds
            self._transfer_bps = size * 8 / load_seconds
            self._refresh_bandwidth(now)
        self.history.append(
            TransferRecord(
                at=now,
                size_bytes=size,
                load_seconds=load_seconds,
                throughput_mbps=throughput,
            )
        )
        log.debug(
            "Transfer complete: %.2f MB in %.3fs, total %.3f GB",
            bytes_to_mb(size),
            load_seconds,
            bytes_to_gb(self.ledger.bytes_loaded),
        )

    def record_bandwidth_estimate(self, bps: float) -> None:
        """Store the network layer's own bandwidth estimate."""

        self._external_bps = max(0.0, coerce_finite(bps))
        self._refresh_bandwidth(self._clock.now())

    def _refresh_bandwidth(self, now: float) -> None:
        current = self.current_bandwidth_bps
        if current != self.bandwidth.series.last_value:
            self.bandwidth.update(current, now)

    @property
    def current_bandwidth_bps(self) -> float:
        # Prefer the higher of the two estimates so capacity is not under-reported.
        return max(self._transfer_bps, self._external_bps)

    @property
    def total_data_gb(self) -> float:
        return bytes_to_gb(self.ledger.bytes_loaded)

    def session_elapsed(self) -> float:
        return max(0.0, self._clock.now() - self._session_start)

    def refresh(self) -> None:
        """Bring time-derived ledger fields up to date (heartbeat)."""

        now = self._clock.now()
        self.ledger.session_elapsed_seconds = self.session_elapsed()
        self.bandwidth.tick(now)

    @property
    def data_rate(self) -> float:
        """Session throughput in MB/s over wall-clock time."""

        elapsed = self.session_elapsed()
        if elapsed <= 0:
            return 0.0
        return bytes_to_mb(self.ledger.bytes_loaded) / elapsed

    @property
    def data_efficiency(self) -> float:
        """Megabytes consumed per minute of actual playback."""

        watch_minutes = max(0.0, coerce_finite(self._watch_time())) / 60.0
        if watch_minutes <= 0:
            return 0.0
        return bytes_to_mb(self.ledger.bytes_loaded) / watch_minutes


__all__ = ["ByteLedger", "DataUsageTracker", "TransferRecord"]
