"""Read model combining every ledger into one metrics snapshot."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Optional

from .units import bps_to_kbps

if TYPE_CHECKING:  # pragma: no cover - only for typing
    from .engine import PlaybackEngine


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    """Point-in-time view of the playback metrics for a session."""

    rebuffer_count: int = 0
    rebuffer_duration_s: float = 0.0
    rebuffer_ratio_pct: float = 0.0
    watch_time_s: float = 0.0
    current_bitrate_kbps: float = 0.0
    avg_bitrate_kbps: float = 0.0
    current_bandwidth_kbps: float = 0.0
    total_data_gb: float = 0.0
    data_rate_MBps: float = 0.0
    data_efficiency_MBpermin: float = 0.0
    avg_bandwidth_kbps: float = 0.0
    error_count: int = 0
    error_pct: float = 0.0
    startup_time_s: Optional[float] = None
    state: str = "starting"
    bitrate_changes: int = 0
    session_id: Optional[str] = None
    stream_id: Optional[str] = None
    is_live: bool = False
    taken_at: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def rebuffer_ratio(rebuffer_seconds: float, watch_seconds: float) -> float:
    """Return rebuffer time as a percentage of watch time (0 without watch time)."""

    if watch_seconds <= 0:
        return 0.0
    return rebuffer_seconds / watch_seconds * 100.0


class SnapshotStore:
    """Compute snapshots from the engine's ledgers on demand.

    :meth:`snapshot` never mutates engine state, so it may be called between
    any two events. :attr:`latest` holds the snapshot taken by the most
    recent heartbeat for consumers that only want to poll.
    """

    __slots__ = ("_engine", "latest")

    def __init__(self, engine: "PlaybackEngine") -> None:
        self._engine = engine
        self.latest: MetricsSnapshot = MetricsSnapshot()

    def snapshot(self) -> MetricsSnapshot:
        """Return the metrics derived from current ledger state."""

        engine = self._engine
        now = engine.clock.now()
        record = engine.debouncer.record
        watch_seconds = engine.watch_time.read()
        data = engine.data_usage
        session = engine.session
        return MetricsSnapshot(
            rebuffer_count=record.count,
            rebuffer_duration_s=record.total_duration_seconds,
            rebuffer_ratio_pct=rebuffer_ratio(record.total_duration_seconds, watch_seconds),
            watch_time_s=watch_seconds,
            current_bitrate_kbps=bps_to_kbps(engine.bitrate.current),
            avg_bitrate_kbps=bps_to_kbps(engine.bitrate.average_at(now)),
            current_bandwidth_kbps=bps_to_kbps(data.current_bandwidth_bps),
            total_data_gb=data.total_data_gb,
            data_rate_MBps=data.data_rate,
            data_efficiency_MBpermin=data.data_efficiency,
            avg_bandwidth_kbps=bps_to_kbps(data.bandwidth.average_at(now)),
            error_count=engine.errors.ledger.count,
            error_pct=engine.errors.error_percentage(data.ledger.request_count),
            startup_time_s=engine.classifier.startup_time,
            state=engine.classifier.state.value,
            bitrate_changes=len(engine.bitrate_history),
            session_id=session.session_id,
            stream_id=session.stream_id,
            is_live=session.is_live,
            taken_at=now,
        )

    def refresh(self) -> MetricsSnapshot:
        """Take a snapshot and remember it as :attr:`latest`."""

        self.latest = self.snapshot()
        return self.latest

    def reset(self) -> None:
        self.latest = MetricsSnapshot()


__all__ = ["MetricsSnapshot", "SnapshotStore", "rebuffer_ratio"]
