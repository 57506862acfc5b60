"""Textual dashboard that polls the metrics engine."""
from __future__ import annotations

import asyncio
from typing import Optional, Sequence

try:
    from textual.app import App, ComposeResult
    from textual.binding import Binding
    from textual.reactive import reactive
    from textual.widgets import Footer, Header, Static
except ModuleNotFoundError as exc:  # pragma: no cover - dependency guard
    raise ModuleNotFoundError(
        "The 'textual' package is required for the dashboard. "
        "Install dependencies with 'pip install -e .[test]' or 'pip install playback-metrics'."
    ) from exc

from rich.markup import escape

from .config import EngineConfig
from .engine import PlaybackEngine
from .logging_utils import get_logger
from .replay import RecordedSignal, replay_realtime
from .report import build_summary
from .stats import MetricsSnapshot

log = get_logger(__name__)

STATE_COLORS: dict[str, str] = {
    "starting": "yellow",
    "playing": "green",
    "stalled": "red",
    "paused": "cyan",
    "seeking": "magenta",
    "hidden": "bright_black",
}


def _format_kbps(value: float) -> str:
    """Render a kbps value in Mbps or kbps."""

    if value <= 0:
        return "–"
    if value >= 1000:
        return f"{value / 1000:.2f} Mbps"
    return f"{value:.0f} kbps"


def _format_seconds(value: Optional[float]) -> str:
    if value is None:
        return "–"
    minutes, seconds = divmod(value, 60)
    if minutes:
        return f"{int(minutes)}m {seconds:04.1f}s"
    return f"{seconds:.2f}s"


def _format_gigabytes(value: float) -> str:
    if value <= 0:
        return "0 MB"
    if value < 1:
        return f"{value * 1024:.1f} MB"
    return f"{value:.3f} GB"


def format_snapshot(snapshot: MetricsSnapshot) -> list[str]:
    """Return markup lines describing ``snapshot``."""

    color = STATE_COLORS.get(snapshot.state, "white")
    lines = [f"State: [{color}]{snapshot.state}[/]"]
    if snapshot.stream_id:
        kind = "live" if snapshot.is_live else "VOD"
        lines.append(f"Stream: {escape(snapshot.stream_id)} ({kind})")
    lines.append(f"Startup: {_format_seconds(snapshot.startup_time_s)}")
    lines.append(f"Watch time: {_format_seconds(snapshot.watch_time_s)}")
    lines.append(
        f"Rebuffering: {snapshot.rebuffer_count} event(s) • "
        f"{snapshot.rebuffer_duration_s:.2f}s • {snapshot.rebuffer_ratio_pct:.2f}%"
    )
    lines.append(
        f"Bitrate: Live {_format_kbps(snapshot.current_bitrate_kbps)} • "
        f"Avg {_format_kbps(snapshot.avg_bitrate_kbps)}"
    )
    lines.append(
        f"Bandwidth: {_format_kbps(snapshot.current_bandwidth_kbps)} • "
        f"Avg {_format_kbps(snapshot.avg_bandwidth_kbps)}"
    )
    lines.append(f"Errors: {snapshot.error_count} • {snapshot.error_pct:.2f}% of requests")
    lines.append(
        f"Data: {_format_gigabytes(snapshot.total_data_gb)} • "
        f"{snapshot.data_rate_MBps:.2f} MB/s • "
        f"{snapshot.data_efficiency_MBpermin:.1f} MB/min"
    )
    summary = build_summary(snapshot)
    lines.append(
        f"Score: {summary.score} (startup {summary.startup_grade}, "
        f"rebuffering {summary.rebuffering_grade}, bitrate {summary.bitrate_stability})"
    )
    return lines


class MetricsPanel(Static):
    """Render the most recent metrics snapshot."""

    snapshot: reactive[Optional[MetricsSnapshot]] = reactive(None)

    def watch_snapshot(self, _: Optional[MetricsSnapshot]) -> None:
        self._refresh_summary()

    def _refresh_summary(self) -> None:
        lines = ["[b]Playback metrics[/b]"]
        snapshot = self.snapshot
        if snapshot is None:
            lines.append("Waiting for playback signals.")
        else:
            lines.extend(format_snapshot(snapshot))
        self.update("\n".join(lines))


class DashboardApp(App[None]):
    """Replay a signal log in real time and show live metrics."""

    TITLE = "Playback metrics"
    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("r", "reset_session", "Reset session"),
    ]

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        signals: Sequence[RecordedSignal] = (),
        *,
        speed: float = 1.0,
        stream_id: Optional[str] = None,
        is_live: bool = False,
    ) -> None:
        super().__init__()
        self._config = config or EngineConfig()
        self.engine: Optional[PlaybackEngine] = None
        self._signals = list(signals)
        self._speed = speed
        self._stream_id = stream_id
        self._is_live = is_live
        self._replay_task: Optional[asyncio.Task[None]] = None

    @property
    def _engine(self) -> PlaybackEngine:
        if self.engine is None:
            raise RuntimeError("Dashboard engine is created when the app mounts")
        return self.engine

    def compose(self) -> ComposeResult:
        yield Header()
        yield MetricsPanel(id="metrics")
        yield Footer()

    def on_mount(self) -> None:
        # The default scheduler binds to the running loop, which exists from here on.
        self.engine = PlaybackEngine(self._config)
        self._engine.load(self._stream_id, is_live=self._is_live)
        self._engine.start_heartbeat()
        self.set_interval(self._engine.config.heartbeat_interval, self._poll_metrics)
        self._poll_metrics()
        if self._signals:
            self._replay_task = asyncio.get_running_loop().create_task(
                replay_realtime(self._engine, self._signals, speed=self._speed)
            )

    def on_unmount(self) -> None:  # pragma: no cover - requires UI integration
        if self.engine is not None:
            self.engine.stop_heartbeat()
        if self._replay_task is not None:
            self._replay_task.cancel()

    def _poll_metrics(self) -> None:
        panel = self.query_one("#metrics", MetricsPanel)
        panel.snapshot = self._engine.snapshot()

    def action_reset_session(self) -> None:
        log.info("Session reset requested from dashboard")
        if self._replay_task is not None:
            self._replay_task.cancel()
            self._replay_task = None
        self._engine.load(self._stream_id, is_live=self._is_live)
        self._engine.start_heartbeat()
        self._poll_metrics()


__all__ = ["DashboardApp", "MetricsPanel", "format_snapshot"]
