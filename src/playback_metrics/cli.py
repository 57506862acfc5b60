"""Command line entry point for playback metrics."""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Iterable, Optional

from rich.console import Console
from rich.table import Table

from .config import CONFIG_PATH, EngineConfig, load_config
from .dashboard import DashboardApp
from .logging_utils import configure_logging, get_logger
from .replay import ReplayError, load_signal_log, replay_simulated
from .report import build_summary
from .stats import MetricsSnapshot

log = get_logger(__name__)

__version__ = "0.1.0"


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Replay playback signals and report startup, rebuffering, bitrate and data metrics"
    )
    parser.add_argument("signal_log", type=Path, help="JSON-lines file of recorded playback signals")
    parser.add_argument(
        "--config",
        type=Path,
        default=CONFIG_PATH,
        help="Path to configuration file (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override PLAYBACK_METRICS_LOG_LEVEL for this invocation",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Write logs to this file instead of PLAYBACK_METRICS_LOG_FILE",
    )
    parser.add_argument(
        "--min-rebuffer-ms",
        type=float,
        default=None,
        help="Ignore stalls shorter than this many milliseconds (overrides the config file)",
    )
    parser.add_argument("--stream", default=None, help="Stream identifier to label the session with")
    parser.add_argument("--live", action="store_true", help="Mark the session as a live stream")
    parser.add_argument(
        "--tui",
        action="store_true",
        help="Replay in real time inside the Textual dashboard instead of printing a summary",
    )
    parser.add_argument(
        "--speed",
        type=float,
        default=1.0,
        help="Playback speed factor for --tui replays (default: %(default)s)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def build_metrics_table(snapshot: MetricsSnapshot) -> Table:
    table = Table(title="Playback metrics", show_header=True)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    startup = "N/A" if snapshot.startup_time_s is None else f"{snapshot.startup_time_s:.2f} s"
    rows = [
        ("Final state", snapshot.state),
        ("Startup time", startup),
        ("Watch time", f"{snapshot.watch_time_s:.2f} s"),
        ("Rebuffer count", str(snapshot.rebuffer_count)),
        ("Rebuffer duration", f"{snapshot.rebuffer_duration_s:.2f} s"),
        ("Rebuffer ratio", f"{snapshot.rebuffer_ratio_pct:.2f} %"),
        ("Current bitrate", f"{snapshot.current_bitrate_kbps:.0f} kbps"),
        ("Average bitrate", f"{snapshot.avg_bitrate_kbps:.0f} kbps"),
        ("Current bandwidth", f"{snapshot.current_bandwidth_kbps:.0f} kbps"),
        ("Average bandwidth", f"{snapshot.avg_bandwidth_kbps:.0f} kbps"),
        ("Total data", f"{snapshot.total_data_gb:.3f} GB"),
        ("Data rate", f"{snapshot.data_rate_MBps:.2f} MB/s"),
        ("Data efficiency", f"{snapshot.data_efficiency_MBpermin:.2f} MB/min"),
        ("Errors", str(snapshot.error_count)),
        ("Error rate", f"{snapshot.error_pct:.2f} %"),
    ]
    for label, value in rows:
        table.add_row(label, value)
    return table


def build_summary_table(snapshot: MetricsSnapshot) -> Table:
    summary = build_summary(snapshot)
    table = Table(title="Session summary", show_header=False)
    table.add_column("Item")
    table.add_column("Assessment")
    table.add_row("Quality score", str(summary.score))
    table.add_row("Startup grade", summary.startup_grade)
    table.add_row("Rebuffering grade", summary.rebuffering_grade)
    table.add_row("Bitrate stability", summary.bitrate_stability)
    for recommendation in summary.recommendations:
        table.add_row("Recommendation", recommendation)
    return table


def _effective_config(args: argparse.Namespace) -> EngineConfig:
    config = load_config(args.config)
    if args.min_rebuffer_ms is not None:
        if args.min_rebuffer_ms > 0:
            config.min_rebuffer_duration_ms = args.min_rebuffer_ms
        else:
            log.warning("Ignoring non-positive --min-rebuffer-ms %s", args.min_rebuffer_ms)
    return config


def main(argv: Iterable[str] | None = None, *, console: Optional[Console] = None) -> None:
    args = parse_args(argv)
    configure_logging(
        level=args.log_level,
        log_file=str(args.log_file) if args.log_file is not None else None,
    )
    output = console or Console()
    config = _effective_config(args)
    try:
        signals = load_signal_log(args.signal_log)
    except FileNotFoundError:
        output.print(f"[red]Signal log not found:[/] {args.signal_log}")
        raise SystemExit(2) from None
    except ReplayError as exc:
        output.print(f"[red]Invalid signal log {args.signal_log}:[/] {exc}")
        raise SystemExit(2) from None

    if args.tui:
        if args.speed <= 0:
            output.print("[red]--speed must be positive[/]")
            raise SystemExit(2)
        app = DashboardApp(
            config, signals, speed=args.speed, stream_id=args.stream, is_live=args.live
        )
        log.info("Launching Textual dashboard")
        try:
            app.run()
        except KeyboardInterrupt:
            log.info("Keyboard interrupt received; exiting dashboard")
            raise SystemExit(130) from None
        return

    engine = replay_simulated(signals, config, stream_id=args.stream, is_live=args.live)
    snapshot = engine.snapshot()
    output.print(build_metrics_table(snapshot))
    output.print(build_summary_table(snapshot))


if __name__ == "__main__":  # pragma: no cover
    main()
