from __future__ import annotations

import asyncio
import math
from typing import Any

import pytest

from playback_metrics.classifier import PlaybackState
from playback_metrics.config import EngineConfig
from playback_metrics.clock import ManualClock
from playback_metrics.engine import PlaybackEngine, normalize_signal_name
from playback_metrics.scheduler import ManualScheduler
from playback_metrics.units import BYTES_PER_MB


def _start_playback(engine: PlaybackEngine, scheduler: ManualScheduler) -> None:
    engine.on_startup_begin()
    scheduler.advance(1.0)
    engine.on_playing()


def test_short_stall_is_not_counted(engine: PlaybackEngine, scheduler: ManualScheduler) -> None:
    _start_playback(engine, scheduler)
    scheduler.advance(5.0)
    engine.on_waiting(ready_state=2)
    assert engine.state is PlaybackState.STALLED
    scheduler.advance(0.1)
    engine.on_playing()
    scheduler.advance(1.0)

    snapshot = engine.snapshot()
    assert snapshot.rebuffer_count == 0
    assert snapshot.rebuffer_duration_s == 0.0
    assert scheduler.pending == 0


def test_long_stall_counts_once_with_full_duration(
    engine: PlaybackEngine, scheduler: ManualScheduler
) -> None:
    _start_playback(engine, scheduler)
    engine.on_waiting(ready_state=1)
    scheduler.advance(0.3)
    assert engine.snapshot().rebuffer_count == 1
    assert engine.snapshot().rebuffer_duration_s == 0.0

    scheduler.advance(0.1)
    engine.on_playing()
    snapshot = engine.snapshot()
    assert snapshot.rebuffer_count == 1
    assert snapshot.rebuffer_duration_s == pytest.approx(0.4)


def test_waiting_while_paused_leaves_playing_state(
    engine: PlaybackEngine, scheduler: ManualScheduler
) -> None:
    _start_playback(engine, scheduler)
    engine.on_waiting(ready_state=1, paused=True)
    scheduler.advance(1.0)
    assert engine.state is PlaybackState.PLAYING
    assert engine.snapshot().rebuffer_count == 0


def test_average_bitrate_is_time_weighted(
    engine: PlaybackEngine, scheduler: ManualScheduler
) -> None:
    engine.on_level_change(1_000_000, level=0, width=1280, height=720)
    scheduler.advance(10.0)
    engine.on_level_change(2_000_000, level=1, width=1920, height=1080)
    scheduler.advance(10.0)

    snapshot = engine.snapshot()
    assert snapshot.current_bitrate_kbps == pytest.approx(2000.0)
    assert snapshot.avg_bitrate_kbps == pytest.approx(1500.0)
    assert snapshot.bitrate_changes == 2
    assert engine.bitrate_history[-1].height == 1080


def test_unusable_bitrate_is_ignored(engine: PlaybackEngine) -> None:
    engine.on_level_change(0)
    engine.on_level_change(math.nan)
    assert engine.snapshot().current_bitrate_kbps == 0.0
    assert not engine.bitrate_history


def test_data_efficiency_uses_watch_time(
    engine: PlaybackEngine, scheduler: ManualScheduler
) -> None:
    engine.on_playing()
    engine.on_transfer_complete(5 * BYTES_PER_MB, 800)
    scheduler.advance(10.0)
    snapshot = engine.snapshot()
    assert snapshot.watch_time_s == pytest.approx(10.0)
    assert snapshot.data_efficiency_MBpermin == pytest.approx(30.0)
    assert snapshot.data_rate_MBps == pytest.approx(0.5)


def test_rebuffer_ratio_against_watch_time(
    engine: PlaybackEngine, scheduler: ManualScheduler
) -> None:
    engine.on_playing()
    scheduler.advance(10.0)
    engine.on_waiting(ready_state=0)
    scheduler.advance(1.0)
    engine.on_playing()
    snapshot = engine.snapshot()
    assert snapshot.watch_time_s == pytest.approx(10.0)
    assert snapshot.rebuffer_ratio_pct == pytest.approx(10.0)


def test_rebuffer_ratio_is_zero_without_watch_time(engine: PlaybackEngine) -> None:
    assert engine.snapshot().rebuffer_ratio_pct == 0.0
    assert engine.snapshot().data_efficiency_MBpermin == 0.0


def test_startup_time_in_snapshot(engine: PlaybackEngine, scheduler: ManualScheduler) -> None:
    engine.on_startup_begin()
    scheduler.advance(2.5)
    engine.on_playing()
    assert engine.snapshot().startup_time_s == pytest.approx(2.5)
    assert engine.snapshot().state == "playing"


def test_snapshot_does_not_mutate_ledgers(
    engine: PlaybackEngine, scheduler: ManualScheduler
) -> None:
    engine.on_playing()
    engine.on_level_change(1_500_000)
    scheduler.advance(3.0)
    first = engine.snapshot()
    second = engine.snapshot()
    assert first == second
    assert engine.bitrate.series.total_time == 0.0
    assert engine.watch_time.ledger.accumulated_seconds == 0.0


def test_reset_cancels_pending_checks(engine: PlaybackEngine, scheduler: ManualScheduler) -> None:
    _start_playback(engine, scheduler)
    engine.on_level_change(3_000_000)
    engine.on_transfer_complete(BYTES_PER_MB, 100)
    engine.on_waiting(ready_state=1)
    engine.reset()
    scheduler.advance(1.0)

    snapshot = engine.snapshot()
    assert scheduler.pending == 0
    assert snapshot.rebuffer_count == 0
    assert snapshot.watch_time_s == 0.0
    assert snapshot.current_bitrate_kbps == 0.0
    assert snapshot.total_data_gb == 0.0
    assert snapshot.state == "starting"
    assert snapshot.startup_time_s is None


def test_load_starts_new_session(engine: PlaybackEngine, scheduler: ManualScheduler) -> None:
    previous = engine.session.session_id
    scheduler.advance(4.0)
    session = engine.load("next-stream", is_live=True)
    assert session.session_id != previous
    assert session.started_at == 4.0
    snapshot = engine.snapshot()
    assert snapshot.stream_id == "next-stream"
    assert snapshot.is_live is True


def test_heartbeat_refreshes_latest_snapshot(
    engine: PlaybackEngine, scheduler: ManualScheduler
) -> None:
    engine.on_level_change(1_000_000)
    engine.start_heartbeat()
    assert scheduler.pending == 1
    scheduler.advance(4.0)
    assert engine.store.latest.taken_at == 4.0
    assert engine.store.latest.avg_bitrate_kbps == pytest.approx(1000.0)
    assert engine.bitrate.series.total_time == pytest.approx(4.0)

    engine.stop_heartbeat()
    assert scheduler.pending == 0


def test_heartbeat_interval_follows_config() -> None:
    clock = ManualClock()
    scheduler = ManualScheduler(clock)
    engine = PlaybackEngine(
        EngineConfig(heartbeat_interval_ms=500), clock=clock, scheduler=scheduler
    )
    engine.start_heartbeat()
    scheduler.advance(1.2)
    assert engine.store.latest.taken_at == 1.0


def test_min_rebuffer_duration_follows_config() -> None:
    clock = ManualClock()
    scheduler = ManualScheduler(clock)
    engine = PlaybackEngine(
        EngineConfig(min_rebuffer_duration_ms=1000), clock=clock, scheduler=scheduler
    )
    engine.on_playing()
    engine.on_waiting(ready_state=1)
    scheduler.advance(0.6)
    engine.on_playing()
    assert engine.snapshot().rebuffer_count == 0


def test_dispatch_accepts_wire_names_and_aliases(
    engine: PlaybackEngine, scheduler: ManualScheduler
) -> None:
    engine.dispatch("playing")
    engine.dispatch("transfer_complete", bytes=BYTES_PER_MB, loadDurationMs=1000)
    engine.dispatch("Waiting", readyState=1)
    assert engine.state is PlaybackState.STALLED
    assert engine.data_usage.ledger.bytes_loaded == BYTES_PER_MB
    engine.dispatch("visibility-change", hidden=True)
    assert engine.state is PlaybackState.HIDDEN


def test_dispatch_ignores_unknown_signal(engine: PlaybackEngine) -> None:
    engine.dispatch("buffer-appended", bytes=10)
    assert engine.state is PlaybackState.STARTING


def test_normalize_signal_name() -> None:
    assert normalize_signal_name(" Level_Change ") == "level-change"


def test_faulty_signal_does_not_stop_engine(
    engine: PlaybackEngine, monkeypatch: pytest.MonkeyPatch
) -> None:
    def explode(*args: Any, **kwargs: Any) -> None:
        raise RuntimeError("boom")

    monkeypatch.setattr(engine.data_usage, "record_transfer", explode)
    engine.on_transfer_complete(1024, 10)
    engine.dispatch("visibility-change")
    engine.on_playing()
    assert engine.state is PlaybackState.PLAYING


def test_non_finite_inputs_do_not_poison_snapshot(
    engine: PlaybackEngine, scheduler: ManualScheduler
) -> None:
    engine.on_playing()
    engine.on_transfer_complete(math.inf, math.nan)
    engine.on_bandwidth_estimate(-math.inf)
    engine.on_timeupdate(math.nan)
    scheduler.advance(1.0)
    for value in engine.snapshot().as_dict().values():
        if isinstance(value, float):
            assert math.isfinite(value)


def test_default_scheduler_requires_running_loop() -> None:
    with pytest.raises(RuntimeError, match="running event loop"):
        PlaybackEngine()


def test_default_scheduler_validates_rebuffers_inside_loop() -> None:
    async def run_session() -> int:
        engine = PlaybackEngine(EngineConfig(min_rebuffer_duration_ms=50))
        engine.on_playing()
        engine.on_waiting(ready_state=1)
        await asyncio.sleep(0.2)
        engine.on_playing()
        return engine.snapshot().rebuffer_count

    assert asyncio.run(run_session()) == 1


def test_reset_keeps_session_origin(engine: PlaybackEngine, scheduler: ManualScheduler) -> None:
    started_at = engine.session.started_at
    scheduler.advance(5.0)
    engine.reset()
    assert engine.session.started_at == started_at
    assert engine.data_usage.session_elapsed() == pytest.approx(5.0)


def test_error_signal_is_counted_against_requests(
    engine: PlaybackEngine, scheduler: ManualScheduler
) -> None:
    for _ in range(4):
        engine.dispatch("transfer-complete", bytes=1024, loadDurationMs=10)
    engine.dispatch("error", type="networkError", details="fragLoadError", fatal=True)

    snapshot = engine.snapshot()
    assert snapshot.error_count == 1
    assert snapshot.error_pct == pytest.approx(25.0)
    last = engine.errors.last_error
    assert last is not None
    assert last.error_type == "network"
    assert last.message == "fragLoadError"
    assert last.fatal is True


def test_reset_clears_errors(engine: PlaybackEngine) -> None:
    engine.on_error("mediaError", "bufferStalledError")
    engine.reset()
    assert engine.snapshot().error_count == 0
    assert engine.errors.last_error is None
