"""Shared fixtures providing a deterministic engine timeline."""
from __future__ import annotations

import logging
from typing import Iterator

import pytest

from playback_metrics import logging_utils
from playback_metrics.clock import ManualClock
from playback_metrics.config import EngineConfig
from playback_metrics.engine import PlaybackEngine
from playback_metrics.scheduler import ManualScheduler


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def fresh_logging(monkeypatch: pytest.MonkeyPatch) -> Iterator[logging.Logger]:
    """Detach the package logger so a test can configure it from scratch."""

    monkeypatch.setenv("PLAYBACK_METRICS_LOG_FILE", "")
    monkeypatch.delenv("PLAYBACK_METRICS_LOG_LEVEL", raising=False)
    logger = logging.getLogger("playback_metrics")
    saved_handlers = list(logger.handlers)
    saved_level = logger.level
    for handler in saved_handlers:
        logger.removeHandler(handler)
    for attribute in ("_file_handler", "_log_path", "_level", "_stream_handler"):
        monkeypatch.delattr(logging_utils.configure_logging, attribute, raising=False)
    monkeypatch.setattr(logging_utils.configure_logging, "_configured", False, raising=False)

    yield logger

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in saved_handlers:
        logger.addHandler(handler)
    logger.setLevel(saved_level)


@pytest.fixture
def engine(
    config: EngineConfig, clock: ManualClock, scheduler: ManualScheduler
) -> PlaybackEngine:
    engine = PlaybackEngine(config, clock=clock, scheduler=scheduler)
    engine.load("test-stream")
    return engine
