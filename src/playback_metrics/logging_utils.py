"""Logging setup shared by the engine, replay and dashboard."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

__all__ = ["configure_logging", "get_log_file_path", "get_logger"]

_ENV_LEVEL = "PLAYBACK_METRICS_LOG_LEVEL"
_ENV_FILE = "PLAYBACK_METRICS_LOG_FILE"
_LOGGER_NAME = "playback_metrics"
_FORMATTER = logging.Formatter(
    fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _coerce_level(value: str) -> int:
    """Map a level name or number to a logging level, falling back to INFO."""

    text = value.strip()
    if text.isdigit():
        number = int(text)
        return number if number <= logging.CRITICAL else logging.INFO
    resolved = logging.getLevelName(text.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    *,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Set up the ``playback_metrics`` logger and return it.

    The first call attaches a stderr handler and, if ``log_file`` or
    ``PLAYBACK_METRICS_LOG_FILE`` is set, a file handler. Later calls change
    the level, and swap the file handler only when ``log_file`` is given.
    """

    logger = logging.getLogger(_LOGGER_NAME)
    first_call = not getattr(configure_logging, "_configured", False)

    requested = level if level is not None else os.getenv(_ENV_LEVEL)
    if requested:
        log_level = _coerce_level(requested)
    elif first_call:
        log_level = logging.INFO
    else:
        log_level = getattr(configure_logging, "_level", logger.level or logging.INFO)

    destination = log_file
    if first_call:
        logger.propagate = False
        console = logging.StreamHandler()
        console.setFormatter(_FORMATTER)
        logger.addHandler(console)
        configure_logging._stream_handler = console  # type: ignore[attr-defined]
        configure_logging._configured = True  # type: ignore[attr-defined]
        if destination is None:
            destination = os.getenv(_ENV_FILE)

    if first_call or log_file is not None:
        previous: Optional[logging.Handler] = getattr(configure_logging, "_file_handler", None)
        if previous is not None:
            logger.removeHandler(previous)
            previous.close()
        configure_logging._file_handler = None  # type: ignore[attr-defined]
        configure_logging._log_path = None  # type: ignore[attr-defined]
        if destination:
            path = Path(destination).expanduser()
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(path, encoding="utf8")
            except OSError:
                logger.warning("Could not open log file %s; logging to stderr only", path)
            else:
                file_handler.setFormatter(_FORMATTER)
                logger.addHandler(file_handler)
                configure_logging._file_handler = file_handler  # type: ignore[attr-defined]
                configure_logging._log_path = path  # type: ignore[attr-defined]

    logger.setLevel(log_level)
    for handler in logger.handlers:
        handler.setLevel(log_level)
    configure_logging._level = log_level  # type: ignore[attr-defined]
    return logger


def get_log_file_path() -> Optional[Path]:
    """Return where log records are written, or ``None`` without a log file."""

    return getattr(configure_logging, "_log_path", None)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return the package logger or a child of it, configuring on first use."""

    root = configure_logging()
    if not name:
        return root
    prefix = _LOGGER_NAME + "."
    if name == _LOGGER_NAME or name.startswith(prefix):
        return logging.getLogger(name)
    return logging.getLogger(prefix + name)
