"""Playback error accounting by category."""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional

from .clock import Clock
from .logging_utils import get_logger

log = get_logger(__name__)

ERROR_TYPES: tuple[str, ...] = ("network", "media", "mux", "other")

# hls.js reports ErrorTypes as e.g. "networkError".
_TYPE_ALIASES: dict[str, str] = {
    "networkerror": "network",
    "mediaerror": "media",
    "muxerror": "mux",
}


def normalize_error_type(value: object) -> str:
    name = str(value or "").strip().lower().replace("_", "").replace("-", "")
    name = _TYPE_ALIASES.get(name, name)
    return name if name in ERROR_TYPES else "other"


@dataclass(frozen=True, slots=True)
class PlaybackError:
    """A decoder or network failure reported by the streaming library."""

    at: float
    error_type: str
    message: str
    description: Optional[str] = None
    fatal: bool = False


@dataclass(slots=True)
class ErrorLedger:
    count: int = 0
    fatal_count: int = 0
    by_type: dict[str, int] = field(default_factory=lambda: dict.fromkeys(ERROR_TYPES, 0))


class ErrorTracker:
    """Count errors per category and keep a bounded history of them."""

    def __init__(self, clock: Clock, *, history_capacity: int = 100) -> None:
        self._clock = clock
        self.ledger = ErrorLedger()
        self.history: Deque[PlaybackError] = deque(maxlen=history_capacity)

    @property
    def last_error(self) -> Optional[PlaybackError]:
        return self.history[-1] if self.history else None

    def record(
        self,
        error_type: object = "other",
        message: Optional[str] = None,
        description: Optional[str] = None,
        fatal: bool = False,
    ) -> PlaybackError:
        category = normalize_error_type(error_type)
        error = PlaybackError(
            at=self._clock.now(),
            error_type=category,
            message=message or "Unknown playback error",
            description=description,
            fatal=bool(fatal),
        )
        self.ledger.count += 1
        self.ledger.by_type[category] += 1
        if error.fatal:
            self.ledger.fatal_count += 1
        self.history.append(error)
        log.warning(
            "Playback error (%s%s): %s",
            category,
            ", fatal" if error.fatal else "",
            error.message,
        )
        return error

    def error_percentage(self, total_requests: int) -> float:
        """Return errors as a percentage of requests (0 without requests)."""

        if total_requests <= 0:
            return 0.0
        return self.ledger.count / total_requests * 100.0

    def reset(self) -> None:
        self.ledger = ErrorLedger()
        self.history.clear()


__all__ = [
    "ERROR_TYPES",
    "ErrorLedger",
    "ErrorTracker",
    "PlaybackError",
    "normalize_error_type",
]
