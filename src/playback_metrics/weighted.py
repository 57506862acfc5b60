"""Time-weighted averaging for values that change at irregular instants."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .units import coerce_finite


@dataclass(slots=True)
class WeightedSeries:
    """Running integral of a piecewise-constant value over time."""

    weighted_sum: float = 0.0
    total_time: float = 0.0
    last_value: Optional[float] = None
    last_time: Optional[float] = None


class WeightedAverage:
    """Average a value by how long each reading was in effect.

    A bitrate held for ten seconds counts ten times as much as one held for
    a second, regardless of how often either was reported.
    """

    __slots__ = ("series",)

    def __init__(self) -> None:
        self.series = WeightedSeries()

    @property
    def current(self) -> float:
        value = self.series.last_value
        return 0.0 if value is None else value

    def _fold(self, at: float) -> None:
        series = self.series
        if series.last_time is None or series.last_value is None:
            return
        span = max(0.0, at - series.last_time)
        series.weighted_sum += series.last_value * span
        series.total_time += span

    def update(self, value: float, at: float) -> None:
        """Record that ``value`` took effect at time ``at``."""

        at = coerce_finite(at)
        self._fold(at)
        self.series.last_value = coerce_finite(value)
        self.series.last_time = at

    def tick(self, at: float) -> None:
        """Fold the span since the last anchor at the current value."""

        if self.series.last_time is None:
            return
        at = coerce_finite(at)
        self._fold(at)
        self.series.last_time = max(at, self.series.last_time)

    @property
    def average(self) -> float:
        series = self.series
        if series.total_time <= 0:
            return 0.0
        return series.weighted_sum / series.total_time

    def average_at(self, at: float) -> float:
        """Return the average as if :meth:`tick` ran at ``at``, without mutating."""

        series = self.series
        weighted_sum = series.weighted_sum
        total_time = series.total_time
        if series.last_time is not None and series.last_value is not None:
            span = max(0.0, coerce_finite(at) - series.last_time)
            weighted_sum += series.last_value * span
            total_time += span
        if total_time <= 0:
            return 0.0
        return weighted_sum / total_time

    def reset(self) -> None:
        self.series = WeightedSeries()


__all__ = ["WeightedAverage", "WeightedSeries"]
