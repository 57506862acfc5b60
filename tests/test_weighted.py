from __future__ import annotations

import math

import pytest

from playback_metrics.weighted import WeightedAverage


def test_average_is_zero_without_samples() -> None:
    average = WeightedAverage()
    assert average.average == 0.0
    assert average.average_at(10.0) == 0.0
    assert average.current == 0.0


def test_constant_value_reads_exactly() -> None:
    average = WeightedAverage()
    average.update(1500.0, at=0.0)
    assert average.average_at(7.0) == 1500.0
    average.tick(7.0)
    assert average.average == 1500.0


def test_time_weighting_of_two_levels() -> None:
    average = WeightedAverage()
    average.update(1000.0, at=0.0)
    average.update(2000.0, at=10.0)
    assert average.average_at(20.0) == pytest.approx(1500.0)


def test_long_held_value_outweighs_frequent_samples() -> None:
    average = WeightedAverage()
    average.update(3000.0, at=0.0)
    for second in range(1, 11):
        average.update(1000.0, at=9.0 + second * 0.1)
    # 3000 held for 9.1s, then 1000 for 0.9s
    assert average.average_at(10.0) == pytest.approx((3000 * 9.1 + 1000 * 0.9) / 10.0)


def test_same_timestamp_keeps_only_second_value() -> None:
    average = WeightedAverage()
    average.update(1000.0, at=5.0)
    average.update(4000.0, at=5.0)
    assert average.series.total_time == 0.0
    assert average.current == 4000.0
    assert average.average_at(6.0) == pytest.approx(4000.0)


def test_tick_reanchors_and_is_idempotent() -> None:
    average = WeightedAverage()
    average.update(800.0, at=0.0)
    average.tick(2.0)
    average.tick(2.0)
    assert average.series.total_time == pytest.approx(2.0)
    assert average.series.weighted_sum == pytest.approx(1600.0)
    assert average.series.last_time == 2.0


def test_tick_before_first_value_does_nothing() -> None:
    average = WeightedAverage()
    average.tick(3.0)
    assert average.series.last_time is None
    assert average.series.total_time == 0.0


def test_clock_regression_contributes_nothing() -> None:
    average = WeightedAverage()
    average.update(1000.0, at=10.0)
    average.update(2000.0, at=8.0)
    assert average.series.total_time == 0.0
    assert average.series.weighted_sum == 0.0


def test_non_finite_values_are_coerced() -> None:
    average = WeightedAverage()
    average.update(math.nan, at=0.0)
    average.update(1000.0, at=1.0)
    assert average.series.weighted_sum == 0.0
    assert average.average_at(2.0) == pytest.approx(500.0)
    assert math.isfinite(average.average_at(math.inf))


def test_reset() -> None:
    average = WeightedAverage()
    average.update(1000.0, at=0.0)
    average.tick(1.0)
    average.reset()
    assert average.average == 0.0
    assert average.series.last_value is None
