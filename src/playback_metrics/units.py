"""Numeric coercion and unit conversion helpers."""
from __future__ import annotations

import math

BYTES_PER_MB = 1024 * 1024
BYTES_PER_GB = 1024 * 1024 * 1024


def coerce_finite(value: object) -> float:
    """Return ``value`` as a float, or ``0.0`` if it is not a finite number."""

    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def bytes_to_mb(size: float) -> float:
    return size / BYTES_PER_MB


def bytes_to_gb(size: float) -> float:
    return size / BYTES_PER_GB


def bps_to_kbps(bitrate: float) -> float:
    return bitrate / 1000.0


__all__ = [
    "BYTES_PER_GB",
    "BYTES_PER_MB",
    "bps_to_kbps",
    "bytes_to_gb",
    "bytes_to_mb",
    "coerce_finite",
]
