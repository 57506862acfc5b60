"""Quality grading for a finished or in-progress session."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .stats import MetricsSnapshot

STARTUP_GRADES: tuple[tuple[float, str], ...] = ((1.0, "A"), (3.0, "B"), (5.0, "C"))
REBUFFER_GRADES: tuple[tuple[float, str], ...] = ((2.0, "B"), (5.0, "C"))

# (threshold, points) pairs checked from the worst case down.
STARTUP_DEDUCTIONS: tuple[tuple[float, int], ...] = ((5.0, 20), (3.0, 10), (1.0, 5))
REBUFFER_DEDUCTIONS: tuple[tuple[float, int], ...] = ((10.0, 30), (5.0, 20), (2.0, 10))
ERROR_DEDUCTIONS: tuple[tuple[float, int], ...] = ((5.0, 20), (2.0, 10), (0.0, 5))


@dataclass(frozen=True, slots=True)
class SessionSummary:
    score: int
    startup_grade: str
    rebuffering_grade: str
    bitrate_stability: str
    recommendations: list[str] = field(default_factory=list)


def grade_startup(startup_seconds: Optional[float]) -> str:
    if startup_seconds is None:
        return "N/A"
    for limit, grade in STARTUP_GRADES:
        if startup_seconds < limit:
            return grade
    return "D"


def grade_rebuffering(ratio_pct: float) -> str:
    if ratio_pct <= 0:
        return "A"
    for limit, grade in REBUFFER_GRADES:
        if ratio_pct < limit:
            return grade
    return "D"


def assess_bitrate_stability(changes: int) -> str:
    if changes < 5:
        return "Stable"
    if changes < 10:
        return "Moderate"
    return "Variable"


def _deduction(value: float, table: tuple[tuple[float, int], ...]) -> int:
    for limit, points in table:
        if value > limit:
            return points
    return 0


def quality_score(snapshot: MetricsSnapshot) -> int:
    """Score a session from 0 to 100 based on startup time, rebuffering and errors."""

    score = 100
    if snapshot.startup_time_s is not None:
        score -= _deduction(snapshot.startup_time_s, STARTUP_DEDUCTIONS)
    score -= _deduction(snapshot.rebuffer_ratio_pct, REBUFFER_DEDUCTIONS)
    score -= _deduction(snapshot.error_pct, ERROR_DEDUCTIONS)
    return max(0, min(100, score))


def recommendations(snapshot: MetricsSnapshot) -> list[str]:
    advice: list[str] = []
    if snapshot.startup_time_s is not None and snapshot.startup_time_s > 3.0:
        advice.append(
            "Consider optimizing stream startup time - current time exceeds 3 seconds"
        )
    if snapshot.rebuffer_ratio_pct > 5.0:
        advice.append(
            "High rebuffering detected - check network conditions or reduce bitrate"
        )
    if snapshot.error_pct > 2.0:
        advice.append(
            "Error rate is elevated - investigate stream stability and network issues"
        )
    if snapshot.bitrate_changes > 10:
        advice.append(
            "Frequent bitrate changes detected - network conditions may be unstable"
        )
    if not advice:
        advice.append("Stream performance is good - no major issues detected")
    return advice


def build_summary(snapshot: MetricsSnapshot) -> SessionSummary:
    return SessionSummary(
        score=quality_score(snapshot),
        startup_grade=grade_startup(snapshot.startup_time_s),
        rebuffering_grade=grade_rebuffering(snapshot.rebuffer_ratio_pct),
        bitrate_stability=assess_bitrate_stability(snapshot.bitrate_changes),
        recommendations=recommendations(snapshot),
    )


__all__ = [
    "SessionSummary",
    "assess_bitrate_stability",
    "build_summary",
    "grade_rebuffering",
    "grade_startup",
    "quality_score",
    "recommendations",
]
