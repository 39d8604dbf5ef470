"""
Error Statistics
===============

Read-only aggregation over a window of the error log.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from .models import ErrorContext, ErrorPattern, Trend


@dataclass
class TrendAnalysis:
    direction: Trend = Trend.STABLE
    hourly_breakdown: Dict[int, int] = field(default_factory=dict)
    peak_hours: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "hourly_breakdown": dict(self.hourly_breakdown),
            "peak_hours": list(self.peak_hours)
        }


@dataclass
class ErrorStatistics:
    """Aggregate view returned by ``get_error_statistics``."""
    total_errors: int
    errors_by_severity: Dict[str, int]
    errors_by_category: Dict[str, int]
    errors_by_component: Dict[str, int]
    resolved_errors: int
    average_resolution_time: float  # milliseconds
    top_error_patterns: List[ErrorPattern]
    trend_analysis: TrendAnalysis

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_errors": self.total_errors,
            "errors_by_severity": self.errors_by_severity,
            "errors_by_category": self.errors_by_category,
            "errors_by_component": self.errors_by_component,
            "resolved_errors": self.resolved_errors,
            "average_resolution_time": self.average_resolution_time,
            "top_error_patterns": [p.to_dict() for p in self.top_error_patterns],
            "trend_analysis": self.trend_analysis.to_dict()
        }


def group_by(errors: Iterable[ErrorContext], field_name: str) -> Dict[str, int]:
    """Count errors by an attribute; enum values are keyed by their value."""
    counts: Counter = Counter()
    for error in errors:
        value = getattr(error, field_name)
        counts[getattr(value, "value", str(value))] += 1
    return dict(counts)


def average_resolution_time(errors: Iterable[ErrorContext]) -> float:
    durations = [e.resolution.duration for e in errors if e.resolved and e.resolution]
    if not durations:
        return 0.0
    return sum(durations) / len(durations)


def top_error_patterns(patterns: Iterable[ErrorPattern], limit: int = 10) -> List[ErrorPattern]:
    return sorted(patterns, key=lambda p: p.frequency, reverse=True)[:limit]


def group_by_hour(errors: Iterable[ErrorContext]) -> Dict[int, int]:
    counts: Counter = Counter(error.timestamp.hour for error in errors)
    return dict(counts)


def trend_direction(hourly: Dict[int, int]) -> Trend:
    """Compare the average of the later half of the hours with the earlier half."""
    hours = sorted(hourly)
    if len(hours) < 2:
        return Trend.STABLE

    middle = len(hours) // 2
    first_avg = sum(hourly[h] for h in hours[:middle]) / middle
    second_avg = sum(hourly[h] for h in hours[middle:]) / (len(hours) - middle)

    if second_avg > first_avg * 1.2:
        return Trend.INCREASING
    if second_avg < first_avg * 0.8:
        return Trend.DECREASING
    return Trend.STABLE


def peak_hours(hourly: Dict[int, int]) -> List[int]:
    """Hours whose count exceeds 1.5 times the mean hourly count."""
    if not hourly:
        return []
    average = sum(hourly.values()) / len(hourly)
    return sorted(hour for hour, count in hourly.items() if count > average * 1.5)


def compute_statistics(errors: List[ErrorContext], patterns: Iterable[ErrorPattern]) -> ErrorStatistics:
    hourly = group_by_hour(errors)

    return ErrorStatistics(
        total_errors=len(errors),
        errors_by_severity=group_by(errors, "severity"),
        errors_by_category=group_by(errors, "category"),
        errors_by_component=group_by(errors, "component"),
        resolved_errors=sum(1 for e in errors if e.resolved),
        average_resolution_time=average_resolution_time(errors),
        top_error_patterns=top_error_patterns(patterns),
        trend_analysis=TrendAnalysis(
            direction=trend_direction(hourly),
            hourly_breakdown=hourly,
            peak_hours=peak_hours(hourly)
        )
    )
