from __future__ import annotations

from typing import Iterable

from usage_sentinel.core.usage.types import UsageResult


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def clamped_percent_remaining(usage: UsageResult) -> float:
    return clamp_percent(usage.percent_remaining)


def average_percent_remaining(results: Iterable[UsageResult]) -> float | None:
    values = [clamped_percent_remaining(result) for result in results]
    if not values:
        return None
    return sum(values) / len(values)


def format_average(value: float | None) -> str:
    if value is None:
        return ""
    return f"{value:.0f}%"
