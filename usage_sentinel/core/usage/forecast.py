from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Sequence

from usage_sentinel.core.usage import clamp_percent
from usage_sentinel.core.usage.types import ForecastPoint, ForecastResult, UsageResult, UsageSnapshot
from usage_sentinel.core.utils.time import format_utc, month_bounds

MIN_HISTORY_POINTS = 2


def point_count(horizon: timedelta) -> int:
    hours = horizon.total_seconds() / 3600.0
    if hours <= 1:
        return 100
    if hours <= 6:
        return 50
    if hours <= 24:
        return 25
    return 10


def _project(start: datetime, percent: float, rate_per_hour: float, horizon: timedelta) -> list[ForecastPoint]:
    if horizon.total_seconds() <= 0:
        return []
    count = point_count(horizon)
    hours = horizon.total_seconds() / 3600.0
    points: list[ForecastPoint] = []
    for index in range(1, count + 1):
        fraction = index / count
        points.append(
            ForecastPoint(
                timestamp=start + horizon * fraction,
                value=clamp_percent(percent + rate_per_hour * hours * fraction),
            )
        )
    return points


def linear_forecast(
    source_name: str,
    current: UsageResult,
    history: Sequence[UsageSnapshot],
    *,
    rate_percent_per_hour: float,
    now: datetime,
) -> ForecastResult | None:
    """Project a constant regeneration (positive rate) or burn (negative rate) until 100% or 0%."""
    if current.limit <= 0:
        return None
    percent = clamp_percent(current.percent_remaining)
    if rate_percent_per_hour > 0 and percent >= 100.0:
        return ForecastResult(points=[], summary=f"{source_name}: fully charged")
    if rate_percent_per_hour < 0 and percent <= 0.0:
        return ForecastResult(points=[], summary=f"{source_name}: depleted")
    if len(history) < MIN_HISTORY_POINTS or rate_percent_per_hour == 0:
        return None

    target = 100.0 if rate_percent_per_hour > 0 else 0.0
    hours = abs(target - percent) / abs(rate_percent_per_hour)
    horizon = timedelta(hours=hours)
    points = _project(now, percent, rate_percent_per_hour, horizon)
    if points:
        # Pin the last point so float drift never leaves the series short of the target.
        points[-1] = ForecastPoint(timestamp=now + horizon, value=target)
    return ForecastResult(
        points=points,
        summary=f"{source_name}: reaches {target:.0f}% at {format_utc(now + horizon)}",
    )


def calendar_cycle_forecast(
    source_name: str,
    current: UsageResult,
    history: Sequence[UsageSnapshot],
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> ForecastResult | None:
    """Project the empirical burn rate of a quota that resets at the start of every calendar month."""
    if current.limit <= 0 or len(history) < MIN_HISTORY_POINTS:
        return None

    percent = clamp_percent(current.percent_remaining)
    cycle_start, reset_at = month_bounds(now, tz)
    elapsed_hours = max(0.0, (now - cycle_start).total_seconds() / 3600.0)
    burn_per_hour = (100.0 - percent) / elapsed_hours if elapsed_hours > 0 else 0.0
    hours_to_reset = (reset_at - now).total_seconds() / 3600.0

    hours_to_zero: float | None = None
    if burn_per_hour > 0:
        hours_to_zero = percent / burn_per_hour

    horizon_hours = hours_to_reset
    if hours_to_zero is not None and hours_to_zero < hours_to_reset:
        horizon_hours = hours_to_zero

    points = _project(now, percent, -burn_per_hour, timedelta(hours=horizon_hours))
    points.append(ForecastPoint(timestamp=reset_at, value=100.0))

    if hours_to_zero is not None and hours_to_zero < hours_to_reset:
        summary = f"{source_name}: runs out {format_utc(now + timedelta(hours=hours_to_zero))}"
    else:
        left_at_reset = clamp_percent(percent - burn_per_hour * hours_to_reset)
        summary = f"{source_name}: ~{left_at_reset:.0f}% left at reset {format_utc(reset_at)}"
    return ForecastResult(points=points, summary=summary)
