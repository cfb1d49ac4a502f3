from __future__ import annotations

from datetime import datetime, timezone, tzinfo


def utcnow() -> datetime:
    # Timestamps are kept as "UTC-naive" datetimes (tzinfo stripped) for simplicity with
    # SQLite + SQLAlchemy. Treat any tz-naive timestamp emitted by the app as UTC, and only apply
    # local timezone conversion at the presentation layer.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def month_bounds(now: datetime, tz: tzinfo = timezone.utc) -> tuple[datetime, datetime]:
    """Return the UTC-naive start of the calendar month containing ``now`` in ``tz`` and the start of the next."""
    local = now.replace(tzinfo=timezone.utc).astimezone(tz)
    start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        reset = start.replace(year=start.year + 1, month=1)
    else:
        reset = start.replace(month=start.month + 1)
    return to_utc_naive(start), to_utc_naive(reset)


def format_utc(value: datetime) -> str:
    return f"{to_utc_naive(value):%Y-%m-%d %H:%M} UTC"
