from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Sequence

from usage_sentinel.core.errors import FetchError
from usage_sentinel.core.notifications.delivery import DeliveryError
from usage_sentinel.core.sources.base import UsageSource
from usage_sentinel.core.usage.forecast import linear_forecast
from usage_sentinel.core.usage.types import ForecastResult, UsageResult, UsageSnapshot

BASE_TIME = datetime(2026, 3, 10, 12, 0, 0)


def usage(percent: float, limit: float = 100.0) -> UsageResult:
    return UsageResult(remaining=limit * percent / 100.0, limit=limit)


def snapshot(percent: float, *, minutes_ago: float, now: datetime = BASE_TIME) -> UsageSnapshot:
    return UsageSnapshot(timestamp=now - timedelta(minutes=minutes_ago), usage=usage(percent))


class FakeSource(UsageSource):
    """Source whose readings are scripted; a queued exception is raised instead of returned."""

    requirements = "Nothing to install."

    def __init__(self, name: str, readings: Sequence[UsageResult | Exception] = ()) -> None:
        self.name = name
        self.readings: list[UsageResult | Exception] = list(readings)
        self.gate: asyncio.Event | None = None
        self.calls = 0

    async def fetch_usage(self) -> UsageResult:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if not self.readings:
            raise FetchError(self.name, "no reading scripted")
        reading = self.readings.pop(0)
        if isinstance(reading, Exception):
            raise reading
        return reading

    def forecast(
        self,
        current: UsageResult,
        history: Sequence[UsageSnapshot],
        *,
        now: datetime,
    ) -> ForecastResult | None:
        return linear_forecast(self.name, current, history, rate_percent_per_hour=10.0, now=now)


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = fail

    async def notify(self, title: str, body: str) -> None:
        if self.fail:
            raise DeliveryError("delivery refused")
        self.sent.append((title, body))


class Clock:
    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now
