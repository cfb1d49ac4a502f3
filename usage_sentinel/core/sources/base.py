from __future__ import annotations

import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Sequence

from usage_sentinel.core.errors import FetchError
from usage_sentinel.core.notifications.definitions import generic_definitions
from usage_sentinel.core.notifications.models import NotificationDefinition
from usage_sentinel.core.usage.types import ForecastResult, UsageResult, UsageSnapshot


class UsageSource(ABC):
    """One external usage-metered service.

    ``fetch_usage`` performs the I/O and either returns a complete, non-negative
    ``UsageResult`` or raises ``FetchError``. ``forecast`` is pure and returns
    ``None`` when it cannot project anything. ``notification_definitions`` is the
    generic rule library plus whatever a subclass appends.
    """

    name: str = ""
    requirements: str = ""

    @abstractmethod
    async def fetch_usage(self) -> UsageResult: ...

    def forecast(
        self,
        current: UsageResult,
        history: Sequence[UsageSnapshot],
        *,
        now: datetime,
    ) -> ForecastResult | None:
        return None

    @property
    def notification_definitions(self) -> list[NotificationDefinition]:
        return generic_definitions()

    def validated_result(self, remaining: float, limit: float) -> UsageResult:
        if not (math.isfinite(remaining) and math.isfinite(limit)):
            raise FetchError(self.name, f"non-finite usage remaining={remaining} limit={limit}")
        if remaining < 0 or limit < 0:
            raise FetchError(self.name, f"negative usage remaining={remaining} limit={limit}")
        return UsageResult(remaining=float(remaining), limit=float(limit))
