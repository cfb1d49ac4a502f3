from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, slots=True)
class UsageResult:
    remaining: float
    limit: float

    @property
    def percent_remaining(self) -> float:
        if self.limit <= 0:
            return 0.0
        return (self.remaining / self.limit) * 100.0

    @property
    def formatted(self) -> str:
        return f"{self.percent_remaining:.1f}%"


@dataclass(frozen=True, slots=True)
class UsageSnapshot:
    timestamp: datetime
    usage: UsageResult


@dataclass(frozen=True, slots=True)
class ForecastPoint:
    timestamp: datetime
    value: float


@dataclass(frozen=True, slots=True)
class ForecastResult:
    points: list[ForecastPoint] = field(default_factory=list)
    summary: str = ""
