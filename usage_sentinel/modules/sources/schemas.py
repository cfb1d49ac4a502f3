from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import FiniteFloat, Field

from usage_sentinel.modules.shared.schemas import DashboardModel


class UsageSnapshotItem(DashboardModel):
    timestamp: datetime
    remaining: float
    limit: float
    percent_remaining: float


class SourceSummary(DashboardModel):
    name: str
    requirements: str
    enabled: bool
    loading: bool
    display: str | None = None
    latest: UsageSnapshotItem | None = None
    forecast_summary: str | None = None


class SourcesResponse(DashboardModel):
    sources: List[SourceSummary] = Field(default_factory=list)
    average_percent_remaining: float | None = None


class SourceUpdateRequest(DashboardModel):
    enabled: bool


class HistoryResponse(DashboardModel):
    source: str
    snapshots: List[UsageSnapshotItem] = Field(default_factory=list)


class ForecastPointItem(DashboardModel):
    timestamp: datetime
    value: float


class ForecastResponse(DashboardModel):
    source: str
    points: List[ForecastPointItem] = Field(default_factory=list)
    summary: str


class RuleInputItem(DashboardModel):
    id: str
    label: str
    unit: str | None = None
    default: float
    min: float
    max: float
    step: float
    value: float


class RuleItem(DashboardModel):
    id: str
    title: str
    detail: str
    enabled: bool
    inputs: List[RuleInputItem] = Field(default_factory=list)
    last_fired_at: datetime | None = None
    last_fired_cycle_key: str | None = None


class RulesResponse(DashboardModel):
    source: str
    rules: List[RuleItem] = Field(default_factory=list)


class RuleUpdateRequest(DashboardModel):
    enabled: bool | None = None
    input_values: dict[str, FiniteFloat] | None = None
