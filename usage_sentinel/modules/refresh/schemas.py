from __future__ import annotations

from datetime import datetime
from typing import List, Literal

from pydantic import Field

from usage_sentinel.modules.shared.schemas import DashboardModel


class FiredNotificationItem(DashboardModel):
    source: str
    rule_id: str
    title: str
    body: str
    fired_at: datetime


class RefreshResponse(DashboardModel):
    status: Literal["completed", "busy"]
    started_at: datetime | None = None
    display: dict[str, str] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)
    average_percent_remaining: float | None = None
    notifications: List[FiredNotificationItem] = Field(default_factory=list)
