from __future__ import annotations

from pydantic import Field

from usage_sentinel.modules.shared.schemas import DashboardModel


class SettingsResponse(DashboardModel):
    poll_interval_seconds: float
    min_poll_interval_seconds: float
    refresh_enabled: bool
    enabled_sources: list[str] = Field(default_factory=list)


class SettingsUpdateRequest(DashboardModel):
    poll_interval_seconds: float = Field(gt=0, allow_inf_nan=False)
