from __future__ import annotations

from fastapi import APIRouter, Depends

from usage_sentinel.dependencies import get_runtime
from usage_sentinel.modules.refresh.schemas import FiredNotificationItem, RefreshResponse
from usage_sentinel.runtime import Runtime

router = APIRouter(prefix="/api/refresh", tags=["refresh"])


@router.post("", response_model=RefreshResponse)
async def refresh_now(runtime: Runtime = Depends(get_runtime)) -> RefreshResponse:
    summary = await runtime.orchestrator.refresh()
    if summary is None:
        return RefreshResponse(status="busy")
    return RefreshResponse(
        status="completed",
        started_at=summary.started_at,
        display=summary.display,
        errors=summary.errors,
        average_percent_remaining=summary.average_percent,
        notifications=[
            FiredNotificationItem(
                source=fired.source,
                rule_id=fired.rule_id,
                title=fired.event.title,
                body=fired.event.body,
                fired_at=fired.fired_at,
            )
            for fired in summary.notifications
        ],
    )
