from __future__ import annotations

from fastapi import APIRouter, Request

from usage_sentinel.modules.shared.schemas import DashboardModel

router = APIRouter(tags=["health"])


class HealthResponse(DashboardModel):
    status: str
    refresh_state: str | None = None
    persistence: bool


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    runtime = getattr(request.app.state, "runtime", None)
    return HealthResponse(
        status="ok",
        refresh_state=runtime.orchestrator.state.value if runtime is not None else None,
        persistence=bool(getattr(request.app.state, "persistence", False)),
    )
