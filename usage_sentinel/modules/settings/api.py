from __future__ import annotations

from fastapi import APIRouter, Body, Depends

from usage_sentinel.core.config.settings import MIN_POLL_INTERVAL_SECONDS
from usage_sentinel.dependencies import get_runtime
from usage_sentinel.modules.settings.schemas import SettingsResponse, SettingsUpdateRequest
from usage_sentinel.runtime import Runtime

router = APIRouter(prefix="/api/settings", tags=["settings"])


def _settings_response(runtime: Runtime) -> SettingsResponse:
    store = runtime.settings_store
    return SettingsResponse(
        poll_interval_seconds=store.poll_interval(),
        min_poll_interval_seconds=MIN_POLL_INTERVAL_SECONDS,
        refresh_enabled=runtime.scheduler.enabled,
        enabled_sources=store.enabled_sources(source.name for source in runtime.sources),
    )


@router.get("", response_model=SettingsResponse)
async def get_settings(runtime: Runtime = Depends(get_runtime)) -> SettingsResponse:
    return _settings_response(runtime)


@router.put("", response_model=SettingsResponse)
async def update_settings(
    payload: SettingsUpdateRequest = Body(...),
    runtime: Runtime = Depends(get_runtime),
) -> SettingsResponse:
    await runtime.settings_store.set_poll_interval(payload.poll_interval_seconds)
    runtime.scheduler.trigger()
    return _settings_response(runtime)
