from __future__ import annotations

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from usage_sentinel.core.errors import dashboard_error
from usage_sentinel.dependencies import SourceContext, get_runtime, get_source_context
from usage_sentinel.modules.sources.schemas import (
    ForecastResponse,
    HistoryResponse,
    RuleItem,
    RulesResponse,
    RuleUpdateRequest,
    SourcesResponse,
    SourceSummary,
    SourceUpdateRequest,
)
from usage_sentinel.modules.sources.service import InvalidRuleInputError, SourcesService, UnknownRuleError
from usage_sentinel.runtime import Runtime

router = APIRouter(prefix="/api/sources", tags=["sources"])


@router.get("", response_model=SourcesResponse)
async def list_sources(runtime: Runtime = Depends(get_runtime)) -> SourcesResponse:
    return SourcesService(runtime).list_sources()


@router.put("/{name}", response_model=SourceSummary)
async def update_source(
    payload: SourceUpdateRequest = Body(...),
    context: SourceContext = Depends(get_source_context),
) -> SourceSummary:
    service = SourcesService(context.runtime)
    await service.set_enabled(context.source, payload.enabled)
    summaries = service.list_sources().sources
    return next(summary for summary in summaries if summary.name == context.source.name)


@router.get("/{name}/history", response_model=HistoryResponse)
async def source_history(context: SourceContext = Depends(get_source_context)) -> HistoryResponse:
    return SourcesService(context.runtime).history(context.source)


@router.get("/{name}/forecast", response_model=ForecastResponse | None)
async def source_forecast(context: SourceContext = Depends(get_source_context)) -> ForecastResponse | None:
    return SourcesService(context.runtime).forecast(context.source)


@router.get("/{name}/rules", response_model=RulesResponse)
async def source_rules(context: SourceContext = Depends(get_source_context)) -> RulesResponse:
    return await SourcesService(context.runtime).rules(context.source)


@router.put("/{name}/rules/{rule_id}", response_model=RuleItem)
async def update_source_rule(
    rule_id: str,
    payload: RuleUpdateRequest = Body(...),
    context: SourceContext = Depends(get_source_context),
) -> RuleItem | JSONResponse:
    try:
        return await SourcesService(context.runtime).update_rule(context.source, rule_id, payload)
    except UnknownRuleError:
        return JSONResponse(
            status_code=404,
            content=dashboard_error("rule_not_found", f"Unknown rule: {rule_id}"),
        )
    except InvalidRuleInputError as exc:
        return JSONResponse(
            status_code=400,
            content=dashboard_error("invalid_rule_input", str(exc)),
        )
