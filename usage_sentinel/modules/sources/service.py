from __future__ import annotations

from usage_sentinel.core.notifications.models import NotificationDefinition, definitions_by_id
from usage_sentinel.core.sources.base import UsageSource
from usage_sentinel.core.usage.types import ForecastResult, UsageSnapshot
from usage_sentinel.core.utils.time import utcnow
from usage_sentinel.modules.sources.schemas import (
    ForecastPointItem,
    ForecastResponse,
    HistoryResponse,
    RuleInputItem,
    RuleItem,
    RulesResponse,
    RuleUpdateRequest,
    SourceSummary,
    SourcesResponse,
    UsageSnapshotItem,
)
from usage_sentinel.runtime import Runtime


class UnknownRuleError(LookupError):
    pass


class InvalidRuleInputError(ValueError):
    pass


def _snapshot_item(snapshot: UsageSnapshot) -> UsageSnapshotItem:
    return UsageSnapshotItem(
        timestamp=snapshot.timestamp,
        remaining=snapshot.usage.remaining,
        limit=snapshot.usage.limit,
        percent_remaining=snapshot.usage.percent_remaining,
    )


class SourcesService:
    def __init__(self, runtime: Runtime) -> None:
        self._runtime = runtime

    def list_sources(self) -> SourcesResponse:
        summaries: list[SourceSummary] = []
        for source in self._runtime.sources:
            latest = self._runtime.history_store.latest(source.name)
            forecast = self._forecast(source)
            summaries.append(
                SourceSummary(
                    name=source.name,
                    requirements=source.requirements,
                    enabled=self._runtime.settings_store.is_enabled(source.name),
                    loading=self._runtime.orchestrator.is_loading(source.name),
                    display=self._runtime.orchestrator.display(source.name),
                    latest=_snapshot_item(latest) if latest is not None else None,
                    forecast_summary=forecast.summary if forecast is not None else None,
                )
            )
        return SourcesResponse(
            sources=summaries,
            average_percent_remaining=self._runtime.orchestrator.average_percent,
        )

    async def set_enabled(self, source: UsageSource, enabled: bool) -> None:
        await self._runtime.settings_store.set_enabled(enabled, source.name)
        if enabled:
            self._runtime.scheduler.trigger()

    def history(self, source: UsageSource) -> HistoryResponse:
        return HistoryResponse(
            source=source.name,
            snapshots=[_snapshot_item(snapshot) for snapshot in self._runtime.history_store.history(source.name)],
        )

    def forecast(self, source: UsageSource) -> ForecastResponse | None:
        result = self._forecast(source)
        if result is None:
            return None
        return ForecastResponse(
            source=source.name,
            points=[ForecastPointItem(timestamp=point.timestamp, value=point.value) for point in result.points],
            summary=result.summary,
        )

    async def rules(self, source: UsageSource) -> RulesResponse:
        definitions = source.notification_definitions
        await self._runtime.settings_store.ensure_notification_rules(source.name, definitions)
        return RulesResponse(
            source=source.name,
            rules=[self._rule_item(source, definition) for definition in definitions],
        )

    async def update_rule(self, source: UsageSource, rule_id: str, payload: RuleUpdateRequest) -> RuleItem:
        definition = definitions_by_id(source.notification_definitions).get(rule_id)
        if definition is None:
            raise UnknownRuleError(rule_id)
        input_values = payload.input_values or {}
        unknown = sorted(input_id for input_id in input_values if definition.input_spec(input_id) is None)
        if unknown:
            raise InvalidRuleInputError(f"Unknown inputs for {rule_id}: {', '.join(unknown)}")

        store = self._runtime.settings_store
        await store.ensure_notification_rules(source.name, source.notification_definitions)
        for input_id, value in input_values.items():
            await store.set_rule_value(value, source.name, rule_id, input_id, definition=definition)
        if payload.enabled is not None:
            await store.set_rule_enabled(payload.enabled, source.name, rule_id)
        return self._rule_item(source, definition)

    def _rule_item(self, source: UsageSource, definition: NotificationDefinition) -> RuleItem:
        store = self._runtime.settings_store
        enabled = any(
            rule.rule_id == definition.id and rule.is_enabled for rule in store.rule_settings(source.name)
        )
        state = store.rule_state(source.name, definition.id)
        return RuleItem(
            id=definition.id,
            title=definition.title,
            detail=definition.detail,
            enabled=enabled,
            inputs=[
                RuleInputItem(
                    id=spec.id,
                    label=spec.label,
                    unit=spec.unit,
                    default=spec.default,
                    min=spec.min,
                    max=spec.max,
                    step=spec.step,
                    value=spec.clamp(store.rule_input_value(source.name, definition.id, spec.id, spec.default)),
                )
                for spec in definition.inputs
            ],
            last_fired_at=state.last_fired_at if state is not None else None,
            last_fired_cycle_key=state.last_fired_cycle_key if state is not None else None,
        )

    def _forecast(self, source: UsageSource) -> ForecastResult | None:
        latest = self._runtime.history_store.latest(source.name)
        if latest is None:
            return None
        return source.forecast(latest.usage, self._runtime.history_store.history(source.name), now=utcnow())
