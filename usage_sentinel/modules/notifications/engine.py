from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from usage_sentinel.core.metrics.metrics import Metrics
from usage_sentinel.core.notifications.delivery import Notifier
from usage_sentinel.core.notifications.models import (
    NotificationContext,
    NotificationDefinition,
    NotificationEvent,
    NotificationRuleState,
    definitions_by_id,
)
from usage_sentinel.core.sources.base import UsageSource
from usage_sentinel.core.usage.types import UsageResult
from usage_sentinel.modules.history.store import HistoryStore
from usage_sentinel.modules.settings.store import SettingsStore

logger = logging.getLogger(__name__)

SuppressionReason = Literal["cycle_key", "cooldown"]


@dataclass(frozen=True, slots=True)
class FiredNotification:
    source: str
    rule_id: str
    event: NotificationEvent
    fired_at: datetime


def suppression_reason(
    event: NotificationEvent,
    state: NotificationRuleState | None,
    now: datetime,
) -> SuppressionReason | None:
    """Why ``event`` must not be delivered given the rule's last fire, or None."""
    if state is None:
        return None
    if event.cycle_key is not None and event.cycle_key == state.last_fired_cycle_key:
        return "cycle_key"
    if event.cooldown_seconds is not None and state.last_fired_at is not None:
        elapsed = (now - state.last_fired_at).total_seconds()
        if elapsed < event.cooldown_seconds:
            return "cooldown"
    return None


class NotificationEngine:
    def __init__(
        self,
        settings_store: SettingsStore,
        history_store: HistoryStore,
        notifier: Notifier,
        *,
        metrics: Metrics | None = None,
    ) -> None:
        self._settings_store = settings_store
        self._history_store = history_store
        self._notifier = notifier
        self._metrics = metrics

    async def evaluate(self, source: UsageSource, current: UsageResult, *, now: datetime) -> list[FiredNotification]:
        """Run the enabled rules of ``source`` against ``current``.

        Must be called before ``current`` is appended to history so that rules
        see the previous cycle's snapshot as ``previous``.
        """
        definitions = source.notification_definitions
        registry = definitions_by_id(definitions)
        rules = await self._settings_store.ensure_notification_rules(source.name, definitions)

        history = self._history_store.history(source.name)
        previous = history[-1] if history else None

        fired: list[FiredNotification] = []
        for rule in rules:
            if not rule.is_enabled:
                continue
            definition = registry.get(rule.rule_id)
            if definition is None:
                continue
            context = NotificationContext(
                source_name=source.name,
                current=current,
                previous=previous,
                history=history,
                now=now,
                input_value=self._input_accessor(source.name, definition),
            )
            try:
                event = definition.evaluate(context)
            except Exception:
                logger.warning("Notification rule failed source=%s rule=%s", source.name, rule.rule_id, exc_info=True)
                if self._metrics is not None:
                    self._metrics.observe_rule_error(source.name, rule.rule_id)
                continue
            if event is None:
                continue
            if await self._dispatch(source.name, rule.rule_id, event, now=now):
                fired.append(FiredNotification(source=source.name, rule_id=rule.rule_id, event=event, fired_at=now))
        return fired

    def _input_accessor(self, source_name: str, definition: NotificationDefinition):
        def value(input_id: str, default: float) -> float:
            raw = self._settings_store.rule_input_value(source_name, definition.id, input_id, default)
            spec = definition.input_spec(input_id)
            if spec is None:
                return raw
            return spec.clamp(raw)

        return value

    async def _dispatch(self, source_name: str, rule_id: str, event: NotificationEvent, *, now: datetime) -> bool:
        reason = suppression_reason(event, self._settings_store.rule_state(source_name, rule_id), now)
        if reason is not None:
            logger.debug("Notification suppressed source=%s rule=%s reason=%s", source_name, rule_id, reason)
            if self._metrics is not None:
                self._metrics.observe_notification(source_name, rule_id, f"suppressed_{reason}")
            return False

        outcome = "delivered"
        try:
            await self._notifier.notify(event.title, event.body)
        except Exception:
            outcome = "delivery_failed"
            logger.warning("Notification delivery failed source=%s rule=%s", source_name, rule_id, exc_info=True)
        if self._metrics is not None:
            self._metrics.observe_notification(source_name, rule_id, outcome)

        await self._settings_store.set_rule_state(
            NotificationRuleState(last_fired_at=now, last_fired_cycle_key=event.cycle_key),
            source_name,
            rule_id,
        )
        logger.info("Notification fired source=%s rule=%s title=%r", source_name, rule_id, event.title)
        return True
