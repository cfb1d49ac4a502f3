from __future__ import annotations

import logging
from typing import Iterable, Protocol, Sequence

from usage_sentinel.core.config.settings import MIN_POLL_INTERVAL_SECONDS
from usage_sentinel.core.errors import PersistenceError
from usage_sentinel.core.notifications.models import (
    NotificationDefinition,
    NotificationRuleSetting,
    NotificationRuleState,
)
from usage_sentinel.modules.settings.repository import StoredSettings

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 120.0


class SettingsRepositoryPort(Protocol):
    async def load(self) -> StoredSettings: ...

    async def save_source_enabled(self, enabled: dict[str, bool]) -> None: ...

    async def save_rule_settings(self, source: str, rules: Sequence[NotificationRuleSetting]) -> None: ...

    async def save_rule_state(self, source: str, rule_id: str, state: NotificationRuleState | None) -> None: ...

    async def save_poll_interval(self, seconds: float) -> None: ...


class SettingsStore:
    """Source enablement, per-rule settings, per-rule fire state and the poll interval.

    Reads are served from memory. Mutations update memory first and are then
    written through; a persistence failure is logged and the in-memory value
    stays in effect.
    """

    def __init__(
        self,
        repository: SettingsRepositoryPort | None = None,
        *,
        default_poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._repository = repository
        self._enabled: dict[str, bool] = {}
        self._rules: dict[str, list[NotificationRuleSetting]] = {}
        self._states: dict[tuple[str, str], NotificationRuleState] = {}
        self._poll_interval_seconds = max(MIN_POLL_INTERVAL_SECONDS, float(default_poll_interval_seconds))

    async def load(self) -> None:
        if self._repository is None:
            return
        try:
            stored = await self._repository.load()
        except PersistenceError:
            logger.warning("Settings load failed; using in-memory defaults", exc_info=True)
            return
        self._enabled = dict(stored.enabled)
        self._rules = {source: list(rules) for source, rules in stored.rules.items()}
        self._states = dict(stored.states)
        if stored.poll_interval_seconds is not None and stored.poll_interval_seconds > 0:
            self._poll_interval_seconds = max(MIN_POLL_INTERVAL_SECONDS, stored.poll_interval_seconds)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def is_enabled(self, source_name: str) -> bool:
        return self._enabled.get(source_name, False)

    def enabled_sources(self, source_names: Iterable[str]) -> list[str]:
        return [name for name in source_names if self.is_enabled(name)]

    async def set_enabled(self, enabled: bool, source_name: str) -> None:
        self._enabled[source_name] = enabled
        await self._save_enabled()

    async def ensure_sources(self, source_names: Sequence[str], *, enabled_by_default: Iterable[str] = ()) -> None:
        """Create missing enablement flags; existing flags are never overridden."""
        defaults = set(enabled_by_default)
        changed = False
        for name in source_names:
            if name not in self._enabled:
                self._enabled[name] = name in defaults
                changed = True
        if changed:
            await self._save_enabled()

    # ------------------------------------------------------------------
    # Poll interval
    # ------------------------------------------------------------------

    def poll_interval(self) -> float:
        return self._poll_interval_seconds

    async def set_poll_interval(self, seconds: float) -> float:
        self._poll_interval_seconds = max(MIN_POLL_INTERVAL_SECONDS, float(seconds))
        await self._save_poll_interval()
        return self._poll_interval_seconds

    # ------------------------------------------------------------------
    # Rule settings
    # ------------------------------------------------------------------

    def rule_settings(self, source_name: str) -> list[NotificationRuleSetting]:
        return [
            NotificationRuleSetting(
                rule_id=rule.rule_id,
                is_enabled=rule.is_enabled,
                input_values=dict(rule.input_values),
            )
            for rule in self._rules.get(source_name, ())
        ]

    def _find_rule(self, source_name: str, rule_id: str) -> NotificationRuleSetting | None:
        for rule in self._rules.get(source_name, ()):
            if rule.rule_id == rule_id:
                return rule
        return None

    async def ensure_notification_rules(
        self,
        source_name: str,
        definitions: Sequence[NotificationDefinition],
    ) -> list[NotificationRuleSetting]:
        existing = {rule.rule_id: rule for rule in self._rules.get(source_name, ())}
        merged: list[NotificationRuleSetting] = []
        for definition in definitions:
            rule = existing.get(definition.id)
            if rule is None:
                rule = NotificationRuleSetting(
                    rule_id=definition.id,
                    is_enabled=False,
                    input_values=definition.default_values(),
                )
            merged.append(rule)

        # Settings for rules a source no longer declares are kept, after the declared ones.
        declared = {definition.id for definition in definitions}
        merged.extend(rule for rule in self._rules.get(source_name, ()) if rule.rule_id not in declared)

        before = [(rule.rule_id, rule.is_enabled, dict(rule.input_values)) for rule in self._rules.get(source_name, ())]
        after = [(rule.rule_id, rule.is_enabled, dict(rule.input_values)) for rule in merged]
        self._rules[source_name] = merged
        if before != after:
            await self._save_rules(source_name)
        return self.rule_settings(source_name)

    async def set_rule_enabled(self, enabled: bool, source_name: str, rule_id: str) -> bool:
        rule = self._find_rule(source_name, rule_id)
        if rule is None:
            return False
        rule.is_enabled = enabled
        await self._save_rules(source_name)
        await self.clear_rule_state(source_name, rule_id)
        return True

    async def set_rule_value(
        self,
        value: float,
        source_name: str,
        rule_id: str,
        input_id: str,
        *,
        definition: NotificationDefinition | None = None,
    ) -> float | None:
        rule = self._find_rule(source_name, rule_id)
        if rule is None:
            return None
        if definition is not None:
            spec = definition.input_spec(input_id)
            if spec is None:
                return None
            value = spec.clamp(value)
        rule.input_values[input_id] = float(value)
        await self._save_rules(source_name)
        await self.clear_rule_state(source_name, rule_id)
        return float(value)

    def rule_input_value(self, source_name: str, rule_id: str, input_id: str, default: float) -> float:
        rule = self._find_rule(source_name, rule_id)
        if rule is None:
            return default
        return rule.input_values.get(input_id, default)

    # ------------------------------------------------------------------
    # Rule fire state
    # ------------------------------------------------------------------

    def rule_state(self, source_name: str, rule_id: str) -> NotificationRuleState | None:
        return self._states.get((source_name, rule_id))

    async def set_rule_state(self, state: NotificationRuleState, source_name: str, rule_id: str) -> None:
        self._states[(source_name, rule_id)] = state
        await self._save_rule_state(source_name, rule_id, state)

    async def clear_rule_state(self, source_name: str, rule_id: str) -> None:
        if self._states.pop((source_name, rule_id), None) is None:
            return
        await self._save_rule_state(source_name, rule_id, None)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _save_enabled(self) -> None:
        if self._repository is None:
            return
        try:
            await self._repository.save_source_enabled(dict(self._enabled))
        except PersistenceError:
            logger.warning("Source enablement save failed", exc_info=True)

    async def _save_poll_interval(self) -> None:
        if self._repository is None:
            return
        try:
            await self._repository.save_poll_interval(self._poll_interval_seconds)
        except PersistenceError:
            logger.warning("Poll interval save failed", exc_info=True)

    async def _save_rules(self, source_name: str) -> None:
        if self._repository is None:
            return
        try:
            await self._repository.save_rule_settings(source_name, self.rule_settings(source_name))
        except PersistenceError:
            logger.warning("Rule settings save failed source=%s", source_name, exc_info=True)

    async def _save_rule_state(self, source_name: str, rule_id: str, state: NotificationRuleState | None) -> None:
        if self._repository is None:
            return
        try:
            await self._repository.save_rule_state(source_name, rule_id, state)
        except PersistenceError:
            logger.warning("Rule state save failed source=%s rule=%s", source_name, rule_id, exc_info=True)
