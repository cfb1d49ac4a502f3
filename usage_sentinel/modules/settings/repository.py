from __future__ import annotations

import json
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from usage_sentinel.core.errors import PersistenceError
from usage_sentinel.core.notifications.models import NotificationRuleSetting, NotificationRuleState
from usage_sentinel.db.models import (
    AppSetting,
    NotificationRuleSettingRecord,
    NotificationRuleStateRecord,
    SourceSetting,
)

POLL_INTERVAL_KEY = "poll_interval_seconds"


@dataclass(slots=True)
class StoredSettings:
    enabled: dict[str, bool] = field(default_factory=dict)
    rules: dict[str, list[NotificationRuleSetting]] = field(default_factory=dict)
    states: dict[tuple[str, str], NotificationRuleState] = field(default_factory=dict)
    poll_interval_seconds: float | None = None


def _encode_input_values(values: dict[str, float]) -> str:
    return json.dumps({key: float(value) for key, value in values.items()}, sort_keys=True, separators=(",", ":"))


def _decode_input_values(value: str | None) -> dict[str, float]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise PersistenceError("notification_rule_settings.input_values_json must be a JSON object") from exc
    if not isinstance(parsed, dict):
        raise PersistenceError("notification_rule_settings.input_values_json must be a JSON object")
    decoded: dict[str, float] = {}
    for key, raw in parsed.items():
        if isinstance(raw, (int, float)) and not isinstance(raw, bool) and math.isfinite(raw):
            decoded[str(key)] = float(raw)
    return decoded


class SettingsRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load(self) -> StoredSettings:
        stored = StoredSettings()
        try:
            async with self._session_factory() as session:
                for source_row in (await session.execute(select(SourceSetting))).scalars():
                    stored.enabled[source_row.name] = bool(source_row.enabled)

                rules: dict[str, list[NotificationRuleSetting]] = defaultdict(list)
                rule_rows = await session.execute(
                    select(NotificationRuleSettingRecord).order_by(
                        NotificationRuleSettingRecord.source,
                        NotificationRuleSettingRecord.position,
                    )
                )
                for rule_row in rule_rows.scalars():
                    rules[rule_row.source].append(
                        NotificationRuleSetting(
                            rule_id=rule_row.rule_id,
                            is_enabled=bool(rule_row.enabled),
                            input_values=_decode_input_values(rule_row.input_values_json),
                        )
                    )
                stored.rules = dict(rules)

                for state_row in (await session.execute(select(NotificationRuleStateRecord))).scalars():
                    stored.states[(state_row.source, state_row.rule_id)] = NotificationRuleState(
                        last_fired_at=state_row.last_fired_at,
                        last_fired_cycle_key=state_row.last_fired_cycle_key,
                    )

                poll = await session.get(AppSetting, POLL_INTERVAL_KEY)
                if poll is not None:
                    try:
                        stored.poll_interval_seconds = float(poll.value)
                    except ValueError:
                        stored.poll_interval_seconds = None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to load settings: {exc}") from exc
        return stored

    async def save_source_enabled(self, enabled: dict[str, bool]) -> None:
        try:
            async with self._session_factory() as session:
                for name, value in enabled.items():
                    row = await session.get(SourceSetting, name)
                    if row is None:
                        session.add(SourceSetting(name=name, enabled=value))
                    else:
                        row.enabled = value
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to save source enablement: {exc}") from exc

    async def save_rule_settings(self, source: str, rules: Sequence[NotificationRuleSetting]) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(NotificationRuleSettingRecord).where(NotificationRuleSettingRecord.source == source)
                )
                for position, rule in enumerate(rules):
                    session.add(
                        NotificationRuleSettingRecord(
                            source=source,
                            rule_id=rule.rule_id,
                            position=position,
                            enabled=rule.is_enabled,
                            input_values_json=_encode_input_values(rule.input_values),
                        )
                    )
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to save rule settings source={source}: {exc}") from exc

    async def save_rule_state(self, source: str, rule_id: str, state: NotificationRuleState | None) -> None:
        try:
            async with self._session_factory() as session:
                row = (
                    await session.execute(
                        select(NotificationRuleStateRecord)
                        .where(NotificationRuleStateRecord.source == source)
                        .where(NotificationRuleStateRecord.rule_id == rule_id)
                    )
                ).scalar_one_or_none()
                if state is None:
                    if row is not None:
                        await session.delete(row)
                elif row is None:
                    session.add(
                        NotificationRuleStateRecord(
                            source=source,
                            rule_id=rule_id,
                            last_fired_at=state.last_fired_at,
                            last_fired_cycle_key=state.last_fired_cycle_key,
                        )
                    )
                else:
                    row.last_fired_at = state.last_fired_at
                    row.last_fired_cycle_key = state.last_fired_cycle_key
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to save rule state source={source} rule={rule_id}: {exc}") from exc

    async def save_poll_interval(self, seconds: float) -> None:
        try:
            async with self._session_factory() as session:
                row = await session.get(AppSetting, POLL_INTERVAL_KEY)
                if row is None:
                    session.add(AppSetting(key=POLL_INTERVAL_KEY, value=repr(float(seconds))))
                else:
                    row.value = repr(float(seconds))
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to save poll interval: {exc}") from exc
