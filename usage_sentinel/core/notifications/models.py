from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Sequence

from usage_sentinel.core.usage.types import UsageResult, UsageSnapshot

InputValueAccessor = Callable[[str, float], float]


@dataclass(frozen=True, slots=True)
class NotificationInputSpec:
    id: str
    label: str
    unit: str | None
    default: float
    min: float
    max: float
    step: float

    def clamp(self, value: float) -> float:
        return max(self.min, min(self.max, float(value)))


@dataclass(frozen=True, slots=True)
class NotificationEvent:
    title: str
    body: str
    cooldown_seconds: float | None = None
    cycle_key: str | None = None


@dataclass(frozen=True, slots=True)
class NotificationContext:
    source_name: str
    current: UsageResult
    previous: UsageSnapshot | None
    history: Sequence[UsageSnapshot]
    now: datetime
    input_value: InputValueAccessor

    def value(self, input_id: str, default: float) -> float:
        return self.input_value(input_id, default)

    def snapshot_minutes_ago(self, minutes: float) -> UsageSnapshot | None:
        """Most recent snapshot taken at or before ``now - minutes``."""
        if minutes <= 0:
            return None
        target = self.now - timedelta(minutes=minutes)
        for snapshot in reversed(self.history):
            if snapshot.timestamp <= target:
                return snapshot
        return None


Evaluator = Callable[[NotificationContext], NotificationEvent | None]


@dataclass(frozen=True, slots=True)
class NotificationDefinition:
    id: str
    title: str
    detail: str
    inputs: tuple[NotificationInputSpec, ...]
    evaluate: Evaluator

    def input_spec(self, input_id: str) -> NotificationInputSpec | None:
        for spec in self.inputs:
            if spec.id == input_id:
                return spec
        return None

    def default_values(self) -> dict[str, float]:
        return {spec.id: spec.default for spec in self.inputs}


@dataclass(slots=True)
class NotificationRuleSetting:
    rule_id: str
    is_enabled: bool = False
    input_values: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NotificationRuleState:
    last_fired_at: datetime | None = None
    last_fired_cycle_key: str | None = None


def definitions_by_id(definitions: Sequence[NotificationDefinition]) -> dict[str, NotificationDefinition]:
    registry: dict[str, NotificationDefinition] = {}
    for definition in definitions:
        if definition.id in registry:
            raise ValueError(f"Duplicate notification rule id: {definition.id}")
        registry[definition.id] = definition
    return registry
