from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from prometheus_client import CollectorRegistry
from prometheus_client.parser import text_string_to_metric_families

from usage_sentinel.core.metrics.metrics import Metrics
from usage_sentinel.core.notifications.models import (
    NotificationDefinition,
    NotificationEvent,
    NotificationInputSpec,
    NotificationRuleState,
)
from usage_sentinel.modules.history.store import HistoryStore
from usage_sentinel.modules.notifications.engine import NotificationEngine, suppression_reason
from usage_sentinel.modules.settings.store import SettingsStore
from tests.support import BASE_TIME, FakeSource, RecordingNotifier, usage

pytestmark = pytest.mark.unit


class CycleSource(FakeSource):
    """Declares one rule that always fires with a month cycle key."""

    def __init__(self, name: str = "Monthly") -> None:
        super().__init__(name)
        self.cycle_key = "2026-03"

    @property
    def notification_definitions(self) -> list[NotificationDefinition]:
        def evaluate(context):
            return NotificationEvent(title="pace", body="ahead", cycle_key=self.cycle_key)

        return [NotificationDefinition(id="always", title="Always", detail="", inputs=(), evaluate=evaluate)]


class BrokenSource(FakeSource):
    @property
    def notification_definitions(self) -> list[NotificationDefinition]:
        def explode(context):
            raise ZeroDivisionError("bad rule")

        def clamp_probe(context):
            return NotificationEvent(title="probe", body=f"{context.value('level', 0):.0f}")

        return [
            NotificationDefinition(id="explode", title="Explode", detail="", inputs=(), evaluate=explode),
            NotificationDefinition(
                id="probe",
                title="Probe",
                detail="",
                inputs=(NotificationInputSpec("level", "Level", None, 5, 1, 10, 1),),
                evaluate=clamp_probe,
            ),
        ]


def _engine(notifier: RecordingNotifier) -> tuple[NotificationEngine, SettingsStore, HistoryStore, Metrics]:
    settings_store = SettingsStore()
    history_store = HistoryStore()
    metrics = Metrics(registry=CollectorRegistry())
    engine = NotificationEngine(settings_store, history_store, notifier, metrics=metrics)
    return engine, settings_store, history_store, metrics


def _sample_value(metrics: Metrics, metric_name: str, labels: dict[str, str]) -> float | None:
    for family in text_string_to_metric_families(metrics.render().decode("utf-8")):
        for sample in family.samples:
            if sample.name == metric_name and sample.labels == labels:
                return float(sample.value)
    return None


async def _enable_all(settings_store: SettingsStore, source: FakeSource) -> None:
    await settings_store.ensure_notification_rules(source.name, source.notification_definitions)
    for definition in source.notification_definitions:
        await settings_store.set_rule_enabled(True, source.name, definition.id)


def test_suppression_reason() -> None:
    now = datetime(2026, 3, 10, 12, 0)
    cooled = NotificationEvent(title="t", body="b", cooldown_seconds=3600)
    keyed = NotificationEvent(title="t", body="b", cycle_key="2026-03")
    assert suppression_reason(cooled, None, now) is None
    recent = NotificationRuleState(last_fired_at=now - timedelta(minutes=59))
    assert suppression_reason(cooled, recent, now) == "cooldown"
    assert suppression_reason(cooled, NotificationRuleState(last_fired_at=now - timedelta(minutes=60)), now) is None
    assert suppression_reason(keyed, NotificationRuleState(last_fired_cycle_key="2026-03"), now) == "cycle_key"
    assert suppression_reason(keyed, NotificationRuleState(last_fired_cycle_key="2026-02"), now) is None


@pytest.mark.asyncio
async def test_disabled_rules_do_not_run() -> None:
    notifier = RecordingNotifier()
    engine, settings_store, _, _ = _engine(notifier)
    source = FakeSource("AMP")
    assert await engine.evaluate(source, usage(10), now=BASE_TIME) == []
    assert notifier.sent == []
    assert [rule.rule_id for rule in settings_store.rule_settings("AMP")] == [
        "percentRemainingBelow",
        "recentUsageSpike",
    ]


@pytest.mark.asyncio
async def test_threshold_sequence_fires_once_within_cooldown() -> None:
    notifier = RecordingNotifier()
    engine, settings_store, history_store, _ = _engine(notifier)
    source = FakeSource("Copilot")
    await settings_store.ensure_notification_rules(source.name, source.notification_definitions)
    await settings_store.set_rule_enabled(True, source.name, "percentRemainingBelow")

    now = BASE_TIME
    fired_per_reading = []
    for percent in (60, 45, 40):
        fired = await engine.evaluate(source, usage(percent), now=now)
        fired_per_reading.append([item.rule_id for item in fired])
        await history_store.append(source.name, usage(percent), timestamp=now)
        now += timedelta(minutes=2)

    assert fired_per_reading == [[], ["percentRemainingBelow"], []]
    assert notifier.sent == [("Copilot usage alert", "Remaining is now 45%, below 50%.")]
    state = settings_store.rule_state("Copilot", "percentRemainingBelow")
    assert state is not None
    assert state.last_fired_at == BASE_TIME + timedelta(minutes=2)


@pytest.mark.asyncio
async def test_cooldown_suppresses_refire() -> None:
    notifier = RecordingNotifier()
    engine, settings_store, history_store, metrics = _engine(notifier)
    source = FakeSource("Copilot")
    await settings_store.ensure_notification_rules(source.name, source.notification_definitions)
    await settings_store.set_rule_enabled(True, source.name, "percentRemainingBelow")

    await engine.evaluate(source, usage(40), now=BASE_TIME)
    await history_store.append(source.name, usage(60), timestamp=BASE_TIME + timedelta(minutes=1))
    # Back above, then below again inside the hour: the rule fires but delivery is suppressed.
    assert await engine.evaluate(source, usage(40), now=BASE_TIME + timedelta(minutes=10)) == []
    await history_store.append(source.name, usage(60), timestamp=BASE_TIME + timedelta(minutes=11))
    fired = await engine.evaluate(source, usage(40), now=BASE_TIME + timedelta(minutes=61))
    assert len(fired) == 1
    assert len(notifier.sent) == 2
    labels = {"source": "Copilot", "rule": "percentRemainingBelow", "outcome": "suppressed_cooldown"}
    assert _sample_value(metrics, "usage_sentinel_notifications_total", labels) == 1.0


@pytest.mark.asyncio
async def test_cycle_key_fires_once_until_key_changes() -> None:
    notifier = RecordingNotifier()
    engine, settings_store, _, _ = _engine(notifier)
    source = CycleSource()
    await _enable_all(settings_store, source)

    assert len(await engine.evaluate(source, usage(50), now=BASE_TIME)) == 1
    assert await engine.evaluate(source, usage(50), now=BASE_TIME + timedelta(days=2)) == []
    source.cycle_key = "2026-04"
    assert len(await engine.evaluate(source, usage(50), now=BASE_TIME + timedelta(days=25))) == 1
    assert notifier.sent == [("pace", "ahead"), ("pace", "ahead")]
    state = settings_store.rule_state(source.name, "always")
    assert state is not None
    assert state.last_fired_cycle_key == "2026-04"


@pytest.mark.asyncio
async def test_failing_rule_is_isolated_and_inputs_are_clamped() -> None:
    notifier = RecordingNotifier()
    engine, settings_store, _, metrics = _engine(notifier)
    source = BrokenSource("Broken")
    await _enable_all(settings_store, source)
    # Stored out of range (e.g. by an older build); evaluation sees the clamped value.
    await settings_store.set_rule_value(50, source.name, "probe", "level")

    fired = await engine.evaluate(source, usage(50), now=BASE_TIME)
    assert [item.rule_id for item in fired] == ["probe"]
    assert notifier.sent == [("probe", "10")]
    assert _sample_value(metrics, "usage_sentinel_rule_errors_total", {"source": "Broken", "rule": "explode"}) == 1.0


@pytest.mark.asyncio
async def test_delivery_failure_still_records_fire_state() -> None:
    notifier = RecordingNotifier(fail=True)
    engine, settings_store, _, _ = _engine(notifier)
    source = CycleSource()
    await _enable_all(settings_store, source)

    fired = await engine.evaluate(source, usage(50), now=BASE_TIME)
    assert len(fired) == 1
    state = settings_store.rule_state(source.name, "always")
    assert state == NotificationRuleState(last_fired_at=BASE_TIME, last_fired_cycle_key="2026-03")


class CrashingNotifier:
    async def notify(self, title: str, body: str) -> None:
        raise RuntimeError("notifier exploded")


@pytest.mark.asyncio
async def test_unexpected_notifier_error_counts_as_delivery_failure() -> None:
    engine, settings_store, _, metrics = _engine(CrashingNotifier())
    source = CycleSource()
    await _enable_all(settings_store, source)

    fired = await engine.evaluate(source, usage(50), now=BASE_TIME)
    assert [item.rule_id for item in fired] == ["always"]
    labels = {"source": source.name, "rule": "always", "outcome": "delivery_failed"}
    assert _sample_value(metrics, "usage_sentinel_notifications_total", labels) == 1.0
    state = settings_store.rule_state(source.name, "always")
    assert state is not None
    assert state.last_fired_cycle_key == "2026-03"
