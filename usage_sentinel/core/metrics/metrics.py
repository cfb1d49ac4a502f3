from __future__ import annotations

from typing import Final, Literal

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

_PROM_CONTENT_TYPE: Final[str] = "text/plain; version=0.0.4; charset=utf-8"

NotificationOutcome = Literal["delivered", "suppressed_cycle_key", "suppressed_cooldown", "delivery_failed"]
RefreshOutcome = Literal["completed", "skipped_busy"]
SourceErrorStage = Literal["notifications", "history"]


class Metrics:
    def __init__(self, *, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry(auto_describe=True)

        self._fetch_total = Counter(
            "usage_sentinel_fetch_total",
            "Total usage fetches by source and outcome.",
            labelnames=("source", "outcome"),
            registry=self._registry,
        )
        self._percent_remaining = Gauge(
            "usage_sentinel_percent_remaining",
            "Latest percent remaining per source (clamped to 0..100).",
            labelnames=("source",),
            registry=self._registry,
        )
        self._notifications_total = Counter(
            "usage_sentinel_notifications_total",
            "Notification rule events by source, rule and outcome.",
            labelnames=("source", "rule", "outcome"),
            registry=self._registry,
        )
        self._rule_errors_total = Counter(
            "usage_sentinel_rule_errors_total",
            "Notification rule evaluations that raised.",
            labelnames=("source", "rule"),
            registry=self._registry,
        )
        self._source_errors_total = Counter(
            "usage_sentinel_source_errors_total",
            "Per-source failures after a successful fetch, by stage.",
            labelnames=("source", "stage"),
            registry=self._registry,
        )
        self._refresh_cycles_total = Counter(
            "usage_sentinel_refresh_cycles_total",
            "Refresh requests by outcome.",
            labelnames=("outcome",),
            registry=self._registry,
        )
        self._average_percent_remaining = Gauge(
            "usage_sentinel_average_percent_remaining",
            "Average percent remaining across sources that succeeded in the last cycle.",
            registry=self._registry,
        )

    @property
    def content_type(self) -> str:
        return _PROM_CONTENT_TYPE

    def render(self) -> bytes:
        return generate_latest(self._registry)

    def observe_fetch(self, source: str, *, ok: bool, percent_remaining: float | None = None) -> None:
        self._fetch_total.labels(source=source, outcome="success" if ok else "error").inc()
        if ok and percent_remaining is not None:
            self._percent_remaining.labels(source=source).set(max(0.0, min(100.0, float(percent_remaining))))

    def observe_notification(self, source: str, rule: str, outcome: NotificationOutcome) -> None:
        self._notifications_total.labels(source=source, rule=rule, outcome=outcome).inc()

    def observe_rule_error(self, source: str, rule: str) -> None:
        self._rule_errors_total.labels(source=source, rule=rule).inc()

    def observe_source_error(self, source: str, stage: SourceErrorStage) -> None:
        self._source_errors_total.labels(source=source, stage=stage).inc()

    def observe_refresh(self, outcome: RefreshOutcome, *, average_percent: float | None = None) -> None:
        self._refresh_cycles_total.labels(outcome=outcome).inc()
        if outcome == "completed" and average_percent is not None:
            self._average_percent_remaining.set(float(average_percent))
