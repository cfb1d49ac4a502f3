from __future__ import annotations

import pytest
from prometheus_client import CollectorRegistry
from prometheus_client.parser import text_string_to_metric_families

from usage_sentinel.core.metrics.metrics import Metrics

pytestmark = pytest.mark.unit


def _sample_value(text: str, metric_name: str, labels: dict[str, str] | None = None) -> float | None:
    target_labels = labels or {}
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            if sample.name != metric_name:
                continue
            if all(sample.labels.get(k) == v for k, v in target_labels.items()):
                return float(sample.value)
    return None


def test_fetch_and_percent_gauge() -> None:
    metrics = Metrics(registry=CollectorRegistry(auto_describe=True))
    metrics.observe_fetch("AMP", ok=True, percent_remaining=130.0)
    metrics.observe_fetch("AMP", ok=False)
    metrics.observe_fetch("AMP", ok=False)

    rendered = metrics.render().decode("utf-8")
    assert _sample_value(rendered, "usage_sentinel_fetch_total", {"source": "AMP", "outcome": "success"}) == 1.0
    assert _sample_value(rendered, "usage_sentinel_fetch_total", {"source": "AMP", "outcome": "error"}) == 2.0
    assert _sample_value(rendered, "usage_sentinel_percent_remaining", {"source": "AMP"}) == 100.0


def test_notification_and_refresh_counters() -> None:
    metrics = Metrics(registry=CollectorRegistry(auto_describe=True))
    metrics.observe_notification("Copilot", "monthlyPacing", "delivered")
    metrics.observe_notification("Copilot", "monthlyPacing", "suppressed_cycle_key")
    metrics.observe_refresh("completed", average_percent=42.5)
    metrics.observe_refresh("skipped_busy")

    rendered = metrics.render().decode("utf-8")
    labels = {"source": "Copilot", "rule": "monthlyPacing", "outcome": "suppressed_cycle_key"}
    assert _sample_value(rendered, "usage_sentinel_notifications_total", labels) == 1.0
    assert _sample_value(rendered, "usage_sentinel_refresh_cycles_total", {"outcome": "skipped_busy"}) == 1.0
    assert _sample_value(rendered, "usage_sentinel_average_percent_remaining") == 42.5
    assert metrics.content_type.startswith("text/plain")


def test_source_error_counter() -> None:
    metrics = Metrics(registry=CollectorRegistry(auto_describe=True))
    metrics.observe_source_error("AMP", "history")
    metrics.observe_source_error("AMP", "history")

    rendered = metrics.render().decode("utf-8")
    assert _sample_value(rendered, "usage_sentinel_source_errors_total", {"source": "AMP", "stage": "history"}) == 2.0
