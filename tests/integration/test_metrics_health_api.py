from __future__ import annotations

import pytest

from tests.support import usage

pytestmark = pytest.mark.integration


@pytest.mark.asyncio
async def test_health(async_client):
    response = await async_client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["refreshState"] == "idle"
    assert payload["persistence"] is True


@pytest.mark.asyncio
async def test_metrics_endpoint_reports_fetches(async_client, fake_sources):
    alpha, _ = fake_sources
    alpha.readings.append(usage(64))
    await async_client.put("/api/sources/Alpha", json={"enabled": True})
    await async_client.post("/api/refresh")

    response = await async_client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    body = response.text
    assert 'usage_sentinel_percent_remaining{source="Alpha"} 64.0' in body
    assert "usage_sentinel_refresh_cycles_total" in body
