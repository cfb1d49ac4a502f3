from __future__ import annotations

import pytest

from usage_sentinel.core.clients.http import close_http_client, get_http_client, init_http_client
from usage_sentinel.core.config.settings import get_settings

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_http_client_uses_configured_timeout(monkeypatch) -> None:
    await close_http_client()
    monkeypatch.setenv("USAGE_SENTINEL_HTTP_TIMEOUT_SECONDS", "4.5")
    get_settings.cache_clear()

    client = await init_http_client()
    try:
        assert client.session.timeout.total == 4.5
        assert get_http_client() is client
        assert await init_http_client() is client
    finally:
        await close_http_client()

    with pytest.raises(RuntimeError, match="not initialized"):
        get_http_client()
