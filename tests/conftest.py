from __future__ import annotations

import os
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="usage-sentinel-tests-"))
TEST_DB_PATH = TEST_DB_DIR / "usage-sentinel.db"

os.environ["USAGE_SENTINEL_DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["USAGE_SENTINEL_REFRESH_ENABLED"] = "false"
os.environ["USAGE_SENTINEL_GH_COMMAND"] = "false"
os.environ["USAGE_SENTINEL_AMP_COMMAND"] = "false"

from usage_sentinel.core.config.settings import get_settings  # noqa: E402
from usage_sentinel.db.models import Base  # noqa: E402
from usage_sentinel.db.session import SessionLocal, engine  # noqa: E402
from usage_sentinel.main import create_app  # noqa: E402

from tests.support import FakeSource, RecordingNotifier  # noqa: E402


async def _reset_database() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db_setup():
    await _reset_database()
    yield SessionLocal
    await engine.dispose()


@pytest.fixture
def fake_sources() -> list[FakeSource]:
    return [FakeSource("Alpha"), FakeSource("Beta")]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def app_instance(fake_sources, notifier):
    await _reset_database()
    await engine.dispose()
    return create_app(sources=fake_sources, notifier=notifier)


@pytest_asyncio.fixture
async def async_client(app_instance):
    async with app_instance.router.lifespan_context(app_instance):
        transport = ASGITransport(app=app_instance)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
