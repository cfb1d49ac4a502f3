from __future__ import annotations

import asyncio

import pytest

from usage_sentinel.modules.refresh.scheduler import RefreshScheduler
from usage_sentinel.modules.settings.store import SettingsStore

pytestmark = pytest.mark.unit


class CountingOrchestrator:
    def __init__(self, *, fail_first: bool = False) -> None:
        self.calls = 0
        self.fail_first = fail_first

    async def refresh(self):
        self.calls += 1
        if self.fail_first and self.calls == 1:
            raise RuntimeError("cycle exploded")
        return None


async def _wait_for_calls(orchestrator: CountingOrchestrator, count: int) -> None:
    async def _poll() -> None:
        while orchestrator.calls < count:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=2.0)


@pytest.mark.asyncio
async def test_scheduler_refreshes_immediately_and_on_trigger() -> None:
    orchestrator = CountingOrchestrator()
    scheduler = RefreshScheduler(orchestrator=orchestrator, settings_store=SettingsStore())
    await scheduler.start()
    try:
        await _wait_for_calls(orchestrator, 1)
        scheduler.trigger()
        await _wait_for_calls(orchestrator, 2)
        assert scheduler.running
    finally:
        await scheduler.stop()
    assert not scheduler.running


@pytest.mark.asyncio
async def test_scheduler_start_is_idempotent() -> None:
    orchestrator = CountingOrchestrator()
    scheduler = RefreshScheduler(orchestrator=orchestrator, settings_store=SettingsStore())
    await scheduler.start()
    await scheduler.start()
    try:
        await _wait_for_calls(orchestrator, 1)
        await asyncio.sleep(0.05)
        assert orchestrator.calls == 1
    finally:
        await scheduler.stop()
    await scheduler.stop()


@pytest.mark.asyncio
async def test_scheduler_survives_failed_cycle() -> None:
    orchestrator = CountingOrchestrator(fail_first=True)
    scheduler = RefreshScheduler(orchestrator=orchestrator, settings_store=SettingsStore())
    await scheduler.start()
    try:
        await _wait_for_calls(orchestrator, 1)
        scheduler.trigger()
        await _wait_for_calls(orchestrator, 2)
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_disabled_scheduler_never_runs() -> None:
    orchestrator = CountingOrchestrator()
    scheduler = RefreshScheduler(orchestrator=orchestrator, settings_store=SettingsStore(), enabled=False)
    await scheduler.start()
    assert not scheduler.running
    assert orchestrator.calls == 0
