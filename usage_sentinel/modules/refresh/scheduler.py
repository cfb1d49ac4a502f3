from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from usage_sentinel.core.config.settings import MIN_POLL_INTERVAL_SECONDS
from usage_sentinel.modules.refresh.orchestrator import RefreshOrchestrator
from usage_sentinel.modules.settings.store import SettingsStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RefreshScheduler:
    orchestrator: RefreshOrchestrator
    settings_store: SettingsStore
    enabled: bool = True
    _task: asyncio.Task[None] | None = None
    _stop: asyncio.Event = field(default_factory=asyncio.Event)
    _wake: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if not self.enabled:
            return
        if self.running:
            return
        self._stop.clear()
        self._wake.clear()
        self._task = asyncio.create_task(self._run_loop(), name="usage-refresh-scheduler")

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop.set()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    def trigger(self) -> None:
        """Wake the loop so the next cycle starts now instead of after the interval."""
        self._wake.set()

    async def _run_loop(self) -> None:
        while not self._stop.is_set():
            await self._refresh_once()
            interval = max(MIN_POLL_INTERVAL_SECONDS, self.settings_store.poll_interval())
            try:
                await asyncio.wait_for(self._wait_for_wake(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def _wait_for_wake(self) -> None:
        await self._wake.wait()
        self._wake.clear()

    async def _refresh_once(self) -> None:
        try:
            await self.orchestrator.refresh()
        except Exception:
            logger.exception("Usage refresh loop failed")
