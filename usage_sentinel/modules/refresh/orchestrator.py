from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Sequence

from usage_sentinel.core.errors import FetchError
from usage_sentinel.core.metrics.metrics import Metrics
from usage_sentinel.core.sources.base import UsageSource
from usage_sentinel.core.usage import average_percent_remaining
from usage_sentinel.core.usage.types import UsageResult
from usage_sentinel.core.utils.time import utcnow
from usage_sentinel.modules.history.store import HistoryStore
from usage_sentinel.modules.notifications.engine import FiredNotification, NotificationEngine
from usage_sentinel.modules.settings.store import SettingsStore

logger = logging.getLogger(__name__)

ERROR_DISPLAY = "Error"


class RefreshState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


@dataclass(slots=True)
class RefreshSummary:
    started_at: datetime
    display: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    results: dict[str, UsageResult] = field(default_factory=dict)
    average_percent: float | None = None
    notifications: list[FiredNotification] = field(default_factory=list)


class RefreshOrchestrator:
    """Drives one refresh cycle across every enabled source.

    All state mutation happens on the task running ``refresh``; the fetch tasks
    only return values. A second ``refresh`` while one is in flight is dropped.
    """

    def __init__(
        self,
        sources: Sequence[UsageSource],
        settings_store: SettingsStore,
        history_store: HistoryStore,
        engine: NotificationEngine,
        *,
        metrics: Metrics | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sources = list(sources)
        self._settings_store = settings_store
        self._history_store = history_store
        self._engine = engine
        self._metrics = metrics
        self._clock = clock
        self._state = RefreshState.IDLE
        self._loading: set[str] = set()
        self._display: dict[str, str] = {}
        self._average_percent: float | None = None

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def sources(self) -> list[UsageSource]:
        return list(self._sources)

    def source(self, name: str) -> UsageSource | None:
        for source in self._sources:
            if source.name == name:
                return source
        return None

    def is_loading(self, name: str) -> bool:
        return name in self._loading

    def display(self, name: str) -> str | None:
        return self._display.get(name)

    @property
    def average_percent(self) -> float | None:
        return self._average_percent

    async def refresh(self) -> RefreshSummary | None:
        if self._state is RefreshState.REFRESHING:
            logger.debug("Refresh skipped; a cycle is already running")
            if self._metrics is not None:
                self._metrics.observe_refresh("skipped_busy")
            return None
        self._state = RefreshState.REFRESHING
        try:
            return await self._run_cycle()
        finally:
            self._loading.clear()
            self._state = RefreshState.IDLE

    async def _run_cycle(self) -> RefreshSummary:
        summary = RefreshSummary(started_at=self._clock())
        enabled = [source for source in self._sources if self._settings_store.is_enabled(source.name)]
        self._loading.update(source.name for source in enabled)

        tasks = [asyncio.create_task(self._fetch(source), name=f"fetch-usage-{source.name}") for source in enabled]
        try:
            for finished in asyncio.as_completed(tasks):
                outcome = await finished
                source, result = outcome.source, outcome.result
                self._loading.discard(source.name)
                if result is None:
                    self._display[source.name] = ERROR_DISPLAY
                    summary.display[source.name] = ERROR_DISPLAY
                    summary.errors[source.name] = outcome.error or "unknown error"
                    if self._metrics is not None:
                        self._metrics.observe_fetch(source.name, ok=False)
                    continue
                self._display[source.name] = result.formatted
                summary.display[source.name] = result.formatted
                summary.results[source.name] = result
                if self._metrics is not None:
                    self._metrics.observe_fetch(source.name, ok=True, percent_remaining=result.percent_remaining)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        now = self._clock()
        for source in enabled:
            result = summary.results.get(source.name)
            if result is None:
                continue
            try:
                summary.notifications.extend(await self._engine.evaluate(source, result, now=now))
            except Exception:
                logger.warning("Notification evaluation failed source=%s", source.name, exc_info=True)
                if self._metrics is not None:
                    self._metrics.observe_source_error(source.name, "notifications")
            try:
                await self._history_store.append(source.name, result, timestamp=now)
            except Exception:
                logger.warning("History append failed source=%s", source.name, exc_info=True)
                if self._metrics is not None:
                    self._metrics.observe_source_error(source.name, "history")

        summary.average_percent = average_percent_remaining(summary.results.values())
        self._average_percent = summary.average_percent
        if self._metrics is not None:
            self._metrics.observe_refresh("completed", average_percent=summary.average_percent)
        logger.info(
            "Refresh completed sources=%d failed=%d average=%s",
            len(enabled),
            len(summary.errors),
            "n/a" if summary.average_percent is None else f"{summary.average_percent:.1f}",
        )
        return summary

    async def _fetch(self, source: UsageSource) -> _FetchOutcome:
        try:
            result = await source.fetch_usage()
        except FetchError as exc:
            logger.warning("Usage fetch failed source=%s error=%s", source.name, exc.message)
            return _FetchOutcome(source=source, error=exc.message)
        except Exception as exc:
            logger.warning("Usage fetch crashed source=%s", source.name, exc_info=True)
            return _FetchOutcome(source=source, error=str(exc) or type(exc).__name__)
        return _FetchOutcome(source=source, result=result)


@dataclass(frozen=True, slots=True)
class _FetchOutcome:
    source: UsageSource
    result: UsageResult | None = None
    error: str | None = None
