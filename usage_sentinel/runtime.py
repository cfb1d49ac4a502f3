from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from usage_sentinel.core.config.settings import Settings, get_settings
from usage_sentinel.core.metrics import get_metrics
from usage_sentinel.core.metrics.metrics import Metrics
from usage_sentinel.core.notifications.delivery import Notifier, build_notifier
from usage_sentinel.core.sources.base import UsageSource
from usage_sentinel.core.sources.registry import build_sources
from usage_sentinel.modules.history.repository import HistoryRepository
from usage_sentinel.modules.history.store import HistoryStore
from usage_sentinel.modules.notifications.engine import NotificationEngine
from usage_sentinel.modules.refresh.orchestrator import RefreshOrchestrator
from usage_sentinel.modules.refresh.scheduler import RefreshScheduler
from usage_sentinel.modules.settings.repository import SettingsRepository
from usage_sentinel.modules.settings.store import SettingsStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    sources: list[UsageSource]
    settings_store: SettingsStore
    history_store: HistoryStore
    engine: NotificationEngine
    orchestrator: RefreshOrchestrator
    scheduler: RefreshScheduler
    metrics: Metrics

    def source(self, name: str) -> UsageSource | None:
        return self.orchestrator.source(name)


def build_runtime(
    settings: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    sources: Sequence[UsageSource] | None = None,
    notifier: Notifier | None = None,
    metrics: Metrics | None = None,
) -> Runtime:
    """Wire the stores, engine, orchestrator and scheduler.

    Without a ``session_factory`` the stores run purely in memory.
    """
    settings = settings or get_settings()
    metrics = metrics or get_metrics()
    resolved_sources = list(sources) if sources is not None else build_sources(settings)

    settings_store = SettingsStore(
        SettingsRepository(session_factory) if session_factory is not None else None,
        default_poll_interval_seconds=settings.poll_interval_seconds,
    )
    history_store = HistoryStore(
        HistoryRepository(session_factory) if session_factory is not None else None,
        max_snapshots=settings.history_max_snapshots,
    )
    engine = NotificationEngine(
        settings_store,
        history_store,
        notifier or build_notifier(settings),
        metrics=metrics,
    )
    orchestrator = RefreshOrchestrator(
        resolved_sources,
        settings_store,
        history_store,
        engine,
        metrics=metrics,
    )
    scheduler = RefreshScheduler(
        orchestrator=orchestrator,
        settings_store=settings_store,
        enabled=settings.refresh_enabled,
    )
    return Runtime(
        sources=resolved_sources,
        settings_store=settings_store,
        history_store=history_store,
        engine=engine,
        orchestrator=orchestrator,
        scheduler=scheduler,
        metrics=metrics,
    )


async def prepare_runtime(runtime: Runtime, settings: Settings | None = None) -> None:
    """Load persisted state and create defaults for every known source and rule."""
    settings = settings or get_settings()
    await runtime.settings_store.load()
    await runtime.history_store.load()
    await runtime.settings_store.ensure_sources(
        [source.name for source in runtime.sources],
        enabled_by_default=settings.enabled_sources_default,
    )
    for source in runtime.sources:
        await runtime.settings_store.ensure_notification_rules(source.name, source.notification_definitions)
    logger.info(
        "Runtime ready sources=%s enabled=%s poll_interval=%.0f",
        ",".join(source.name for source in runtime.sources),
        ",".join(runtime.settings_store.enabled_sources(source.name for source in runtime.sources)) or "-",
        runtime.settings_store.poll_interval(),
    )
