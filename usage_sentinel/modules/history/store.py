from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from usage_sentinel.core.errors import PersistenceError
from usage_sentinel.core.usage.types import UsageResult, UsageSnapshot
from usage_sentinel.core.utils.time import utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAX_SNAPSHOTS = 120


class HistoryRepositoryPort(Protocol):
    async def load_all(self, max_per_source: int) -> dict[str, list[UsageSnapshot]]: ...

    async def append(self, source: str, snapshot: UsageSnapshot, *, keep: int) -> None: ...


class HistoryStore:
    """Bounded, time-ordered usage snapshots per source.

    The in-memory lists are authoritative for the running process; every append
    is written through to the repository so history survives restarts. A failing
    repository only costs durability, never the cycle.
    """

    def __init__(
        self,
        repository: HistoryRepositoryPort | None = None,
        *,
        max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
    ) -> None:
        if max_snapshots <= 0:
            raise ValueError("max_snapshots must be > 0")
        self._repository = repository
        self._max_snapshots = max_snapshots
        self._history: dict[str, list[UsageSnapshot]] = {}

    @property
    def max_snapshots(self) -> int:
        return self._max_snapshots

    async def load(self) -> None:
        if self._repository is None:
            return
        try:
            loaded = await self._repository.load_all(self._max_snapshots)
        except PersistenceError:
            logger.warning("Usage history load failed; starting with empty history", exc_info=True)
            return
        self._history = {
            source: sorted(snapshots, key=lambda snapshot: snapshot.timestamp)[-self._max_snapshots :]
            for source, snapshots in loaded.items()
        }

    def history(self, source: str) -> list[UsageSnapshot]:
        return list(self._history.get(source, ()))

    def latest(self, source: str) -> UsageSnapshot | None:
        snapshots = self._history.get(source)
        if not snapshots:
            return None
        return snapshots[-1]

    def sources(self) -> list[str]:
        return sorted(self._history)

    async def append(self, source: str, usage: UsageResult, *, timestamp: datetime | None = None) -> UsageSnapshot:
        snapshot = UsageSnapshot(timestamp=timestamp or utcnow(), usage=usage)
        history = self._history.setdefault(source, [])
        last = history[-1] if history else None
        if last is not None and snapshot.timestamp < last.timestamp:
            # Appends must keep the series ordered; a clock step backwards reuses the last timestamp.
            snapshot = UsageSnapshot(timestamp=last.timestamp, usage=usage)
        history.append(snapshot)
        overflow = len(history) - self._max_snapshots
        if overflow > 0:
            del history[:overflow]

        if self._repository is not None:
            try:
                await self._repository.append(source, snapshot, keep=self._max_snapshots)
            except PersistenceError:
                logger.warning("Usage history save failed source=%s", source, exc_info=True)
        return snapshot
