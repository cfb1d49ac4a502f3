from __future__ import annotations

from collections import defaultdict

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from usage_sentinel.core.errors import PersistenceError
from usage_sentinel.core.usage.types import UsageResult, UsageSnapshot
from usage_sentinel.db.models import UsageSnapshotRecord


def _to_snapshot(record: UsageSnapshotRecord) -> UsageSnapshot:
    return UsageSnapshot(
        timestamp=record.recorded_at,
        usage=UsageResult(remaining=float(record.remaining), limit=float(record.limit)),
    )


class HistoryRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load_all(self, max_per_source: int) -> dict[str, list[UsageSnapshot]]:
        ranked = (
            select(
                UsageSnapshotRecord.id.label("id"),
                func.row_number()
                .over(
                    partition_by=UsageSnapshotRecord.source,
                    order_by=(UsageSnapshotRecord.recorded_at.desc(), UsageSnapshotRecord.id.desc()),
                )
                .label("rn"),
            )
            .subquery()
        )
        stmt = (
            select(UsageSnapshotRecord)
            .join(ranked, UsageSnapshotRecord.id == ranked.c.id)
            .where(ranked.c.rn <= max_per_source)
            .order_by(UsageSnapshotRecord.source, UsageSnapshotRecord.recorded_at, UsageSnapshotRecord.id)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                records = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to load usage history: {exc}") from exc

        history: dict[str, list[UsageSnapshot]] = defaultdict(list)
        for record in records:
            history[record.source].append(_to_snapshot(record))
        return dict(history)

    async def append(self, source: str, snapshot: UsageSnapshot, *, keep: int) -> None:
        """Insert ``snapshot`` and delete rows of ``source`` beyond the newest ``keep``."""
        try:
            async with self._session_factory() as session:
                session.add(
                    UsageSnapshotRecord(
                        source=source,
                        recorded_at=snapshot.timestamp,
                        remaining=snapshot.usage.remaining,
                        limit=snapshot.usage.limit,
                    )
                )
                await session.flush()
                keep_ids = (
                    select(UsageSnapshotRecord.id)
                    .where(UsageSnapshotRecord.source == source)
                    .order_by(UsageSnapshotRecord.recorded_at.desc(), UsageSnapshotRecord.id.desc())
                    .limit(keep)
                )
                await session.execute(
                    delete(UsageSnapshotRecord)
                    .where(UsageSnapshotRecord.source == source)
                    .where(UsageSnapshotRecord.id.not_in(keep_ids))
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to append usage snapshot source={source}: {exc}") from exc
