from __future__ import annotations

import logging
import sqlite3

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from usage_sentinel.core.config.settings import get_settings
from usage_sentinel.db.sqlite_utils import check_sqlite_integrity, is_sqlite_url, sqlite_db_path_from_url

_settings = get_settings()

logger = logging.getLogger(__name__)

_SQLITE_BUSY_TIMEOUT_MS = 5_000
_SQLITE_BUSY_TIMEOUT_SECONDS = _SQLITE_BUSY_TIMEOUT_MS / 1000


def _is_sqlite_memory_url(url: str) -> bool:
    return is_sqlite_url(url) and ":memory:" in url


def _configure_sqlite_engine(engine: Engine, *, enable_wal: bool) -> None:
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection: sqlite3.Connection, _: object) -> None:
        cursor: sqlite3.Cursor = dbapi_connection.cursor()
        try:
            if enable_wal:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute(f"PRAGMA busy_timeout={_SQLITE_BUSY_TIMEOUT_MS}")
        finally:
            cursor.close()


_DATABASE_URL = _settings.database_url


def _build_engine(url: str) -> AsyncEngine:
    if is_sqlite_url(url):
        is_sqlite_memory = _is_sqlite_memory_url(url)
        if is_sqlite_memory:
            engine = create_async_engine(
                url,
                echo=False,
                connect_args={"timeout": _SQLITE_BUSY_TIMEOUT_SECONDS},
            )
        else:
            engine = create_async_engine(
                url,
                echo=False,
                pool_size=_settings.database_pool_size,
                max_overflow=_settings.database_max_overflow,
                pool_timeout=_settings.database_pool_timeout_seconds,
                connect_args={"timeout": _SQLITE_BUSY_TIMEOUT_SECONDS},
            )
        _configure_sqlite_engine(engine.sync_engine, enable_wal=not is_sqlite_memory)
        return engine

    return create_async_engine(
        url,
        echo=False,
        pool_size=_settings.database_pool_size,
        max_overflow=_settings.database_max_overflow,
        pool_timeout=_settings.database_pool_timeout_seconds,
    )


engine = _build_engine(_DATABASE_URL)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


def _ensure_sqlite_dir(url: str) -> None:
    path = sqlite_db_path_from_url(url)
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)


async def init_db() -> None:
    from usage_sentinel.db.models import Base

    _ensure_sqlite_dir(_DATABASE_URL)

    sqlite_path = sqlite_db_path_from_url(_DATABASE_URL)
    if sqlite_path is not None:
        integrity = check_sqlite_integrity(sqlite_path)
        if not integrity.ok:
            details = integrity.details or "unknown error"
            logger.error("SQLite integrity check failed path=%s details=%s", sqlite_path, details)
            if "locked" in details.lower():
                message = f"SQLite integrity check failed for {sqlite_path} ({details}). Another instance may be running."
            else:
                message = (
                    f"SQLite integrity check failed for {sqlite_path} ({details}). "
                    "The database appears corrupted; stop the service and restore or remove it."
                )
            raise RuntimeError(message)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
