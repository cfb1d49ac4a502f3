from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

_SQLITE_URL_PREFIXES = ("sqlite+aiosqlite:", "sqlite:")


@dataclass(slots=True)
class IntegrityCheck:
    ok: bool
    details: str | None


def is_sqlite_url(url: str) -> bool:
    return url.startswith(_SQLITE_URL_PREFIXES)


def sqlite_db_path_from_url(url: str) -> Path | None:
    """Filesystem path of a SQLite URL; ``None`` for in-memory or non-SQLite URLs."""
    if not is_sqlite_url(url):
        return None
    _, marker, path = url.partition(":///")
    if not marker:
        return None
    path = path.partition("?")[0].partition("#")[0]
    if not path or path == ":memory:":
        return None
    return Path(path).expanduser()


def check_sqlite_integrity(path: Path) -> IntegrityCheck:
    if not path.exists():
        return IntegrityCheck(ok=True, details=None)

    try:
        with sqlite3.connect(str(path)) as conn:
            rows = [row[0] for row in conn.execute("PRAGMA quick_check;").fetchall()]
    except sqlite3.DatabaseError as exc:
        return IntegrityCheck(ok=False, details=str(exc))

    if rows == ["ok"]:
        return IntegrityCheck(ok=True, details=None)
    if not rows:
        return IntegrityCheck(ok=False, details="quick_check returned no rows")
    return IntegrityCheck(ok=False, details="; ".join(str(row) for row in rows))
