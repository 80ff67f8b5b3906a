"""
SQLite connection management.

``get_connection()`` yields a connection with foreign keys on, WAL journal
mode (workers write while the CLI reads queue state), a busy timeout, and
``sqlite3.Row`` rows. It commits on clean exit and rolls back on exception.

Long-running workers keep one connection open and commit per job instead;
see ``WorkerPool``.

Usage::

    from wow_osint.db.connection import get_connection

    with get_connection("data/db/wow_osint.db") as conn:
        CharacterRepository(conn).get("thrall-draenor")
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)


def open_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> sqlite3.Connection:
    """Open and configure a connection without managing its lifetime.

    Args:
        db_path: Path to the SQLite file, or ``":memory:"``.
        wal_mode: Enable WAL journal mode.
        busy_timeout_ms: Milliseconds to wait on a locked database.

    Returns:
        An open ``sqlite3.Connection``; the caller closes it.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms};")
    if wal_mode and db_path != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL;")
    logger.debug("Opened SQLite connection to %s", db_path)
    return conn


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager yielding a configured SQLite connection.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened or is locked.
    """
    conn = open_connection(db_path, wal_mode=wal_mode, busy_timeout_ms=busy_timeout_ms)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
