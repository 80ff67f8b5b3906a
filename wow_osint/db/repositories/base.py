"""
Base repository providing shared SQLite helpers.

Repositories receive an open ``sqlite3.Connection`` and never commit; the
owner of the connection (``get_connection()`` or a worker loop) decides the
transaction boundary. SQL is explicit, rows come back as ``sqlite3.Row``,
and public methods speak pydantic models.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from typing import Any, Optional

logger = logging.getLogger(__name__)


class BaseRepository:
    """Shared SQL execution helpers for all repository classes.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> sqlite3.Cursor:
        logger.debug("SQL: %s | params: %s", sql.strip(), params)
        return self.conn.execute(sql, params)

    def executemany(
        self,
        sql: str,
        params_list: list[tuple[Any, ...] | dict[str, Any]],
    ) -> sqlite3.Cursor:
        logger.debug("SQL (many): %s | count: %d", sql.strip(), len(params_list))
        return self.conn.executemany(sql, params_list)

    def fetchone(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> Optional[sqlite3.Row]:
        return self.execute(sql, params).fetchone()

    def fetchall(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def count_rows(self, table: str) -> int:
        """Row count of ``table`` (trusted table names only)."""
        row = self.fetchone(f"SELECT COUNT(*) AS n FROM {table};")
        assert row is not None
        return int(row["n"])


# ── Column codecs ─────────────────────────────────────────────────────────────


def scan_key(guid: str) -> str:
    """Short, stable hash of a guid used to order bulk resync scans."""
    return hashlib.md5(guid.encode("utf-8")).hexdigest()[:8]


def dump_list(values: list[Any]) -> str:
    return json.dumps(list(values))


def load_list(value: Optional[str]) -> list[Any]:
    if not value:
        return []
    return list(json.loads(value))
