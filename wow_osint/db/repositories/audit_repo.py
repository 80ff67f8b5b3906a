"""
Repository for the append-only ``audit_logs`` table.

Rows are never updated except by the guid rewrites, which keep history
queryable under an entity's current identity after a rename.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from wow_osint.db.repositories.base import BaseRepository
from wow_osint.models.audit import AuditLogEntry
from wow_osint.taxonomy.osint_taxonomy import AuditAction
from wow_osint.utils.time_utils import from_iso, to_iso

logger = logging.getLogger(__name__)


class AuditLogRepository(BaseRepository):
    """Append and query audit log entries."""

    def append(self, entry: AuditLogEntry) -> int:
        """Persist one entry.

        Returns:
            The newly assigned ``log_id``.
        """
        cur = self.execute(
            """
            INSERT INTO audit_logs (
                character_guid, guild_guid, action, original, updated,
                scanned_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (
                entry.character_guid,
                entry.guild_guid,
                entry.action.value,
                entry.original,
                entry.updated,
                to_iso(entry.scanned_at),
                to_iso(entry.created_at),
            ),
        )
        return int(cur.lastrowid)

    def append_many(self, entries: list[AuditLogEntry]) -> list[int]:
        return [self.append(e) for e in entries]

    def list_for_character(
        self, character_guid: str, action: Optional[AuditAction] = None
    ) -> list[AuditLogEntry]:
        sql = "SELECT * FROM audit_logs WHERE character_guid = ?"
        params: tuple = (character_guid,)
        if action is not None:
            sql += " AND action = ?"
            params += (action.value,)
        rows = self.fetchall(sql + " ORDER BY created_at, log_id;", params)
        return [_row_to_entry(r) for r in rows]

    def list_for_guild(
        self, guild_guid: str, action: Optional[AuditAction] = None
    ) -> list[AuditLogEntry]:
        sql = "SELECT * FROM audit_logs WHERE guild_guid = ?"
        params: tuple = (guild_guid,)
        if action is not None:
            sql += " AND action = ?"
            params += (action.value,)
        rows = self.fetchall(sql + " ORDER BY created_at, log_id;", params)
        return [_row_to_entry(r) for r in rows]

    def rewrite_character_guid(self, old_guid: str, new_guid: str) -> int:
        """Re-anchor every entry (and guid-valued payload) from ``old_guid``."""
        cur = self.execute(
            "UPDATE audit_logs SET character_guid = ? WHERE character_guid = ?;",
            (new_guid, old_guid),
        )
        changed = cur.rowcount
        # Leadership entries carry guids as values
        self.execute(
            "UPDATE audit_logs SET original = ? WHERE original = ? AND action IN (?, ?, ?);",
            (new_guid, old_guid, *_GUID_VALUED_ACTIONS),
        )
        self.execute(
            "UPDATE audit_logs SET updated = ? WHERE updated = ? AND action IN (?, ?, ?);",
            (new_guid, old_guid, *_GUID_VALUED_ACTIONS),
        )
        return changed

    def rewrite_guild_guid(self, old_guid: str, new_guid: str) -> int:
        cur = self.execute(
            "UPDATE audit_logs SET guild_guid = ? WHERE guild_guid = ?;",
            (new_guid, old_guid),
        )
        return cur.rowcount

    def count(self) -> int:
        return self.count_rows("audit_logs")


_GUID_VALUED_ACTIONS = (
    AuditAction.GUILD_INHERIT.value,
    AuditAction.GUILD_OWNERSHIP.value,
    AuditAction.GUILD_TRANSIT.value,
)


def _row_to_entry(row: sqlite3.Row) -> AuditLogEntry:
    created_at = from_iso(row["created_at"])
    if created_at is None:
        raise ValueError(f"audit log {row['log_id']!r} has no created_at.")
    return AuditLogEntry(
        log_id=row["log_id"],
        character_guid=row["character_guid"],
        guild_guid=row["guild_guid"],
        action=AuditAction(row["action"]),
        original=row["original"],
        updated=row["updated"],
        scanned_at=from_iso(row["scanned_at"]),
        created_at=created_at,
    )
