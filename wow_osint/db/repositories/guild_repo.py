"""
Repositories for guilds and their stored rosters.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from typing import Optional

from wow_osint.db.repositories.base import BaseRepository, scan_key
from wow_osint.models.entity import Guild, GuildMember
from wow_osint.taxonomy.osint_taxonomy import GUILD_MASTER_RANK
from wow_osint.utils.time_utils import from_iso, to_iso, utcnow

logger = logging.getLogger(__name__)

_GUILD_COLUMNS = (
    "guid", "id", "name", "realm", "realm_id", "realm_name", "faction",
    "members_count", "achievement_points", "created_timestamp", "status",
    "last_modified", "created_by", "updated_by", "scan_key",
    "created_at", "updated_at",
)


class GuildRepository(BaseRepository):
    """Read/write access to the ``guilds`` table."""

    def get(self, guid: str) -> Optional[Guild]:
        row = self.fetchone("SELECT * FROM guilds WHERE guid = ?;", (guid,))
        return _row_to_guild(row) if row else None

    def get_by_id(self, guild_id: int, realm_id: int) -> Optional[Guild]:
        row = self.fetchone(
            "SELECT * FROM guilds WHERE id = ? AND realm_id = ?;", (guild_id, realm_id)
        )
        return _row_to_guild(row) if row else None

    def upsert(self, guild: Guild) -> Guild:
        """Insert or fully update ``guild``; returns the stored copy."""
        now = utcnow()
        stored = guild.model_copy(
            update={
                "created_at": guild.created_at or now,
                "updated_at": guild.updated_at or now,
            }
        )
        placeholders = ", ".join("?" for _ in _GUILD_COLUMNS)
        updates = ", ".join(
            f"{c} = excluded.{c}" for c in _GUILD_COLUMNS if c not in ("guid", "created_at")
        )
        self.execute(
            f"""
            INSERT INTO guilds ({", ".join(_GUILD_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(guid) DO UPDATE SET {updates};
            """,
            (
                stored.guid,
                stored.id,
                stored.name,
                stored.realm,
                stored.realm_id,
                stored.realm_name,
                stored.faction,
                stored.members_count,
                stored.achievement_points,
                to_iso(stored.created_timestamp),
                stored.status,
                to_iso(stored.last_modified),
                stored.created_by,
                stored.updated_by,
                scan_key(stored.guid),
                to_iso(stored.created_at),
                to_iso(stored.updated_at),
            ),
        )
        return stored

    def rename(self, old_guid: str, new_guid: str) -> int:
        """Move a guild to a new guid; stored roster rows follow via FK cascade."""
        cur = self.execute(
            "UPDATE guilds SET guid = ?, scan_key = ? WHERE guid = ?;",
            (new_guid, scan_key(new_guid), old_guid),
        )
        return cur.rowcount

    def count(self) -> int:
        return self.count_rows("guilds")

    def iter_batches(self, batch_size: int = 500) -> Iterator[list[Guild]]:
        """Page through every guild in ``(scan_key, guid)`` order."""
        last: tuple[str, str] = ("", "")
        while True:
            rows = self.fetchall(
                """
                SELECT * FROM guilds
                WHERE (scan_key, guid) > (?, ?)
                ORDER BY scan_key, guid
                LIMIT ?;
                """,
                (last[0], last[1], batch_size),
            )
            if not rows:
                return
            yield [_row_to_guild(r) for r in rows]
            last = (rows[-1]["scan_key"], rows[-1]["guid"])


class GuildMemberRepository(BaseRepository):
    """Read/write access to the ``guild_members`` table."""

    def list_for_guild(self, guild_guid: str) -> list[GuildMember]:
        rows = self.fetchall(
            "SELECT * FROM guild_members WHERE guild_guid = ? ORDER BY rank, character_id;",
            (guild_guid,),
        )
        return [_row_to_member(r) for r in rows]

    def get_master(self, guild_guid: str) -> Optional[GuildMember]:
        """Current holder of the guild-master rank, if a roster is stored."""
        row = self.fetchone(
            "SELECT * FROM guild_members WHERE guild_guid = ? AND rank = ? LIMIT 1;",
            (guild_guid, GUILD_MASTER_RANK),
        )
        return _row_to_member(row) if row else None

    def replace_roster(self, guild_guid: str, members: list[GuildMember]) -> int:
        """Replace the stored roster of ``guild_guid`` with ``members``."""
        self.execute("DELETE FROM guild_members WHERE guild_guid = ?;", (guild_guid,))
        if not members:
            return 0
        self.executemany(
            """
            INSERT INTO guild_members (
                guild_guid, character_id, character_guid, guild_id, realm,
                realm_id, rank, last_modified, created_by, updated_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(guild_guid, character_id) DO UPDATE SET
                character_guid = excluded.character_guid,
                rank           = excluded.rank,
                last_modified  = excluded.last_modified,
                updated_by     = excluded.updated_by;
            """,
            [
                (
                    m.guild_guid,
                    m.character_id,
                    m.character_guid,
                    m.guild_id,
                    m.realm,
                    m.realm_id,
                    m.rank,
                    to_iso(m.last_modified),
                    m.created_by,
                    m.updated_by,
                )
                for m in members
            ],
        )
        return len(members)


def _row_to_guild(row: sqlite3.Row) -> Guild:
    return Guild(
        guid=row["guid"],
        id=row["id"],
        name=row["name"],
        realm=row["realm"],
        realm_id=row["realm_id"],
        realm_name=row["realm_name"],
        faction=row["faction"],
        members_count=row["members_count"],
        achievement_points=row["achievement_points"],
        created_timestamp=from_iso(row["created_timestamp"]),
        status=row["status"],
        last_modified=from_iso(row["last_modified"]),
        created_by=row["created_by"],
        updated_by=row["updated_by"],
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )


def _row_to_member(row: sqlite3.Row) -> GuildMember:
    return GuildMember(
        guild_guid=row["guild_guid"],
        guild_id=row["guild_id"],
        character_id=row["character_id"],
        character_guid=row["character_guid"],
        realm=row["realm"],
        realm_id=row["realm_id"],
        rank=row["rank"],
        last_modified=from_iso(row["last_modified"]),
        created_by=row["created_by"],
        updated_by=row["updated_by"],
    )
