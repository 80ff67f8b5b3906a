"""
Repository for tracked characters.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from typing import Optional

from wow_osint.db.repositories.base import BaseRepository, dump_list, load_list, scan_key
from wow_osint.models.entity import Character
from wow_osint.utils.time_utils import from_iso, to_iso, utcnow

logger = logging.getLogger(__name__)

_COLUMNS = (
    "guid", "id", "name", "realm", "realm_id", "realm_name",
    "guild", "guild_guid", "guild_id", "guild_rank",
    "character_class", "race", "gender", "faction", "level",
    "achievement_points", "average_item_level", "avatar_url",
    "pets_number", "mounts_number", "professions", "hash_a",
    "status", "is_valid", "last_modified", "created_by", "updated_by",
    "scan_key", "created_at", "updated_at",
)


class CharacterRepository(BaseRepository):
    """Read/write access to the ``characters`` table."""

    def get(self, guid: str) -> Optional[Character]:
        row = self.fetchone("SELECT * FROM characters WHERE guid = ?;", (guid,))
        return _row_to_character(row) if row else None

    def get_with_family(self, guid: str) -> Optional[Character]:
        """Character by guid, only if its family hash is known."""
        row = self.fetchone(
            "SELECT * FROM characters WHERE guid = ? AND hash_a IS NOT NULL;", (guid,)
        )
        return _row_to_character(row) if row else None

    def get_by_id(self, character_id: int, realm_id: int) -> Optional[Character]:
        row = self.fetchone(
            "SELECT * FROM characters WHERE id = ? AND realm_id = ?;",
            (character_id, realm_id),
        )
        return _row_to_character(row) if row else None

    def upsert(self, character: Character) -> Character:
        """Insert or fully update ``character``.

        ``created_at`` is kept from the first insert; ``updated_at`` defaults
        to now when the caller has not set it.

        Returns:
            The character as stored.
        """
        now = utcnow()
        stored = character.model_copy(
            update={
                "created_at": character.created_at or now,
                "updated_at": character.updated_at or now,
            }
        )
        placeholders = ", ".join("?" for _ in _COLUMNS)
        updates = ", ".join(
            f"{c} = excluded.{c}" for c in _COLUMNS if c not in ("guid", "created_at")
        )
        self.execute(
            f"""
            INSERT INTO characters ({", ".join(_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(guid) DO UPDATE SET {updates};
            """,
            _to_params(stored),
        )
        return stored

    def rename(self, old_guid: str, new_guid: str) -> int:
        """Move a stored character to a new guid (rename or transfer)."""
        cur = self.execute(
            "UPDATE characters SET guid = ?, scan_key = ? WHERE guid = ?;",
            (new_guid, scan_key(new_guid), old_guid),
        )
        return cur.rowcount

    def set_guild_membership(
        self,
        guid: str,
        guild_name: str,
        guild_guid: str,
        guild_id: Optional[int],
        rank: int,
        updated_by: Optional[str] = None,
    ) -> int:
        """Point a stored character at a guild (no-op for unknown guids)."""
        cur = self.execute(
            """
            UPDATE characters
            SET guild = ?, guild_guid = ?, guild_id = ?, guild_rank = ?, updated_by = ?
            WHERE guid = ?;
            """,
            (guild_name, guild_guid, guild_id, rank, updated_by, guid),
        )
        return cur.rowcount

    def clear_guild_membership(
        self, guid: str, guild_guid: str, updated_by: Optional[str] = None
    ) -> int:
        """Detach a character from ``guild_guid`` if it still points there."""
        cur = self.execute(
            """
            UPDATE characters
            SET guild = NULL, guild_guid = NULL, guild_id = NULL, guild_rank = NULL,
                updated_by = ?
            WHERE guid = ? AND guild_guid = ?;
            """,
            (updated_by, guid, guild_guid),
        )
        return cur.rowcount

    def count(self) -> int:
        return self.count_rows("characters")

    def iter_batches(self, batch_size: int = 500) -> Iterator[list[Character]]:
        """Page through every character in ``(scan_key, guid)`` order.

        Keyset pagination: each page starts after the last key of the
        previous one, so rows written mid-scan never shift the window.
        """
        last: tuple[str, str] = ("", "")
        while True:
            rows = self.fetchall(
                """
                SELECT * FROM characters
                WHERE (scan_key, guid) > (?, ?)
                ORDER BY scan_key, guid
                LIMIT ?;
                """,
                (last[0], last[1], batch_size),
            )
            if not rows:
                return
            yield [_row_to_character(r) for r in rows]
            last = (rows[-1]["scan_key"], rows[-1]["guid"])


def _to_params(c: Character) -> tuple:
    return (
        c.guid,
        c.id,
        c.name,
        c.realm,
        c.realm_id,
        c.realm_name,
        c.guild,
        c.guild_guid,
        c.guild_id,
        c.guild_rank,
        c.character_class,
        c.race,
        c.gender,
        c.faction,
        c.level,
        c.achievement_points,
        c.average_item_level,
        c.avatar_url,
        c.pets_number,
        c.mounts_number,
        dump_list(c.professions),
        c.hash_a,
        c.status,
        int(c.is_valid),
        to_iso(c.last_modified),
        c.created_by,
        c.updated_by,
        scan_key(c.guid),
        to_iso(c.created_at),
        to_iso(c.updated_at),
    )


def _row_to_character(row: sqlite3.Row) -> Character:
    return Character(
        guid=row["guid"],
        id=row["id"],
        name=row["name"],
        realm=row["realm"],
        realm_id=row["realm_id"],
        realm_name=row["realm_name"],
        guild=row["guild"],
        guild_guid=row["guild_guid"],
        guild_id=row["guild_id"],
        guild_rank=row["guild_rank"],
        character_class=row["character_class"],
        race=row["race"],
        gender=row["gender"],
        faction=row["faction"],
        level=row["level"],
        achievement_points=row["achievement_points"],
        average_item_level=row["average_item_level"],
        avatar_url=row["avatar_url"],
        pets_number=row["pets_number"],
        mounts_number=row["mounts_number"],
        professions=load_list(row["professions"]),
        hash_a=row["hash_a"],
        status=row["status"],
        is_valid=bool(row["is_valid"]),
        last_modified=from_iso(row["last_modified"]),
        created_by=row["created_by"],
        updated_by=row["updated_by"],
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )
