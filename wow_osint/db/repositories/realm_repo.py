"""
Repository for the realm reference table.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from wow_osint.db.repositories.base import BaseRepository, dump_list, load_list
from wow_osint.models.realm import Realm
from wow_osint.utils.time_utils import from_iso, to_iso

logger = logging.getLogger(__name__)


class RealmRepository(BaseRepository):
    """Read/write access to the ``realms`` table."""

    def upsert(self, realm: Realm) -> None:
        """Insert or update a realm, keeping its auction timestamp."""
        self.execute(
            """
            INSERT INTO realms (
                id, slug, name, locale_name, locale_slug,
                connected_realm_id, region, aliases, auctions_timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                slug               = excluded.slug,
                name               = excluded.name,
                locale_name        = excluded.locale_name,
                locale_slug        = excluded.locale_slug,
                connected_realm_id = excluded.connected_realm_id,
                region             = excluded.region,
                aliases            = excluded.aliases,
                auctions_timestamp = COALESCE(excluded.auctions_timestamp, realms.auctions_timestamp);
            """,
            (
                realm.id,
                realm.slug,
                realm.name,
                realm.locale_name,
                realm.locale_slug,
                realm.connected_realm_id,
                realm.region,
                dump_list(realm.aliases),
                to_iso(realm.auctions_timestamp),
            ),
        )

    def get_by_id(self, realm_id: int) -> Optional[Realm]:
        row = self.fetchone("SELECT * FROM realms WHERE id = ?;", (realm_id,))
        return _row_to_realm(row) if row else None

    def list_all(self) -> list[Realm]:
        rows = self.fetchall("SELECT * FROM realms ORDER BY id;")
        return [_row_to_realm(r) for r in rows]

    def list_connected_realm_ids(self) -> list[int]:
        rows = self.fetchall(
            "SELECT DISTINCT connected_realm_id FROM realms ORDER BY connected_realm_id;"
        )
        return [int(r["connected_realm_id"]) for r in rows]

    def list_stale_connected_realms(self, older_than: datetime) -> list[int]:
        """Connected realms whose auctions were never or not recently fetched.

        Args:
            older_than: Cut-off; realms snapshotted at or after it are skipped.
        """
        rows = self.fetchall(
            """
            SELECT connected_realm_id, MIN(COALESCE(auctions_timestamp, '')) AS ts
            FROM realms
            GROUP BY connected_realm_id
            HAVING ts = '' OR ts < ?
            ORDER BY connected_realm_id;
            """,
            (to_iso(older_than),),
        )
        return [int(r["connected_realm_id"]) for r in rows]

    def touch_auctions(self, connected_realm_id: int, fetched_at: datetime) -> int:
        """Stamp every realm of a connected realm with a fresh auction timestamp."""
        cur = self.execute(
            "UPDATE realms SET auctions_timestamp = ? WHERE connected_realm_id = ?;",
            (to_iso(fetched_at), connected_realm_id),
        )
        return cur.rowcount


def _row_to_realm(row: sqlite3.Row) -> Realm:
    return Realm(
        id=row["id"],
        slug=row["slug"],
        name=row["name"],
        locale_name=row["locale_name"],
        locale_slug=row["locale_slug"],
        connected_realm_id=row["connected_realm_id"],
        region=row["region"],
        aliases=load_list(row["aliases"]),
        auctions_timestamp=from_iso(row["auctions_timestamp"]),
    )
