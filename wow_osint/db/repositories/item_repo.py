"""
Repositories for items and auction snapshot bookkeeping.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from wow_osint.db.repositories.base import BaseRepository
from wow_osint.models.item import AuctionSnapshot, Item
from wow_osint.utils.time_utils import from_iso, to_iso

logger = logging.getLogger(__name__)


class ItemRepository(BaseRepository):
    """Read/write access to the ``items`` table."""

    def upsert(self, item: Item) -> None:
        self.execute(
            """
            INSERT INTO items (id, name, quality, item_class, item_subclass, level, is_stackable)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name          = excluded.name,
                quality       = excluded.quality,
                item_class    = excluded.item_class,
                item_subclass = excluded.item_subclass,
                level         = excluded.level,
                is_stackable  = excluded.is_stackable,
                updated_at    = strftime('%Y-%m-%dT%H:%M:%SZ', 'now');
            """,
            (
                item.id,
                item.name,
                item.quality,
                item.item_class,
                item.item_subclass,
                item.level,
                int(item.is_stackable),
            ),
        )

    def get(self, item_id: int) -> Optional[Item]:
        row = self.fetchone("SELECT * FROM items WHERE id = ?;", (item_id,))
        if row is None:
            return None
        return Item(
            id=row["id"],
            name=row["name"],
            quality=row["quality"],
            item_class=row["item_class"],
            item_subclass=row["item_subclass"],
            level=row["level"],
            is_stackable=bool(row["is_stackable"]),
        )

    def count(self) -> int:
        return self.count_rows("items")


class AuctionSnapshotRepository(BaseRepository):
    """Append-only bookkeeping of fetched auction dumps."""

    def record(self, snapshot: AuctionSnapshot) -> int:
        cur = self.execute(
            """
            INSERT INTO auction_snapshots (
                snapshot_key, connected_realm_id, last_modified, auction_count, fetched_at
            ) VALUES (?, ?, ?, ?, ?);
            """,
            (
                snapshot.snapshot_key,
                snapshot.connected_realm_id,
                to_iso(snapshot.last_modified),
                snapshot.auction_count,
                to_iso(snapshot.fetched_at),
            ),
        )
        return int(cur.lastrowid)

    def get_latest(self, connected_realm_id: int) -> Optional[AuctionSnapshot]:
        row = self.fetchone(
            """
            SELECT * FROM auction_snapshots
            WHERE connected_realm_id = ?
            ORDER BY fetched_at DESC, snapshot_id DESC
            LIMIT 1;
            """,
            (connected_realm_id,),
        )
        return _row_to_snapshot(row) if row else None


def _row_to_snapshot(row: sqlite3.Row) -> AuctionSnapshot:
    fetched_at = from_iso(row["fetched_at"])
    if fetched_at is None:
        raise ValueError(f"snapshot {row['snapshot_key']!r} has no fetched_at.")
    return AuctionSnapshot(
        snapshot_key=row["snapshot_key"],
        connected_realm_id=row["connected_realm_id"],
        last_modified=from_iso(row["last_modified"]),
        auction_count=row["auction_count"],
        fetched_at=fetched_at,
    )
