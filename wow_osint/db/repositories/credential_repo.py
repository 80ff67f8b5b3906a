"""
Repository for API credentials.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from wow_osint.db.repositories.base import BaseRepository, dump_list, load_list
from wow_osint.models.credential import Credential
from wow_osint.taxonomy.osint_taxonomy import CredentialStatus
from wow_osint.utils.time_utils import from_iso, to_iso

logger = logging.getLogger(__name__)


class CredentialRepository(BaseRepository):
    """Read/write access to the ``credentials`` table."""

    def insert_if_absent(self, credential: Credential) -> bool:
        """Insert ``credential`` unless its client id is already known.

        Returns:
            ``True`` if a row was inserted.
        """
        cur = self.execute(
            """
            INSERT OR IGNORE INTO credentials (
                client_id, client_secret, access_token, expires_at, tags,
                status, error_counts, reset_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            _to_params(credential),
        )
        return cur.rowcount > 0

    def save(self, credential: Credential) -> None:
        """Upsert the full credential state."""
        self.execute(
            """
            INSERT INTO credentials (
                client_id, client_secret, access_token, expires_at, tags,
                status, error_counts, reset_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(client_id) DO UPDATE SET
                client_secret = excluded.client_secret,
                access_token  = excluded.access_token,
                expires_at    = excluded.expires_at,
                tags          = excluded.tags,
                status        = excluded.status,
                error_counts  = excluded.error_counts,
                reset_at      = excluded.reset_at;
            """,
            _to_params(credential),
        )

    def get(self, client_id: str) -> Optional[Credential]:
        row = self.fetchone("SELECT * FROM credentials WHERE client_id = ?;", (client_id,))
        return _row_to_credential(row) if row else None

    def get_by_token(self, access_token: str) -> Optional[Credential]:
        row = self.fetchone(
            "SELECT * FROM credentials WHERE access_token = ?;", (access_token,)
        )
        return _row_to_credential(row) if row else None

    def list_all(self) -> list[Credential]:
        rows = self.fetchall("SELECT * FROM credentials ORDER BY client_id;")
        return [_row_to_credential(r) for r in rows]

    def list_by_tag(self, tag: str) -> list[Credential]:
        """Credentials carrying clearance ``tag``, ordered by client id."""
        return [c for c in self.list_all() if c.has_tag(tag)]

    def increment_errors(self, client_id: str) -> Optional[Credential]:
        """Read-modify-write ``error_counts += 1``.

        Deliberately not a single atomic UPDATE: concurrent increments may be
        lost, which the circuit-breaker threshold tolerates.

        Returns:
            The updated credential, or ``None`` if the client id is unknown.
        """
        current = self.get(client_id)
        if current is None:
            return None
        updated = current.model_copy(update={"error_counts": current.error_counts + 1})
        self.execute(
            "UPDATE credentials SET error_counts = ? WHERE client_id = ?;",
            (updated.error_counts, client_id),
        )
        return updated


def _to_params(c: Credential) -> tuple:
    return (
        c.client_id,
        c.client_secret,
        c.access_token,
        to_iso(c.expires_at),
        dump_list(c.tags),
        c.status.value,
        c.error_counts,
        to_iso(c.reset_at),
    )


def _row_to_credential(row: sqlite3.Row) -> Credential:
    return Credential(
        client_id=row["client_id"],
        client_secret=row["client_secret"],
        access_token=row["access_token"],
        expires_at=from_iso(row["expires_at"]),
        tags=load_list(row["tags"]),
        status=CredentialStatus(row["status"]),
        error_counts=row["error_counts"],
        reset_at=from_iso(row["reset_at"]),
    )
