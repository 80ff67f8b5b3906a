"""
TTL key-value locks for singleton background jobs.

Used by the scheduler to guard the region-wide commodity snapshot: a second
scheduler run cannot enqueue it while the first one's lock is alive. An
expired lock counts as absent, so a crashed worker blocks nothing for
longer than the TTL.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from wow_osint.db.repositories.base import BaseRepository
from wow_osint.utils.time_utils import to_iso, utcnow

logger = logging.getLogger(__name__)


class LockStore(BaseRepository):
    """Set-if-absent locks over the ``locks`` table."""

    def acquire(
        self,
        key: str,
        ttl: timedelta,
        owner: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Take ``key`` for ``ttl`` unless a live lock holds it.

        Returns:
            ``True`` if the lock is now held by the caller.
        """
        now = now or utcnow()
        cur = self.execute(
            """
            INSERT INTO locks (key, owner, expires_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                owner      = excluded.owner,
                expires_at = excluded.expires_at
            WHERE locks.expires_at <= ?;
            """,
            (key, owner, to_iso(now + ttl), to_iso(now)),
        )
        acquired = cur.rowcount == 1
        logger.debug("Lock %s %s", key, "acquired" if acquired else "busy")
        return acquired

    def is_locked(self, key: str, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        row = self.fetchone(
            "SELECT 1 FROM locks WHERE key = ? AND expires_at > ?;", (key, to_iso(now))
        )
        return row is not None

    def release(self, key: str) -> None:
        self.execute("DELETE FROM locks WHERE key = ?;", (key,))
