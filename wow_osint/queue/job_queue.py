"""
Durable SQLite-backed job queue.

One table, partitioned by ``queue_name``, keyed by ``(queue_name, job_id)``.
Because the key is the job's deterministic id, the table itself enforces
the only ordering guarantee the crawler relies on: **at most one live job
per deterministic id**. ``enqueue`` of an id that is already waiting,
delayed or active is a no-op; a finished (completed/failed) row under the
same id is replaced by the new job.

State machine::

    enqueue ──► waiting ──claim──► active ──complete──► completed
        │                            │
        └─delay─► delayed ◄──fail────┤ (attempts left, exponential backoff)
                     │               └──fail──► failed (no attempts left / no retry)
                     └──claim (available_at elapsed)──► active

``drain`` deletes waiting and delayed jobs only. Active jobs are never
interrupted; they run to completion or to the worker's timeout.

An active row whose ``updated_at`` is older than ``lease`` belongs to a
worker that died mid-job. It no longer counts as live: ``enqueue`` replaces
it, ``has_live`` ignores it, and ``claim`` first moves it back to
``delayed`` (or ``failed`` once its attempts are used up).
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from wow_osint.db.repositories.base import BaseRepository
from wow_osint.models.jobs import CrawlJob, parse_job
from wow_osint.taxonomy.osint_taxonomy import LIVE_JOB_STATES, JobState, QueueName
from wow_osint.utils.time_utils import from_iso, to_iso, utcnow

if TYPE_CHECKING:
    from wow_osint.config import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 5


@dataclass(frozen=True)
class QueuedJob:
    """A row of the queue with its parsed payload."""

    queue_name: str
    job_id: str
    job: CrawlJob
    priority: int
    state: JobState
    attempts: int
    max_attempts: int
    available_at: datetime
    last_error: Optional[str]
    created_at: datetime

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_JOB_STATES


class JobQueue(BaseRepository):
    """Queue primitives over the ``queue_jobs`` table.

    Args:
        conn: Open connection; the caller owns commits.
        max_attempts: Attempts a job gets before it is marked ``failed``.
        backoff: Base retry delay; doubled on every further attempt.
        lease: How long a job may stay ``active`` before it is presumed
            abandoned by a dead worker.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        max_attempts: int = 3,
        backoff: timedelta = timedelta(seconds=30),
        lease: timedelta = timedelta(minutes=10),
    ) -> None:
        super().__init__(conn)
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.lease = lease

    @classmethod
    def from_config(cls, conn: sqlite3.Connection, config: "AppConfig") -> "JobQueue":
        workers = config.workers
        return cls(
            conn,
            max_attempts=workers.max_attempts,
            backoff=timedelta(seconds=workers.backoff_seconds),
            lease=workers.lease,
        )

    # ── Producer side ─────────────────────────────────────────────────────────

    def enqueue(
        self,
        job: CrawlJob,
        priority: int = DEFAULT_PRIORITY,
        delay: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Add ``job`` under its deterministic id.

        Args:
            job: Validated job payload.
            priority: Lower runs first. Advisory only.
            delay: Hold the job back for this long.
            now: Clock override (tests).

        Returns:
            ``True`` if the job was added, ``False`` if a live job with the
            same id already exists.
        """
        now = now or utcnow()
        queue_name = job.queue_name.value
        existing = self.fetchone(
            "SELECT state, updated_at FROM queue_jobs WHERE queue_name = ? AND job_id = ?;",
            (queue_name, job.job_id),
        )
        if existing is not None and self._is_live_row(existing, now):
            logger.debug(
                "Job %s already live in %s; enqueue ignored.", job.job_id, queue_name
            )
            return False

        state = JobState.DELAYED if delay else JobState.WAITING
        available_at = now + delay if delay else now
        self.execute(
            """
            INSERT INTO queue_jobs (
                queue_name, job_id, kind, payload, priority, state, attempts,
                max_attempts, available_at, last_error, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, NULL, ?, ?)
            ON CONFLICT(queue_name, job_id) DO UPDATE SET
                kind         = excluded.kind,
                payload      = excluded.payload,
                priority     = excluded.priority,
                state        = excluded.state,
                attempts     = 0,
                max_attempts = excluded.max_attempts,
                available_at = excluded.available_at,
                last_error   = NULL,
                created_at   = excluded.created_at,
                updated_at   = excluded.updated_at;
            """,
            (
                queue_name,
                job.job_id,
                job.kind,
                job.model_dump_json(),
                priority,
                state.value,
                self.max_attempts,
                to_iso(available_at),
                to_iso(now),
                to_iso(now),
            ),
        )
        return True

    def drain(self, queue_name: QueueName | str, job_id_prefix: str = "") -> int:
        """Remove every waiting and delayed job of ``queue_name``.

        Args:
            queue_name: Queue to drain.
            job_id_prefix: Only drain jobs whose id starts with this.

        Returns:
            Number of jobs removed.
        """
        cur = self.execute(
            """
            DELETE FROM queue_jobs
            WHERE queue_name = ? AND job_id LIKE ? AND state IN (?, ?);
            """,
            (
                str(queue_name),
                f"{job_id_prefix}%",
                JobState.WAITING.value,
                JobState.DELAYED.value,
            ),
        )
        if cur.rowcount:
            logger.info("Drained %d pending job(s) from %s.", cur.rowcount, queue_name)
        return cur.rowcount

    def get_job(self, queue_name: QueueName | str, job_id: str) -> Optional[QueuedJob]:
        row = self.fetchone(
            "SELECT * FROM queue_jobs WHERE queue_name = ? AND job_id = ?;",
            (str(queue_name), job_id),
        )
        return _row_to_queued(row) if row else None

    def is_active(self, queue_name: QueueName | str, job_id: str) -> bool:
        row = self.fetchone(
            "SELECT state FROM queue_jobs WHERE queue_name = ? AND job_id = ?;",
            (str(queue_name), job_id),
        )
        return row is not None and row["state"] == JobState.ACTIVE.value

    def has_live(
        self,
        queue_name: QueueName | str,
        job_id_prefix: str = "",
        now: Optional[datetime] = None,
    ) -> bool:
        """Whether any live job exists, optionally restricted to an id prefix.

        Active jobs past their lease are not counted.
        """
        now = now or utcnow()
        row = self.fetchone(
            """
            SELECT 1 FROM queue_jobs
            WHERE queue_name = ? AND job_id LIKE ? AND (
                state IN (?, ?) OR (state = ? AND updated_at > ?)
            )
            LIMIT 1;
            """,
            (
                str(queue_name),
                f"{job_id_prefix}%",
                JobState.WAITING.value,
                JobState.DELAYED.value,
                JobState.ACTIVE.value,
                to_iso(now - self.lease),
            ),
        )
        return row is not None

    def requeue_stalled(
        self,
        queue_name: Optional[QueueName | str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Recover active jobs whose lease has expired.

        Each one goes back to ``delayed``, available immediately, or to
        ``failed`` when it has no attempts left.

        Args:
            queue_name: Restrict to one queue; every queue when omitted.
            now: Clock override (tests).

        Returns:
            Number of jobs recovered.
        """
        now = now or utcnow()
        params: list = [
            JobState.DELAYED.value,
            JobState.FAILED.value,
            to_iso(now),
            f"StalledJob: still active after {self.lease}",
            to_iso(now),
            JobState.ACTIVE.value,
            to_iso(now - self.lease),
        ]
        where = "state = ? AND updated_at <= ?"
        if queue_name is not None:
            where += " AND queue_name = ?"
            params.append(str(queue_name))
        cur = self.execute(
            f"""
            UPDATE queue_jobs
            SET state = CASE WHEN attempts < max_attempts THEN ? ELSE ? END,
                available_at = ?, last_error = ?, updated_at = ?
            WHERE {where};
            """,
            tuple(params),
        )
        if cur.rowcount:
            logger.warning(
                "Recovered %d stalled job(s) from %s.", cur.rowcount, queue_name or "all queues"
            )
        return cur.rowcount

    # ── Consumer side ─────────────────────────────────────────────────────────

    def claim(
        self,
        queue_name: QueueName | str,
        limit: int,
        now: Optional[datetime] = None,
    ) -> list[QueuedJob]:
        """Move up to ``limit`` eligible jobs to ``active`` and return them.

        Eligible: waiting or delayed with ``available_at <= now``; ordered by
        priority, then availability, then creation. Stalled active jobs are
        recovered first.
        """
        now = now or utcnow()
        self.requeue_stalled(queue_name, now=now)
        rows = self.fetchall(
            """
            SELECT * FROM queue_jobs
            WHERE queue_name = ? AND state IN (?, ?) AND available_at <= ?
            ORDER BY priority, available_at, created_at
            LIMIT ?;
            """,
            (
                str(queue_name),
                JobState.WAITING.value,
                JobState.DELAYED.value,
                to_iso(now),
                limit,
            ),
        )
        claimed: list[QueuedJob] = []
        for row in rows:
            cur = self.execute(
                """
                UPDATE queue_jobs
                SET state = ?, attempts = attempts + 1, updated_at = ?
                WHERE queue_name = ? AND job_id = ? AND state IN (?, ?);
                """,
                (
                    JobState.ACTIVE.value,
                    to_iso(now),
                    row["queue_name"],
                    row["job_id"],
                    JobState.WAITING.value,
                    JobState.DELAYED.value,
                ),
            )
            if cur.rowcount != 1:
                continue
            refreshed = self.get_job(row["queue_name"], row["job_id"])
            if refreshed is not None:
                claimed.append(refreshed)
        return claimed

    def complete(self, queue_name: QueueName | str, job_id: str, now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        self.execute(
            "UPDATE queue_jobs SET state = ?, updated_at = ? WHERE queue_name = ? AND job_id = ?;",
            (JobState.COMPLETED.value, to_iso(now), str(queue_name), job_id),
        )

    def fail(
        self,
        queue_name: QueueName | str,
        job_id: str,
        error: str,
        retry: bool = True,
        now: Optional[datetime] = None,
    ) -> JobState:
        """Record a failed attempt.

        With ``retry`` and attempts left, the job goes back to ``delayed``
        with ``backoff * 2 ** (attempts - 1)``; otherwise it ends ``failed``.

        Returns:
            The job's new state.
        """
        now = now or utcnow()
        row = self.fetchone(
            "SELECT attempts, max_attempts FROM queue_jobs WHERE queue_name = ? AND job_id = ?;",
            (str(queue_name), job_id),
        )
        if row is None:
            return JobState.FAILED

        attempts, max_attempts = int(row["attempts"]), int(row["max_attempts"])
        if retry and attempts < max_attempts:
            delay = self.backoff * (2 ** max(attempts - 1, 0))
            new_state = JobState.DELAYED
            available_at = now + delay
        else:
            new_state = JobState.FAILED
            available_at = now

        self.execute(
            """
            UPDATE queue_jobs
            SET state = ?, last_error = ?, available_at = ?, updated_at = ?
            WHERE queue_name = ? AND job_id = ?;
            """,
            (new_state.value, error[:2000], to_iso(available_at), to_iso(now), str(queue_name), job_id),
        )
        return new_state

    def counts(self, queue_name: QueueName | str) -> dict[str, int]:
        """Job count per state (every state present, zero when empty)."""
        rows = self.fetchall(
            "SELECT state, COUNT(*) AS n FROM queue_jobs WHERE queue_name = ? GROUP BY state;",
            (str(queue_name),),
        )
        result = {state.value: 0 for state in JobState}
        for row in rows:
            result[row["state"]] = int(row["n"])
        return result

    def _is_live_row(self, row: sqlite3.Row, now: datetime) -> bool:
        state = JobState(row["state"])
        if state is JobState.ACTIVE:
            updated_at = from_iso(row["updated_at"])
            return updated_at is not None and updated_at > now - self.lease
        return state in LIVE_JOB_STATES


def _row_to_queued(row: sqlite3.Row) -> QueuedJob:
    available_at = from_iso(row["available_at"])
    created_at = from_iso(row["created_at"])
    if available_at is None or created_at is None:
        raise ValueError(f"queue row {row['job_id']!r} has no timestamps.")
    return QueuedJob(
        queue_name=row["queue_name"],
        job_id=row["job_id"],
        job=parse_job(row["payload"]),
        priority=row["priority"],
        state=JobState(row["state"]),
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        available_at=available_at,
        last_error=row["last_error"],
        created_at=created_at,
    )
