"""
Abstract base class for fetch workers.

Every worker follows the same contract:
  1. Receives the shared ``WorkerServices`` at construction.
  2. ``run(job)`` is the sole public API; it opens a ``BlizzardClient`` for
     the job's credential and calls ``_execute()``.
  3. ``_execute()`` does every upstream call first and only then writes to
     the store, with no ``await`` in between; ``run()`` commits right after
     it returns and rolls back if it raises. Workers share one connection,
     so no job ever leaves uncommitted rows across a suspension point.
  4. Errors propagate to ``WorkerPool``, which maps them to queue outcomes.

Usage::

    class MyWorker(FetchWorker):
        kind = "item"

        async def _execute(self, job, client, now) -> str:
            data = await client.item(job.item_id)
            ...
            return "processed"
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from wow_osint.credentials.pool import CredentialPool
from wow_osint.crawl.policies import CrawlScheduler
from wow_osint.ingestion.blizzard_client import BlizzardClient
from wow_osint.osint.auditor import ChangeAuditor
from wow_osint.osint.reconciler import EntityReconciler
from wow_osint.realms.directory import RealmDirectory
from wow_osint.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Any], BlizzardClient]

OUTCOME_PROCESSED = "processed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_NOT_MODIFIED = "not_modified"


@dataclass
class WorkerServices:
    """Collaborators shared by every worker of one process.

    Attributes:
        conn: Connection all workers write through; ``WorkerPool`` commits.
        pool: Credential pool (error telemetry).
        realms: Realm lookup, reloaded by the realm worker.
        reconciler: Create / skip / refresh gate.
        auditor: Change auditor.
        scheduler: Demand-driven enqueue (roster members).
        client_factory: Builds a ``BlizzardClient`` for a job.
    """

    conn: Any
    pool: CredentialPool
    realms: RealmDirectory
    reconciler: EntityReconciler
    auditor: ChangeAuditor
    scheduler: CrawlScheduler
    client_factory: ClientFactory


class FetchWorker(ABC):
    """Abstract base for the per-kind workers.

    Subclasses must set ``kind`` (the job discriminator they handle) and
    implement ``_execute(job, client, now) -> str``.
    """

    kind: str

    def __init__(self, services: WorkerServices) -> None:
        self.services = services

    async def run(self, job: Any, now: Optional[datetime] = None) -> str:
        """Process one job and commit its writes.

        Returns:
            Outcome label (``processed``, ``skipped`` or ``not_modified``).

        Raises:
            Exception: Anything ``_execute`` raises, unchanged, after the
                job's uncommitted writes have been rolled back.
        """
        now = now or utcnow()
        conn = self.services.conn
        async with self.services.client_factory(job) as client:
            try:
                outcome = await self._execute(job, client, now)
            except BaseException:
                conn.rollback()
                raise
            finally:
                self._finish(job)
                conn.commit()
        logger.info("[%s] %s %s", self.kind, job.job_id, outcome)
        return outcome

    def _finish(self, job: Any) -> None:
        """Runs after every attempt, successful or not."""

    @abstractmethod
    async def _execute(self, job: Any, client: BlizzardClient, now: datetime) -> str:
        """Worker-specific implementation."""
        ...
