"""
Worker pool: claims queued jobs and runs them concurrently.

One ``run_once`` pass::

    for each queue: claim up to ``claim_batch_size`` jobs   (commit)
    run every claimed job under a semaphore of ``concurrency``,
        each bounded by ``timeout``
    map the outcome onto the queue                          (commit per job)

Outcome mapping:

    success                               → complete
    NotFoundError                         → fail, no retry
    RateLimitedError                      → record_error on the credential,
                                            fail with retry
    TransientError, timeout,
    CredentialPoolExhausted, anything else → fail with retry

Every worker shares one SQLite connection. The event loop is single
threaded and every synchronous write section is committed before the next
suspension point, so jobs never see each other's half-written state.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import datetime
from typing import TYPE_CHECKING, Optional, assert_never

import httpx

from wow_osint.credentials.pool import CredentialPool
from wow_osint.crawl.policies import CrawlScheduler
from wow_osint.db.repositories.audit_repo import AuditLogRepository
from wow_osint.db.repositories.character_repo import CharacterRepository
from wow_osint.db.repositories.credential_repo import CredentialRepository
from wow_osint.db.repositories.guild_repo import GuildMemberRepository
from wow_osint.db.repositories.realm_repo import RealmRepository
from wow_osint.errors import CredentialPoolExhausted, NotFoundError, RateLimitedError, TransientError
from wow_osint.ingestion.blizzard_client import BlizzardClient
from wow_osint.models.jobs import AuctionJob, CharacterJob, CrawlJob, GuildJob, ItemJob, RealmJob
from wow_osint.osint.auditor import ChangeAuditor
from wow_osint.osint.reconciler import EntityReconciler
from wow_osint.queue.job_queue import JobQueue, QueuedJob
from wow_osint.realms.directory import RealmDirectory
from wow_osint.taxonomy.osint_taxonomy import JobState, QueueName
from wow_osint.workers.auction_worker import AuctionWorker
from wow_osint.workers.base import FetchWorker, WorkerServices
from wow_osint.workers.character_worker import CharacterWorker
from wow_osint.workers.guild_worker import GuildWorker
from wow_osint.workers.item_worker import ItemWorker
from wow_osint.workers.realm_worker import RealmWorker

if TYPE_CHECKING:
    import sqlite3

    from wow_osint.config import AppConfig

logger = logging.getLogger(__name__)

OUTCOME_FAILED = "failed"
OUTCOME_RETRY = "retry"


def build_services(
    conn: "sqlite3.Connection",
    config: "AppConfig",
    transport: Optional[httpx.AsyncBaseTransport] = None,
    pool: Optional[CredentialPool] = None,
) -> WorkerServices:
    """Wire every collaborator the workers need from ``config``.

    Args:
        conn: Shared connection.
        config: Application config.
        transport: httpx transport for the upstream client (tests).
        pool: Pre-built credential pool; built from ``config`` when omitted.
    """
    pool = pool or CredentialPool.from_config(conn, config)
    realms = RealmDirectory(RealmRepository(conn).list_all)
    credentials = CredentialRepository(conn)

    def client_factory(job: CrawlJob) -> BlizzardClient:
        # Jobs carry the token current at enqueue time; prefer a newer one.
        job_credentials = job.credentials
        stored = credentials.get(job_credentials.client_id)
        if stored is not None and stored.access_token:
            job_credentials = stored.for_job()
        return BlizzardClient(
            job_credentials,
            region=job.region,
            locale=config.api.locale,
            timeout=config.api.timeout_seconds,
            base_url=config.api.base_url,
            transport=transport,
        )

    return WorkerServices(
        conn=conn,
        pool=pool,
        realms=realms,
        reconciler=EntityReconciler.from_config(conn, config, realms),
        auditor=ChangeAuditor(
            AuditLogRepository(conn), CharacterRepository(conn), GuildMemberRepository(conn)
        ),
        scheduler=CrawlScheduler.from_config(conn, config, pool, realms),
        client_factory=client_factory,
    )


class WorkerPool:
    """Runs queued crawl jobs with bounded concurrency.

    Args:
        services: Shared worker collaborators.
        queue: Job queue to claim from and report to.
        concurrency: Jobs in flight at once.
        timeout: Seconds a single job may run.
        claim_batch_size: Jobs claimed per queue per pass.
        queues: Queues served by this pool.
        poll_interval: Seconds ``run_forever`` sleeps after an empty pass.
    """

    def __init__(
        self,
        services: WorkerServices,
        queue: JobQueue,
        concurrency: int = 10,
        timeout: float = 60.0,
        claim_batch_size: int = 50,
        queues: tuple[QueueName, ...] = tuple(QueueName),
        poll_interval: float = 2.0,
    ) -> None:
        self.services = services
        self.queue = queue
        self.concurrency = concurrency
        self.timeout = timeout
        self.claim_batch_size = claim_batch_size
        self.queues = queues
        self.poll_interval = poll_interval
        self._workers: dict[str, FetchWorker] = {
            worker.kind: worker
            for worker in (
                CharacterWorker(services),
                GuildWorker(services),
                RealmWorker(services),
                ItemWorker(services),
                AuctionWorker(services),
            )
        }

    @classmethod
    def from_config(
        cls,
        conn: "sqlite3.Connection",
        config: "AppConfig",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        queues: Optional[tuple[QueueName, ...]] = None,
    ) -> "WorkerPool":
        workers = config.workers
        return cls(
            build_services(conn, config, transport=transport),
            JobQueue.from_config(conn, config),
            concurrency=workers.concurrency,
            timeout=workers.timeout_seconds,
            claim_batch_size=workers.claim_batch_size,
            queues=queues or tuple(QueueName),
            poll_interval=workers.poll_interval_seconds,
        )

    def worker_for(self, job: CrawlJob) -> FetchWorker:
        match job:
            case CharacterJob():
                return self._workers["character"]
            case GuildJob():
                return self._workers["guild"]
            case RealmJob():
                return self._workers["realm"]
            case ItemJob():
                return self._workers["item"]
            case AuctionJob():
                return self._workers["auction"]
            case _:
                assert_never(job)

    # ── One job ───────────────────────────────────────────────────────────────

    async def _process(
        self,
        queued: QueuedJob,
        semaphore: asyncio.Semaphore,
        now: Optional[datetime],
    ) -> str:
        job = queued.job
        async with semaphore:
            try:
                outcome = await asyncio.wait_for(
                    self.worker_for(job).run(job, now), timeout=self.timeout
                )
            except NotFoundError as exc:
                logger.info("%s not found upstream: %s", job.job_id, exc)
                return self._fail(queued, exc, retry=False, now=now)
            except RateLimitedError as exc:
                if exc.client_id:
                    self.services.pool.record_error(exc.client_id, exc.status_code)
                logger.warning("%s rate limited: %s", job.job_id, exc)
                return self._fail(queued, exc, retry=True, now=now)
            except (TransientError, CredentialPoolExhausted) as exc:
                logger.warning("%s: %s", job.job_id, exc)
                return self._fail(queued, exc, retry=True, now=now)
            except TimeoutError:
                logger.warning("%s timed out after %.0f s", job.job_id, self.timeout)
                return self._fail(
                    queued, TransientError(f"timed out after {self.timeout} s"), retry=True, now=now
                )
            except Exception as exc:
                logger.exception("%s failed", job.job_id)
                return self._fail(queued, exc, retry=True, now=now)

            self.queue.complete(queued.queue_name, queued.job_id, now=now)
            self.services.conn.commit()
            return outcome

    def _fail(
        self,
        queued: QueuedJob,
        exc: BaseException,
        retry: bool,
        now: Optional[datetime],
    ) -> str:
        state = self.queue.fail(
            queued.queue_name, queued.job_id, f"{type(exc).__name__}: {exc}", retry=retry, now=now
        )
        self.services.conn.commit()
        return OUTCOME_RETRY if state is JobState.DELAYED else OUTCOME_FAILED

    # ── Passes ────────────────────────────────────────────────────────────────

    async def run_once(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Claim and run one batch from every served queue.

        Returns:
            Number of jobs per outcome, e.g. ``{"processed": 3, "retry": 1}``.
        """
        claimed: list[QueuedJob] = []
        for queue_name in self.queues:
            claimed.extend(self.queue.claim(queue_name, self.claim_batch_size, now=now))
        self.services.conn.commit()
        if not claimed:
            return {}

        semaphore = asyncio.Semaphore(self.concurrency)
        outcomes = await asyncio.gather(
            *(self._process(queued, semaphore, now) for queued in claimed)
        )
        counts = dict(Counter(outcomes))
        logger.info("Worker pass: %d job(s) %s", len(claimed), counts)
        return counts

    async def run_forever(self, stop: asyncio.Event) -> None:
        """Run passes until ``stop`` is set; sleep between empty passes."""
        logger.info(
            "Worker pool started: queues=%s concurrency=%d",
            ",".join(q.value for q in self.queues), self.concurrency,
        )
        while not stop.is_set():
            counts = await self.run_once()
            if counts:
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except TimeoutError:
                pass
        logger.info("Worker pool stopped.")
