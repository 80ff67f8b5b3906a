"""
Crawl scheduling: turns "what needs refreshing" into queued jobs.

Bulk resync (periodic)::

    drain pending jobs of the queue
        → enumerate candidates (realms, item ids, stored entities)
        → one job per candidate under its deterministic id

Demand-driven refresh::

    validate → derive guid → enqueue one job (no-op while one is live)

The commodity snapshot is a region-wide singleton: it is guarded by a TTL
lock on top of the queue's own dedup, so two scheduler runs cannot both
enqueue it.

Every job carries a credential. Bulk policies spread the batch round-robin
over every available credential; demand-driven requests take the pool's
next one. With no usable credential the policy raises
``CredentialPoolExhausted`` instead of enqueueing jobs that cannot run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional

from wow_osint.credentials.pool import CredentialPool
from wow_osint.db.repositories.character_repo import CharacterRepository
from wow_osint.db.repositories.guild_repo import GuildRepository
from wow_osint.db.repositories.item_repo import AuctionSnapshotRepository
from wow_osint.db.repositories.realm_repo import RealmRepository
from wow_osint.errors import CredentialPoolExhausted, JobValidationError
from wow_osint.models.credential import Credential
from wow_osint.models.item import COMMODITY_REALM_ID
from wow_osint.models.jobs import AuctionJob, CrawlJob, parse_job
from wow_osint.queue.job_queue import JobQueue
from wow_osint.queue.locks import LockStore
from wow_osint.realms.directory import RealmDirectory
from wow_osint.taxonomy.osint_taxonomy import QueueName, SourceTag
from wow_osint.utils.converters import to_slug
from wow_osint.utils.time_utils import to_epoch_ms, utcnow

if TYPE_CHECKING:
    import sqlite3

    from wow_osint.config import AppConfig

logger = logging.getLogger(__name__)

COMMODITY_LOCK_KEY = "COMMODITY"

# Lower runs first.
PRIORITY_DEMAND = 1
PRIORITY_AUCTIONS = 3
PRIORITY_BULK = 5
PRIORITY_ROSTER = 7


class CrawlScheduler:
    """Bulk and demand-driven scheduling policies.

    Args:
        queue: Durable job queue.
        locks: TTL lock store (commodity singleton).
        pool: Credential pool the jobs draw from.
        realms: Realm lookup for canonical slugs; ``None`` falls back to
            ``to_slug`` of the given realm.
        clearance: Credential tag required for upstream calls.
        region: Upstream region stamped on every job.
        auction_offset: Realms snapshotted more recently are skipped.
        commodity_lock_ttl: Lifetime of the commodity lock.
        batch_size: Page size of the stored-entity scans.
    """

    def __init__(
        self,
        conn: "sqlite3.Connection",
        queue: JobQueue,
        locks: LockStore,
        pool: CredentialPool,
        realms: Optional[RealmDirectory] = None,
        clearance: str = "blizzard",
        region: str = "eu",
        auction_offset: timedelta = timedelta(minutes=30),
        commodity_lock_ttl: timedelta = timedelta(minutes=10),
        batch_size: int = 500,
    ) -> None:
        self.conn = conn
        self.queue = queue
        self.locks = locks
        self.pool = pool
        self.realms = realms
        self.clearance = clearance
        self.region = region
        self.auction_offset = auction_offset
        self.commodity_lock_ttl = commodity_lock_ttl
        self.batch_size = batch_size

    @classmethod
    def from_config(
        cls,
        conn: "sqlite3.Connection",
        config: "AppConfig",
        pool: CredentialPool,
        realms: Optional[RealmDirectory] = None,
    ) -> "CrawlScheduler":
        return cls(
            conn,
            JobQueue.from_config(conn, config),
            LockStore(conn),
            pool,
            realms=realms,
            clearance=config.credentials.clearance,
            region=config.api.region,
            auction_offset=timedelta(minutes=config.crawl.auction_offset_minutes),
            commodity_lock_ttl=timedelta(seconds=config.crawl.commodity_lock_seconds),
            batch_size=config.crawl.resync_batch_size,
        )

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _credentials(self) -> list[Credential]:
        credentials = self.pool.available(self.clearance)
        if not credentials:
            raise CredentialPoolExhausted(self.clearance)
        return credentials

    def _realm_slug(self, realm: str) -> str:
        if self.realms is not None:
            found = self.realms.find_realm(realm)
            if found is not None:
                return found.slug
        return to_slug(realm)

    def _enqueue_batch(
        self,
        payloads: Iterable[dict[str, Any]],
        credentials: list[Credential],
        priority: int,
        now: datetime,
    ) -> int:
        """Validate and enqueue each payload; bad candidates are logged and skipped."""
        enqueued = 0
        for i, payload in enumerate(payloads):
            payload = {
                **payload,
                "credentials": credentials[i % len(credentials)].for_job().model_dump(),
                "region": self.region,
            }
            try:
                job = parse_job(payload)
            except JobValidationError as exc:
                logger.warning("Skipping candidate %s: %s", payload.get("guid") or payload.get("name"), exc)
                continue
            if self.queue.enqueue(job, priority=priority, now=now):
                enqueued += 1
        return enqueued

    # ── Bulk resync ───────────────────────────────────────────────────────────

    def schedule_realms(
        self, connected_realm_ids: Iterable[int], now: Optional[datetime] = None
    ) -> int:
        """One realm job per connected realm of the upstream index."""
        now = now or utcnow()
        credentials = self._credentials()
        self.queue.drain(QueueName.REALMS)
        count = self._enqueue_batch(
            ({"kind": "realm", "connected_realm_id": crid} for crid in connected_realm_ids),
            credentials,
            PRIORITY_BULK,
            now,
        )
        logger.info("Scheduled %d realm job(s)", count)
        return count

    def schedule_auctions(self, now: Optional[datetime] = None) -> int:
        """One auction job per connected realm not snapshotted within the offset."""
        now = now or utcnow()
        credentials = self._credentials()
        self.queue.drain(QueueName.AUCTIONS, job_id_prefix="AUCTION:")
        realms = RealmRepository(self.conn)
        stale = realms.list_stale_connected_realms(now - self.auction_offset)
        count = self._enqueue_batch(
            ({"kind": "auction", "connected_realm_id": crid} for crid in stale),
            credentials,
            PRIORITY_AUCTIONS,
            now,
        )
        logger.info("Scheduled %d auction job(s) (%d stale connected realm(s))", count, len(stale))
        return count

    def schedule_commodity(self, now: Optional[datetime] = None) -> int:
        """Enqueue the region-wide commodity snapshot unless one is outstanding.

        The job runs on a credential taken exclusively from the pool; the
        auction worker hands it back, or the sweep does after ``take_ttl``.

        Returns:
            1 if a job was enqueued, 0 if the lock is held or a commodity job
            is already live.
        """
        now = now or utcnow()
        self.queue.requeue_stalled(QueueName.AUCTIONS, now=now)
        if self.queue.has_live(QueueName.AUCTIONS, "COMMODITY:", now=now):
            logger.info("Commodity job already live; nothing scheduled")
            return 0
        if not self.locks.acquire(COMMODITY_LOCK_KEY, self.commodity_lock_ttl, owner="scheduler", now=now):
            logger.info("Commodity lock held; nothing scheduled")
            return 0
        try:
            credential = self.pool.take(self.clearance, now=now)
        except CredentialPoolExhausted:
            self.locks.release(COMMODITY_LOCK_KEY)
            raise

        latest = AuctionSnapshotRepository(self.conn).get_latest(COMMODITY_REALM_ID)
        last_modified = to_epoch_ms(latest.last_modified) if latest and latest.last_modified else None
        job = AuctionJob(
            connected_realm_id=COMMODITY_REALM_ID,
            last_modified=last_modified,
            credentials=credential.for_job(),
            region=self.region,
        )
        if not self.queue.enqueue(job, priority=PRIORITY_AUCTIONS, now=now):
            self.locks.release(COMMODITY_LOCK_KEY)
            self.pool.release(credential.client_id)
            return 0
        logger.info("Scheduled commodity job %s", job.job_id)
        return 1

    def schedule_items(self, start: int, end: int, now: Optional[datetime] = None) -> int:
        """One item job per id in ``[start, end)``; ids below 1 are skipped."""
        now = now or utcnow()
        credentials = self._credentials()
        self.queue.drain(QueueName.ITEMS)
        count = self._enqueue_batch(
            ({"kind": "item", "item_id": item_id} for item_id in range(max(start, 1), end)),
            credentials,
            PRIORITY_BULK,
            now,
        )
        logger.info("Scheduled %d item job(s) for ids [%d, %d)", count, start, end)
        return count

    def schedule_characters(self, now: Optional[datetime] = None) -> int:
        """One job per stored character, in hash order."""
        now = now or utcnow()
        credentials = self._credentials()
        self.queue.drain(QueueName.CHARACTERS)
        count = 0
        for batch in CharacterRepository(self.conn).iter_batches(self.batch_size):
            count += self._enqueue_batch(
                (
                    {
                        "kind": "character",
                        "name": c.name,
                        "realm": c.realm,
                        "guid": c.guid,
                        "id": c.id,
                        "guild": c.guild,
                        "guild_guid": c.guild_guid,
                        "guild_id": c.guild_id,
                        "guild_rank": c.guild_rank,
                        "created_by": SourceTag.CHARACTER_INDEX,
                    }
                    for c in batch
                ),
                credentials,
                PRIORITY_BULK,
                now,
            )
        logger.info("Scheduled %d character job(s)", count)
        return count

    def schedule_guilds(self, now: Optional[datetime] = None) -> int:
        """One job per stored guild, in hash order."""
        now = now or utcnow()
        credentials = self._credentials()
        self.queue.drain(QueueName.GUILDS)
        count = 0
        for batch in GuildRepository(self.conn).iter_batches(self.batch_size):
            count += self._enqueue_batch(
                (
                    {
                        "kind": "guild",
                        "name": g.name,
                        "realm": g.realm,
                        "guid": g.guid,
                        "id": g.id,
                        "created_by": SourceTag.GUILD_INDEX,
                    }
                    for g in batch
                ),
                credentials,
                PRIORITY_BULK,
                now,
            )
        logger.info("Scheduled %d guild job(s)", count)
        return count

    # ── Demand-driven ─────────────────────────────────────────────────────────

    def _request(self, payload: dict[str, Any], priority: int, now: Optional[datetime]) -> tuple[CrawlJob, bool]:
        credential = self.pool.select(self.clearance)
        job = parse_job(
            {**payload, "credentials": credential.for_job().model_dump(), "region": self.region}
        )
        enqueued = self.queue.enqueue(job, priority=priority, now=now or utcnow())
        if not enqueued:
            logger.debug("%s already queued", job.job_id)
        return job, enqueued

    def request_character(
        self,
        name: str,
        realm: str,
        guild: Optional[str] = None,
        guild_guid: Optional[str] = None,
        guild_id: Optional[int] = None,
        guild_rank: Optional[int] = None,
        character_id: Optional[int] = None,
        force_update: Optional[timedelta] = None,
        create_only_unique: bool = False,
        created_by: SourceTag = SourceTag.CLI_REQUEST,
        priority: int = PRIORITY_DEMAND,
        now: Optional[datetime] = None,
    ) -> tuple[CrawlJob, bool]:
        """Queue one character refresh.

        Returns:
            ``(job, enqueued)``; ``enqueued`` is ``False`` when a live job
            for the same guid already exists.

        Raises:
            JobValidationError: Blank name/realm or other invalid input.
            CredentialPoolExhausted: No usable credential.
        """
        payload: dict[str, Any] = {
            "kind": "character",
            "name": name,
            "realm": self._realm_slug(realm) if realm.strip() else realm,
            "id": character_id,
            "guild": guild,
            "guild_guid": guild_guid,
            "guild_id": guild_id,
            "guild_rank": guild_rank,
            "create_only_unique": create_only_unique,
            "created_by": created_by,
        }
        if force_update is not None:
            payload["force_update"] = int(force_update.total_seconds() * 1000)
        return self._request(payload, priority, now)

    def request_guild(
        self,
        name: str,
        realm: str,
        force_update: Optional[timedelta] = None,
        create_only_unique: bool = False,
        created_by: SourceTag = SourceTag.CLI_REQUEST,
        priority: int = PRIORITY_DEMAND,
        now: Optional[datetime] = None,
    ) -> tuple[CrawlJob, bool]:
        """Queue one guild refresh; see ``request_character``."""
        payload: dict[str, Any] = {
            "kind": "guild",
            "name": name,
            "realm": self._realm_slug(realm) if realm.strip() else realm,
            "create_only_unique": create_only_unique,
            "created_by": created_by,
        }
        if force_update is not None:
            payload["force_update"] = int(force_update.total_seconds() * 1000)
        return self._request(payload, priority, now)
