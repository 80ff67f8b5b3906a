"""
Auction worker: connected-realm auction houses and the commodity market.

The previous dump's ``Last-Modified`` is sent as ``If-Modified-Since``;
a 304 means nothing new and nothing is written. A commodity job always
releases the commodity lock and its taken credential when it finishes,
whatever the outcome, so the next scheduler tick can enqueue the following
snapshot.
"""

from __future__ import annotations

import logging
from datetime import datetime

from wow_osint.crawl.policies import COMMODITY_LOCK_KEY
from wow_osint.db.repositories.item_repo import AuctionSnapshotRepository
from wow_osint.db.repositories.realm_repo import RealmRepository
from wow_osint.ingestion.blizzard_client import BlizzardClient
from wow_osint.models.item import AuctionSnapshot
from wow_osint.models.jobs import AuctionJob
from wow_osint.queue.locks import LockStore
from wow_osint.utils.time_utils import from_epoch_ms, to_epoch_ms
from wow_osint.workers.base import OUTCOME_NOT_MODIFIED, OUTCOME_PROCESSED, FetchWorker, WorkerServices

logger = logging.getLogger(__name__)


class AuctionWorker(FetchWorker):
    kind = "auction"

    def __init__(self, services: WorkerServices) -> None:
        super().__init__(services)
        self.snapshots = AuctionSnapshotRepository(services.conn)
        self.realms = RealmRepository(services.conn)
        self.locks = LockStore(services.conn)

    async def _execute(self, job: AuctionJob, client: BlizzardClient, now: datetime) -> str:
        since = from_epoch_ms(job.last_modified)
        if since is None:
            latest = self.snapshots.get_latest(job.connected_realm_id)
            since = latest.last_modified if latest else None

        response = await client.auctions(job.connected_realm_id, if_modified_since=since)
        if response.not_modified:
            logger.debug("Auctions of %d not modified since %s", job.connected_realm_id, since)
            return OUTCOME_NOT_MODIFIED

        stamp = to_epoch_ms(response.last_modified or now)
        self.snapshots.record(
            AuctionSnapshot(
                snapshot_key=f"{job.connected_realm_id}:{stamp}",
                connected_realm_id=job.connected_realm_id,
                last_modified=response.last_modified,
                auction_count=response.auction_count,
                fetched_at=now,
            )
        )
        if not job.is_commodity:
            self.realms.touch_auctions(job.connected_realm_id, now)
        logger.info(
            "Auctions of %d: %d listing(s) at %s",
            job.connected_realm_id, response.auction_count, response.last_modified,
        )
        return OUTCOME_PROCESSED

    def _finish(self, job: AuctionJob) -> None:
        if job.is_commodity:
            self.locks.release(COMMODITY_LOCK_KEY)
            self.services.pool.release(job.credentials.client_id)
