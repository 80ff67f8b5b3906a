"""Tests for bulk and demand-driven crawl scheduling."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW
from wow_osint.credentials.pool import CredentialPool
from wow_osint.crawl.policies import (
    COMMODITY_LOCK_KEY,
    PRIORITY_DEMAND,
    CrawlScheduler,
)
from wow_osint.db.repositories.character_repo import CharacterRepository
from wow_osint.db.repositories.credential_repo import CredentialRepository
from wow_osint.db.repositories.guild_repo import GuildRepository
from wow_osint.db.repositories.item_repo import AuctionSnapshotRepository
from wow_osint.db.repositories.realm_repo import RealmRepository
from wow_osint.errors import CredentialPoolExhausted, JobValidationError
from wow_osint.models.entity import Character, Guild
from wow_osint.models.item import AuctionSnapshot
from wow_osint.queue.job_queue import JobQueue
from wow_osint.queue.locks import LockStore
from wow_osint.realms.directory import RealmDirectory
from wow_osint.taxonomy.osint_taxonomy import CredentialStatus, QueueName, SourceTag


@pytest.fixture
def queue(seeded_db) -> JobQueue:
    return JobQueue(seeded_db)


@pytest.fixture
def scheduler(seeded_db, queue) -> CrawlScheduler:
    return CrawlScheduler(
        seeded_db,
        queue,
        LockStore(seeded_db),
        CredentialPool(CredentialRepository(seeded_db)),
        realms=RealmDirectory(RealmRepository(seeded_db).list_all),
    )


def _waiting_ids(queue: JobQueue, queue_name: QueueName) -> list[str]:
    return [j.job_id for j in queue.claim(queue_name, 1000, now=NOW + timedelta(days=1))]


class TestBulk:
    def test_realm_jobs_spread_over_credentials(self, scheduler, queue):
        assert scheduler.schedule_realms([1096, 1305, 1602], now=NOW) == 3
        claimed = queue.claim(QueueName.REALMS, 10, now=NOW)
        assert sorted(j.job_id for j in claimed) == ["REALM:1096", "REALM:1305", "REALM:1602"]
        assert {j.job.credentials.client_id for j in claimed} == {"client-a", "client-b"}

    def test_rescheduling_drains_pending_jobs(self, scheduler, queue):
        scheduler.schedule_realms([1096, 1305], now=NOW)
        scheduler.schedule_realms([1602], now=NOW)
        assert _waiting_ids(queue, QueueName.REALMS) == ["REALM:1602"]

    def test_auctions_skip_fresh_realms(self, scheduler, queue, seeded_db):
        RealmRepository(seeded_db).touch_auctions(1096, NOW - timedelta(minutes=5))
        assert scheduler.schedule_auctions(now=NOW) == 2
        assert sorted(_waiting_ids(queue, QueueName.AUCTIONS)) == ["AUCTION:1305", "AUCTION:1602"]

    def test_items_half_open_range(self, scheduler, queue):
        assert scheduler.schedule_items(0, 4, now=NOW) == 3
        assert sorted(_waiting_ids(queue, QueueName.ITEMS)) == ["ITEM:1", "ITEM:2", "ITEM:3"]

    def test_characters_from_store(self, scheduler, queue, seeded_db):
        repo = CharacterRepository(seeded_db)
        for name in ("Thrall", "Jaina", "Sylvanas"):
            repo.upsert(Character(guid=f"{name.lower()}-draenor", name=name, realm="draenor", updated_at=NOW))
        assert scheduler.schedule_characters(now=NOW) == 3
        claimed = queue.claim(QueueName.CHARACTERS, 10, now=NOW)
        assert {j.job.created_by for j in claimed} == {SourceTag.CHARACTER_INDEX}

    def test_guilds_from_store(self, scheduler, queue, seeded_db):
        GuildRepository(seeded_db).upsert(
            Guild(guid="horde-elite-draenor", name="Horde Elite", realm="draenor", updated_at=NOW)
        )
        assert scheduler.schedule_guilds(now=NOW) == 1
        assert _waiting_ids(queue, QueueName.GUILDS) == ["horde-elite-draenor"]

    def test_no_credentials_raises(self, scheduler, seeded_db):
        repo = CredentialRepository(seeded_db)
        for cred in repo.list_all():
            repo.save(cred.model_copy(update={"status": CredentialStatus.TOO_MANY_REQUESTS}))
        with pytest.raises(CredentialPoolExhausted):
            scheduler.schedule_realms([1096], now=NOW)


class TestCommodity:
    def test_singleton_under_lock(self, scheduler, queue, seeded_db):
        assert scheduler.schedule_commodity(now=NOW) == 1
        assert scheduler.schedule_commodity(now=NOW) == 0
        assert LockStore(seeded_db).is_locked(COMMODITY_LOCK_KEY, now=NOW)
        assert _waiting_ids(queue, QueueName.AUCTIONS) == ["COMMODITY:0"]

    def test_lock_blocks_even_without_live_job(self, scheduler, seeded_db):
        LockStore(seeded_db).acquire(COMMODITY_LOCK_KEY, timedelta(minutes=10), now=NOW)
        assert scheduler.schedule_commodity(now=NOW) == 0

    def test_takes_an_exclusive_credential(self, scheduler, queue, seeded_db):
        scheduler.schedule_commodity(now=NOW)
        job = queue.get_job(QueueName.AUCTIONS, "COMMODITY:0").job
        taken = CredentialRepository(seeded_db).get(job.credentials.client_id)
        assert taken.status is CredentialStatus.TAKEN
        assert taken.reset_at == NOW + timedelta(minutes=30)

    def test_exhausted_pool_leaves_lock_free(self, scheduler, seeded_db):
        repo = CredentialRepository(seeded_db)
        for cred in repo.list_all():
            repo.save(cred.model_copy(update={"status": CredentialStatus.TAKEN}))
        with pytest.raises(CredentialPoolExhausted):
            scheduler.schedule_commodity(now=NOW)
        assert not LockStore(seeded_db).is_locked(COMMODITY_LOCK_KEY, now=NOW)

    def test_job_of_dead_worker_is_recovered(self, scheduler, queue):
        scheduler.schedule_commodity(now=NOW)
        queue.claim(QueueName.AUCTIONS, 10, now=NOW)
        later = NOW + timedelta(hours=1)

        assert scheduler.schedule_commodity(now=later) == 0
        (job,) = queue.claim(QueueName.AUCTIONS, 10, now=later)
        assert job.job_id == "COMMODITY:0"
        assert job.attempts == 2

        queue.complete(QueueName.AUCTIONS, job.job_id, now=later)
        assert scheduler.schedule_commodity(now=later) == 1

    def test_carries_previous_last_modified(self, scheduler, queue, seeded_db):
        AuctionSnapshotRepository(seeded_db).record(
            AuctionSnapshot(
                snapshot_key="0:1767960000000", connected_realm_id=0,
                last_modified=NOW - timedelta(hours=1), fetched_at=NOW - timedelta(hours=1),
            )
        )
        scheduler.schedule_commodity(now=NOW)
        (job,) = queue.claim(QueueName.AUCTIONS, 10, now=NOW)
        assert job.job.last_modified == int((NOW - timedelta(hours=1)).timestamp() * 1000)

    def test_auction_drain_keeps_commodity_job(self, scheduler, queue):
        scheduler.schedule_commodity(now=NOW)
        scheduler.schedule_auctions(now=NOW)
        scheduler.schedule_auctions(now=NOW)
        assert queue.has_live(QueueName.AUCTIONS, "COMMODITY:")


class TestDemand:
    def test_request_character_canonicalizes_realm(self, scheduler, queue):
        job, enqueued = scheduler.request_character("Thrall", "Twisted Nether", now=NOW)
        assert enqueued
        assert job.job_id == "thrall-twisted-nether"
        assert job.created_by is SourceTag.CLI_REQUEST
        queued = queue.get_job(QueueName.CHARACTERS, job.job_id)
        assert queued.priority == PRIORITY_DEMAND

    def test_localized_realm_maps_to_canonical_slug(self, scheduler):
        job, _ = scheduler.request_character("Иван", "Гордунни", now=NOW)
        assert job.job_id == "иван-gordunni"

    def test_duplicate_request_is_a_no_op(self, scheduler):
        scheduler.request_guild("Horde Elite", "draenor", now=NOW)
        _, enqueued = scheduler.request_guild("horde elite", "Draenor", now=NOW)
        assert not enqueued

    def test_force_update_in_milliseconds(self, scheduler):
        job, _ = scheduler.request_guild(
            "Horde Elite", "draenor", force_update=timedelta(hours=1), now=NOW
        )
        assert job.force_update == 3_600_000

    def test_blank_name_rejected(self, scheduler, queue):
        with pytest.raises(JobValidationError):
            scheduler.request_character("  ", "draenor", now=NOW)
        assert queue.counts(QueueName.CHARACTERS)["waiting"] == 0
