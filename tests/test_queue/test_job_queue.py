"""Tests for the durable job queue and TTL locks."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW
from wow_osint.models.jobs import AuctionJob, CharacterJob, GuildJob, ItemJob
from wow_osint.queue.job_queue import JobQueue
from wow_osint.queue.locks import LockStore
from wow_osint.taxonomy.osint_taxonomy import JobState, QueueName

CREDS = {"client_id": "client-a", "client_secret": "secret", "access_token": "token"}


@pytest.fixture
def queue(in_memory_db) -> JobQueue:
    return JobQueue(in_memory_db, max_attempts=3, backoff=timedelta(seconds=30))


def _character_job(name: str = "Thrall", **overrides) -> CharacterJob:
    return CharacterJob(name=name, realm="draenor", credentials=CREDS, **overrides)


class TestEnqueue:
    def test_same_id_is_ignored_while_live(self, queue):
        assert queue.enqueue(_character_job(), now=NOW)
        assert not queue.enqueue(_character_job(force_update=1), now=NOW)
        assert queue.counts(QueueName.CHARACTERS)["waiting"] == 1

    def test_finished_job_can_be_enqueued_again(self, queue):
        queue.enqueue(_character_job(), now=NOW)
        queue.claim(QueueName.CHARACTERS, 1, now=NOW)
        queue.complete(QueueName.CHARACTERS, "thrall-draenor", now=NOW)
        assert not queue.get_job(QueueName.CHARACTERS, "thrall-draenor").is_live

        assert queue.enqueue(_character_job(), now=NOW)
        job = queue.get_job(QueueName.CHARACTERS, "thrall-draenor")
        assert job.state is JobState.WAITING
        assert job.attempts == 0

    def test_delay_makes_job_delayed(self, queue):
        queue.enqueue(_character_job(), delay=timedelta(minutes=5), now=NOW)
        job = queue.get_job(QueueName.CHARACTERS, "thrall-draenor")
        assert job.state is JobState.DELAYED
        assert job.available_at == NOW + timedelta(minutes=5)
        assert queue.claim(QueueName.CHARACTERS, 10, now=NOW) == []
        assert len(queue.claim(QueueName.CHARACTERS, 10, now=NOW + timedelta(minutes=5))) == 1

    def test_payload_round_trips(self, queue):
        original = GuildJob(name="Horde Elite", realm="draenor", credentials=CREDS)
        queue.enqueue(original, now=NOW)
        assert queue.get_job(QueueName.GUILDS, original.job_id).job == original

    def test_queues_are_partitioned(self, queue):
        queue.enqueue(ItemJob(item_id=1, credentials=CREDS), now=NOW)
        assert queue.claim(QueueName.CHARACTERS, 10, now=NOW) == []
        assert len(queue.claim(QueueName.ITEMS, 10, now=NOW)) == 1


class TestClaim:
    def test_priority_order(self, queue):
        queue.enqueue(_character_job("Low"), priority=7, now=NOW)
        queue.enqueue(_character_job("High"), priority=1, now=NOW)
        claimed = queue.claim(QueueName.CHARACTERS, 1, now=NOW)
        assert [c.job_id for c in claimed] == ["high-draenor"]
        assert claimed[0].state is JobState.ACTIVE
        assert claimed[0].attempts == 1

    def test_active_jobs_are_not_claimed_twice(self, queue):
        queue.enqueue(_character_job(), now=NOW)
        assert len(queue.claim(QueueName.CHARACTERS, 5, now=NOW)) == 1
        assert queue.claim(QueueName.CHARACTERS, 5, now=NOW) == []
        assert queue.is_active(QueueName.CHARACTERS, "thrall-draenor")

    def test_active_job_blocks_enqueue(self, queue):
        queue.enqueue(_character_job(), now=NOW)
        queue.claim(QueueName.CHARACTERS, 1, now=NOW)
        assert not queue.enqueue(_character_job(), now=NOW)


class TestFail:
    def test_retry_with_exponential_backoff(self, queue):
        queue.enqueue(_character_job(), now=NOW)

        queue.claim(QueueName.CHARACTERS, 1, now=NOW)
        assert queue.fail(QueueName.CHARACTERS, "thrall-draenor", "boom", now=NOW) is JobState.DELAYED
        first = queue.get_job(QueueName.CHARACTERS, "thrall-draenor")
        assert first.available_at == NOW + timedelta(seconds=30)
        assert first.last_error == "boom"

        later = NOW + timedelta(minutes=1)
        queue.claim(QueueName.CHARACTERS, 1, now=later)
        queue.fail(QueueName.CHARACTERS, "thrall-draenor", "boom", now=later)
        second = queue.get_job(QueueName.CHARACTERS, "thrall-draenor")
        assert second.available_at == later + timedelta(seconds=60)

    def test_attempts_exhausted(self, queue):
        queue.enqueue(_character_job(), now=NOW)
        at = NOW
        states = []
        for _ in range(3):
            at += timedelta(hours=1)
            queue.claim(QueueName.CHARACTERS, 1, now=at)
            states.append(queue.fail(QueueName.CHARACTERS, "thrall-draenor", "boom", now=at))
        assert states == [JobState.DELAYED, JobState.DELAYED, JobState.FAILED]

    def test_no_retry_fails_immediately(self, queue):
        queue.enqueue(_character_job(), now=NOW)
        queue.claim(QueueName.CHARACTERS, 1, now=NOW)
        state = queue.fail(QueueName.CHARACTERS, "thrall-draenor", "missing", retry=False, now=NOW)
        assert state is JobState.FAILED
        assert queue.counts(QueueName.CHARACTERS)["failed"] == 1

    def test_unknown_job(self, queue):
        assert queue.fail(QueueName.CHARACTERS, "ghost", "boom", now=NOW) is JobState.FAILED


class TestStalledJobs:
    """An active row outlives its lease only when the worker holding it died."""

    def test_job_of_dead_worker_runs_again(self, queue, in_memory_db):
        queue.enqueue(_character_job(), now=NOW)
        queue.claim(QueueName.CHARACTERS, 1, now=NOW)
        later = NOW + timedelta(days=30)

        restarted = JobQueue(in_memory_db)
        assert not restarted.has_live(QueueName.CHARACTERS, "thrall", now=later)
        (job,) = restarted.claim(QueueName.CHARACTERS, 5, now=later)
        assert job.job_id == "thrall-draenor"
        assert job.state is JobState.ACTIVE
        assert job.attempts == 2
        assert job.last_error.startswith("StalledJob")

    def test_enqueue_replaces_expired_active_job(self, queue):
        queue.enqueue(_character_job(), now=NOW)
        queue.claim(QueueName.CHARACTERS, 1, now=NOW)

        assert queue.enqueue(_character_job(force_update=1), now=NOW + timedelta(minutes=11))
        job = queue.get_job(QueueName.CHARACTERS, "thrall-draenor")
        assert job.state is JobState.WAITING
        assert job.attempts == 0
        assert job.job.force_update == 1

    def test_active_job_within_lease_stays_live(self, queue):
        queue.enqueue(_character_job(), now=NOW)
        queue.claim(QueueName.CHARACTERS, 1, now=NOW)
        soon = NOW + timedelta(minutes=9)

        assert not queue.enqueue(_character_job(), now=soon)
        assert queue.has_live(QueueName.CHARACTERS, now=soon)
        assert queue.claim(QueueName.CHARACTERS, 5, now=soon) == []
        assert queue.requeue_stalled(now=soon) == 0
        assert queue.is_active(QueueName.CHARACTERS, "thrall-draenor")

    def test_stalled_job_without_attempts_left_fails(self, in_memory_db):
        queue = JobQueue(in_memory_db, max_attempts=1, lease=timedelta(minutes=5))
        queue.enqueue(ItemJob(item_id=7, credentials=CREDS), now=NOW)
        queue.enqueue(_character_job(), now=NOW)
        queue.claim(QueueName.ITEMS, 1, now=NOW)
        queue.claim(QueueName.CHARACTERS, 1, now=NOW)

        assert queue.requeue_stalled(QueueName.ITEMS, now=NOW + timedelta(minutes=5)) == 1
        assert queue.get_job(QueueName.ITEMS, "ITEM:7").state is JobState.FAILED
        assert queue.is_active(QueueName.CHARACTERS, "thrall-draenor")


class TestDrain:
    def test_drain_removes_pending_but_not_active(self, queue):
        queue.enqueue(_character_job("A"), now=NOW)
        queue.enqueue(_character_job("B"), now=NOW)
        queue.enqueue(_character_job("C"), delay=timedelta(hours=1), now=NOW)
        queue.claim(QueueName.CHARACTERS, 1, now=NOW)

        assert queue.drain(QueueName.CHARACTERS) == 2
        counts = queue.counts(QueueName.CHARACTERS)
        assert counts["active"] == 1
        assert counts["waiting"] == counts["delayed"] == 0

    def test_drain_by_prefix(self, queue):
        queue.enqueue(AuctionJob(connected_realm_id=1096, credentials=CREDS), now=NOW)
        queue.enqueue(AuctionJob(connected_realm_id=0, last_modified=5, credentials=CREDS), now=NOW)
        assert queue.drain(QueueName.AUCTIONS, "AUCTION:") == 1
        assert queue.has_live(QueueName.AUCTIONS, "COMMODITY:")
        assert not queue.has_live(QueueName.AUCTIONS, "AUCTION:")


class TestLocks:
    def test_acquire_is_exclusive_until_expiry(self, in_memory_db):
        locks = LockStore(in_memory_db)
        assert locks.acquire("commodity", timedelta(minutes=30), owner="a", now=NOW)
        assert not locks.acquire("commodity", timedelta(minutes=30), owner="b", now=NOW)
        assert locks.is_locked("commodity", now=NOW + timedelta(minutes=29))
        assert not locks.is_locked("commodity", now=NOW + timedelta(minutes=30))
        assert locks.acquire("commodity", timedelta(minutes=30), owner="b", now=NOW + timedelta(minutes=31))

    def test_release(self, in_memory_db):
        locks = LockStore(in_memory_db)
        locks.acquire("commodity", timedelta(hours=1), now=NOW)
        locks.release("commodity")
        assert not locks.is_locked("commodity", now=NOW)
        assert locks.acquire("commodity", timedelta(hours=1), now=NOW)
