"""Tests for the character fetch worker, driven through the worker pool."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from conftest import NOW, character_summary_payload
from wow_osint.config import AppConfig
from wow_osint.db.repositories.audit_repo import AuditLogRepository
from wow_osint.db.repositories.character_repo import CharacterRepository
from wow_osint.db.repositories.credential_repo import CredentialRepository
from wow_osint.models.audit import AuditLogEntry
from wow_osint.models.entity import Character
from wow_osint.models.jobs import CharacterJob
from wow_osint.queue.job_queue import JobQueue
from wow_osint.taxonomy.osint_taxonomy import AuditAction, JobState, QueueName, SourceTag
from wow_osint.workers.pool import WorkerPool

CREDS = {"client_id": "client-a", "client_secret": "secret-client-a", "access_token": "stale"}
PROFILE = "/profile/wow/character/draenor/thrall"


def _register(fake_api, summary=None, skip: tuple[str, ...] = ()) -> None:
    routes = {
        "/status": {"id": 501, "is_valid": True, "last_modified": 1767960000000},
        "": summary or character_summary_payload(),
        "/character-media": {"assets": [{"key": "avatar", "value": "https://render/avatar.jpg"}]},
        "/collections/pets": {"pets": [
            {"name": "Rex", "species": {"name": "Raptor"}, "level": 25, "is_active": True},
        ]},
        "/collections/mounts": {"mounts": [{"id": 1}, {"id": 2}, {"id": 3}]},
        "/professions": {"primaries": [{"profession": {"name": "Alchemy"}}]},
    }
    for suffix, body in routes.items():
        if suffix not in skip:
            fake_api.add(PROFILE + suffix, body)


def _run(conn, fake_api, job: CharacterJob) -> dict[str, int]:
    JobQueue(conn).enqueue(job, now=NOW)
    conn.commit()
    pool = WorkerPool.from_config(conn, AppConfig(), transport=fake_api.transport)
    return asyncio.run(pool.run_once(NOW))


def _job(**overrides) -> CharacterJob:
    return CharacterJob(name="Thrall", realm="draenor", credentials=CREDS, **overrides)


class TestFreshCharacter:
    def test_all_endpoints_succeed(self, seeded_db, fake_api):
        _register(fake_api)
        assert _run(seeded_db, fake_api, _job()) == {"processed": 1}

        stored = CharacterRepository(seeded_db).get("thrall-draenor")
        assert stored.status == "SUVPMR"
        assert stored.id == 501
        assert stored.race == "Orc"
        assert stored.avatar_url == "https://render/avatar.jpg"
        assert stored.mounts_number == 3
        assert stored.professions == ["Alchemy"]
        assert stored.hash_a is not None
        assert stored.updated_at == NOW
        assert stored.is_valid
        assert JobQueue(seeded_db).get_job(QueueName.CHARACTERS, "thrall-draenor").state is JobState.COMPLETED

    def test_uses_stored_token_over_job_token(self, seeded_db, fake_api):
        _register(fake_api)
        _run(seeded_db, fake_api, _job())
        assert fake_api.calls[0].headers["Authorization"] == "Bearer token-client-a"

    def test_missing_profile_marks_invalid(self, seeded_db, fake_api):
        assert _run(seeded_db, fake_api, _job()) == {"processed": 1}

        stored = CharacterRepository(seeded_db).get("thrall-draenor")
        assert not stored.is_valid
        assert stored.status == "s-----"
        assert fake_api.paths() == [PROFILE + "/status"]

    def test_failed_endpoint_is_isolated(self, seeded_db, fake_api):
        _register(fake_api, skip=("/character-media",))
        fake_api.add(PROFILE + "/character-media", status=503)

        _run(seeded_db, fake_api, _job())

        stored = CharacterRepository(seeded_db).get("thrall-draenor")
        assert stored.status == "SUvPMR"
        assert stored.avatar_url is None
        assert stored.race == "Orc"

    def test_rate_limited_endpoint_counts_against_credential(self, seeded_db, fake_api):
        _register(fake_api, skip=("/collections/pets",))
        fake_api.add(PROFILE + "/collections/pets", status=429)

        _run(seeded_db, fake_api, _job())

        assert CharacterRepository(seeded_db).get("thrall-draenor").status == "SUVpMR"
        assert CredentialRepository(seeded_db).get("client-a").error_counts == 1

    def test_unknown_realm_fails_without_retry(self, seeded_db, fake_api):
        job = CharacterJob(name="Thrall", realm="atlantis", credentials=CREDS)
        assert _run(seeded_db, fake_api, job) == {"failed": 1}
        assert fake_api.calls == []


class TestExistingCharacter:
    def _store(self, conn, **overrides) -> Character:
        fields = {
            "guid": "thrall-draenor", "id": 501, "name": "Thrall", "realm": "draenor",
            "realm_id": 1096, "race": "Troll", "gender": "Male", "faction": "Horde",
            "status": "SUVPMR", "updated_at": NOW - timedelta(hours=25),
        }
        fields.update(overrides)
        stored = CharacterRepository(conn).upsert(Character(**fields))
        conn.commit()
        return stored

    def test_recent_character_is_skipped(self, seeded_db, fake_api):
        self._store(seeded_db, updated_at=NOW - timedelta(hours=1))
        assert _run(seeded_db, fake_api, _job()) == {"skipped": 1}
        assert fake_api.calls == []

    def test_field_change_is_audited(self, seeded_db, fake_api):
        self._store(seeded_db)
        _register(fake_api)

        _run(seeded_db, fake_api, _job())

        entries = AuditLogRepository(seeded_db).list_for_character("thrall-draenor")
        assert [(e.action, e.original, e.updated) for e in entries] == [
            (AuditAction.RACE, "Troll", "Orc")
        ]
        assert CharacterRepository(seeded_db).get("thrall-draenor").race == "Orc"

    def test_rename_moves_row_and_history(self, seeded_db, fake_api):
        self._store(seeded_db, guid="oldname-draenor", name="Oldname", race="Orc")
        AuditLogRepository(seeded_db).append(
            AuditLogEntry(character_guid="oldname-draenor", action=AuditAction.GENDER,
                          original="Female", updated="Male", created_at=NOW - timedelta(days=30))
        )
        seeded_db.commit()
        _register(fake_api)

        _run(seeded_db, fake_api, _job())

        characters = CharacterRepository(seeded_db)
        assert characters.get("oldname-draenor") is None
        assert characters.get("thrall-draenor").id == 501
        actions = [e.action for e in AuditLogRepository(seeded_db).list_for_character("thrall-draenor")]
        assert actions == [AuditAction.GENDER, AuditAction.NAME]


class TestGuildInheritance:
    def test_rank_inherited_from_roster_job(self, seeded_db, fake_api):
        _register(fake_api, summary=character_summary_payload(
            guild={"name": "Horde Elite", "id": 9001, "realm": {"slug": "draenor"}}
        ))
        job = _job(guild="Horde Elite", guild_guid="horde-elite-draenor", guild_id=9001,
                   guild_rank=3, created_by=SourceTag.GUILD_ROSTER)

        _run(seeded_db, fake_api, job)

        stored = CharacterRepository(seeded_db).get("thrall-draenor")
        assert stored.guild_guid == "horde-elite-draenor"
        assert stored.guild_rank == 3
        assert stored.created_by == SourceTag.GUILD_ROSTER

    def test_summary_without_guild_wins(self, seeded_db, fake_api):
        _register(fake_api)
        job = _job(guild="Horde Elite", guild_guid="horde-elite-draenor", guild_rank=3)

        _run(seeded_db, fake_api, job)

        stored = CharacterRepository(seeded_db).get("thrall-draenor")
        assert stored.guild is None
        assert stored.guild_rank is None
