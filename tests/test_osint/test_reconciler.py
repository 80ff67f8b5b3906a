"""Tests for the create / skip / refresh gate."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW
from wow_osint.db.repositories.character_repo import CharacterRepository
from wow_osint.db.repositories.guild_repo import GuildRepository
from wow_osint.db.repositories.realm_repo import RealmRepository
from wow_osint.errors import NotFoundError
from wow_osint.models.entity import Character, Guild
from wow_osint.models.jobs import CharacterJob, GuildJob
from wow_osint.osint.reconciler import EntityReconciler
from wow_osint.realms.directory import RealmDirectory
from wow_osint.taxonomy.osint_taxonomy import SourceTag

CREDS = {"client_id": "client-a", "client_secret": "secret", "access_token": "token"}


@pytest.fixture
def reconciler(seeded_db) -> EntityReconciler:
    directory = RealmDirectory(RealmRepository(seeded_db).list_all)
    return EntityReconciler(
        directory,
        CharacterRepository(seeded_db),
        GuildRepository(seeded_db),
    )


def _store_character(conn, **overrides) -> Character:
    fields = {
        "guid": "thrall-draenor",
        "id": 501,
        "name": "Thrall",
        "realm": "draenor",
        "realm_id": 1096,
        "status": "SUVPMR",
        "updated_at": NOW - timedelta(hours=1),
    }
    fields.update(overrides)
    return CharacterRepository(conn).upsert(Character(**fields))


class TestNewEntities:
    def test_unknown_character_is_new(self, reconciler):
        job = CharacterJob(
            name="thrall", realm="Draenor", guild="Horde Elite", guild_rank=3,
            credentials=CREDS,
        )
        result = reconciler.reconcile(job, NOW)

        assert result.is_new
        assert not result.should_skip
        assert result.entity.guid == "thrall-draenor"
        assert result.entity.name == "Thrall"
        assert result.entity.status == "------"
        assert result.entity.guild == "Horde Elite"
        assert result.entity.created_by == SourceTag.CHARACTER_GET
        assert result.realm.id == 1096

    def test_realm_resolved_from_localized_name(self, reconciler):
        job = CharacterJob(name="Иван", realm="Гордунни", credentials=CREDS)
        result = reconciler.reconcile(job, NOW)
        assert result.entity.realm == "gordunni"
        assert result.entity.guid == "иван-gordunni"

    def test_new_guild_uses_job_source(self, reconciler):
        job = GuildJob(
            name="Horde Elite", realm="draenor",
            created_by=SourceTag.GUILD_INDEX, credentials=CREDS,
        )
        result = reconciler.reconcile(job, NOW)
        assert result.is_new
        assert isinstance(result.entity, Guild)
        assert result.entity.status == "-----"
        assert result.entity.created_by == SourceTag.GUILD_INDEX

    def test_unknown_realm_raises(self, reconciler):
        job = CharacterJob(name="Thrall", realm="Atlantis", credentials=CREDS)
        with pytest.raises(NotFoundError) as exc_info:
            reconciler.reconcile(job, NOW)
        assert exc_info.value.kind == "realm"


class TestExistingEntities:
    def test_create_only_unique_returns_row_untouched(self, reconciler, seeded_db):
        _store_character(seeded_db)
        job = CharacterJob(
            name="Thrall", realm="draenor", create_only_unique=True, credentials=CREDS
        )
        result = reconciler.reconcile(job, NOW)
        assert result.is_create_only_unique
        assert result.should_skip
        assert result.entity.status == "SUVPMR"

    def test_recently_updated_is_not_ready(self, reconciler, seeded_db):
        _store_character(seeded_db, updated_at=NOW - timedelta(hours=1))
        job = CharacterJob(name="Thrall", realm="draenor", credentials=CREDS)
        result = reconciler.reconcile(job, NOW)
        assert result.is_not_ready_to_update
        assert result.should_skip

    def test_stale_row_is_ready_with_status_reset(self, reconciler, seeded_db):
        _store_character(seeded_db, updated_at=NOW - timedelta(hours=25))
        job = CharacterJob(name="Thrall", realm="draenor", credentials=CREDS)
        result = reconciler.reconcile(job, NOW)
        assert not result.is_new
        assert not result.should_skip
        assert result.entity.status == "------"

    def test_force_update_overrides_default_window(self, reconciler, seeded_db):
        _store_character(seeded_db, updated_at=NOW - timedelta(minutes=5))
        job = CharacterJob(
            name="Thrall", realm="draenor", force_update=60_000, credentials=CREDS
        )
        result = reconciler.reconcile(job, NOW)
        assert not result.should_skip

    def test_guild_window_is_four_hours(self, reconciler, seeded_db):
        GuildRepository(seeded_db).upsert(
            Guild(
                guid="horde-elite-draenor", name="Horde Elite", realm="draenor",
                status="URMLG", updated_at=NOW - timedelta(hours=5),
            )
        )
        job = GuildJob(name="Horde Elite", realm="draenor", credentials=CREDS)
        result = reconciler.reconcile(job, NOW)
        assert not result.should_skip
        assert result.entity.status == "-----"

    def test_reconcile_does_not_write(self, reconciler, seeded_db):
        job = CharacterJob(name="Thrall", realm="draenor", credentials=CREDS)
        reconciler.reconcile(job, NOW)
        assert CharacterRepository(seeded_db).count() == 0
