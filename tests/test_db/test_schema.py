"""Tests for SQLite schema: idempotency, table creation, constraints, migrations."""

from __future__ import annotations

import sqlite3

import pytest

from wow_osint.db.migrations import MIGRATIONS, run_migrations
from wow_osint.db.schema import ALL_TABLE_NAMES, apply_schema, get_existing_tables


class TestApplySchema:
    def test_all_tables_created(self, in_memory_db):
        tables = get_existing_tables(in_memory_db)
        for expected_table in ALL_TABLE_NAMES:
            assert expected_table in tables, (
                f"Expected table '{expected_table}' not found in database. "
                f"Found: {tables}"
            )

    def test_idempotent_double_apply(self, in_memory_db):
        """apply_schema() called twice must not raise errors."""
        apply_schema(in_memory_db)
        tables = get_existing_tables(in_memory_db)
        assert len(tables) >= len(ALL_TABLE_NAMES)


class TestConstraints:
    def test_fk_enforcement_is_on(self, in_memory_db):
        row = in_memory_db.execute("PRAGMA foreign_keys;").fetchone()
        assert row[0] == 1, "PRAGMA foreign_keys should be 1 (enabled)"

    def test_roster_row_needs_a_guild(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                """
                INSERT INTO guild_members (guild_guid, character_id, character_guid, realm, rank)
                VALUES ('no-such-guild', 1, 'a-draenor', 'draenor', 0);
                """
            )

    def test_audit_entry_needs_an_anchor(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                "INSERT INTO audit_logs (action, created_at) VALUES ('NAME', '2026-01-10');"
            )

    def test_credential_status_is_checked(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                "INSERT INTO credentials (client_id, client_secret, status) VALUES ('a', 'b', 'BROKEN');"
            )

    def test_queue_key_is_queue_and_job_id(self, in_memory_db):
        cols = {
            row[1]: row[5]
            for row in in_memory_db.execute("PRAGMA table_info(queue_jobs);").fetchall()
        }
        assert cols["queue_name"] == 1
        assert cols["job_id"] == 2


class TestMigrations:
    def test_applies_every_migration_once(self, in_memory_db):
        assert run_migrations(in_memory_db) == len(MIGRATIONS)
        assert run_migrations(in_memory_db) == 0

    def test_family_index_created(self, in_memory_db):
        run_migrations(in_memory_db)
        indexes = {
            row[0]
            for row in in_memory_db.execute(
                "SELECT name FROM sqlite_master WHERE type='index';"
            ).fetchall()
        }
        assert "idx_characters_hash_a" in indexes
        assert "idx_audit_action" in indexes
