"""
Incremental schema changes for databases created by an older ``apply_schema()``.

Fresh databases already get every table and index from ``schema.py``; the
steps below only bring older files up to date, so each one must be safe to
run against a database that already has the change. Applied ids are kept in
``schema_versions``.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version_id: str
    description: str
    apply: Callable[[sqlite3.Connection], None]


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table});").fetchall()}


def _audit_action_index(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_logs(action, created_at);"
    )


def _character_family_index(conn: sqlite3.Connection) -> None:
    if "hash_a" not in _columns(conn, "characters"):
        conn.execute("ALTER TABLE characters ADD COLUMN hash_a TEXT;")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_characters_hash_a ON characters(hash_a);")


MIGRATIONS: list[Migration] = [
    Migration("0001_audit_action_index", "Index audit_logs(action, created_at)", _audit_action_index),
    Migration("0002_character_family_index", "Index characters(hash_a)", _character_family_index),
]


def pending_migrations(conn: sqlite3.Connection) -> list[Migration]:
    """Migrations not yet recorded in ``schema_versions``, in order."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_versions (
            version_id  TEXT NOT NULL PRIMARY KEY,
            applied_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            description TEXT
        );
        """
    )
    applied = {row[0] for row in conn.execute("SELECT version_id FROM schema_versions;")}
    return [m for m in MIGRATIONS if m.version_id not in applied]


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply every pending migration, each in its own transaction.

    Returns:
        Number of migrations applied by this call.

    Raises:
        sqlite3.Error: A migration failed; it is rolled back and later ones
            are not attempted.
    """
    pending = pending_migrations(conn)
    conn.commit()
    for migration in pending:
        logger.info("Applying migration %s: %s", migration.version_id, migration.description)
        with conn:
            migration.apply(conn)
            conn.execute(
                "INSERT INTO schema_versions (version_id, description) VALUES (?, ?);",
                (migration.version_id, migration.description),
            )
    if pending:
        logger.info("Applied %d migration(s).", len(pending))
    return len(pending)
