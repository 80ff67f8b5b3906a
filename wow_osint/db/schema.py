"""
SQLite schema DDL: all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is idempotent.

Tables:
  1. credentials       API clients and their circuit state
  2. realms            realm reference table (Realm Directory source)
  3. characters        tracked characters, PK guid
  4. guilds            tracked guilds, PK guid
  5. guild_members     stored rosters (→ guilds, cascades guid renames)
  6. audit_logs        append-only change log
  7. items             item metadata
  8. auction_snapshots auction house dump bookkeeping
  9. queue_jobs        durable crawl queue, PK (queue_name, job_id)
  10. locks            TTL key-value locks for singleton jobs

Timestamps are ISO-8601 UTC strings written by the repositories.
``scan_key`` columns hold a short hash of the guid; bulk resync pages
through entities in ``(scan_key, guid)`` order so consecutive jobs spread
across realms instead of hammering one.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_CREDENTIALS = """
CREATE TABLE IF NOT EXISTS credentials (
    client_id       TEXT    NOT NULL PRIMARY KEY,
    client_secret   TEXT    NOT NULL,
    access_token    TEXT,
    expires_at      TEXT,
    tags            TEXT    NOT NULL DEFAULT '[]',
    status          TEXT    NOT NULL DEFAULT 'FREE'
                        CHECK (status IN ('FREE', 'TAKEN', 'TOO_MANY_REQUESTS')),
    error_counts    INTEGER NOT NULL DEFAULT 0,
    reset_at        TEXT,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_REALMS = """
CREATE TABLE IF NOT EXISTS realms (
    id                  INTEGER PRIMARY KEY,
    slug                TEXT    NOT NULL UNIQUE,
    name                TEXT    NOT NULL,
    locale_name         TEXT,
    locale_slug         TEXT,
    connected_realm_id  INTEGER NOT NULL,
    region              TEXT    NOT NULL DEFAULT 'eu',
    aliases             TEXT    NOT NULL DEFAULT '[]',
    auctions_timestamp  TEXT
);

CREATE INDEX IF NOT EXISTS idx_realms_connected
    ON realms(connected_realm_id);
"""

_DDL_CHARACTERS = """
CREATE TABLE IF NOT EXISTS characters (
    guid                TEXT    NOT NULL PRIMARY KEY,
    id                  INTEGER,
    name                TEXT    NOT NULL,
    realm               TEXT    NOT NULL,
    realm_id            INTEGER,
    realm_name          TEXT,
    guild               TEXT,
    guild_guid          TEXT,
    guild_id            INTEGER,
    guild_rank          INTEGER,
    character_class     TEXT,
    race                TEXT,
    gender              TEXT,
    faction             TEXT,
    level               INTEGER,
    achievement_points  INTEGER,
    average_item_level  INTEGER,
    avatar_url          TEXT,
    pets_number         INTEGER,
    mounts_number       INTEGER,
    professions         TEXT    NOT NULL DEFAULT '[]',
    hash_a              TEXT,
    status              TEXT    NOT NULL DEFAULT '------',
    is_valid            INTEGER NOT NULL DEFAULT 1,
    last_modified       TEXT,
    created_by          TEXT,
    updated_by          TEXT,
    scan_key            TEXT    NOT NULL,
    created_at          TEXT    NOT NULL,
    updated_at          TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_characters_id_realm
    ON characters(id, realm_id);

CREATE INDEX IF NOT EXISTS idx_characters_scan
    ON characters(scan_key, guid);

CREATE INDEX IF NOT EXISTS idx_characters_guild
    ON characters(guild_guid);
"""

_DDL_GUILDS = """
CREATE TABLE IF NOT EXISTS guilds (
    guid                TEXT    NOT NULL PRIMARY KEY,
    id                  INTEGER,
    name                TEXT    NOT NULL,
    realm               TEXT    NOT NULL,
    realm_id            INTEGER,
    realm_name          TEXT,
    faction             TEXT,
    members_count       INTEGER,
    achievement_points  INTEGER,
    created_timestamp   TEXT,
    status              TEXT    NOT NULL DEFAULT '-----',
    last_modified       TEXT,
    created_by          TEXT,
    updated_by          TEXT,
    scan_key            TEXT    NOT NULL,
    created_at          TEXT    NOT NULL,
    updated_at          TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_guilds_id_realm
    ON guilds(id, realm_id);

CREATE INDEX IF NOT EXISTS idx_guilds_scan
    ON guilds(scan_key, guid);
"""

_DDL_GUILD_MEMBERS = """
CREATE TABLE IF NOT EXISTS guild_members (
    guild_guid      TEXT    NOT NULL REFERENCES guilds(guid) ON UPDATE CASCADE ON DELETE CASCADE,
    character_id    INTEGER NOT NULL,
    character_guid  TEXT    NOT NULL,
    guild_id        INTEGER,
    realm           TEXT    NOT NULL,
    realm_id        INTEGER,
    rank            INTEGER NOT NULL,
    last_modified   TEXT,
    created_by      TEXT,
    updated_by      TEXT,
    PRIMARY KEY (guild_guid, character_id)
);

CREATE INDEX IF NOT EXISTS idx_guild_members_rank
    ON guild_members(guild_guid, rank);

CREATE INDEX IF NOT EXISTS idx_guild_members_character
    ON guild_members(character_guid);
"""

_DDL_AUDIT_LOGS = """
CREATE TABLE IF NOT EXISTS audit_logs (
    log_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    character_guid  TEXT,
    guild_guid      TEXT,
    action          TEXT    NOT NULL,
    original        TEXT,
    updated         TEXT,
    scanned_at      TEXT,
    created_at      TEXT    NOT NULL,
    CHECK (character_guid IS NOT NULL OR guild_guid IS NOT NULL)
);

CREATE INDEX IF NOT EXISTS idx_audit_character
    ON audit_logs(character_guid, created_at);

CREATE INDEX IF NOT EXISTS idx_audit_guild
    ON audit_logs(guild_guid, created_at);
"""

_DDL_ITEMS = """
CREATE TABLE IF NOT EXISTS items (
    id              INTEGER PRIMARY KEY,
    name            TEXT,
    quality         TEXT,
    item_class      TEXT,
    item_subclass   TEXT,
    level           INTEGER,
    is_stackable    INTEGER NOT NULL DEFAULT 0,
    updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_AUCTION_SNAPSHOTS = """
CREATE TABLE IF NOT EXISTS auction_snapshots (
    snapshot_id         INTEGER PRIMARY KEY AUTOINCREMENT,
    snapshot_key        TEXT    NOT NULL,
    connected_realm_id  INTEGER NOT NULL,
    last_modified       TEXT,
    auction_count       INTEGER NOT NULL DEFAULT 0,
    fetched_at          TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_auction_snapshots_realm
    ON auction_snapshots(connected_realm_id, fetched_at DESC);
"""

_DDL_QUEUE_JOBS = """
CREATE TABLE IF NOT EXISTS queue_jobs (
    queue_name      TEXT    NOT NULL,
    job_id          TEXT    NOT NULL,
    kind            TEXT    NOT NULL,
    payload         TEXT    NOT NULL,
    priority        INTEGER NOT NULL DEFAULT 5,
    state           TEXT    NOT NULL
                        CHECK (state IN ('waiting', 'delayed', 'active', 'completed', 'failed')),
    attempts        INTEGER NOT NULL DEFAULT 0,
    max_attempts    INTEGER NOT NULL DEFAULT 3,
    available_at    TEXT    NOT NULL,
    last_error      TEXT,
    created_at      TEXT    NOT NULL,
    updated_at      TEXT    NOT NULL,
    PRIMARY KEY (queue_name, job_id)
);

CREATE INDEX IF NOT EXISTS idx_queue_jobs_claim
    ON queue_jobs(queue_name, state, priority, available_at);
"""

_DDL_LOCKS = """
CREATE TABLE IF NOT EXISTS locks (
    key         TEXT    NOT NULL PRIMARY KEY,
    owner       TEXT,
    expires_at  TEXT    NOT NULL
);
"""

_ALL_DDL = [
    _DDL_CREDENTIALS,
    _DDL_REALMS,
    _DDL_CHARACTERS,
    _DDL_GUILDS,
    _DDL_GUILD_MEMBERS,
    _DDL_AUDIT_LOGS,
    _DDL_ITEMS,
    _DDL_AUCTION_SNAPSHOTS,
    _DDL_QUEUE_JOBS,
    _DDL_LOCKS,
]

ALL_TABLE_NAMES = [
    "credentials",
    "realms",
    "characters",
    "guilds",
    "guild_members",
    "audit_logs",
    "items",
    "auction_snapshots",
    "queue_jobs",
    "locks",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``. Idempotent.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database, sorted."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
