"""
Shared pytest fixtures for the WoW OSINT crawler test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema applied. Created anew for each test that requests it.
  - ``seeded_db``: ``in_memory_db`` with three realms and two credentials.
  - ``fake_api``: A scriptable stand-in for the Blizzard API, served through
    ``httpx.MockTransport``.
  - Sample domain object factories for use in multiple test modules.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Generator, Optional

import httpx
import pytest

from wow_osint.db.repositories.credential_repo import CredentialRepository
from wow_osint.db.repositories.realm_repo import RealmRepository
from wow_osint.db.schema import apply_schema
from wow_osint.models.credential import Credential
from wow_osint.models.realm import Realm

NOW = datetime(2026, 1, 10, 12, 0, 0, tzinfo=timezone.utc)


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Schema is applied idempotently.
    Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def sample_realms() -> list[Realm]:
    return [
        Realm(
            id=1096, slug="draenor", name="Draenor", locale_name="Draenor",
            locale_slug="draenor", connected_realm_id=1096, region="eu",
        ),
        Realm(
            id=1602, slug="gordunni", name="Gordunni", locale_name="Гордунни",
            locale_slug="гордунни", connected_realm_id=1602, region="eu",
        ),
        Realm(
            id=3686, slug="twisted-nether", name="Twisted Nether",
            locale_name="Twisted Nether", locale_slug="twisted-nether",
            connected_realm_id=1305, region="eu", aliases=["TN"],
        ),
    ]


def make_credential(client_id: str = "client-a", **overrides: Any) -> Credential:
    fields: dict[str, Any] = {
        "client_id": client_id,
        "client_secret": f"secret-{client_id}",
        "access_token": f"token-{client_id}",
        "expires_at": NOW + timedelta(days=1),
        "tags": ["blizzard"],
    }
    fields.update(overrides)
    return Credential(**fields)


@pytest.fixture
def seeded_db(in_memory_db, sample_realms) -> sqlite3.Connection:
    """``in_memory_db`` with the sample realms and two credentials."""
    realms = RealmRepository(in_memory_db)
    for realm in sample_realms:
        realms.upsert(realm)
    creds = CredentialRepository(in_memory_db)
    creds.save(make_credential("client-a"))
    creds.save(make_credential("client-b"))
    in_memory_db.commit()
    return in_memory_db


# ── Fake upstream API ─────────────────────────────────────────────────────────

class FakeBlizzardApi:
    """Path-keyed canned responses for ``httpx.MockTransport``.

    Unregistered paths answer 404. Every request is recorded in ``calls``.
    """

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, Any, dict[str, str]]] = {}
        self.calls: list[httpx.Request] = []

    def add(
        self,
        path: str,
        body: Any = None,
        status: int = 200,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.routes[path] = (status, body if body is not None else {}, headers or {})

    def paths(self) -> list[str]:
        return [request.url.path for request in self.calls]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        status, body, headers = self.routes.get(request.url.path, (404, {}, {}))
        return httpx.Response(status, json=body, headers=headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_api() -> FakeBlizzardApi:
    return FakeBlizzardApi()


# ── Sample upstream payloads ──────────────────────────────────────────────────

def character_summary_payload(
    name: str = "Thrall",
    realm_slug: str = "draenor",
    realm_id: int = 1096,
    character_id: int = 501,
    race: str = "Orc",
    gender: str = "Male",
    faction: str = "Horde",
    guild: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": character_id,
        "name": name,
        "realm": {"id": realm_id, "slug": realm_slug, "name": realm_slug.title()},
        "gender": {"type": gender.upper(), "name": gender},
        "faction": {"type": faction.upper(), "name": faction},
        "race": {"id": 2, "name": race},
        "character_class": {"id": 7, "name": "Shaman"},
        "level": 80,
        "achievement_points": 12000,
        "average_item_level": 610,
        "last_login_timestamp": 1767960000000,
    }
    if guild is not None:
        payload["guild"] = guild
    return payload


def guild_summary_payload(
    name: str = "Horde Elite",
    realm_slug: str = "draenor",
    realm_id: int = 1096,
    guild_id: int = 9001,
    faction: str = "Horde",
    member_count: int = 3,
) -> dict[str, Any]:
    return {
        "id": guild_id,
        "name": name,
        "realm": {"id": realm_id, "slug": realm_slug, "name": realm_slug.title()},
        "faction": {"type": faction.upper(), "name": faction},
        "member_count": member_count,
        "achievement_points": 3000,
        "created_timestamp": 1500000000000,
    }


def roster_payload(members: list[tuple[int, str, int]], realm_slug: str = "draenor") -> dict[str, Any]:
    """``members`` as ``(character id, name, rank)`` tuples."""
    return {
        "members": [
            {
                "character": {
                    "id": character_id,
                    "name": name,
                    "level": 80,
                    "realm": {"id": 1096, "slug": realm_slug},
                },
                "rank": rank,
            }
            for character_id, name, rank in members
        ]
    }
