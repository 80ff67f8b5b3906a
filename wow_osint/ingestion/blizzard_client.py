"""
Async client for the Blizzard profile and game data APIs.

API:   https://{region}.api.blizzard.com
Docs:  https://develop.battle.net/documentation/world-of-warcraft

Every call carries the job's bearer token, a ``Battlenet-Namespace`` header
and a ``locale`` parameter::

    profile-{region}   /profile/wow/character/...   /data/wow/guild/...
    dynamic-{region}   connected realms, auctions, commodities
    static-{region}    items

Upstream failures are mapped onto the crawler's error taxonomy:

    404                       → NotFoundError
    403 / 429                 → RateLimitedError (carries the client id)
    5xx, timeout, transport   → TransientError
    other 4xx                 → httpx.HTTPStatusError

The ``parse_*`` functions turn raw JSON into plain dicts of model fields;
workers apply them to ``Character``/``Guild``/``Realm``/``Item`` rows.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from email.utils import format_datetime, parsedate_to_datetime
from typing import Any, ClassVar, Optional

import httpx

from wow_osint.errors import NotFoundError, RateLimitedError, TransientError
from wow_osint.models.credential import JobCredentials
from wow_osint.utils.converters import family_hash, to_guid, to_slug
from wow_osint.utils.time_utils import from_epoch_ms, utcnow

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS_CODES = frozenset({403, 429})

_CONNECTED_REALM_HREF = re.compile(r"/connected-realm/(\d+)")


@dataclass(frozen=True)
class AuctionsResponse:
    """Result of an auctions or commodities call.

    ``not_modified`` is set when upstream answered 304 to our
    ``If-Modified-Since``; no auctions were transferred.
    """

    connected_realm_id: int
    last_modified: Optional[datetime]
    auction_count: int
    not_modified: bool = False


class BlizzardClient:
    """One job's view of the Blizzard API.

    Usage::

        async with BlizzardClient(job.credentials, region="eu") as client:
            summary = await client.character_summary("thrall", "draenor")

    Args:
        credentials: Credential slice embedded in the job.
        region: ``us``, ``eu``, ``kr`` or ``tw``.
        locale: Response locale, e.g. ``en_GB``.
        timeout: Seconds per call.
        base_url: URL template with a ``{region}`` placeholder.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    BASE_URL_TEMPLATE: ClassVar[str] = "https://{region}.api.blizzard.com"

    def __init__(
        self,
        credentials: JobCredentials,
        region: str = "eu",
        locale: str = "en_GB",
        timeout: float = 30.0,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.credentials = credentials
        self.region = region
        self.locale = locale
        self.timeout = timeout
        self.base_url = (base_url or self.BASE_URL_TEMPLATE).format(region=region)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "BlizzardClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self.credentials.access_token}"},
        )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ── Transport ─────────────────────────────────────────────────────────────

    async def _request(
        self,
        path: str,
        namespace: str,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        if self._client is None:
            raise RuntimeError("BlizzardClient used outside 'async with'.")
        try:
            resp = await self._client.get(
                path,
                params={"locale": self.locale},
                headers={"Battlenet-Namespace": f"{namespace}-{self.region}", **(headers or {})},
            )
        except httpx.TimeoutException as exc:
            raise TransientError(f"timeout: GET {path}") from exc
        except httpx.TransportError as exc:
            raise TransientError(f"transport error: GET {path}: {exc}") from exc

        if resp.status_code == 404:
            raise NotFoundError("resource", path)
        if resp.status_code in RATE_LIMIT_STATUS_CODES:
            raise RateLimitedError(resp.status_code, self.credentials.client_id)
        if resp.status_code == 304:
            return resp
        if resp.status_code >= 500:
            raise TransientError(f"HTTP {resp.status_code}: GET {path}")
        resp.raise_for_status()
        return resp

    async def _get_json(self, path: str, namespace: str) -> dict[str, Any]:
        resp = await self._request(path, namespace)
        return resp.json()

    # ── Characters ────────────────────────────────────────────────────────────

    @staticmethod
    def _character_path(name_slug: str, realm_slug: str) -> str:
        return f"/profile/wow/character/{realm_slug}/{name_slug}"

    async def character_status(self, name_slug: str, realm_slug: str) -> dict[str, Any]:
        return await self._get_json(
            f"{self._character_path(name_slug, realm_slug)}/status", "profile"
        )

    async def character_summary(self, name_slug: str, realm_slug: str) -> dict[str, Any]:
        return await self._get_json(self._character_path(name_slug, realm_slug), "profile")

    async def character_media(self, name_slug: str, realm_slug: str) -> dict[str, Any]:
        return await self._get_json(
            f"{self._character_path(name_slug, realm_slug)}/character-media", "profile"
        )

    async def character_pets(self, name_slug: str, realm_slug: str) -> dict[str, Any]:
        return await self._get_json(
            f"{self._character_path(name_slug, realm_slug)}/collections/pets", "profile"
        )

    async def character_mounts(self, name_slug: str, realm_slug: str) -> dict[str, Any]:
        return await self._get_json(
            f"{self._character_path(name_slug, realm_slug)}/collections/mounts", "profile"
        )

    async def character_professions(self, name_slug: str, realm_slug: str) -> dict[str, Any]:
        return await self._get_json(
            f"{self._character_path(name_slug, realm_slug)}/professions", "profile"
        )

    # ── Guilds ────────────────────────────────────────────────────────────────

    async def guild_summary(self, name_slug: str, realm_slug: str) -> dict[str, Any]:
        return await self._get_json(f"/data/wow/guild/{realm_slug}/{name_slug}", "profile")

    async def guild_roster(self, name_slug: str, realm_slug: str) -> dict[str, Any]:
        return await self._get_json(
            f"/data/wow/guild/{realm_slug}/{name_slug}/roster", "profile"
        )

    # ── Realms ────────────────────────────────────────────────────────────────

    async def connected_realm_index(self) -> list[int]:
        data = await self._get_json("/data/wow/connected-realm/index", "dynamic")
        return parse_connected_realm_index(data)

    async def connected_realm(self, connected_realm_id: int) -> dict[str, Any]:
        return await self._get_json(f"/data/wow/connected-realm/{connected_realm_id}", "dynamic")

    # ── Items & auctions ──────────────────────────────────────────────────────

    async def item(self, item_id: int) -> dict[str, Any]:
        return await self._get_json(f"/data/wow/item/{item_id}", "static")

    async def auctions(
        self,
        connected_realm_id: int,
        if_modified_since: Optional[datetime] = None,
    ) -> AuctionsResponse:
        """Auction house dump of a connected realm; ``0`` means commodities."""
        path = (
            "/data/wow/auctions/commodities"
            if connected_realm_id == 0
            else f"/data/wow/connected-realm/{connected_realm_id}/auctions"
        )
        headers = {}
        if if_modified_since is not None:
            headers["If-Modified-Since"] = format_datetime(if_modified_since, usegmt=True)

        resp = await self._request(path, "dynamic", headers=headers)
        if resp.status_code == 304:
            return AuctionsResponse(connected_realm_id, if_modified_since, 0, not_modified=True)

        last_modified = _parse_http_date(resp.headers.get("Last-Modified"))
        auctions = resp.json().get("auctions", [])
        return AuctionsResponse(connected_realm_id, last_modified or utcnow(), len(auctions))


def _parse_http_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Unparseable Last-Modified header: %r", value)
        return None


def _named(value: Any) -> Optional[str]:
    """``{"type": "HORDE", "name": "Horde"}`` → ``"Horde"``."""
    if isinstance(value, dict):
        return value.get("name")
    return value


# ── Response parsers ──────────────────────────────────────────────────────────


def parse_character_status(data: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {"is_valid": bool(data.get("is_valid", False))}
    if data.get("id"):
        fields["id"] = int(data["id"])
    if data.get("last_modified"):
        fields["last_modified"] = from_epoch_ms(data["last_modified"])
    return fields


def parse_character_summary(data: dict[str, Any]) -> dict[str, Any]:
    """Character fields from the profile summary.

    The returned ``guid`` is computed from the upstream name and realm, so a
    renamed or transferred character comes back under a different guid.
    """
    realm = data.get("realm") or {}
    fields: dict[str, Any] = {
        "id": data.get("id"),
        "name": data.get("name"),
        "realm": realm.get("slug"),
        "realm_id": realm.get("id"),
        "realm_name": _named(realm),
        "gender": _named(data.get("gender")),
        "faction": _named(data.get("faction")),
        "race": _named(data.get("race")),
        "character_class": _named(data.get("character_class")),
        "level": data.get("level"),
        "achievement_points": data.get("achievement_points"),
        "average_item_level": data.get("average_item_level"),
        "last_modified": from_epoch_ms(data.get("last_login_timestamp")),
    }
    fields = {k: v for k, v in fields.items() if v}

    if fields.get("name") and fields.get("realm"):
        fields["guid"] = to_guid(fields["name"], fields["realm"])

    guild = data.get("guild")
    if guild and guild.get("name"):
        guild_realm = (guild.get("realm") or {}).get("slug") or fields.get("realm")
        fields["guild"] = guild["name"]
        fields["guild_id"] = guild.get("id")
        fields["guild_guid"] = to_guid(guild["name"], guild_realm) if guild_realm else None
    else:
        fields.update({"guild": None, "guild_id": None, "guild_guid": None, "guild_rank": None})
    return fields


def parse_character_media(data: dict[str, Any]) -> dict[str, Any]:
    for asset in data.get("assets", []):
        if asset.get("key") == "avatar":
            return {"avatar_url": asset.get("value")}
    return {}


def parse_character_pets(data: dict[str, Any]) -> dict[str, Any]:
    """Pet count and the family hash over the active pets.

    A pet is identified by ``"{nickname}.{species}"`` (or the species alone)
    plus its level. Active pets are shared by every character of an account.
    """
    pets = data.get("pets", [])
    active = []
    for pet in pets:
        if not pet.get("is_active"):
            continue
        species = _named(pet.get("species")) or ""
        identifier = f"{pet['name']}.{species}" if pet.get("name") else species
        active.append(f"{identifier}.{pet.get('level', 1)}")
    return {"pets_number": len(pets), "hash_a": family_hash(active)}


def parse_character_mounts(data: dict[str, Any]) -> dict[str, Any]:
    return {"mounts_number": len(data.get("mounts", []))}


def parse_character_professions(data: dict[str, Any]) -> dict[str, Any]:
    names = [
        _named(entry.get("profession"))
        for group in ("primaries", "secondaries")
        for entry in data.get(group, [])
    ]
    return {"professions": [n for n in names if n]}


def parse_guild_summary(data: dict[str, Any]) -> dict[str, Any]:
    realm = data.get("realm") or {}
    fields: dict[str, Any] = {
        "id": data.get("id"),
        "name": data.get("name"),
        "realm": realm.get("slug"),
        "realm_id": realm.get("id"),
        "realm_name": _named(realm),
        "faction": _named(data.get("faction")),
        "members_count": data.get("member_count"),
        "achievement_points": data.get("achievement_points"),
        "created_timestamp": from_epoch_ms(data.get("created_timestamp")),
    }
    fields = {k: v for k, v in fields.items() if v}
    if fields.get("name") and fields.get("realm"):
        fields["guid"] = to_guid(fields["name"], fields["realm"])
    return fields


def parse_guild_roster(data: dict[str, Any], default_realm: str) -> list[dict[str, Any]]:
    """Roster members as ``RosterMember`` field dicts; malformed entries are skipped."""
    members = []
    for entry in data.get("members", []):
        character = entry.get("character") or {}
        if "rank" not in entry or not character.get("id") or not character.get("name"):
            continue
        realm = character.get("realm") or {}
        realm_slug = realm.get("slug") or default_realm
        members.append(
            {
                "id": int(character["id"]),
                "guid": to_guid(character["name"], realm_slug),
                "name": character["name"],
                "realm_slug": realm_slug,
                "realm_id": realm.get("id"),
                "rank": int(entry["rank"]),
                "level": character.get("level"),
            }
        )
    return members


def parse_connected_realm_index(data: dict[str, Any]) -> list[int]:
    ids = []
    for entry in data.get("connected_realms", []):
        match = _CONNECTED_REALM_HREF.search(entry.get("href", ""))
        if match:
            ids.append(int(match.group(1)))
    return sorted(set(ids))


def parse_connected_realm(data: dict[str, Any], region: str) -> list[dict[str, Any]]:
    """Member realms of a connected realm as ``Realm`` field dicts."""
    connected_realm_id = int(data["id"])
    realms = []
    for realm in data.get("realms", []):
        name = _named(realm.get("name")) or realm.get("slug", "")
        slug = realm.get("slug") or to_slug(name)
        realms.append(
            {
                "id": int(realm["id"]),
                "slug": slug,
                "name": name,
                "locale_name": name,
                "locale_slug": to_slug(name),
                "connected_realm_id": connected_realm_id,
                "region": region,
            }
        )
    return realms


def parse_item(data: dict[str, Any]) -> dict[str, Any]:
    quality = data.get("quality") or {}
    return {
        "id": int(data["id"]),
        "name": _named(data.get("name")),
        "quality": quality.get("type") if isinstance(quality, dict) else quality,
        "item_class": _named(data.get("item_class")),
        "item_subclass": _named(data.get("item_subclass")),
        "level": data.get("level"),
        "is_stackable": bool(data.get("is_stackable", False)),
    }
