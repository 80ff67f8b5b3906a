"""
Character fetch worker.

Flow::

    reconcile(job) ─ skip? ──► done
        │
        ▼
    STATUS ──404──► is_valid = False, persist, done
        │ (other errors fail the job)
        ▼
    SUMMARY · MEDIA · PETS · MOUNTS · PROFESSIONS   (concurrent, isolated)
        │
        ▼
    rename?  → move row + re-anchor audit history
    diff_and_log(previous, character)
    upsert(character)

Each of the five profile endpoints flips its own status slot; one failing
endpoint never blocks the others.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Optional

import httpx

from wow_osint.db.repositories.character_repo import CharacterRepository
from wow_osint.errors import NotFoundError, OsintError, RateLimitedError
from wow_osint.ingestion.blizzard_client import (
    BlizzardClient,
    parse_character_media,
    parse_character_mounts,
    parse_character_pets,
    parse_character_professions,
    parse_character_status,
    parse_character_summary,
)
from wow_osint.models.entity import Character
from wow_osint.models.jobs import CharacterJob
from wow_osint.osint.status import CHARACTER_LAYOUT, StatusVector
from wow_osint.taxonomy.osint_taxonomy import FetchState, SourceTag
from wow_osint.utils.converters import to_slug
from wow_osint.workers.base import OUTCOME_PROCESSED, OUTCOME_SKIPPED, FetchWorker, WorkerServices

logger = logging.getLogger(__name__)

Parser = Callable[[dict[str, Any]], dict[str, Any]]

_INHERITED_GUILD_FIELDS = ("guild", "guild_guid", "guild_id", "guild_rank")


class CharacterWorker(FetchWorker):
    """Refreshes one character from the profile API."""

    kind = "character"

    def __init__(self, services: WorkerServices) -> None:
        super().__init__(services)
        self.characters = CharacterRepository(services.conn)

    def _endpoints(
        self, client: BlizzardClient, name_slug: str, realm_slug: str
    ) -> list[tuple[str, Awaitable[dict[str, Any]], Parser]]:
        return [
            ("SUMMARY", client.character_summary(name_slug, realm_slug), parse_character_summary),
            ("MEDIA", client.character_media(name_slug, realm_slug), parse_character_media),
            ("PETS", client.character_pets(name_slug, realm_slug), parse_character_pets),
            ("MOUNTS", client.character_mounts(name_slug, realm_slug), parse_character_mounts),
            (
                "PROFESSIONS",
                client.character_professions(name_slug, realm_slug),
                parse_character_professions,
            ),
        ]

    async def _execute(self, job: CharacterJob, client: BlizzardClient, now: datetime) -> str:
        result = self.services.reconciler.reconcile(job, now)
        if result.should_skip:
            return OUTCOME_SKIPPED

        character: Character = result.entity
        previous: Optional[Character] = None if result.is_new else character
        status = StatusVector.parse(character.status, CHARACTER_LAYOUT)
        fields: dict[str, Any] = {}
        name_slug = to_slug(character.name)

        try:
            fields.update(parse_character_status(
                await client.character_status(name_slug, character.realm)
            ))
            status.set("STATUS", FetchState.SUCCESS)
        except NotFoundError:
            logger.info("%s has no profile upstream; marked invalid", character.guid)
            status.set("STATUS", FetchState.ERROR)
            fields["is_valid"] = False

        if fields.get("is_valid"):
            endpoints = self._endpoints(client, name_slug, character.realm)
            responses = await asyncio.gather(
                *(call for _, call, _ in endpoints), return_exceptions=True
            )
            for (endpoint, _, parser), response in zip(endpoints, responses):
                if isinstance(response, BaseException):
                    self._endpoint_failed(character.guid, endpoint, response)
                    status.set(endpoint, FetchState.ERROR)
                    continue
                fields.update(parser(response))
                status.set(endpoint, FetchState.SUCCESS)

        # Nothing below awaits: the job's writes land together or not at all.
        self._persist(job, character, previous, fields, status, now)
        return OUTCOME_PROCESSED

    def _endpoint_failed(self, guid: str, endpoint: str, exc: BaseException) -> None:
        if isinstance(exc, RateLimitedError):
            if exc.client_id:
                self.services.pool.record_error(exc.client_id, exc.status_code)
        elif not isinstance(exc, (OsintError, httpx.HTTPError)):
            raise exc
        logger.warning("%s %s failed: %s", guid, endpoint, exc)

    def _persist(
        self,
        job: CharacterJob,
        character: Character,
        previous: Optional[Character],
        fields: dict[str, Any],
        status: StatusVector,
        now: datetime,
    ) -> Character:
        new_guid = fields.pop("guid", None) or character.guid
        updated = character.model_copy(
            update={
                **fields,
                "guid": new_guid,
                "status": status.render(),
                "updated_by": job.created_by or SourceTag.CHARACTER_GET,
                "updated_at": now,
            }
        )
        updated = _inherit_from_job(
            updated, job, summary_fetched=status.get("SUMMARY") is FetchState.SUCCESS
        )

        if previous is None and updated.id is not None and updated.realm_id is not None:
            previous = self.characters.get_by_id(updated.id, updated.realm_id)

        if previous is not None and previous.guid != updated.guid:
            logger.info("Character %s is now %s", previous.guid, updated.guid)
            if self.characters.get(updated.guid) is None:
                self.characters.rename(previous.guid, updated.guid)
            self.services.auditor.rewrite_character_guid(previous.guid, updated.guid)

        if previous is not None:
            self.services.auditor.diff_and_log(previous, updated)

        return self.characters.upsert(updated)


def _inherit_from_job(
    character: Character, job: CharacterJob, summary_fetched: bool = False
) -> Character:
    """Fill guild fields the character lacks from the job (roster-sourced jobs)."""
    if not job.guild_guid:
        return character
    if character.guild_guid is None and summary_fetched:
        return character
    if character.guild_guid and character.guild_guid != job.guild_guid:
        return character
    update = {
        name: getattr(job, name)
        for name in _INHERITED_GUILD_FIELDS
        if getattr(character, name) is None and getattr(job, name) is not None
    }
    return character.model_copy(update=update) if update else character
