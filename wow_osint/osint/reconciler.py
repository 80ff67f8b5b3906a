"""
Create / skip / refresh decision for tracked characters and guilds.

``EntityReconciler.reconcile(job)`` never writes to the store. It answers:

  - ``is_new``                 no row under the job's guid; a fresh entity
                               is built from the job and persisted by the
                               worker after the fetch succeeds.
  - ``is_create_only_unique``  the row exists and the job only wanted to
                               register it; the row is returned untouched.
  - ``is_not_ready_to_update`` the row was refreshed less than
                               ``force_update`` ago; skip.
  - otherwise                  ready: the status string is reset to all
                               pending and the worker fetches and merges.

The staleness check and the later upsert are not atomic. Two workers can
both see a stale row and both refresh it; at most one fetch is wasted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional, Union

from wow_osint.db.repositories.character_repo import CharacterRepository
from wow_osint.db.repositories.guild_repo import GuildRepository
from wow_osint.errors import NotFoundError
from wow_osint.models.entity import Character, Guild
from wow_osint.models.jobs import CharacterJob, GuildJob
from wow_osint.models.realm import Realm
from wow_osint.osint.status import CHARACTER_LAYOUT, GUILD_LAYOUT, initial_status
from wow_osint.realms.directory import RealmDirectory
from wow_osint.taxonomy.osint_taxonomy import SourceTag
from wow_osint.utils.converters import capitalize, to_guid
from wow_osint.utils.time_utils import from_epoch_ms, utcnow

if TYPE_CHECKING:
    import sqlite3

    from wow_osint.config import AppConfig

logger = logging.getLogger(__name__)

Entity = Union[Character, Guild]


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one ``reconcile`` call."""

    entity: Entity
    realm: Realm
    is_new: bool = False
    is_create_only_unique: bool = False
    is_not_ready_to_update: bool = False

    @property
    def should_skip(self) -> bool:
        return self.is_create_only_unique or self.is_not_ready_to_update


class EntityReconciler:
    """Staleness gate in front of the character and guild workers.

    Args:
        realms: Realm lookup; an unknown realm raises ``NotFoundError``.
        characters: Character storage (read only here).
        guilds: Guild storage (read only here).
        character_force_update: Default staleness window for characters.
        guild_force_update: Default staleness window for guilds.
    """

    def __init__(
        self,
        realms: RealmDirectory,
        characters: CharacterRepository,
        guilds: GuildRepository,
        character_force_update: timedelta = timedelta(hours=24),
        guild_force_update: timedelta = timedelta(hours=4),
    ) -> None:
        self.realms = realms
        self.characters = characters
        self.guilds = guilds
        self.character_force_update = character_force_update
        self.guild_force_update = guild_force_update

    @classmethod
    def from_config(
        cls,
        conn: "sqlite3.Connection",
        config: "AppConfig",
        realms: RealmDirectory,
    ) -> "EntityReconciler":
        return cls(
            realms,
            CharacterRepository(conn),
            GuildRepository(conn),
            character_force_update=timedelta(hours=config.crawl.character_force_update_hours),
            guild_force_update=timedelta(hours=config.crawl.guild_force_update_hours),
        )

    def resolve_realm(self, query: str) -> Realm:
        """Realm for ``query``.

        Raises:
            NotFoundError: The directory has no such realm.
        """
        realm = self.realms.find_realm(query)
        if realm is None:
            raise NotFoundError("realm", query)
        return realm

    def reconcile(
        self,
        job: Union[CharacterJob, GuildJob],
        now: Optional[datetime] = None,
    ) -> ReconcileResult:
        now = now or utcnow()
        match job:
            case CharacterJob():
                return self.reconcile_character(job, now)
            case GuildJob():
                return self.reconcile_guild(job, now)
            case _:
                raise TypeError(f"cannot reconcile {type(job).__name__}")

    # ── Characters ────────────────────────────────────────────────────────────

    def reconcile_character(self, job: CharacterJob, now: datetime) -> ReconcileResult:
        realm = self.resolve_realm(job.realm)
        guid = to_guid(job.name, realm.slug)
        existing = self.characters.get(guid)

        if existing is None:
            source = job.created_by or SourceTag.CHARACTER_GET
            character = Character(
                guid=guid,
                id=job.id,
                name=capitalize(job.name),
                realm=realm.slug,
                realm_id=realm.id,
                realm_name=realm.name,
                guild=job.guild,
                guild_guid=job.guild_guid,
                guild_id=job.guild_id,
                guild_rank=job.guild_rank,
                last_modified=from_epoch_ms(job.last_modified),
                status=initial_status(CHARACTER_LAYOUT),
                created_by=source,
                updated_by=source,
            )
            logger.debug("New character %s", guid)
            return ReconcileResult(character, realm, is_new=True)

        window = job.force_update_window(self.character_force_update)
        return self._gate(existing, realm, job.create_only_unique, window, now)

    # ── Guilds ────────────────────────────────────────────────────────────────

    def reconcile_guild(self, job: GuildJob, now: datetime) -> ReconcileResult:
        realm = self.resolve_realm(job.realm)
        guid = to_guid(job.name, realm.slug)
        existing = self.guilds.get(guid)

        if existing is None:
            source = job.created_by or SourceTag.GUILD_GET
            guild = Guild(
                guid=guid,
                id=job.id,
                name=capitalize(job.name),
                realm=realm.slug,
                realm_id=realm.id,
                realm_name=realm.name,
                status=initial_status(GUILD_LAYOUT),
                created_by=source,
                updated_by=source,
            )
            logger.debug("New guild %s", guid)
            return ReconcileResult(guild, realm, is_new=True)

        window = job.force_update_window(self.guild_force_update)
        return self._gate(existing, realm, job.create_only_unique, window, now)

    # ── Shared gate ───────────────────────────────────────────────────────────

    def _gate(
        self,
        existing: Entity,
        realm: Realm,
        create_only_unique: bool,
        window: timedelta,
        now: datetime,
    ) -> ReconcileResult:
        if create_only_unique:
            logger.debug("%s exists; create-only-unique job skipped", existing.guid)
            return ReconcileResult(existing, realm, is_create_only_unique=True)

        update_safe = now - window
        if existing.updated_at is not None and existing.updated_at > update_safe:
            logger.debug(
                "%s updated at %s, not ready before %s",
                existing.guid, existing.updated_at, existing.updated_at + window,
            )
            return ReconcileResult(existing, realm, is_not_ready_to_update=True)

        layout = GUILD_LAYOUT if isinstance(existing, Guild) else CHARACTER_LAYOUT
        ready = existing.model_copy(update={"status": initial_status(layout)})
        return ReconcileResult(ready, realm)
