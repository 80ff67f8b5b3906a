"""
Guild fetch worker.

Flow::

    reconcile(job) ─ skip? ──► done
        │
        ▼
    SUMMARY (errors fail the job) · ROSTER (isolated)
        │
        ▼
    rename?  → move row (roster follows by FK) + re-anchor audit history
    diff_and_log(previous, guild)                          field changes
    detect_guild_master_change(previous, roster)  MASTER   before the roster
    diff_roster(guild, roster)                    LOGS     is replaced
    upsert(guild)
    character side effects of joins/leaves/rank changes
    replace_roster(guild, roster)                 MEMBERS
    enqueue create-only-unique jobs for every member
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from wow_osint.crawl.policies import PRIORITY_ROSTER
from wow_osint.db.repositories.character_repo import CharacterRepository
from wow_osint.db.repositories.guild_repo import GuildMemberRepository, GuildRepository
from wow_osint.errors import CredentialPoolExhausted, JobValidationError, OsintError, RateLimitedError
from wow_osint.ingestion.blizzard_client import BlizzardClient, parse_guild_roster, parse_guild_summary
from wow_osint.models.entity import Guild, GuildMember, GuildRoster, RosterMember
from wow_osint.models.jobs import GuildJob
from wow_osint.osint.auditor import RosterDiff
from wow_osint.osint.status import GUILD_LAYOUT, StatusVector
from wow_osint.taxonomy.osint_taxonomy import FetchState, SourceTag
from wow_osint.utils.converters import to_slug
from wow_osint.workers.base import OUTCOME_PROCESSED, OUTCOME_SKIPPED, FetchWorker, WorkerServices

logger = logging.getLogger(__name__)


class GuildWorker(FetchWorker):
    """Refreshes one guild and its roster."""

    kind = "guild"

    def __init__(self, services: WorkerServices) -> None:
        super().__init__(services)
        self.guilds = GuildRepository(services.conn)
        self.members = GuildMemberRepository(services.conn)
        self.characters = CharacterRepository(services.conn)

    async def _execute(self, job: GuildJob, client: BlizzardClient, now: datetime) -> str:
        result = self.services.reconciler.reconcile(job, now)
        if result.should_skip:
            return OUTCOME_SKIPPED

        guild: Guild = result.entity
        previous: Optional[Guild] = None if result.is_new else guild
        name_slug = to_slug(guild.name)

        summary = parse_guild_summary(await client.guild_summary(name_slug, guild.realm))

        roster_data: Optional[list[dict[str, Any]]] = None
        try:
            roster_data = parse_guild_roster(
                await client.guild_roster(name_slug, guild.realm), guild.realm
            )
        except RateLimitedError as exc:
            if exc.client_id:
                self.services.pool.record_error(exc.client_id, exc.status_code)
            logger.warning("%s ROSTER failed: %s", guild.guid, exc)
        except (OsintError, httpx.HTTPError) as exc:
            logger.warning("%s ROSTER failed: %s", guild.guid, exc)

        # Nothing below awaits: the job's writes land together or not at all.
        stored = self._persist(job, guild, previous, summary, roster_data, now)
        if roster_data is not None:
            self._request_members(stored, roster_data, now)
        return OUTCOME_PROCESSED

    def _persist(
        self,
        job: GuildJob,
        guild: Guild,
        previous: Optional[Guild],
        summary: dict[str, Any],
        roster_data: Optional[list[dict[str, Any]]],
        now: datetime,
    ) -> Guild:
        source = job.created_by or SourceTag.GUILD_GET
        status = StatusVector.parse(guild.status, GUILD_LAYOUT)
        status.set("SUMMARY", FetchState.SUCCESS)

        new_guid = summary.pop("guid", None) or guild.guid
        updated = guild.model_copy(
            update={**summary, "guid": new_guid, "updated_by": source, "updated_at": now}
        )

        if previous is None and updated.id is not None and updated.realm_id is not None:
            previous = self.guilds.get_by_id(updated.id, updated.realm_id)

        if previous is not None and previous.guid != updated.guid:
            logger.info("Guild %s is now %s", previous.guid, updated.guid)
            if self.guilds.get(updated.guid) is None:
                self.guilds.rename(previous.guid, updated.guid)
            self.services.auditor.rewrite_guild_guid(previous.guid, updated.guid)

        if previous is not None:
            self.services.auditor.diff_and_log(previous, updated)

        if roster_data is None:
            status.set("ROSTER", FetchState.ERROR)
            return self.guilds.upsert(updated.model_copy(update={"status": status.render()}))

        roster = GuildRoster(
            guild_guid=updated.guid,
            members=[RosterMember(**m) for m in roster_data],
            updated_at=now,
        )
        status.set("ROSTER", FetchState.SUCCESS)

        if previous is not None:
            anchored = previous.model_copy(update={"guid": updated.guid})
            self.services.auditor.detect_guild_master_change(anchored, roster)
            status.set("MASTER", FetchState.SUCCESS)

        diff = self.services.auditor.diff_roster(
            updated,
            roster,
            is_new=previous is None,
            scanned_at=previous.updated_at if previous is not None else now,
        )
        status.set("LOGS", FetchState.SUCCESS)

        if updated.members_count is None:
            updated = updated.model_copy(update={"members_count": len(roster.members)})
        stored = self.guilds.upsert(updated.model_copy(update={"status": status.render()}))

        self._apply_membership(stored, diff)
        self.members.replace_roster(
            stored.guid,
            [
                GuildMember(
                    guild_guid=stored.guid,
                    guild_id=stored.id,
                    character_id=m.id,
                    character_guid=m.guid,
                    realm=m.realm_slug,
                    realm_id=m.realm_id,
                    rank=m.rank,
                    last_modified=now,
                    created_by=SourceTag.GUILD_ROSTER,
                    updated_by=SourceTag.GUILD_ROSTER,
                )
                for m in roster.members
            ],
        )
        status.set("MEMBERS", FetchState.SUCCESS)
        return self.guilds.upsert(stored.model_copy(update={"status": status.render()}))

    def _apply_membership(self, guild: Guild, diff: RosterDiff) -> None:
        """Point joined and re-ranked characters at the guild; detach leavers."""
        for member in diff.joined:
            self.characters.set_guild_membership(
                member.guid, guild.name, guild.guid, guild.id, member.rank,
                updated_by=SourceTag.GUILD_ROSTER,
            )
        for _, after in diff.rank_changed:
            self.characters.set_guild_membership(
                after.guid, guild.name, guild.guid, guild.id, after.rank,
                updated_by=SourceTag.GUILD_ROSTER,
            )
        for member in diff.left:
            self.characters.clear_guild_membership(
                member.character_guid, guild.guid, updated_by=SourceTag.GUILD_ROSTER
            )

    def _request_members(
        self, guild: Guild, roster_data: list[dict[str, Any]], now: datetime
    ) -> int:
        """Register every roster member as a character; existing ones are left alone."""
        queued = 0
        for member in roster_data:
            try:
                _, enqueued = self.services.scheduler.request_character(
                    member["name"],
                    member["realm_slug"],
                    guild=guild.name,
                    guild_guid=guild.guid,
                    guild_id=guild.id,
                    guild_rank=member["rank"],
                    character_id=member["id"],
                    create_only_unique=True,
                    created_by=SourceTag.GUILD_ROSTER,
                    priority=PRIORITY_ROSTER,
                    now=now,
                )
            except JobValidationError as exc:
                logger.warning("Roster member of %s not queued: %s", guild.guid, exc)
                continue
            except CredentialPoolExhausted:
                logger.warning("No credential left; roster of %s queued partially", guild.guid)
                break
            queued += int(enqueued)
        logger.debug("%s: %d roster member job(s) queued", guild.guid, queued)
        return queued
