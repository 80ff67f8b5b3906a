"""
Field-level change auditing for characters and guilds.

Three kinds of entries are written to ``audit_logs``:

  Field diffs      ``NAME``/``RACE``/``GENDER``/``FACTION`` for characters,
                   ``GUILD_NAME``/``GUILD_FACTION`` for guilds. A field is
                   only compared when it is set on both snapshots.
  Leadership       ``GUILD_INHERIT``/``GUILD_OWNERSHIP``/``GUILD_TRANSIT``,
                   written as a pair: one row anchored to the old master,
                   one to the new, both carrying ``original=old guid`` and
                   ``updated=new guid``.
  Roster           ``JOIN``/``LEAVE``/``PROMOTE``/``DEMOTE``. Changes that
                   involve the master rank are left to the leadership
                   entries.

Leadership classification::

    old master == new master           → nothing
    both resolvable, same family hash  → GUILD_INHERIT
    both resolvable, other family hash → GUILD_OWNERSHIP
    either side unresolvable           → GUILD_TRANSIT

"Resolvable" means a stored character with a known family hash (``hash_a``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from wow_osint.db.repositories.audit_repo import AuditLogRepository
from wow_osint.db.repositories.character_repo import CharacterRepository
from wow_osint.db.repositories.guild_repo import GuildMemberRepository
from wow_osint.models.audit import AuditLogEntry
from wow_osint.models.entity import Character, Guild, GuildMember, GuildRoster, RosterMember
from wow_osint.taxonomy.osint_taxonomy import (
    CHARACTER_WATCHED_FIELDS,
    GUILD_MASTER_RANK,
    GUILD_WATCHED_FIELDS,
    AuditAction,
)
from wow_osint.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class RosterDiff:
    """Membership changes between the stored and the fetched roster."""

    joined: list[RosterMember] = field(default_factory=list)
    left: list[GuildMember] = field(default_factory=list)
    rank_changed: list[tuple[GuildMember, RosterMember]] = field(default_factory=list)
    entries: list[AuditLogEntry] = field(default_factory=list)
    first_index: bool = False


class ChangeAuditor:
    """Diffs snapshots and appends the resulting audit entries."""

    def __init__(
        self,
        audit_logs: AuditLogRepository,
        characters: CharacterRepository,
        members: GuildMemberRepository,
    ) -> None:
        self.audit_logs = audit_logs
        self.characters = characters
        self.members = members

    # ── Field diffs ───────────────────────────────────────────────────────────

    def diff_and_log(
        self,
        original: Union[Character, Guild],
        updated: Union[Character, Guild],
    ) -> list[AuditLogEntry]:
        """Append one entry per watched field that changed.

        Returns:
            The entries written (possibly empty).
        """
        if isinstance(updated, Character):
            watched = CHARACTER_WATCHED_FIELDS
            scanned_at = original.last_modified or original.updated_at
            created_at = updated.last_modified or updated.updated_at
        else:
            watched = GUILD_WATCHED_FIELDS
            scanned_at = original.updated_at or original.last_modified
            created_at = updated.updated_at or updated.last_modified

        entries: list[AuditLogEntry] = []
        for field_name, action in watched.items():
            before = getattr(original, field_name)
            after = getattr(updated, field_name)
            if not before or not after or before == after:
                continue
            entries.append(
                AuditLogEntry(
                    character_guid=updated.guid if isinstance(updated, Character) else None,
                    guild_guid=updated.guid if isinstance(updated, Guild) else None,
                    action=action,
                    original=str(before),
                    updated=str(after),
                    scanned_at=scanned_at,
                    created_at=created_at or utcnow(),
                )
            )

        if entries:
            self.audit_logs.append_many(entries)
            logger.info(
                "%s: %d field change(s): %s",
                updated.guid, len(entries), ", ".join(e.action.value for e in entries),
            )
        return entries

    # ── Leadership ────────────────────────────────────────────────────────────

    def classify_master_change(self, old_guid: str, new_guid: str) -> AuditAction:
        old_master = self.characters.get_with_family(old_guid)
        new_master = self.characters.get_with_family(new_guid)
        if old_master is not None and new_master is not None:
            if old_master.hash_a == new_master.hash_a:
                return AuditAction.GUILD_INHERIT
            return AuditAction.GUILD_OWNERSHIP
        return AuditAction.GUILD_TRANSIT

    def detect_guild_master_change(
        self, guild: Guild, roster: GuildRoster
    ) -> list[AuditLogEntry]:
        """Compare the stored master with the fetched roster's master.

        Must run before the stored roster is replaced.
        """
        old_master = self.members.get_master(guild.guid)
        if old_master is None:
            return []

        new_master = roster.master(GUILD_MASTER_RANK)
        if new_master is None:
            logger.warning("No guild master in the fetched roster of %s", guild.guid)
            return []

        if old_master.character_id == new_master.id:
            logger.debug("No master change for %s (%s)", guild.guid, old_master.character_guid)
            return []

        old_guid, new_guid = old_master.character_guid, new_master.guid
        action = self.classify_master_change(old_guid, new_guid)
        entries = [
            AuditLogEntry(
                character_guid=anchor,
                guild_guid=guild.guid,
                action=action,
                original=old_guid,
                updated=new_guid,
                scanned_at=guild.updated_at,
                created_at=roster.updated_at,
            )
            for anchor in (old_guid, new_guid)
        ]
        self.audit_logs.append_many(entries)
        logger.info("%s master change %s: %s -> %s", guild.guid, action.value, old_guid, new_guid)
        return entries

    # ── Roster ────────────────────────────────────────────────────────────────

    def diff_roster(
        self,
        guild: Guild,
        roster: GuildRoster,
        is_new: bool = False,
        scanned_at: Optional[datetime] = None,
    ) -> RosterDiff:
        """Compare the stored roster of ``guild`` with ``roster`` and log the changes.

        No ``JOIN`` entries are written for a guild seen for the first time
        or for a roster indexed for the first time: those members did not
        just join.
        """
        stored = {m.character_id: m for m in self.members.list_for_guild(guild.guid)}
        fetched = {m.id: m for m in roster.members}
        diff = RosterDiff(first_index=not stored)
        scanned_at = scanned_at or guild.updated_at

        for character_id in sorted(stored.keys() & fetched.keys()):
            before, after = stored[character_id], fetched[character_id]
            if before.rank == after.rank:
                continue
            diff.rank_changed.append((before, after))
            if GUILD_MASTER_RANK in (before.rank, after.rank):
                continue
            action = AuditAction.DEMOTE if after.rank > before.rank else AuditAction.PROMOTE
            diff.entries.append(
                AuditLogEntry(
                    character_guid=before.character_guid,
                    guild_guid=guild.guid,
                    action=action,
                    original=str(before.rank),
                    updated=str(after.rank),
                    scanned_at=scanned_at,
                    created_at=roster.updated_at,
                )
            )

        if not is_new:
            for character_id in sorted(fetched.keys() - stored.keys()):
                member = fetched[character_id]
                diff.joined.append(member)
                if member.rank == GUILD_MASTER_RANK or diff.first_index:
                    continue
                diff.entries.append(
                    AuditLogEntry(
                        character_guid=member.guid,
                        guild_guid=guild.guid,
                        action=AuditAction.JOIN,
                        updated=str(member.rank),
                        scanned_at=scanned_at,
                        created_at=roster.updated_at,
                    )
                )

        for character_id in sorted(stored.keys() - fetched.keys()):
            member = stored[character_id]
            diff.left.append(member)
            if member.rank == GUILD_MASTER_RANK:
                continue
            diff.entries.append(
                AuditLogEntry(
                    character_guid=member.character_guid,
                    guild_guid=guild.guid,
                    action=AuditAction.LEAVE,
                    original=str(member.rank),
                    scanned_at=scanned_at,
                    created_at=roster.updated_at,
                )
            )

        if diff.entries:
            self.audit_logs.append_many(diff.entries)
        logger.debug(
            "%s roster: %d joined, %d left, %d rank change(s)",
            guild.guid, len(diff.joined), len(diff.left), len(diff.rank_changed),
        )
        return diff

    # ── Identity changes ──────────────────────────────────────────────────────

    def rewrite_character_guid(self, old_guid: str, new_guid: str) -> int:
        """Re-anchor a renamed character's history to its new guid."""
        if old_guid == new_guid:
            return 0
        changed = self.audit_logs.rewrite_character_guid(old_guid, new_guid)
        logger.info("Audit history moved %s -> %s (%d row(s))", old_guid, new_guid, changed)
        return changed

    def rewrite_guild_guid(self, old_guid: str, new_guid: str) -> int:
        if old_guid == new_guid:
            return 0
        changed = self.audit_logs.rewrite_guild_guid(old_guid, new_guid)
        logger.info("Guild audit history moved %s -> %s (%d row(s))", old_guid, new_guid, changed)
        return changed
