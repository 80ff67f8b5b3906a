"""
Enumerations shared across the crawler.

  - ``CredentialStatus``   circuit state of an API credential.
  - ``QueueName``          one durable queue per job kind.
  - ``JobState``           lifecycle of a queued job.
  - ``AuditAction``        what an ``AuditLogEntry`` records.
  - ``SourceTag``          which code path created or last touched a row.
  - ``FetchState``         outcome of one partial fetch (status slot).

This module has NO imports from any other ``wow_osint`` package.
"""

from enum import IntEnum, StrEnum

# Guild rank held by the guild master in every upstream roster.
GUILD_MASTER_RANK = 0


class CredentialStatus(StrEnum):
    """Circuit state of a credential."""

    FREE = "FREE"
    TAKEN = "TAKEN"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"


class QueueName(StrEnum):
    CHARACTERS = "characters"
    GUILDS = "guilds"
    REALMS = "realms"
    ITEMS = "items"
    AUCTIONS = "auctions"


class JobState(StrEnum):
    """Lifecycle of a queued job.

    ``WAITING``, ``DELAYED`` and ``ACTIVE`` are *live*: a second enqueue
    under the same id is ignored while the first is live.
    """

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


LIVE_JOB_STATES = frozenset({JobState.WAITING, JobState.DELAYED, JobState.ACTIVE})


class AuditAction(StrEnum):
    """Action recorded by an audit log entry."""

    # ── Character field changes ───────────────────────────────────────────────
    NAME = "NAME"
    RACE = "RACE"
    GENDER = "GENDER"
    FACTION = "FACTION"

    # ── Guild field changes ───────────────────────────────────────────────────
    GUILD_NAME = "GUILD_NAME"
    GUILD_FACTION = "GUILD_FACTION"

    # ── Guild leadership ──────────────────────────────────────────────────────
    GUILD_INHERIT = "GUILD_INHERIT"
    """Master rank passed to a character of the same family."""

    GUILD_OWNERSHIP = "GUILD_OWNERSHIP"
    """Master rank passed to a character of a different family."""

    GUILD_TRANSIT = "GUILD_TRANSIT"
    """Master rank changed but one side could not be resolved."""

    # ── Roster membership ─────────────────────────────────────────────────────
    JOIN = "JOIN"
    LEAVE = "LEAVE"
    PROMOTE = "PROMOTE"
    DEMOTE = "DEMOTE"


CHARACTER_WATCHED_FIELDS: dict[str, AuditAction] = {
    "name": AuditAction.NAME,
    "race": AuditAction.RACE,
    "gender": AuditAction.GENDER,
    "faction": AuditAction.FACTION,
}

GUILD_WATCHED_FIELDS: dict[str, AuditAction] = {
    "name": AuditAction.GUILD_NAME,
    "faction": AuditAction.GUILD_FACTION,
}


class SourceTag(StrEnum):
    """Code path that created or last updated a row."""

    CHARACTER_GET = "CHARACTER_GET"
    CHARACTER_INDEX = "CHARACTER_INDEX"
    GUILD_GET = "GUILD_GET"
    GUILD_INDEX = "GUILD_INDEX"
    GUILD_ROSTER = "GUILD_ROSTER"
    CLI_REQUEST = "CLI_REQUEST"


class FetchState(IntEnum):
    """Outcome of one partial fetch."""

    PENDING = 0
    SUCCESS = 1
    ERROR = 2
