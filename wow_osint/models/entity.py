"""
Tracked entities: characters, guilds and guild roster rows.

``Character`` and ``Guild`` are NOT frozen: a fetch worker fills them in
endpoint by endpoint (and flips the matching status slot) before a single
upsert at the end of the job. Everything else in ``models`` is frozen.

Both are keyed by ``guid`` = ``to_guid(name, realm_slug)``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from wow_osint.osint.status import CHARACTER_LAYOUT, GUILD_LAYOUT, initial_status


class Character(BaseModel):
    """A player character.

    ``hash_a`` is the family identifier (fingerprint of the pet collection),
    shared by characters of the same account.
    """

    guid: str
    id: Optional[int] = None
    name: str
    realm: str
    realm_id: Optional[int] = None
    realm_name: Optional[str] = None
    guild: Optional[str] = None
    guild_guid: Optional[str] = None
    guild_id: Optional[int] = None
    guild_rank: Optional[int] = None
    character_class: Optional[str] = None
    race: Optional[str] = None
    gender: Optional[str] = None
    faction: Optional[str] = None
    level: Optional[int] = None
    achievement_points: Optional[int] = None
    average_item_level: Optional[int] = None
    avatar_url: Optional[str] = None
    pets_number: Optional[int] = None
    mounts_number: Optional[int] = None
    professions: list[str] = []
    hash_a: Optional[str] = None
    status: str = initial_status(CHARACTER_LAYOUT)
    is_valid: bool = True
    last_modified: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("guid")
    @classmethod
    def validate_guid(cls, v: str) -> str:
        if not v or v != v.lower():
            raise ValueError(f"guid must be a non-empty lowercase slug, got '{v}'.")
        return v


class Guild(BaseModel):
    """A guild on one realm."""

    guid: str
    id: Optional[int] = None
    name: str
    realm: str
    realm_id: Optional[int] = None
    realm_name: Optional[str] = None
    faction: Optional[str] = None
    members_count: Optional[int] = None
    achievement_points: Optional[int] = None
    created_timestamp: Optional[datetime] = None
    status: str = initial_status(GUILD_LAYOUT)
    last_modified: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("guid")
    @classmethod
    def validate_guid(cls, v: str) -> str:
        if not v or v != v.lower():
            raise ValueError(f"guid must be a non-empty lowercase slug, got '{v}'.")
        return v


class GuildMember(BaseModel):
    """Stored roster row: one character's rank in one guild."""

    model_config = ConfigDict(frozen=True)

    guild_guid: str
    guild_id: Optional[int] = None
    character_id: int
    character_guid: str
    realm: str
    realm_id: Optional[int] = None
    rank: int
    last_modified: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None


class RosterMember(BaseModel):
    """One member as reported by the upstream roster endpoint."""

    model_config = ConfigDict(frozen=True)

    id: int
    guid: str
    name: str
    realm_slug: str
    realm_id: Optional[int] = None
    rank: int
    level: Optional[int] = None


class GuildRoster(BaseModel):
    """A fetched roster snapshot."""

    model_config = ConfigDict(frozen=True)

    guild_guid: str
    members: list[RosterMember] = []
    updated_at: datetime

    def master(self, master_rank: int = 0) -> Optional[RosterMember]:
        for member in self.members:
            if member.rank == master_rank:
                return member
        return None
