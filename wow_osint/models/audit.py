"""
Audit log entry model.

Entries are append-only and ordered by ``created_at``. ``scanned_at`` is
when the *previous* snapshot was observed, ``created_at`` when the change
was first seen, so each row brackets the window in which the change
happened upstream.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator

from wow_osint.taxonomy.osint_taxonomy import AuditAction


class AuditLogEntry(BaseModel):
    """One observed change.

    Attributes:
        log_id: Auto-assigned DB PK; ``None`` before insertion.
        character_guid: Character the entry is anchored to, if any.
        guild_guid: Guild the entry is anchored to, if any.
        action: Field or event recorded.
        original: Value before the change.
        updated: Value after the change.
        scanned_at: When the previous snapshot was observed.
        created_at: When the new snapshot was observed.
    """

    model_config = ConfigDict(frozen=True)

    log_id: Optional[int] = None
    character_guid: Optional[str] = None
    guild_guid: Optional[str] = None
    action: AuditAction
    original: Optional[str] = None
    updated: Optional[str] = None
    scanned_at: Optional[datetime] = None
    created_at: datetime

    @model_validator(mode="after")
    def validate_anchor(self) -> "AuditLogEntry":
        if self.character_guid is None and self.guild_guid is None:
            raise ValueError("An audit entry needs a character_guid or a guild_guid.")
        return self
