"""
API credential model.

A ``Credential`` is owned by the ``CredentialPool``: only pool operations
produce changed copies of it (``model_copy(update=...)``) and persist them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from wow_osint.taxonomy.osint_taxonomy import CredentialStatus


class JobCredentials(BaseModel):
    """The slice of a credential embedded in every queued job."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str
    access_token: Optional[str] = None


class Credential(BaseModel):
    """One upstream API client and its circuit state.

    Attributes:
        client_id: OAuth client id; primary key.
        client_secret: OAuth client secret.
        access_token: Bearer token from the last successful refresh.
        expires_at: When ``access_token`` stops being valid.
        tags: Clearance tags; a credential is only handed to subsystems
            whose clearance appears here.
        status: ``FREE``, ``TAKEN`` or ``TOO_MANY_REQUESTS``.
        error_counts: Rate-limit responses seen since the last reset.
        reset_at: When a non-``FREE`` status may be cleared by a sweep.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str
    access_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    tags: list[str] = []
    status: CredentialStatus = CredentialStatus.FREE
    error_counts: int = 0
    reset_at: Optional[datetime] = None

    @field_validator("client_id", "client_secret")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("client id and secret must not be blank.")
        return v

    @field_validator("error_counts")
    @classmethod
    def validate_error_counts(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"error_counts must be >= 0, got {v}.")
        return v

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def for_job(self) -> JobCredentials:
        return JobCredentials(
            client_id=self.client_id,
            client_secret=self.client_secret,
            access_token=self.access_token,
        )
