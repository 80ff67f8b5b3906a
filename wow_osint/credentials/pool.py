"""
Credential pool: selection, rotation and circuit breaking of API clients.

Circuit state per credential::

                 error_counts > threshold
        FREE ───────────────────────────────► TOO_MANY_REQUESTS
         ▲   (reset_at = now + cooldown)               │
         │                                             │
         └──── sweep after reset_at: errors = 0 ◄──────┘
         ▲
         └──── sweep after reset_at ◄──── TAKEN (take(): reset_at = now + take_ttl)

``record_error`` only counts tracked status codes (403/429) and is a plain
read-modify-write; concurrent increments can be lost. The threshold is wide
and the cooldown long, so the breaker still trips within a few extra calls.

There is no module-level pool: build one per process (or per test) from a
repository and an optional ``AuthClient``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional

import httpx

from wow_osint.db.repositories.credential_repo import CredentialRepository
from wow_osint.errors import CredentialPoolExhausted
from wow_osint.models.credential import Credential
from wow_osint.taxonomy.osint_taxonomy import CredentialStatus
from wow_osint.utils.time_utils import utcnow

if TYPE_CHECKING:
    import sqlite3

    from wow_osint.config import AppConfig
    from wow_osint.credentials.auth import AuthClient

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 200
DEFAULT_COOLDOWN = timedelta(hours=2)
DEFAULT_TRACKED_STATUS_CODES = frozenset({403, 429})


@dataclass(frozen=True)
class SweepResult:
    """Outcome counts of one ``sweep()``."""

    checked: int = 0
    reset: int = 0
    tripped: int = 0
    refreshed: int = 0
    refresh_failed: int = 0


class CredentialPool:
    """Owns every state change of the stored credentials.

    Args:
        repository: Credential storage.
        auth_client: Token exchanger used by ``refresh``; ``None`` disables
            refreshing (tests, offline scheduling).
        managed_tags: Clearances whose credentials the sweep maintains.
        threshold: Errors tolerated before the breaker trips.
        cooldown: How long a tripped credential stays out of rotation.
        take_ttl: How long an exclusive ``take`` lasts at most.
        tracked_status_codes: Upstream statuses counted by ``record_error``.
    """

    def __init__(
        self,
        repository: CredentialRepository,
        auth_client: Optional["AuthClient"] = None,
        managed_tags: Iterable[str] = ("blizzard",),
        threshold: int = DEFAULT_THRESHOLD,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        take_ttl: timedelta = timedelta(minutes=30),
        tracked_status_codes: Iterable[int] = DEFAULT_TRACKED_STATUS_CODES,
    ) -> None:
        self.repository = repository
        self.auth_client = auth_client
        self.managed_tags = frozenset(managed_tags)
        self.threshold = threshold
        self.cooldown = cooldown
        self.take_ttl = take_ttl
        self.tracked_status_codes = frozenset(tracked_status_codes)
        self._cursors: dict[str, int] = {}

    @classmethod
    def from_config(
        cls,
        conn: "sqlite3.Connection",
        config: "AppConfig",
        auth_client: Optional["AuthClient"] = None,
    ) -> "CredentialPool":
        creds = config.credentials
        return cls(
            CredentialRepository(conn),
            auth_client=auth_client,
            managed_tags=creds.managed_tags,
            threshold=creds.error_threshold,
            cooldown=creds.cooldown,
            take_ttl=creds.take_ttl,
            tracked_status_codes=creds.tracked_status_codes,
        )

    # ── Selection ─────────────────────────────────────────────────────────────

    def available(self, clearance: str, exclude_taken: bool = False) -> list[Credential]:
        """Selectable credentials for ``clearance``, ordered by client id."""
        blocked = {CredentialStatus.TOO_MANY_REQUESTS}
        if exclude_taken:
            blocked.add(CredentialStatus.TAKEN)
        return [c for c in self.repository.list_by_tag(clearance) if c.status not in blocked]

    def select(self, clearance: str, exclude_taken: bool = False) -> Credential:
        """Next credential for ``clearance`` in round-robin order.

        Raises:
            CredentialPoolExhausted: Nothing selectable; callers fail the job
                rather than wait.
        """
        candidates = self.available(clearance, exclude_taken=exclude_taken)
        if not candidates:
            raise CredentialPoolExhausted(clearance)
        cursor = self._cursors.get(clearance, 0)
        self._cursors[clearance] = cursor + 1
        return candidates[cursor % len(candidates)]

    def take(self, clearance: str, now: Optional[datetime] = None) -> Credential:
        """Select a FREE credential and mark it ``TAKEN`` until ``now + take_ttl``."""
        now = now or utcnow()
        credential = self.select(clearance, exclude_taken=True)
        taken = credential.model_copy(
            update={"status": CredentialStatus.TAKEN, "reset_at": now + self.take_ttl}
        )
        self.repository.save(taken)
        return taken

    def release(self, client_id: str) -> Optional[Credential]:
        """Hand a ``TAKEN`` credential back without waiting for the sweep."""
        current = self.repository.get(client_id)
        if current is None or current.status is not CredentialStatus.TAKEN:
            return current
        released = current.model_copy(update={"status": CredentialStatus.FREE, "reset_at": None})
        self.repository.save(released)
        return released

    # ── Error telemetry ───────────────────────────────────────────────────────

    def record_error(self, client_id: str, status_code: int = 429) -> Optional[Credential]:
        """Count one rate-limit response against ``client_id``.

        Returns:
            The updated credential, or ``None`` when the status is not
            tracked or the client id is unknown.
        """
        if status_code not in self.tracked_status_codes:
            return None
        updated = self.repository.increment_errors(client_id)
        if updated is None:
            logger.warning("record_error: unknown credential %s", client_id)
        else:
            logger.debug(
                "Credential %s error_counts=%d (HTTP %d)",
                client_id, updated.error_counts, status_code,
            )
        return updated

    # ── Sweep ─────────────────────────────────────────────────────────────────

    def apply_circuit(self, credential: Credential, now: datetime) -> Credential:
        """Return ``credential`` after one step of the circuit state machine."""
        updated = credential
        if (
            updated.status is not CredentialStatus.FREE
            and updated.reset_at is not None
            and updated.reset_at < now
        ):
            updated = updated.model_copy(
                update={"status": CredentialStatus.FREE, "error_counts": 0, "reset_at": now}
            )
        if (
            updated.error_counts > self.threshold
            and updated.status is not CredentialStatus.TOO_MANY_REQUESTS
        ):
            updated = updated.model_copy(
                update={
                    "status": CredentialStatus.TOO_MANY_REQUESTS,
                    "reset_at": now + self.cooldown,
                }
            )
        return updated

    def sweep(self, now: Optional[datetime] = None, refresh: bool = True) -> SweepResult:
        """Run the circuit state machine over managed credentials, then refresh
        every one of their tokens.

        One credential's failure never stops the sweep.
        """
        now = now or utcnow()
        checked = reset = tripped = refreshed = refresh_failed = 0

        for credential in self.repository.list_all():
            if not self.managed_tags.intersection(credential.tags):
                continue
            checked += 1
            updated = self.apply_circuit(credential, now)

            if updated is not credential:
                if credential.status is not CredentialStatus.FREE and updated.status is CredentialStatus.FREE:
                    reset += 1
                    logger.info("Credential %s reset to FREE.", credential.client_id)
                if updated.status is CredentialStatus.TOO_MANY_REQUESTS and credential.status is not CredentialStatus.TOO_MANY_REQUESTS:
                    tripped += 1
                    logger.warning(
                        "Credential %s tripped: %d errors, cooling down until %s.",
                        credential.client_id, updated.error_counts, updated.reset_at,
                    )
                self.repository.save(updated)

            if refresh and self.auth_client is not None:
                after = self.refresh(updated, now=now)
                if after.access_token != updated.access_token:
                    refreshed += 1
                else:
                    refresh_failed += 1

        return SweepResult(
            checked=checked,
            reset=reset,
            tripped=tripped,
            refreshed=refreshed,
            refresh_failed=refresh_failed,
        )

    def refresh(self, credential: Credential, now: Optional[datetime] = None) -> Credential:
        """Re-authenticate ``credential`` against the token endpoint.

        On any auth failure the stored credential is left untouched and
        returned as-is; the next sweep retries.
        """
        if self.auth_client is None:
            return credential
        try:
            token = self.auth_client.exchange(
                credential.client_id, credential.client_secret, now=now
            )
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.warning("Token refresh failed for %s: %s", credential.client_id, exc)
            return credential

        current = self.repository.get(credential.client_id) or credential
        updated = current.model_copy(
            update={"access_token": token.access_token, "expires_at": token.expires_at}
        )
        self.repository.save(updated)
        return updated

    # ── Seeding ───────────────────────────────────────────────────────────────

    def import_keys(self, path: Path) -> int:
        """Insert credentials from a keys file, skipping known client ids.

        File format::

            {"keys": [{"client": "...", "secret": "...", "tags": ["blizzard"]}]}

        Returns:
            Number of new credentials.

        Raises:
            FileNotFoundError: ``path`` does not exist.
            ValueError: The file is not in the expected shape.
        """
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, dict) or not isinstance(raw.get("keys"), list):
            raise ValueError(f"{path}: expected an object with a 'keys' array.")

        inserted = 0
        for entry in raw["keys"]:
            credential = Credential(
                client_id=entry["client"],
                client_secret=entry["secret"],
                tags=list(entry.get("tags", [])),
            )
            if self.repository.insert_if_absent(credential):
                inserted += 1
        logger.info("Imported %d new credential(s) from %s", inserted, path)
        return inserted
