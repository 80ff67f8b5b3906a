"""
Error taxonomy for the crawl-and-reconcile path.

The worker boundary turns each class into a queue outcome:

  ``NotFoundError``             fail the job, no retry.
  ``RateLimitedError``          count against the credential, fail the job
                                (the queue's backoff applies).
  ``TransientError``            fail the job (the queue's backoff applies).
  ``JobValidationError``        never reaches the queue; raised pre-enqueue.
  ``CredentialPoolExhausted``   the caller fails fast instead of blocking.
"""

from __future__ import annotations

from typing import Optional


class OsintError(RuntimeError):
    """Base class for every error raised on the data path."""


class NotFoundError(OsintError):
    """A realm, entity or upstream resource does not exist."""

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} '{key}' not found")


class RateLimitedError(OsintError):
    """Upstream answered with a rate-limit signal (403/429)."""

    def __init__(self, status_code: int, client_id: Optional[str] = None) -> None:
        self.status_code = status_code
        self.client_id = client_id
        super().__init__(f"rate limited (HTTP {status_code}) for client {client_id}")


class TransientError(OsintError):
    """Timeout, transport failure or upstream 5xx."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class JobValidationError(OsintError):
    """A job payload failed validation and was not enqueued."""

    def __init__(self, kind: str, detail: str) -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"invalid {kind} job: {detail}")


class CredentialPoolExhausted(OsintError):
    """No credential with the requested clearance is selectable."""

    def __init__(self, clearance: str) -> None:
        self.clearance = clearance
        super().__init__(f"no usable credential for clearance '{clearance}'")
