"""
OAuth2 client-credentials token exchange.

    POST https://{region}.battle.net/oauth/token
      → Body: grant_type=client_credentials
      → Auth: Basic (client_id:client_secret)
      → Returns: {"access_token": "...", "expires_in": 86399}
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import httpx

from wow_osint.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessToken:
    access_token: str
    expires_at: datetime


class AuthClient:
    """Exchanges client credentials for bearer tokens.

    Args:
        token_url: Fully formatted token endpoint.
        timeout: Seconds before the exchange is abandoned.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        token_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.token_url = token_url
        self.timeout = timeout
        self._transport = transport

    def exchange(
        self,
        client_id: str,
        client_secret: str,
        now: Optional[datetime] = None,
    ) -> AccessToken:
        """Fetch a fresh access token.

        Raises:
            httpx.HTTPError: Transport failure or non-2xx response.
            KeyError: The response carried no ``access_token``.
        """
        now = now or utcnow()
        basic = base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()
        with httpx.Client(transport=self._transport, timeout=self.timeout) as client:
            resp = client.post(
                self.token_url,
                headers={
                    "Authorization": f"Basic {basic}",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={"grant_type": "client_credentials"},
            )
            resp.raise_for_status()
            body = resp.json()

        expires_in = int(body.get("expires_in", 0))
        logger.info("OAuth2 token obtained for client=%s", client_id)
        return AccessToken(
            access_token=body["access_token"],
            expires_at=now + timedelta(seconds=expires_in),
        )
