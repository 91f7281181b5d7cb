"""Bearer-token verification against the Supabase auth API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ridebeacon.domain.exceptions import (
    AuthenticationFailed,
    UpstreamTimeout,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


class TokenVerifier:
    def __init__(self, client: httpx.AsyncClient, *, base_url: str, api_key: str):
        self.client = client
        self.user_url = f"{base_url.rstrip('/')}/auth/v1/user"
        self.api_key = api_key

    async def verify(self, token: str) -> AuthenticatedUser:
        if not token:
            raise AuthenticationFailed("No token provided")
        try:
            response = await self.client.get(
                self.user_url,
                headers={"Authorization": f"Bearer {token}", "apikey": self.api_key},
            )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout("Auth provider timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("Auth provider request failed: %s", exc)
            raise UpstreamUnavailable("Auth provider unavailable") from exc

        if response.status_code in (401, 403):
            raise AuthenticationFailed("Invalid or expired token")
        if response.status_code != 200:
            raise UpstreamUnavailable(
                f"Auth provider returned {response.status_code}"
            )

        body = response.json()
        if not body.get("id"):
            raise AuthenticationFailed("Invalid or expired token")
        return AuthenticatedUser(id=str(body["id"]), email=body.get("email"))
