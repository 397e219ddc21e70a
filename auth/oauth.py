"""
auth/oauth.py -- External identity provider client.

The orchestrator takes a provider access token and asks the provider who it
belongs to. Only the resulting ExternalProfile reaches the linking engine; the
provider token itself is never stored or logged.

Security notes:
  [H1] Email verification is mandatory. A profile whose email the provider
       explicitly reports as unverified is rejected with ProviderError. An
       unverified address could belong to someone who typed a victim's email
       without confirming it, and linking is email-based.

  Every network failure, non-2xx status, unparseable body or profile missing
  sub/email surfaces as ProviderError. The request carries a timeout so a
  stalled provider cannot hold a login open indefinitely.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from auth.errors import ProviderError
from auth.models import ExternalProfile

logger = logging.getLogger("arena.auth.oauth")

GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"


class ProfileFetcher(Protocol):
    async def fetch_profile(self, access_token: str) -> ExternalProfile: ...


class GoogleProfileClient:
    """Resolves a Google OAuth access token to the caller's profile."""

    def __init__(
        self,
        userinfo_url: str = GOOGLE_USERINFO_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.userinfo_url = userinfo_url
        self.timeout = timeout
        self._transport = transport

    async def fetch_profile(self, access_token: str) -> ExternalProfile:
        if not access_token:
            raise ProviderError("Missing provider access token")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=False, transport=self._transport) as client:
                response = await client.get(
                    self.userinfo_url,
                    headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                )
                response.raise_for_status()
                userinfo = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("Google userinfo returned HTTP %d", exc.response.status_code)
            raise ProviderError("Failed to fetch Google profile", status_code=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            logger.error("Google userinfo request failed: %s", type(exc).__name__)
            raise ProviderError("Failed to fetch Google profile") from exc
        except ValueError as exc:
            logger.error("Google userinfo returned a non-JSON body")
            raise ProviderError("Malformed Google profile") from exc

        return _parse_google_profile(userinfo)


def _parse_google_profile(userinfo) -> ExternalProfile:
    if not isinstance(userinfo, dict):
        raise ProviderError("Malformed Google profile")

    subject_id = userinfo.get("sub")
    email = userinfo.get("email")
    if not subject_id or not email:
        raise ProviderError("Google profile is missing an id or email")
    if userinfo.get("email_verified") is False:  # [H1]
        raise ProviderError("Google account email is not verified")

    return ExternalProfile(
        subject_id=str(subject_id),
        email=str(email).strip(),
        display_name=userinfo.get("name"),
        avatar_url=userinfo.get("picture"),
    )
