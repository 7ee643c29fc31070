"""
Google Calendar Service
Thin httpx client for the Google OAuth token endpoint and Calendar events API.

Upstream response bodies may carry tokens or customer data: they are never logged
and never attached to raised errors, only the HTTP status is.
"""
import logging
from typing import Any, Optional
from urllib.parse import quote, urlencode

import httpx

from ..domain.calendar_sync.errors import UpstreamAuthError, UpstreamError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 - OAuth endpoint URL
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
GOOGLE_CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
]

DEFAULT_CALENDAR_ID = "primary"


def build_authorization_url(client_id: str, redirect_uri: str, state: str) -> str:
    """Consent URL for offline access (always returns a refresh token)"""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


class GoogleCalendarClient:
    """Google OAuth + Calendar v3 calls over a shared httpx.AsyncClient"""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: Optional[str],
        client_secret: Optional[str],
    ):
        self.http = http_client
        self.client_id = client_id
        self.client_secret = client_secret

    @staticmethod
    def _events_url(calendar_id: str, event_id: Optional[str] = None) -> str:
        url = f"{GOOGLE_CALENDAR_API}/calendars/{quote(calendar_id or DEFAULT_CALENDAR_ID, safe='')}/events"
        if event_id:
            url += f"/{quote(event_id, safe='')}"
        return url

    @staticmethod
    def _auth_headers(access_token: str) -> dict:
        return {"Authorization": f"Bearer {access_token}"}

    async def _send(self, method: str, url: str, action: str, **kwargs) -> httpx.Response:
        try:
            return await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"❌ Google request failed ({action}): {type(e).__name__}")
            raise UpstreamError() from e

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    async def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        """
        Exchange a refresh token for a new access token.

        Returns:
            Token response ({"access_token", "expires_in", optional "refresh_token"})

        Raises:
            UpstreamAuthError: Google rejected the refresh (revoked or expired grant)
        """
        response = await self._send(
            "POST",
            GOOGLE_TOKEN_URL,
            "token refresh",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if response.status_code != 200:
            logger.error(f"❌ Token refresh failed: HTTP {response.status_code}")
            raise UpstreamAuthError()

        tokens = response.json()
        if not tokens.get("access_token"):
            logger.error("❌ No access token in refresh response")
            raise UpstreamAuthError()
        return tokens

    async def exchange_code(self, code: str, redirect_uri: str) -> dict[str, Any]:
        """Exchange an authorization code for tokens"""
        response = await self._send(
            "POST",
            GOOGLE_TOKEN_URL,
            "code exchange",
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        if response.status_code != 200:
            logger.error(f"❌ Token exchange failed: HTTP {response.status_code}")
            raise UpstreamAuthError()

        tokens = response.json()
        if not tokens.get("access_token"):
            logger.error("❌ Invalid token response")
            raise UpstreamAuthError()
        return tokens

    async def get_primary_calendar_id(self, access_token: str) -> str:
        """Resolve the account's primary calendar id, falling back to "primary" """
        try:
            response = await self.http.get(
                f"{GOOGLE_CALENDAR_API}/calendars/primary",
                headers=self._auth_headers(access_token),
            )
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Could not resolve primary calendar: {type(e).__name__}")
            return DEFAULT_CALENDAR_ID

        if response.status_code != 200:
            return DEFAULT_CALENDAR_ID
        return response.json().get("id") or DEFAULT_CALENDAR_ID

    async def revoke_token(self, token: str) -> None:
        response = await self._send(
            "POST",
            GOOGLE_REVOKE_URL,
            "token revoke",
            data={"token": token},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if response.status_code != 200:
            logger.warning(f"⚠️ Token revocation returned HTTP {response.status_code}")
            raise UpstreamError()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def create_event(self, access_token: str, calendar_id: str, event: dict) -> str:
        """Create an event and return its Google id"""
        response = await self._send(
            "POST",
            self._events_url(calendar_id),
            "create event",
            headers=self._auth_headers(access_token),
            json=event,
        )
        if response.status_code not in (200, 201):
            logger.error(f"❌ Failed to create calendar event: HTTP {response.status_code}")
            raise UpstreamError()

        event_id = response.json().get("id")
        if not event_id:
            logger.error("❌ Calendar event created without an id")
            raise UpstreamError()
        return event_id

    async def update_event(
        self, access_token: str, calendar_id: str, event_id: str, event: dict
    ) -> None:
        response = await self._send(
            "PUT",
            self._events_url(calendar_id, event_id),
            "update event",
            headers=self._auth_headers(access_token),
            json=event,
        )
        if response.status_code != 200:
            logger.error(f"❌ Failed to update calendar event: HTTP {response.status_code}")
            raise UpstreamError()

    async def delete_event(self, access_token: str, calendar_id: str, event_id: str) -> bool:
        """
        Delete an event.

        Returns:
            False when Google reports 404/410 (already gone), True otherwise
        """
        response = await self._send(
            "DELETE",
            self._events_url(calendar_id, event_id),
            "delete event",
            headers=self._auth_headers(access_token),
        )
        if response.status_code in (404, 410):
            logger.info("ℹ️ Calendar event already deleted")
            return False
        if response.status_code not in (200, 204):
            logger.error(f"❌ Failed to delete calendar event: HTTP {response.status_code}")
            raise UpstreamError()
        return True
