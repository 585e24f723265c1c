"""
Google OAuth 2.0 client: authorization URL, code exchange and token refresh.
"""

from __future__ import annotations

import asyncio
import logging
import urllib.parse
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import pendulum
import requests
from pendulum import DateTime

from ..domain.exceptions import AuthorizationFailed, CalendarUnavailable, RefreshFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenGrant:
    """Tokens returned by the provider. ``expires_at`` is epoch milliseconds."""
    access_token: str
    expires_at: int
    refresh_token: Optional[str] = None


class GoogleOAuthClient:
    """
    Handles the authorization-code and refresh-token grants against Google.

    The flow:
    1. Counselor is sent to the consent URL (with a state nonce)
    2. Google redirects back with a one-time code
    3. The code is exchanged for an access token and a refresh token
    4. The refresh token is later traded for fresh access tokens
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: List[str],
        auth_url: str = "https://accounts.google.com/o/oauth2/v2/auth",
        token_url: str = "https://oauth2.googleapis.com/token",
        timeout_seconds: float = 15.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], DateTime] = lambda: pendulum.now("UTC"),
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes)
        self.auth_url = auth_url
        self.token_url = token_url
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._clock = clock

    def authorization_url(self, state: str) -> str:
        """
        Build the consent URL.

        ``access_type=offline`` and ``prompt=consent`` make Google issue a
        refresh token even when the counselor has consented before.
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        }
        return f"{self.auth_url}?{urllib.parse.urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenGrant:
        """
        Exchange an authorization code for tokens.

        Raises:
            AuthorizationFailed: If the provider rejects the code or is unreachable
        """
        payload = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        }

        try:
            response = await asyncio.to_thread(self._post_token, payload)
        except requests.exceptions.RequestException as exc:
            raise AuthorizationFailed(f"Token endpoint unreachable: {exc}") from exc

        if response.status_code != 200:
            raise AuthorizationFailed(
                f"Authorization code rejected ({self._error_kind(response)})"
            )

        return self._parse_grant(response, error_type=AuthorizationFailed)

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """
        Trade a refresh token for a new access token.

        Raises:
            RefreshFailed: If the provider rejects the refresh token (revoked/expired)
            CalendarUnavailable: On network failure or a provider-side error
        """
        payload = {
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "refresh_token",
        }

        try:
            response = await asyncio.to_thread(self._post_token, payload)
        except requests.exceptions.RequestException as exc:
            raise CalendarUnavailable(f"Token refresh failed: {exc}") from exc

        if response.status_code in (400, 401):
            raise RefreshFailed(
                f"Refresh token rejected ({self._error_kind(response)}). "
                "Reauthorization required."
            )
        if response.status_code != 200:
            raise CalendarUnavailable(f"Token endpoint returned HTTP {response.status_code}")

        grant = self._parse_grant(response, error_type=CalendarUnavailable)
        logger.debug("Refreshed access token, expires at %s", grant.expires_at)
        return grant

    def _post_token(self, payload: Dict[str, str]) -> requests.Response:
        return self._session.post(
            self.token_url,
            data=payload,
            headers={"Accept": "application/json"},
            timeout=self.timeout_seconds,
        )

    def _parse_grant(self, response: requests.Response, error_type: type) -> TokenGrant:
        try:
            data: Dict[str, Any] = response.json()
            access_token = data["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise error_type("Token endpoint returned an unexpected payload") from exc

        expires_in = int(data.get("expires_in", 3600))
        expires_at = self._clock().add(seconds=expires_in)

        return TokenGrant(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_at=int(expires_at.timestamp() * 1000),
        )

    @staticmethod
    def _error_kind(response: requests.Response) -> str:
        """Short provider error code (e.g. ``invalid_grant``) without the body."""
        try:
            data = response.json()
        except ValueError:
            data = None
        error = data.get("error") if isinstance(data, dict) else None
        return str(error) if error else f"HTTP {response.status_code}"
