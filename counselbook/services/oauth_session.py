"""
OAuth session management: authorization handshake and access-token lifecycle.

Per counselor the connection moves through::

    DISCONNECTED -> PENDING_CALLBACK -> CONNECTED
    CONNECTED -> REFRESHING -> CONNECTED | DISCONNECTED

Refreshes are single-flighted: concurrent callers for the same counselor
share one in-flight refresh task.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Callable, Dict, Optional, Protocol

import pendulum
from pendulum import DateTime

from ..adapters.google_oauth import TokenGrant
from ..domain.exceptions import (
    AuthorizationFailed,
    BadRequest,
    InvalidState,
    NotConnected,
    RefreshFailed,
)
from ..domain.models import ConnectionState, Counselor, Credential, CredentialUpdate
from .credential_store import CredentialStore

logger = logging.getLogger(__name__)


class OAuthClientProtocol(Protocol):
    """Provider operations needed by the session manager."""

    def authorization_url(self, state: str) -> str:
        ...

    async def exchange_code(self, code: str) -> TokenGrant:
        """Return a grant with ``access_token``, ``expires_at`` (ms) and ``refresh_token``."""

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Return a grant for a fresh access token."""


def _to_millis(moment: DateTime) -> int:
    return int(moment.timestamp() * 1000)


class OAuthSessionManager:
    """
    Owns the counselor OAuth state machine on top of the credential store.
    """

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: OAuthClientProtocol,
        clock: Callable[[], DateTime] = lambda: pendulum.now("UTC"),
        skew_seconds: int = 60,
        state_ttl_seconds: int = 600,
    ) -> None:
        self._store = store
        self._oauth_client = oauth_client
        self._clock = clock
        self._skew_seconds = skew_seconds
        self._state_ttl_seconds = state_ttl_seconds
        self._refreshes: Dict[int, asyncio.Task] = {}

    def begin_authorization(self, counselor_id: int) -> str:
        """
        Issue a fresh state nonce for the counselor and return the consent URL.

        Any previously issued nonce for this counselor stops being valid.
        """
        self._store.read(counselor_id)

        state = secrets.token_hex(16)
        self._store.set_oauth_state(counselor_id, state, _to_millis(self._clock()))
        logger.info("Started calendar authorization for counselor %s", counselor_id)

        return self._oauth_client.authorization_url(state)

    async def complete_authorization(self, code: str, state: str) -> Counselor:
        """
        Finish the handshake started by ``begin_authorization``.

        The nonce is invalidated before the code exchange, so a callback can
        only ever be processed once whatever its outcome.

        Raises:
            BadRequest: If ``code`` is empty
            InvalidState: If the nonce is missing, unknown, expired or already used
            AuthorizationFailed: If the exchange fails or yields no refresh token
        """
        if not state or not state.strip():
            raise InvalidState("Missing OAuth state")
        if not code or not code.strip():
            raise BadRequest("Missing authorization code")

        counselor = self._store.find_by_oauth_state(state)
        if counselor is None:
            raise InvalidState("Unknown or already used OAuth state")

        self._store.consume_oauth_state(counselor.counselor_id)

        if self._state_expired(counselor):
            raise InvalidState("OAuth state has expired, start the authorization again")

        grant = await self._oauth_client.exchange_code(code.strip())

        if not grant.refresh_token and not counselor.refresh_token:
            raise AuthorizationFailed(
                "Provider did not issue a refresh token; offline access is required"
            )

        updated = self._store.write_credential(
            counselor.counselor_id,
            CredentialUpdate(
                access_token=grant.access_token,
                token_expiry=grant.expires_at,
                connected=True,
                refresh_token=grant.refresh_token,
            ),
        )
        logger.info("Counselor %s connected their calendar", counselor.counselor_id)
        return updated

    async def get_valid_credential(self, counselor_id: int) -> Credential:
        """
        Return an access token that is valid for at least the skew window.

        Raises:
            NotConnected: If the counselor has no usable refresh token
            RefreshFailed: If the provider rejected the refresh token
            CalendarUnavailable: On a transient provider failure
        """
        counselor = self._store.read(counselor_id)
        if not counselor.connected or not counselor.refresh_token:
            raise NotConnected(f"Counselor {counselor_id} has not connected a calendar")

        stored = self._stored_credential(counselor)
        if stored is not None and stored.is_valid(self._clock(), self._skew_seconds):
            return stored

        # No await between the lookup and the registration below.
        task = self._refreshes.get(counselor_id)
        if task is None:
            task = asyncio.create_task(self._refresh(counselor_id))
            self._refreshes[counselor_id] = task
            task.add_done_callback(lambda done: self._forget_refresh(counselor_id, done))

        return await asyncio.shield(task)

    def connection_state(self, counselor_id: int) -> ConnectionState:
        counselor = self._store.read(counselor_id)
        if counselor_id in self._refreshes and counselor.connected:
            return ConnectionState.REFRESHING
        return counselor.connection_state

    def disconnect(self, counselor_id: int) -> Counselor:
        return self._store.disconnect(counselor_id)

    async def _refresh(self, counselor_id: int) -> Credential:
        counselor = self._store.read(counselor_id)
        if not counselor.refresh_token:
            raise NotConnected(f"Counselor {counselor_id} has not connected a calendar")

        logger.debug("Refreshing access token for counselor %s", counselor_id)
        try:
            grant = await self._oauth_client.refresh(counselor.refresh_token)
        except RefreshFailed:
            self._store.mark_disconnected(counselor_id)
            raise

        self._store.write_credential(
            counselor_id,
            CredentialUpdate(
                access_token=grant.access_token,
                token_expiry=grant.expires_at,
                connected=True,
                refresh_token=grant.refresh_token,
            ),
        )
        return Credential(
            access_token=grant.access_token,
            expires_at=pendulum.from_timestamp(grant.expires_at / 1000, tz="UTC"),
        )

    def _forget_refresh(self, counselor_id: int, task: asyncio.Task) -> None:
        if self._refreshes.get(counselor_id) is task:
            del self._refreshes[counselor_id]
        # Mark the outcome as retrieved even if every waiter was cancelled.
        if not task.cancelled():
            task.exception()

    def _stored_credential(self, counselor: Counselor) -> Optional[Credential]:
        if not counselor.access_token or not counselor.token_expiry:
            return None
        return Credential(
            access_token=counselor.access_token,
            expires_at=pendulum.from_timestamp(counselor.token_expiry / 1000, tz="UTC"),
        )

    def _state_expired(self, counselor: Counselor) -> bool:
        if counselor.oauth_state_issued_at is None:
            return False
        age_ms = _to_millis(self._clock()) - counselor.oauth_state_issued_at
        return age_ms > self._state_ttl_seconds * 1000
