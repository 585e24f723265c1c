"""
Tests for the OAuth session manager state machine.
"""

import asyncio
import re

import pytest

from counselbook.domain.exceptions import (
    AuthorizationFailed,
    BadRequest,
    CalendarUnavailable,
    InvalidState,
    NotConnected,
    RefreshFailed,
)
from counselbook.domain.models import ConnectionState


def _state_from(url: str) -> str:
    return re.search(r"state=([0-9a-f]+)", url).group(1)


class TestAuthorization:
    def test_begin_stores_nonce_and_returns_consent_url(self, oauth, store):
        url = oauth.begin_authorization(1)

        nonce = _state_from(url)
        assert len(nonce) == 32
        assert store.read(1).oauth_state == nonce
        assert oauth.connection_state(1) is ConnectionState.PENDING_CALLBACK

    def test_new_authorization_invalidates_previous_nonce(self, oauth):
        first = _state_from(oauth.begin_authorization(1))
        second = _state_from(oauth.begin_authorization(1))

        assert first != second
        with pytest.raises(InvalidState):
            asyncio.run(oauth.complete_authorization("code", first))

    def test_round_trip_connects_counselor(self, oauth, oauth_client, store):
        nonce = _state_from(oauth.begin_authorization(1))

        counselor = asyncio.run(oauth.complete_authorization("auth-code", nonce))

        assert counselor.connected is True
        assert counselor.refresh_token == "refresh-token"
        assert counselor.oauth_state is None
        assert oauth_client.exchange_calls == ["auth-code"]
        assert oauth.connection_state(1) is ConnectionState.CONNECTED

    def test_replayed_callback_is_rejected(self, oauth, oauth_client):
        nonce = _state_from(oauth.begin_authorization(1))
        asyncio.run(oauth.complete_authorization("auth-code", nonce))

        with pytest.raises(InvalidState):
            asyncio.run(oauth.complete_authorization("auth-code", nonce))

        assert len(oauth_client.exchange_calls) == 1

    def test_unknown_or_missing_state(self, oauth):
        with pytest.raises(InvalidState):
            asyncio.run(oauth.complete_authorization("code", "deadbeef"))
        with pytest.raises(InvalidState):
            asyncio.run(oauth.complete_authorization("code", ""))

    def test_empty_code_is_bad_request(self, oauth):
        nonce = _state_from(oauth.begin_authorization(1))

        with pytest.raises(BadRequest):
            asyncio.run(oauth.complete_authorization("  ", nonce))

    def test_expired_nonce_is_rejected_and_consumed(self, oauth, oauth_client, clock, store):
        nonce = _state_from(oauth.begin_authorization(1))
        clock.advance(seconds=601)

        with pytest.raises(InvalidState, match="expired"):
            asyncio.run(oauth.complete_authorization("code", nonce))

        assert oauth_client.exchange_calls == []
        assert store.read(1).oauth_state is None

    def test_failed_exchange_still_consumes_nonce(self, oauth, oauth_client):
        oauth_client.exchange_error = AuthorizationFailed("invalid_grant")
        nonce = _state_from(oauth.begin_authorization(1))

        with pytest.raises(AuthorizationFailed):
            asyncio.run(oauth.complete_authorization("code", nonce))
        with pytest.raises(InvalidState):
            asyncio.run(oauth.complete_authorization("code", nonce))

    def test_missing_refresh_token_fails_authorization(self, oauth, oauth_client, store):
        oauth_client.issue_refresh_token = False
        nonce = _state_from(oauth.begin_authorization(1))

        with pytest.raises(AuthorizationFailed):
            asyncio.run(oauth.complete_authorization("code", nonce))

        assert store.read(1).connected is False


class TestGetValidCredential:
    def test_not_connected(self, oauth):
        with pytest.raises(NotConnected):
            asyncio.run(oauth.get_valid_credential(1))

    def test_returns_stored_token_while_valid(self, oauth, oauth_client, connected):
        credential = asyncio.run(oauth.get_valid_credential(1))

        assert credential.access_token == "stored-token"
        assert oauth_client.refresh_calls == []

    def test_refreshes_inside_skew_window(self, oauth, oauth_client, connected, clock, store):
        clock.advance(minutes=59, seconds=30)

        credential = asyncio.run(oauth.get_valid_credential(1))

        assert oauth_client.refresh_calls == ["refresh-token"]
        assert credential.access_token == "refreshed-1"
        stored = store.read(1)
        assert stored.access_token == "refreshed-1"
        assert stored.refresh_token == "refresh-token"
        assert stored.connected is True

    def test_concurrent_callers_share_one_refresh(self, oauth, oauth_client, connected, clock):
        clock.advance(hours=2)
        oauth_client.refresh_delay = 0.01

        async def scenario():
            return await asyncio.gather(*(oauth.get_valid_credential(1) for _ in range(5)))

        credentials = asyncio.run(scenario())

        assert len(oauth_client.refresh_calls) == 1
        assert {c.access_token for c in credentials} == {"refreshed-1"}

    def test_state_is_refreshing_while_refresh_in_flight(self, oauth, oauth_client, connected, clock):
        clock.advance(hours=2)
        oauth_client.refresh_delay = 0.01

        async def scenario():
            pending = asyncio.create_task(oauth.get_valid_credential(1))
            await asyncio.sleep(0)
            during = oauth.connection_state(1)
            await pending
            return during, oauth.connection_state(1)

        during, after = asyncio.run(scenario())

        assert during is ConnectionState.REFRESHING
        assert after is ConnectionState.CONNECTED

    def test_rejected_refresh_disconnects(self, oauth, oauth_client, connected, clock, store):
        clock.advance(hours=2)
        oauth_client.refresh_error = RefreshFailed("invalid_grant")

        with pytest.raises(RefreshFailed):
            asyncio.run(oauth.get_valid_credential(1))

        counselor = store.read(1)
        assert counselor.connected is False
        assert counselor.access_token is None
        assert oauth.connection_state(1) is ConnectionState.DISCONNECTED
        with pytest.raises(NotConnected):
            asyncio.run(oauth.get_valid_credential(1))

    def test_transient_refresh_failure_keeps_connection(self, oauth, oauth_client, connected, clock, store):
        clock.advance(hours=2)
        oauth_client.refresh_error = CalendarUnavailable("token endpoint returned 503")

        with pytest.raises(CalendarUnavailable):
            asyncio.run(oauth.get_valid_credential(1))

        assert store.read(1).connected is True

    def test_disconnect(self, oauth, connected):
        oauth.disconnect(1)

        assert oauth.connection_state(1) is ConnectionState.DISCONNECTED
        with pytest.raises(NotConnected):
            asyncio.run(oauth.get_valid_credential(1))
