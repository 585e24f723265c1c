"""
Tests for the credential store and its JSON-backed repository.
"""

import json
import os
import stat

import pytest

from counselbook.adapters.json_store import JsonCounselorRepository
from counselbook.domain.exceptions import BadRequest, InvalidState, NotFound, PersistenceError
from counselbook.domain.models import Counselor, CredentialUpdate
from counselbook.services.credential_store import CredentialStore


class TestCredentialStore:
    def test_read_unknown_counselor(self, store):
        with pytest.raises(NotFound):
            store.read(99)

    def test_add_counselor_twice_rejected(self, store):
        with pytest.raises(BadRequest):
            store.add_counselor(Counselor(counselor_id=1, name="Copy", email="copy@example.com"))

    def test_write_credential_keeps_stored_refresh_token(self, store, connected):
        store.write_credential(
            1, CredentialUpdate(access_token="new-access", token_expiry=123, connected=True)
        )

        counselor = store.read(1)
        assert counselor.access_token == "new-access"
        assert counselor.token_expiry == 123
        assert counselor.refresh_token == "refresh-token"

    def test_write_credential_replaces_rotated_refresh_token(self, store, connected):
        store.write_credential(
            1,
            CredentialUpdate(
                access_token="a", token_expiry=1, connected=True, refresh_token="rotated"
            ),
        )
        assert store.read(1).refresh_token == "rotated"

    def test_connected_without_refresh_token_rejected(self, store):
        with pytest.raises(InvalidState):
            store.write_credential(
                1, CredentialUpdate(access_token="a", token_expiry=1, connected=True)
            )

        # Nothing was written.
        assert store.read(1).connected is False

    def test_mark_disconnected_keeps_refresh_token(self, store, connected):
        counselor = store.mark_disconnected(1)

        assert counselor.connected is False
        assert counselor.access_token is None
        assert counselor.token_expiry is None
        assert counselor.refresh_token == "refresh-token"

    def test_disconnect_clears_every_credential_field(self, store, connected):
        store.set_oauth_state(1, "nonce", 1000)

        counselor = store.disconnect(1)

        assert counselor.connected is False
        assert counselor.access_token is None
        assert counselor.refresh_token is None
        assert counselor.token_expiry is None
        assert counselor.oauth_state is None
        assert store.read(1) == counselor

    def test_oauth_state_lookup_and_consumption(self, store):
        store.set_oauth_state(1, "nonce-1", 1000)

        assert store.find_by_oauth_state("nonce-1").counselor_id == 1
        assert store.find_by_oauth_state("other") is None

        store.consume_oauth_state(1)
        assert store.find_by_oauth_state("nonce-1") is None


class TestJsonCounselorRepository:
    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "counselors.json"
        JsonCounselorRepository(path).save(
            Counselor(counselor_id=2, name="Meera", email="meera@example.com")
        )

        reloaded = JsonCounselorRepository(path).get(2)

        assert reloaded is not None
        assert reloaded.email == "meera@example.com"
        assert json.loads(path.read_text())["counselors"][0]["counselor_id"] == 2

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions only")
    def test_file_is_owner_only(self, tmp_path):
        path = tmp_path / "counselors.json"
        JsonCounselorRepository(path).save(Counselor(counselor_id=1, name="A", email="a@example.com"))

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_corrupt_file_raises_persistence_error(self, tmp_path):
        path = tmp_path / "counselors.json"
        path.write_text("{not json")

        with pytest.raises(PersistenceError):
            JsonCounselorRepository(path).list()

    def test_store_propagates_persistence_error(self, tmp_path):
        path = tmp_path / "counselors.json"
        path.write_text(json.dumps({"unexpected": []}))

        with pytest.raises(PersistenceError):
            CredentialStore(JsonCounselorRepository(path)).read(1)
