"""
Credential store: the only writer of counselor OAuth fields.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Protocol

from ..domain.exceptions import BadRequest, InvalidState, NotFound
from ..domain.models import Counselor, CredentialUpdate

logger = logging.getLogger(__name__)


class CounselorRepository(Protocol):
    """Storage operations the credential store relies on."""

    def get(self, counselor_id: int) -> Optional[Counselor]:
        ...

    def find_by_oauth_state(self, state: str) -> Optional[Counselor]:
        ...

    def list(self) -> List[Counselor]:
        ...

    def save(self, counselor: Counselor) -> None:
        ...


class CredentialStore:
    """
    Reads and writes counselor credentials.

    Every write re-checks that a connected counselor still has a refresh
    token. Storage failures surface as ``PersistenceError`` from the
    repository and are never retried here.
    """

    def __init__(self, repository: CounselorRepository) -> None:
        self._repository = repository

    def read(self, counselor_id: int) -> Counselor:
        counselor = self._repository.get(counselor_id)
        if counselor is None:
            raise NotFound(f"Counselor {counselor_id} not found")
        return counselor

    def list(self) -> List[Counselor]:
        return self._repository.list()

    def add_counselor(self, counselor: Counselor) -> Counselor:
        if self._repository.get(counselor.counselor_id) is not None:
            raise BadRequest(f"Counselor {counselor.counselor_id} already exists")
        self._save(counselor)
        logger.info("Added counselor %s (%s)", counselor.counselor_id, counselor.email)
        return counselor

    def write_credential(self, counselor_id: int, update: CredentialUpdate) -> Counselor:
        """
        Replace the stored credential fields (last write wins).

        A ``None`` refresh token in ``update`` keeps the stored one.
        """
        counselor = self.read(counselor_id)
        updated = replace(
            counselor,
            access_token=update.access_token,
            token_expiry=update.token_expiry,
            connected=update.connected,
            refresh_token=update.refresh_token or counselor.refresh_token,
        )
        self._save(updated)
        return updated

    def set_oauth_state(self, counselor_id: int, state: str, issued_at: int) -> Counselor:
        counselor = self.read(counselor_id)
        updated = replace(counselor, oauth_state=state, oauth_state_issued_at=issued_at)
        self._save(updated)
        return updated

    def find_by_oauth_state(self, state: str) -> Optional[Counselor]:
        return self._repository.find_by_oauth_state(state)

    def consume_oauth_state(self, counselor_id: int) -> Counselor:
        """Invalidate the pending nonce so it cannot be presented again."""
        counselor = self.read(counselor_id)
        updated = replace(counselor, oauth_state=None, oauth_state_issued_at=None)
        self._save(updated)
        return updated

    def mark_disconnected(self, counselor_id: int) -> Counselor:
        """Drop the access token and flag the counselor as needing reauthorization."""
        counselor = self.read(counselor_id)
        updated = replace(counselor, access_token=None, token_expiry=None, connected=False)
        self._save(updated)
        logger.warning("Counselor %s marked as disconnected", counselor_id)
        return updated

    def disconnect(self, counselor_id: int) -> Counselor:
        """Forget every credential field of the counselor."""
        counselor = self.read(counselor_id)
        updated = replace(
            counselor,
            connected=False,
            access_token=None,
            refresh_token=None,
            token_expiry=None,
            oauth_state=None,
            oauth_state_issued_at=None,
        )
        self._save(updated)
        logger.info("Counselor %s disconnected from calendar", counselor_id)
        return updated

    def _save(self, counselor: Counselor) -> None:
        if counselor.connected and not counselor.refresh_token:
            raise InvalidState(
                f"Counselor {counselor.counselor_id} cannot be connected without a refresh token"
            )
        self._repository.save(counselor)
