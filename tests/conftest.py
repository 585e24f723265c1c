"""
Shared fakes and fixtures for the counselbook tests.
"""

import asyncio
from typing import Dict, List, Optional

import pendulum
import pytest

from counselbook.adapters.google_oauth import TokenGrant
from counselbook.adapters.json_store import JsonCounselorRepository, JsonSessionRepository
from counselbook.config import SchedulingDefaults
from counselbook.domain.exceptions import PersistenceError, UpstreamError
from counselbook.domain.models import Counselor, CredentialUpdate, StudentIdentity, TimeRange
from counselbook.domain.slot_calculator import SlotCalculator
from counselbook.services.availability import AvailabilityService
from counselbook.services.booking import BookingOrchestrator
from counselbook.services.credential_store import CredentialStore
from counselbook.services.oauth_session import OAuthSessionManager

TZ = "Asia/Kolkata"


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now.add(**kwargs)


class FakeOAuthClient:
    def __init__(self, clock):
        self._clock = clock
        self.exchange_calls: List[str] = []
        self.refresh_calls: List[str] = []
        self.exchange_error: Optional[Exception] = None
        self.refresh_error: Optional[Exception] = None
        self.issue_refresh_token = True
        self.refresh_delay = 0.0

    def authorization_url(self, state: str) -> str:
        return f"https://accounts.example.com/auth?state={state}"

    def _grant(self, prefix: str, refresh_token: Optional[str]) -> TokenGrant:
        expires_at = self._clock().add(hours=1)
        return TokenGrant(
            access_token=f"{prefix}-{len(self.exchange_calls) + len(self.refresh_calls)}",
            expires_at=int(expires_at.timestamp() * 1000),
            refresh_token=refresh_token,
        )

    async def exchange_code(self, code: str) -> TokenGrant:
        self.exchange_calls.append(code)
        if self.exchange_error is not None:
            raise self.exchange_error
        return self._grant("access", "refresh-token" if self.issue_refresh_token else None)

    async def refresh(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls.append(refresh_token)
        await asyncio.sleep(self.refresh_delay)
        if self.refresh_error is not None:
            raise self.refresh_error
        return self._grant("refreshed", None)


class FakeCalendarClient:
    def __init__(self, busy: Optional[List[TimeRange]] = None):
        self.busy: List[TimeRange] = list(busy or [])
        self.busy_calls: List[Dict[str, str]] = []
        self.created: List[tuple] = []
        self.deleted: List[str] = []
        self.create_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.create_gate: Optional[asyncio.Event] = None
        self.create_started = False

    async def get_busy_times(self, access_token, calendar_id, start_time, end_time, timezone):
        self.busy_calls.append(
            {
                "token": access_token,
                "calendar_id": calendar_id,
                "start": start_time.to_iso8601_string(),
                "end": end_time.to_iso8601_string(),
                "timezone": timezone,
            }
        )
        return list(self.busy)

    async def create_event(self, access_token, calendar_id, draft):
        self.create_started = True
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.create_error is not None:
            raise self.create_error
        event_id = f"evt-{len(self.created) + 1}"
        self.created.append((calendar_id, draft))
        return event_id

    async def delete_event(self, access_token, calendar_id, event_id):
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(event_id)


class FakeRelay:
    def __init__(self, students: Optional[Dict[str, StudentIdentity]] = None):
        self.students = students or {}
        self.calls: List[str] = []

    async def lookup(self, student_code):
        self.calls.append(student_code)
        if student_code not in self.students:
            raise UpstreamError(404, {"message": "not found"})
        return self.students[student_code]


class FailingSessionRepository(JsonSessionRepository):
    """Session repository whose inserts always fail."""

    def create(self, record):
        raise PersistenceError("disk full")


@pytest.fixture
def clock():
    # The day before the working day used throughout the tests.
    return FixedClock(pendulum.datetime(2024, 11, 24, 4, 30, tz="UTC"))


@pytest.fixture
def counselor_repo(tmp_path):
    return JsonCounselorRepository(tmp_path / "counselors.json")


@pytest.fixture
def session_repo(tmp_path):
    return JsonSessionRepository(tmp_path / "sessions.json")


@pytest.fixture
def store(counselor_repo):
    store = CredentialStore(counselor_repo)
    store.add_counselor(
        Counselor(counselor_id=1, name="Asha Rao", email="asha@example.com", timezone=TZ)
    )
    return store


@pytest.fixture
def oauth_client(clock):
    return FakeOAuthClient(clock)


@pytest.fixture
def oauth(store, oauth_client, clock):
    return OAuthSessionManager(store, oauth_client, clock=clock)


@pytest.fixture
def connected(store, clock):
    """Counselor 1 with a valid access token."""
    expiry = clock().add(hours=1)
    store.write_credential(
        1,
        CredentialUpdate(
            access_token="stored-token",
            token_expiry=int(expiry.timestamp() * 1000),
            connected=True,
            refresh_token="refresh-token",
        ),
    )
    return store.read(1)


@pytest.fixture
def calendar():
    return FakeCalendarClient()


@pytest.fixture
def availability(store, oauth, calendar, clock):
    return AvailabilityService(
        store, oauth, calendar, SlotCalculator(), defaults=SchedulingDefaults(), clock=clock
    )


@pytest.fixture
def relay():
    return FakeRelay(
        {
            "STU42": StudentIdentity(
                code="STU42",
                name="Ravi Kumar",
                email="ravi@example.com",
                raw={"name": "Ravi Kumar", "email": "ravi@example.com"},
            )
        }
    )


@pytest.fixture
def booking(store, oauth, availability, calendar, relay, session_repo, clock):
    return BookingOrchestrator(
        store, oauth, availability, calendar, relay, session_repo, clock=clock
    )


@pytest.fixture
def failing_session_repo(tmp_path):
    return FailingSessionRepository(tmp_path / "sessions.json")
