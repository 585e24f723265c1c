"""
Adapters for the calendar provider, the student identity service and storage.
"""

from .google_calendar import GoogleCalendarClient
from .google_oauth import GoogleOAuthClient, TokenGrant
from .json_store import JsonCounselorRepository, JsonSessionRepository
from .student_lookup import StudentLookupRelay

__all__ = [
    "GoogleCalendarClient",
    "GoogleOAuthClient",
    "JsonCounselorRepository",
    "JsonSessionRepository",
    "StudentLookupRelay",
    "TokenGrant",
]
