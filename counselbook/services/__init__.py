"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .availability import AvailabilityService, BusyTimeClientProtocol
from .booking import BookingOrchestrator
from .credential_store import CredentialStore
from .oauth_session import OAuthSessionManager

__all__ = [
    "AvailabilityService",
    "BookingOrchestrator",
    "BusyTimeClientProtocol",
    "CredentialStore",
    "OAuthSessionManager",
]
