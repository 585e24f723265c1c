"""
Google Calendar API client for free/busy queries and event management.
"""

from __future__ import annotations

import asyncio
import logging
import urllib.parse
from typing import Any, Callable, Dict, List, Optional

import pendulum
import requests
from pendulum import DateTime

from ..domain.exceptions import CalendarAPIError, CalendarUnavailable
from ..domain.models import EventDraft, TimeRange

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class GoogleCalendarClient:
    """
    Client for Google Calendar v3 operations.

    Reads (``freeBusy``) and event deletion are idempotent and retried with
    exponential backoff; event creation is sent exactly once.
    """

    def __init__(
        self,
        base_url: str = "https://www.googleapis.com/calendar/v3",
        timeout_seconds: float = 15.0,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        """
        Initialize the Calendar API client.

        Args:
            base_url: Calendar API root
            timeout_seconds: Per-request timeout
            max_retries: Extra attempts for idempotent calls
            backoff_seconds: First backoff delay, doubled on every retry
            session: Optional requests session (injected in tests)
            sleep: Coroutine used to wait between retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._session = session or requests.Session()
        self._sleep = sleep

    async def get_busy_times(
        self,
        access_token: str,
        calendar_id: str,
        start_time: DateTime,
        end_time: DateTime,
        timezone: str,
    ) -> List[TimeRange]:
        """
        Get busy ranges for one calendar within ``[start_time, end_time)``.

        Raises:
            CalendarUnavailable: If the provider keeps failing after retries
            CalendarAPIError: If the provider rejects the query
        """
        payload = {
            "timeMin": start_time.in_timezone("UTC").to_iso8601_string(),
            "timeMax": end_time.in_timezone("UTC").to_iso8601_string(),
            "timeZone": timezone,
            "items": [{"id": calendar_id}],
        }

        response = await self._send_idempotent(
            "POST", f"{self.base_url}/freeBusy", access_token, json=payload
        )
        if response.status_code != 200:
            raise CalendarAPIError(
                f"Free/busy query failed with HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise CalendarUnavailable("Free/busy response was not valid JSON") from exc

        return self._parse_freebusy_response(data, calendar_id, timezone)

    async def create_event(self, access_token: str, calendar_id: str, draft: EventDraft) -> str:
        """
        Create an event and return its id. Never retried.

        Raises:
            CalendarAPIError: If the request fails for any reason
        """
        body: Dict[str, Any] = {
            "summary": draft.summary,
            "description": draft.description,
            "start": {
                "dateTime": draft.time_range.start.to_iso8601_string(),
                "timeZone": draft.timezone,
            },
            "end": {
                "dateTime": draft.time_range.end.to_iso8601_string(),
                "timeZone": draft.timezone,
            },
            "attendees": [{"email": email} for email in draft.attendees],
            "reminders": {"useDefault": True},
        }
        if draft.private_properties:
            body["extendedProperties"] = {"private": dict(draft.private_properties)}

        url = f"{self._events_url(calendar_id)}?sendUpdates=all"

        try:
            response = await asyncio.to_thread(
                self._request, "POST", url, access_token, json=body
            )
        except requests.exceptions.RequestException as exc:
            raise CalendarAPIError(f"Event creation request failed: {exc}") from exc

        if response.status_code not in (200, 201):
            raise CalendarAPIError(f"Event creation failed with HTTP {response.status_code}")

        try:
            event_id = response.json()["id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise CalendarAPIError("Event creation response carried no event id") from exc
        if not event_id or not isinstance(event_id, str):
            logger.error("Event creation on %s returned an unusable id %r", calendar_id, event_id)
            raise CalendarAPIError("Event creation response carried no event id")

        logger.info("Created calendar event %s on %s", event_id, calendar_id)
        return event_id

    async def delete_event(self, access_token: str, calendar_id: str, event_id: str) -> None:
        """
        Delete an event. An already missing event counts as deleted.

        Raises:
            CalendarAPIError: If the event still exists after all attempts
        """
        url = f"{self._events_url(calendar_id)}/{urllib.parse.quote(event_id, safe='')}?sendUpdates=all"

        try:
            response = await self._send_idempotent("DELETE", url, access_token)
        except CalendarUnavailable as exc:
            raise CalendarAPIError(f"Event deletion failed: {exc}") from exc

        if response.status_code in (200, 204, 404, 410):
            logger.info("Deleted calendar event %s on %s", event_id, calendar_id)
            return

        raise CalendarAPIError(f"Event deletion failed with HTTP {response.status_code}")

    async def _send_idempotent(
        self, method: str, url: str, access_token: str, **kwargs: Any
    ) -> requests.Response:
        """
        Send a request, retrying timeouts, connection errors, 429 and 5xx.

        Returns the last response; raises CalendarUnavailable when every attempt
        failed at the network level or with a retryable status, and at once for
        any other transport error.
        """
        attempt = 0
        while True:
            try:
                response = await asyncio.to_thread(
                    self._request, method, url, access_token, **kwargs
                )
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
                failure = str(exc)
            except requests.exceptions.RequestException as exc:
                raise CalendarUnavailable(f"Calendar request failed: {exc}") from exc
            else:
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    return response
                failure = f"HTTP {response.status_code}"

            if attempt >= self.max_retries:
                raise CalendarUnavailable(
                    f"Calendar provider unavailable after {attempt + 1} attempt(s): {failure}"
                )

            delay = self.backoff_seconds * (2 ** attempt)
            logger.warning(
                "Calendar request %s %s failed (%s), retrying in %.1fs (attempt %d/%d)",
                method, url.split("?")[0], failure, delay, attempt + 1, self.max_retries,
            )
            await self._sleep(delay)
            attempt += 1

    def _request(self, method: str, url: str, access_token: str, **kwargs: Any) -> requests.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        return self._session.request(
            method, url, headers=headers, timeout=self.timeout_seconds, **kwargs
        )

    def _events_url(self, calendar_id: str) -> str:
        return f"{self.base_url}/calendars/{urllib.parse.quote(calendar_id, safe='')}/events"

    def _parse_freebusy_response(
        self,
        response_data: Dict[str, Any],
        calendar_id: str,
        timezone: str,
    ) -> List[TimeRange]:
        """
        Parse the freeBusy API response into our domain model.

        Response format:
        {
            "calendars": {
                "counselor@example.com": {
                    "busy": [{"start": "...", "end": "..."}],
                    "errors": [{"domain": "global", "reason": "notFound"}]
                }
            }
        }
        """
        calendar = (response_data.get("calendars") or {}).get(calendar_id)
        if calendar is None:
            raise CalendarUnavailable(f"Free/busy response did not include calendar {calendar_id}")

        errors = calendar.get("errors") or []
        if errors:
            reasons = ", ".join(str(e.get("reason", "unknown")) for e in errors)
            raise CalendarAPIError(f"Calendar {calendar_id} could not be queried: {reasons}")

        busy_ranges: List[TimeRange] = []
        for item in calendar.get("busy", []):
            try:
                start = self._parse_datetime(item["start"], timezone)
                end = self._parse_datetime(item["end"], timezone)
                busy_ranges.append(TimeRange(start=start, end=end))
            except (KeyError, ValueError) as e:
                logger.warning("Could not parse busy interval %r: %s", item, e)
                continue

        return busy_ranges

    def _parse_datetime(self, datetime_str: str, timezone: str) -> DateTime:
        """
        Parse an ISO 8601 string to a pendulum DateTime in the given timezone.
        """
        dt = pendulum.parse(datetime_str)

        if isinstance(dt, DateTime):
            return dt.in_timezone(timezone)

        raise ValueError(f"Could not parse datetime: {datetime_str}")
