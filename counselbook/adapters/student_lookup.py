"""
Relay to the external student identity service.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from ..domain.exceptions import BadRequest, LookupTimeout, Unreachable, UpstreamError
from ..domain.models import StudentIdentity

logger = logging.getLogger(__name__)


class StudentLookupRelay:
    """
    Looks up a student by code. One bounded-timeout GET per call, never retried.
    """

    def __init__(
        self,
        base_url: str = "https://studenttracking.in:5173/employee",
        timeout_seconds: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    async def lookup(self, student_code: str) -> StudentIdentity:
        """
        Fetch the identity record for ``student_code``.

        Raises:
            BadRequest: If the code is empty or blank (no network call is made)
            UpstreamError: If the service answers with a non-2xx status
            LookupTimeout: If the service does not answer in time
            Unreachable: If the service cannot be reached
        """
        code = (student_code or "").strip()
        if not code:
            raise BadRequest("Student code is required")

        try:
            response = await asyncio.to_thread(self._get, code)
        except requests.exceptions.Timeout as exc:
            raise LookupTimeout(
                f"Student lookup timed out after {self.timeout_seconds}s"
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise Unreachable(f"Student lookup service unreachable: {exc}") from exc

        if not 200 <= response.status_code < 300:
            logger.info("Student lookup for %s returned HTTP %s", code, response.status_code)
            raise UpstreamError(response.status_code, self._body(response))

        body = self._body(response)
        return self._to_identity(code, body)

    def _get(self, code: str) -> requests.Response:
        return self._session.get(
            self.base_url,
            params={"code": code},
            headers={"Accept": "application/json"},
            timeout=self.timeout_seconds,
        )

    @staticmethod
    def _body(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _to_identity(code: str, body: Any) -> StudentIdentity:
        """
        Map the upstream payload to a StudentIdentity.

        The service has answered both with a bare object and with one wrapped
        in ``data``; anything that is not an object keeps only the code.
        """
        record: Dict[str, Any] = {}
        if isinstance(body, dict):
            nested = body.get("data")
            record = nested if isinstance(nested, dict) else body

        identifier = record.get("student_id") or record.get("id") or record.get("code") or code

        if isinstance(body, dict):
            raw = body
        else:
            raw = {"body": body} if body else {}

        return StudentIdentity(
            code=str(identifier),
            name=record.get("name"),
            email=record.get("email"),
            raw=raw,
        )
