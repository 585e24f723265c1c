"""
File-backed persistence for counselor and session records.

Both repositories keep one JSON document on disk. Writes go to a temporary
file that is renamed over the original, and files are owner-only (0600)
because counselor records carry OAuth tokens.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import pendulum

from ..domain.exceptions import PersistenceError
from ..domain.models import Counselor, SessionRecord, SessionStatus

logger = logging.getLogger(__name__)


class _JsonDocument:
    """A JSON mapping persisted atomically at ``path``."""

    def __init__(self, path: Path, root_key: str):
        self.path = path
        self._root_key = root_key

    def load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as file_handle:
                data = json.load(file_handle)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Could not read {self.path}: {exc}") from exc

        if not isinstance(data, dict) or not isinstance(data.get(self._root_key), list):
            raise PersistenceError(f"Unexpected document layout in {self.path}")

        return data[self._root_key]

    def save(self, rows: List[Dict[str, Any]]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as file_handle:
                json.dump({self._root_key: rows}, file_handle, indent=2)
            tmp_path.chmod(0o600)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceError(f"Could not write {self.path}: {exc}") from exc


class JsonCounselorRepository:
    """Counselor rows keyed by ``counselor_id``."""

    def __init__(self, path: Path):
        self._document = _JsonDocument(path, "counselors")

    def get(self, counselor_id: int) -> Optional[Counselor]:
        for row in self._document.load():
            if row.get("counselor_id") == counselor_id:
                return Counselor.from_dict(row)
        return None

    def find_by_oauth_state(self, state: str) -> Optional[Counselor]:
        if not state:
            return None
        for row in self._document.load():
            if row.get("oauth_state") == state:
                return Counselor.from_dict(row)
        return None

    def list(self) -> List[Counselor]:
        return [Counselor.from_dict(row) for row in self._document.load()]

    def save(self, counselor: Counselor) -> None:
        """Insert or replace the whole counselor row (last write wins)."""
        rows = [
            row for row in self._document.load()
            if row.get("counselor_id") != counselor.counselor_id
        ]
        rows.append(counselor.to_dict())
        rows.sort(key=lambda row: row["counselor_id"])
        self._document.save(rows)


class JsonSessionRepository:
    """Session records with sequential integer ids."""

    def __init__(self, path: Path):
        self._document = _JsonDocument(path, "sessions")

    def create(self, record: SessionRecord) -> SessionRecord:
        rows = self._document.load()
        next_id = max((row.get("session_id") or 0 for row in rows), default=0) + 1

        stored = replace(record, session_id=next_id, created_at=pendulum.now("UTC"))
        rows.append(stored.to_dict())

        self._document.save(rows)
        logger.debug("Stored session %s for counselor %s", next_id, stored.counselor_id)
        return stored

    def get(self, session_id: int) -> Optional[SessionRecord]:
        for row in self._document.load():
            if row.get("session_id") == session_id:
                return SessionRecord.from_dict(row)
        return None

    def list_for_counselor(self, counselor_id: int) -> List[SessionRecord]:
        records = [
            SessionRecord.from_dict(row)
            for row in self._document.load()
            if row.get("counselor_id") == counselor_id
        ]
        records.sort(key=lambda r: r.session_datetime, reverse=True)
        return records

    def update_status(self, session_id: int, status: SessionStatus) -> Optional[SessionRecord]:
        rows = self._document.load()
        for row in rows:
            if row.get("session_id") == session_id:
                row["status"] = status.value
                self._document.save(rows)
                return SessionRecord.from_dict(row)
        return None
