"""JSON file session storage.

All sessions live in one JSON document of the form
``{"sessions": {session_id: record}}``. The document is read lazily on
first access and rewritten atomically (temp file + rename) after every
mutation. Blocking file I/O runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from services.common.structured_logging import get_logger

from .storage_interface import StorageError, StorageInterface, sort_sessions
from .types import Session, StorageStats


logger = get_logger(__name__)


class FileStorage(StorageInterface):
    """Session store persisted to a single JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._sessions: dict[str, Session] | None = None
        self._lock = asyncio.Lock()
        self._logger = get_logger(self.__class__.__name__)
        self._logger.info("file_storage.initialized", path=str(self.path))

    def _read_document(self) -> dict[str, Session]:
        if not self.path.exists():
            return {}
        raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        if not isinstance(raw, dict):
            raise ValueError("session file must hold a JSON object")
        records = raw.get("sessions", {})
        if not isinstance(records, dict):
            raise ValueError("'sessions' must be a JSON object")
        if not all(isinstance(record, dict) for record in records.values()):
            raise ValueError("every session record must be a JSON object")
        return {sid: Session.from_dict(record) for sid, record in records.items()}

    def _write_document(self, sessions: dict[str, Session]) -> None:
        payload = {"sessions": {sid: s.to_dict() for sid, s in sessions.items()}}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def _load(self) -> dict[str, Session]:
        """Return the in-memory document, reading it on first use.

        Caller must hold the lock.
        """
        if self._sessions is None:
            try:
                self._sessions = await asyncio.to_thread(self._read_document)
            except (OSError, ValueError, KeyError, TypeError) as e:
                self._logger.error(
                    "file_storage.read_failed", path=str(self.path), error=str(e)
                )
                raise StorageError(f"Failed to read session file {self.path}", e)
            self._logger.info(
                "file_storage.loaded",
                path=str(self.path),
                session_count=len(self._sessions),
            )
        return self._sessions

    async def _flush(self, sessions: dict[str, Session]) -> None:
        """Persist ``sessions`` and adopt it as the in-memory document.

        Caller must hold the lock. On failure the previous document is kept.
        """
        try:
            await asyncio.to_thread(self._write_document, sessions)
        except (OSError, TypeError, ValueError) as e:
            self._logger.error(
                "file_storage.write_failed", path=str(self.path), error=str(e)
            )
            raise StorageError(f"Failed to write session file {self.path}", e)
        self._sessions = sessions

    async def find_session(self, session_id: str) -> Session | None:
        async with self._lock:
            sessions = await self._load()
            session = sessions.get(session_id)
            return session.copy() if session else None

    async def upsert_session(self, session: Session) -> Session:
        async with self._lock:
            sessions = dict(await self._load())
            sessions[session.session_id] = session.copy()
            await self._flush(sessions)
            return session.copy()

    async def delete_session(self, session_id: str) -> int:
        async with self._lock:
            sessions = dict(await self._load())
            if sessions.pop(session_id, None) is None:
                return 0
            await self._flush(sessions)
            self._logger.info("file_storage.session_deleted", session_id=session_id)
            return 1

    async def list_sessions(
        self,
        limit: int = 50,
        offset: int = 0,
        *,
        sort_by: str = "last_activity",
        descending: bool = True,
        active_since: datetime | None = None,
    ) -> list[Session]:
        async with self._lock:
            sessions = [
                session
                for session in (await self._load()).values()
                if active_since is None or session.last_activity >= active_since
            ]
        ordered = sort_sessions(sessions, sort_by, descending)
        return [session.copy() for session in ordered[offset : offset + limit]]

    async def count_sessions(self, active_since: datetime | None = None) -> int:
        async with self._lock:
            sessions = await self._load()
            if active_since is None:
                return len(sessions)
            return sum(1 for s in sessions.values() if s.last_activity >= active_since)

    async def aggregate_stats(self) -> StorageStats:
        async with self._lock:
            return StorageStats.from_sessions(list((await self._load()).values()))

    async def delete_inactive(self, before: datetime) -> int:
        async with self._lock:
            current = await self._load()
            kept = {
                sid: s for sid, s in current.items() if s.last_activity >= before
            }
            removed = len(current) - len(kept)
            if removed:
                await self._flush(kept)
                self._logger.info(
                    "file_storage.inactive_deleted",
                    deleted_count=removed,
                    remaining_sessions=len(kept),
                )
            return removed

    async def health_check(self) -> dict[str, Any]:
        try:
            total = await self.count_sessions()
        except StorageError as e:
            return {
                "status": "unhealthy",
                "storage_type": "FileStorage",
                "path": str(self.path),
                "error": str(e),
            }
        return {
            "status": "healthy",
            "storage_type": "FileStorage",
            "path": str(self.path),
            "total_sessions": total,
        }
