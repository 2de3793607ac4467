"""In-memory session storage with least-recently-active eviction.

This module provides an in-memory implementation of the StorageInterface.
Contents are lost on restart.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from datetime import datetime
from typing import Any

from services.common.structured_logging import get_logger

from .storage_interface import StorageError, StorageInterface, sort_sessions
from .types import Session, StorageStats


logger = get_logger(__name__)


class MemoryStorage(StorageInterface):
    """Dictionary-backed session store.

    A single ``asyncio.Lock`` guards the map. Once more than
    ``max_sessions`` sessions are stored, the least recently written ones
    are evicted.
    """

    def __init__(self, max_sessions: int = 10000) -> None:
        """Initialize memory storage.

        Args:
            max_sessions: Maximum number of sessions to keep in memory
        """
        if max_sessions < 1:
            raise ValueError("max_sessions must be >= 1")
        self._sessions: OrderedDict[str, Session] = OrderedDict()
        self._lock = asyncio.Lock()
        self.max_sessions = max_sessions

        self._logger = get_logger(self.__class__.__name__)
        self._logger.info("memory_storage.initialized", max_sessions=max_sessions)

    async def find_session(self, session_id: str) -> Session | None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                self._logger.debug("memory_storage.not_found", session_id=session_id)
                return None
            return session.copy()

    async def upsert_session(self, session: Session) -> Session:
        try:
            async with self._lock:
                self._sessions[session.session_id] = session.copy()
                self._sessions.move_to_end(session.session_id)
                self._evict_overflow()

                self._logger.debug(
                    "memory_storage.session_saved",
                    session_id=session.session_id,
                    message_count=len(session.messages),
                )
                return session.copy()

        except Exception as e:
            self._logger.error(
                "memory_storage.save_failed",
                session_id=session.session_id,
                error=str(e),
            )
            raise StorageError(f"Failed to save session {session.session_id}", e)

    async def delete_session(self, session_id: str) -> int:
        async with self._lock:
            if self._sessions.pop(session_id, None) is None:
                return 0
            self._logger.info("memory_storage.session_deleted", session_id=session_id)
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
                for session in self._sessions.values()
                if active_since is None or session.last_activity >= active_since
            ]
        ordered = sort_sessions(sessions, sort_by, descending)
        return [session.copy() for session in ordered[offset : offset + limit]]

    async def count_sessions(self, active_since: datetime | None = None) -> int:
        async with self._lock:
            if active_since is None:
                return len(self._sessions)
            return sum(
                1
                for session in self._sessions.values()
                if session.last_activity >= active_since
            )

    async def aggregate_stats(self) -> StorageStats:
        async with self._lock:
            return StorageStats.from_sessions(list(self._sessions.values()))

    async def delete_inactive(self, before: datetime) -> int:
        async with self._lock:
            expired = [
                sid
                for sid, session in self._sessions.items()
                if session.last_activity < before
            ]
            for sid in expired:
                del self._sessions[sid]

        if expired:
            self._logger.info(
                "memory_storage.inactive_deleted",
                deleted_count=len(expired),
                remaining_sessions=len(self._sessions),
            )
        return len(expired)

    def _evict_overflow(self) -> int:
        """Evict least recently written sessions beyond ``max_sessions``.

        Caller must hold the lock.
        """
        evicted_count = 0
        while len(self._sessions) > self.max_sessions:
            sid, _ = self._sessions.popitem(last=False)
            evicted_count += 1
            self._logger.warning("memory_storage.session_evicted", session_id=sid)
        return evicted_count

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "storage_type": "MemoryStorage",
            "total_sessions": len(self._sessions),
            "max_sessions": self.max_sessions,
            "lock_available": not self._lock.locked(),
        }
