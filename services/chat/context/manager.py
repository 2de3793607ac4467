"""Context manager for conversation lifecycle management.

This module provides the ContextManager class that owns per-session
message windows on top of a pluggable storage backend.

Reads are best-effort: when the store fails they log and return an empty
view. Writes are not: a failed append or clear raises
``ContextPersistenceError`` so callers never assume history was saved
when it was not.
"""

from __future__ import annotations

import asyncio
import weakref
from datetime import timedelta
from typing import Any

from services.common.structured_logging import get_logger

from .formatting import render_context_block, render_turns
from .storage_interface import StorageError, StorageInterface
from .types import (
    MAX_CONTENT_LENGTH,
    Message,
    Role,
    Session,
    SessionPage,
    SessionStats,
    StorageStats,
    Turn,
    utcnow,
)


logger = get_logger(__name__)


class ContextPersistenceError(StorageError):
    """Raised when a context write could not be applied."""


class ContextManager:
    """Manages bounded conversation histories per session.

    Appends to one session are serialized with a per-session lock so the
    read-modify-write of the session record never works on a stale copy.
    Different sessions never wait on each other.
    """

    def __init__(
        self,
        storage: StorageInterface,
        *,
        max_messages: int = 100,
        enabled: bool = True,
    ) -> None:
        """Initialize context manager.

        Args:
            storage: Storage backend for persistence
            max_messages: Size of the sliding window kept per session
            enabled: When False every operation is a no-op returning neutral values
        """
        if max_messages < 1:
            raise ValueError("max_messages must be >= 1")
        self.storage = storage
        self.max_messages = max_messages
        self._enabled = enabled
        self._session_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._logger = get_logger(self.__class__.__name__)

        self._logger.info(
            "context_manager.initialized",
            storage_type=storage.__class__.__name__,
            max_messages=max_messages,
            enabled=enabled,
        )

    def is_enabled(self) -> bool:
        return self._enabled

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        # Entries disappear once no coroutine holds or waits on the lock
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock
        return lock

    async def _find(self, session_id: str, operation: str) -> Session | None:
        """Read a session, degrading to None when the store fails."""
        try:
            return await self.storage.find_session(session_id)
        except StorageError as e:
            self._logger.warning(
                "context.read_degraded",
                operation=operation,
                session_id=session_id,
                error=str(e),
            )
            return None

    async def get_context(self, session_id: str) -> list[Message]:
        """Return the current message window, oldest first.

        Args:
            session_id: Session identifier

        Returns:
            The messages, or an empty list for unknown sessions
        """
        if not self._enabled:
            return []
        session = await self._find(session_id, "get_context")
        return list(session.messages) if session else []

    async def add_message(
        self, session_id: str, role: Role | str, content: str
    ) -> Session | None:
        """Append a message, creating the session on first write.

        Content longer than the message limit is clipped.

        Args:
            session_id: Session identifier
            role: Author of the message
            content: Message text

        Returns:
            The updated session, or None when context is disabled

        Raises:
            ValueError: If content is empty or role is unknown
            ContextPersistenceError: If the session cannot be written
        """
        if not self._enabled:
            return None

        role = Role(role)
        if not content:
            raise ValueError("Message content must not be empty")
        if len(content) > MAX_CONTENT_LENGTH:
            self._logger.warning(
                "context.content_clipped",
                session_id=session_id,
                role=role.value,
                original_length=len(content),
            )
            content = content[:MAX_CONTENT_LENGTH]

        async with self._lock_for(session_id):
            try:
                now = utcnow()
                session = await self.storage.find_session(session_id)
                created = session is None
                if session is None:
                    session = Session.new(session_id, now)

                session.append(
                    Message(role=role, content=content, timestamp=now),
                    self.max_messages,
                )
                session = await self.storage.upsert_session(session)

            except Exception as e:
                self._logger.error(
                    "context.add_message_failed",
                    session_id=session_id,
                    role=role.value,
                    error=str(e),
                )
                raise ContextPersistenceError(
                    f"Failed to add message for session {session_id}", e
                ) from e

        self._logger.info(
            "context.message_added",
            session_id=session_id,
            role=role.value,
            content_length=len(content),
            total_messages=session.metadata.total_messages,
            session_created=created,
        )
        return session

    async def clear_context(self, session_id: str) -> bool:
        """Delete a session's history.

        Returns:
            True if a session existed

        Raises:
            ContextPersistenceError: If the session cannot be deleted
        """
        if not self._enabled:
            return False

        async with self._lock_for(session_id):
            try:
                deleted = await self.storage.delete_session(session_id)
            except Exception as e:
                self._logger.error(
                    "context.clear_failed", session_id=session_id, error=str(e)
                )
                raise ContextPersistenceError(
                    f"Failed to clear context for session {session_id}", e
                ) from e

        self._logger.info(
            "context.cleared", session_id=session_id, existed=deleted > 0
        )
        return deleted > 0

    async def get_session_stats(self, session_id: str) -> SessionStats:
        """Compute statistics from the session's current window."""
        messages = await self.get_context(session_id)
        return SessionStats.from_messages(messages, self.max_messages)

    async def format_for_generation(self, session_id: str) -> str:
        """Render the history as a delimited text block ("" when empty)."""
        return render_context_block(await self.get_context(session_id))

    async def format_history(self, session_id: str) -> list[Turn]:
        """Render the history as structured turns ([] when empty)."""
        return render_turns(await self.get_context(session_id))

    async def list_sessions(self, limit: int = 50, offset: int = 0) -> SessionPage:
        """Return a page of session summaries, most recently active first."""
        if limit < 1 or offset < 0:
            raise ValueError("limit must be >= 1 and offset >= 0")
        if not self._enabled:
            return SessionPage(sessions=[], total=0, limit=limit, offset=offset)

        try:
            total = await self.storage.count_sessions()
            sessions = await self.storage.list_sessions(limit, offset)
        except StorageError as e:
            self._logger.warning("context.list_degraded", error=str(e))
            return SessionPage(sessions=[], total=0, limit=limit, offset=offset)

        return SessionPage(
            sessions=[session.summary() for session in sessions],
            total=total,
            limit=limit,
            offset=offset,
        )

    async def system_stats(self) -> dict[str, Any]:
        """Aggregate counts over all sessions."""
        stats = StorageStats()
        if self._enabled:
            try:
                stats = await self.storage.aggregate_stats()
            except StorageError as e:
                self._logger.warning("context.stats_degraded", error=str(e))

        return {
            "enabled": self._enabled,
            "storage_backend": self.storage.__class__.__name__,
            "max_messages": self.max_messages,
            "total_sessions": stats.total_sessions,
            "total_messages": stats.total_messages,
            "avg_messages": stats.avg_messages,
            "oldest_session": stats.oldest_session,
            "newest_session": stats.newest_session,
        }

    async def cleanup_old_sessions(self, days_old: int = 30) -> int:
        """Purge sessions idle for more than ``days_old`` days.

        Returns:
            Number of sessions removed

        Raises:
            ContextPersistenceError: If the purge fails
        """
        if days_old < 0:
            raise ValueError("days_old must be >= 0")
        if not self._enabled:
            return 0

        cutoff = utcnow() - timedelta(days=days_old)
        try:
            removed = await self.storage.delete_inactive(cutoff)
        except Exception as e:
            self._logger.error("context.cleanup_failed", error=str(e))
            raise ContextPersistenceError("Failed to clean up old sessions", e) from e

        if removed:
            self._logger.info(
                "context.cleanup_complete",
                removed=removed,
                cutoff=cutoff.isoformat(),
            )
        return removed

    async def health_check(self) -> dict[str, Any]:
        """Perform health check for context manager."""
        if not self._enabled:
            return {"status": "disabled", "enabled": False}
        try:
            storage_health = await self.storage.health_check()
        except Exception as e:
            return {
                "status": "unhealthy",
                "enabled": True,
                "storage_backend": self.storage.__class__.__name__,
                "error": str(e),
            }
        return {
            "status": storage_health.get("status", "healthy"),
            "enabled": True,
            "storage_backend": self.storage.__class__.__name__,
            "storage_health": storage_health,
        }
