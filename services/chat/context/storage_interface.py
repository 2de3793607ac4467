"""Abstract storage interface for conversation sessions.

This module defines the contract every session store implements. The
context manager only talks to this interface, so an in-memory map, a JSON
file or a document database can sit behind it without changes upstream.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from .types import Session, StorageStats


SORT_FIELDS = ("last_activity", "created_at", "session_id")


class StorageInterface(ABC):
    """Abstract interface for session storage.

    Implementations hand out copies: mutating a ``Session`` returned by
    ``find_session`` or ``list_sessions`` has no effect on stored state
    until it is written back with ``upsert_session``.
    """

    @abstractmethod
    async def find_session(self, session_id: str) -> Session | None:
        """Retrieve a session.

        Args:
            session_id: Unique session identifier

        Returns:
            The stored session, or None if it does not exist

        Raises:
            StorageError: If the store cannot be read
        """
        pass

    @abstractmethod
    async def upsert_session(self, session: Session) -> Session:
        """Insert or replace a session record.

        Args:
            session: Session to persist

        Returns:
            The stored session

        Raises:
            StorageError: If the session cannot be written
        """
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> int:
        """Delete a session.

        Args:
            session_id: Session identifier to delete

        Returns:
            Number of records removed (0 or 1)

        Raises:
            StorageError: If the session cannot be deleted
        """
        pass

    @abstractmethod
    async def list_sessions(
        self,
        limit: int = 50,
        offset: int = 0,
        *,
        sort_by: str = "last_activity",
        descending: bool = True,
        active_since: datetime | None = None,
    ) -> list[Session]:
        """List stored sessions.

        Args:
            limit: Maximum number of sessions to return
            offset: Number of sessions to skip
            sort_by: One of ``SORT_FIELDS``
            descending: Sort direction
            active_since: Only include sessions active at or after this time

        Returns:
            Sessions in the requested order

        Raises:
            StorageError: If sessions cannot be listed
        """
        pass

    @abstractmethod
    async def count_sessions(self, active_since: datetime | None = None) -> int:
        """Count stored sessions, optionally filtered by last activity."""
        pass

    @abstractmethod
    async def aggregate_stats(self) -> StorageStats:
        """Compute aggregate counts over all sessions.

        Raises:
            StorageError: If the store cannot be read
        """
        pass

    @abstractmethod
    async def delete_inactive(self, before: datetime) -> int:
        """Delete every session whose last activity is older than ``before``.

        Returns:
            Number of sessions removed

        Raises:
            StorageError: If cleanup fails
        """
        pass

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Perform health check for storage.

        Returns:
            Health check results
        """
        pass


class StorageError(Exception):
    """Exception raised for storage-related errors."""

    def __init__(self, message: str, original_error: Exception | None = None):
        """Initialize storage error.

        Args:
            message: Error message
            original_error: Original exception that caused this error
        """
        super().__init__(message)
        self.original_error = original_error


def sort_sessions(
    sessions: list[Session], sort_by: str, descending: bool
) -> list[Session]:
    """Order sessions by one of ``SORT_FIELDS``."""
    if sort_by not in SORT_FIELDS:
        raise ValueError(f"sort_by must be one of {SORT_FIELDS}")
    return sorted(sessions, key=lambda s: getattr(s, sort_by), reverse=descending)
