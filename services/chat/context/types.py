"""Context and session type definitions for the chat service.

This module defines the core data structures for conversation memory:
immutable messages, the bounded per-session history that holds them, and
the read-only views (stats, summaries, pages) derived from it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


MAX_CONTENT_LENGTH = 10000
MAX_SESSION_ID_LENGTH = 100
SESSION_ID_PATTERN = r"^[A-Za-z0-9_-]+$"

_SESSION_ID_RE = re.compile(SESSION_ID_PATTERN)


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def is_valid_session_id(session_id: Any) -> bool:
    """Check that a session identifier is 1..100 chars of [A-Za-z0-9_-]."""
    return (
        isinstance(session_id, str)
        and 1 <= len(session_id) <= MAX_SESSION_ID_LENGTH
        and _SESSION_ID_RE.match(session_id) is not None
    )


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Role(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """One entry of a conversation history.

    Attributes:
        role: Who wrote the message
        content: Message text (1..10000 chars)
        timestamp: Server-assigned creation time
    """

    role: Role
    content: str
    timestamp: datetime

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))
        if not self.content:
            raise ValueError("Message content must not be empty")
        if len(self.content) > MAX_CONTENT_LENGTH:
            raise ValueError(
                f"Message content exceeds {MAX_CONTENT_LENGTH} characters"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": _format_timestamp(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=Role(data["role"]),
            content=data["content"],
            timestamp=_parse_timestamp(data["timestamp"]),
        )


@dataclass(frozen=True)
class Turn:
    """A rendered history entry in structured form, oldest first."""

    speaker: str
    text: str


@dataclass
class SessionMetadata:
    """Message counters derived from a session's current window."""

    total_messages: int = 0
    user_messages: int = 0
    assistant_messages: int = 0

    @classmethod
    def from_messages(cls, messages: list[Message]) -> SessionMetadata:
        user_messages = sum(1 for msg in messages if msg.role is Role.USER)
        assistant_messages = sum(1 for msg in messages if msg.role is Role.ASSISTANT)
        return cls(
            total_messages=len(messages),
            user_messages=user_messages,
            assistant_messages=assistant_messages,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "totalMessages": self.total_messages,
            "userMessages": self.user_messages,
            "assistantMessages": self.assistant_messages,
        }


@dataclass
class Session:
    """A named, bounded, time-ordered conversation history.

    Attributes:
        session_id: Unique session identifier
        messages: Messages in chronological (insertion) order
        created_at: When the session was first written; never changes
        last_activity: When a message was last appended
        metadata: Counters recomputed from ``messages`` after every mutation
    """

    session_id: str
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)
    metadata: SessionMetadata = field(default_factory=SessionMetadata)

    @classmethod
    def new(cls, session_id: str, now: datetime | None = None) -> Session:
        created = now or utcnow()
        return cls(session_id=session_id, created_at=created, last_activity=created)

    def append(self, message: Message, max_messages: int) -> None:
        """Append a message and slide the window to the last ``max_messages``.

        Args:
            message: Message to append
            max_messages: Retention bound (must be >= 1)
        """
        if max_messages < 1:
            raise ValueError("max_messages must be >= 1")
        self.messages.append(message)
        if len(self.messages) > max_messages:
            self.messages = self.messages[-max_messages:]
        self.last_activity = message.timestamp
        self.refresh_metadata()

    def refresh_metadata(self) -> None:
        self.metadata = SessionMetadata.from_messages(self.messages)

    def copy(self) -> Session:
        """Return a copy whose message list can be mutated independently."""
        return Session(
            session_id=self.session_id,
            messages=list(self.messages),
            created_at=self.created_at,
            last_activity=self.last_activity,
            metadata=SessionMetadata.from_messages(self.messages),
        )

    def summary(self) -> SessionSummary:
        return SessionSummary(
            session_id=self.session_id,
            total_messages=self.metadata.total_messages,
            user_messages=self.metadata.user_messages,
            assistant_messages=self.metadata.assistant_messages,
            created_at=self.created_at,
            last_activity=self.last_activity,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted record shape."""
        return {
            "sessionId": self.session_id,
            "messages": [msg.to_dict() for msg in self.messages],
            "createdAt": _format_timestamp(self.created_at),
            "lastActivity": _format_timestamp(self.last_activity),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        # Stored counters are not trusted; they are rebuilt from the messages
        messages = [Message.from_dict(item) for item in data.get("messages", [])]
        return cls(
            session_id=data["sessionId"],
            messages=messages,
            created_at=_parse_timestamp(data["createdAt"]),
            last_activity=_parse_timestamp(data["lastActivity"]),
            metadata=SessionMetadata.from_messages(messages),
        )


@dataclass
class SessionStats:
    """Statistics for one session's current window."""

    total_messages: int
    user_messages: int
    assistant_messages: int
    max_messages: int
    first_message: datetime | None = None
    last_message: datetime | None = None

    @classmethod
    def empty(cls, max_messages: int) -> SessionStats:
        return cls(
            total_messages=0,
            user_messages=0,
            assistant_messages=0,
            max_messages=max_messages,
        )

    @classmethod
    def from_messages(cls, messages: list[Message], max_messages: int) -> SessionStats:
        counts = SessionMetadata.from_messages(messages)
        return cls(
            total_messages=counts.total_messages,
            user_messages=counts.user_messages,
            assistant_messages=counts.assistant_messages,
            max_messages=max_messages,
            first_message=messages[0].timestamp if messages else None,
            last_message=messages[-1].timestamp if messages else None,
        )


@dataclass
class SessionSummary:
    """Listing entry for one session."""

    session_id: str
    total_messages: int
    user_messages: int
    assistant_messages: int
    created_at: datetime
    last_activity: datetime


@dataclass
class SessionPage:
    """A page of session summaries."""

    sessions: list[SessionSummary]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.sessions) < self.total


@dataclass
class StorageStats:
    """Aggregate counts over every stored session."""

    total_sessions: int = 0
    total_messages: int = 0
    avg_messages: float = 0.0
    oldest_session: datetime | None = None
    newest_session: datetime | None = None

    @classmethod
    def from_sessions(cls, sessions: list[Session]) -> StorageStats:
        if not sessions:
            return cls()
        total_messages = sum(len(session.messages) for session in sessions)
        return cls(
            total_sessions=len(sessions),
            total_messages=total_messages,
            avg_messages=round(total_messages / len(sessions), 2),
            oldest_session=min(session.created_at for session in sessions),
            newest_session=max(session.created_at for session in sessions),
        )
