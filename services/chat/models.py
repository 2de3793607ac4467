"""Pydantic models for REST API endpoints.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from services.chat.context.types import (
    MAX_SESSION_ID_LENGTH,
    SESSION_ID_PATTERN,
    Message,
    SessionPage,
    SessionStats,
    SessionSummary,
)


MAX_PROMPT_LENGTH = 4000

PromptText = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1, max_length=MAX_PROMPT_LENGTH),
]
SessionId = Annotated[
    str,
    StringConstraints(
        min_length=1, max_length=MAX_SESSION_ID_LENGTH, pattern=SESSION_ID_PATTERN
    ),
]


class ApiModel(BaseModel):
    """Base model exposing camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AiRequest(ApiModel):
    """Request model for single-prompt generation."""

    prompt: PromptText = Field(..., description="Prompt text (1..4000 chars)")
    session_id: SessionId | None = Field(
        None, description="Conversation to continue; omit for a stateless call"
    )
    use_context: bool = Field(True, description="Set false to ignore stored history")


class ChatRequest(ApiModel):
    """Request model for conversational chat."""

    message: PromptText = Field(..., description="User message (1..4000 chars)")
    session_id: SessionId | None = Field(
        None, description="Conversation identifier; generated when absent"
    )


class AiResponse(ApiModel):
    """Response model for single-prompt generation."""

    request: str = Field(..., description="Prompt as received")
    response: str = Field(..., description="Generated text")
    session_id: str | None = Field(None, description="Session used, if any")
    context_used: bool = Field(..., description="Whether history was used and updated")
    sessions_enabled: bool = Field(..., description="Whether context is enabled")
    timestamp: datetime = Field(..., description="Response time")
    warning: str | None = Field(None, description="Non-fatal problem, if any")


class ChatResponse(ApiModel):
    """Response model for conversational chat."""

    message: str = Field(..., description="User message as received")
    response: str = Field(..., description="Assistant reply")
    session_id: str = Field(..., description="Session identifier")
    timestamp: datetime = Field(..., description="Response time")
    message_count: int = Field(..., description="Messages now in the session window")
    warning: str | None = Field(None, description="Non-fatal problem, if any")


class MessageModel(ApiModel):
    role: str
    content: str
    timestamp: datetime

    @classmethod
    def from_message(cls, message: Message) -> MessageModel:
        return cls(
            role=message.role.value, content=message.content, timestamp=message.timestamp
        )


class SessionStatsModel(ApiModel):
    """Statistics for one session's current window."""

    total_messages: int
    user_messages: int
    assistant_messages: int
    max_messages: int
    first_message: datetime | None = None
    last_message: datetime | None = None

    @classmethod
    def from_stats(cls, stats: SessionStats) -> SessionStatsModel:
        return cls(
            total_messages=stats.total_messages,
            user_messages=stats.user_messages,
            assistant_messages=stats.assistant_messages,
            max_messages=stats.max_messages,
            first_message=stats.first_message,
            last_message=stats.last_message,
        )


class ContextResponse(ApiModel):
    """Response model for a session's history."""

    session_id: str
    context: list[MessageModel]
    stats: SessionStatsModel


class SessionStatsResponse(ApiModel):
    session_id: str
    stats: SessionStatsModel


class ClearContextResponse(ApiModel):
    """Response model for clearing a session."""

    message: str
    session_id: str
    cleared: bool = Field(..., description="Whether the session existed")
    timestamp: datetime


class SessionSummaryModel(ApiModel):
    session_id: str
    total_messages: int
    user_messages: int
    assistant_messages: int
    created_at: datetime
    last_activity: datetime

    @classmethod
    def from_summary(cls, summary: SessionSummary) -> SessionSummaryModel:
        return cls(
            session_id=summary.session_id,
            total_messages=summary.total_messages,
            user_messages=summary.user_messages,
            assistant_messages=summary.assistant_messages,
            created_at=summary.created_at,
            last_activity=summary.last_activity,
        )


class SessionPageResponse(ApiModel):
    """Response model for a page of sessions."""

    sessions: list[SessionSummaryModel]
    total: int
    limit: int
    offset: int
    has_more: bool

    @classmethod
    def from_page(cls, page: SessionPage) -> SessionPageResponse:
        return cls(
            sessions=[SessionSummaryModel.from_summary(item) for item in page.sessions],
            total=page.total,
            limit=page.limit,
            offset=page.offset,
            has_more=page.has_more,
        )


class SystemStatsResponse(ApiModel):
    """Response model for aggregate context statistics."""

    enabled: bool
    storage_backend: str
    max_messages: int
    total_sessions: int
    total_messages: int
    avg_messages: float
    oldest_session: datetime | None = None
    newest_session: datetime | None = None
    timestamp: datetime


class CleanupResponse(ApiModel):
    removed: int = Field(..., description="Sessions purged")
    cutoff_days: int = Field(..., description="Inactivity threshold in days")
    timestamp: datetime


class ErrorResponse(ApiModel):
    """Structured error body returned for every failed request."""

    error: str = Field(..., description="Error category")
    message: str = Field(..., description="Human-readable message")
    timestamp: datetime
    details: list[dict[str, Any]] | None = Field(
        None, description="Per-field validation failures"
    )
