"""
Context and session management for the chat service.

This module provides the bounded per-session conversation memory, its
storage backends, and the rendering of history for the generation backend.
"""

from .file_storage import FileStorage
from .formatting import build_prompt, render_context_block, render_turns
from .manager import ContextManager, ContextPersistenceError
from .memory_storage import MemoryStorage
from .storage_interface import StorageError, StorageInterface
from .types import (
    Message,
    Role,
    Session,
    SessionPage,
    SessionStats,
    SessionSummary,
    StorageStats,
    Turn,
    is_valid_session_id,
)


__all__ = [
    "Message",
    "Role",
    "Session",
    "SessionPage",
    "SessionStats",
    "SessionSummary",
    "StorageStats",
    "Turn",
    "is_valid_session_id",
    "StorageInterface",
    "StorageError",
    "ContextManager",
    "ContextPersistenceError",
    "MemoryStorage",
    "FileStorage",
    "build_prompt",
    "render_context_block",
    "render_turns",
]
