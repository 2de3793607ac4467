"""Rendering of stored messages into generation backend input."""

from __future__ import annotations

from collections.abc import Sequence

from .types import Message, Role, Turn


CONTEXT_HEADER = "Previous conversation context:"
CONTEXT_SEPARATOR = "---"

_LABELS = {Role.USER: "User", Role.ASSISTANT: "Assistant"}


def render_context_block(messages: Sequence[Message]) -> str:
    """Render messages as one delimited text block, oldest first.

    Returns an empty string when there are no messages.
    """
    if not messages:
        return ""
    lines = "\n\n".join(f"{_LABELS[msg.role]}: {msg.content}" for msg in messages)
    return f"{CONTEXT_HEADER}\n\n{lines}\n\n{CONTEXT_SEPARATOR}\n\n"


def render_turns(messages: Sequence[Message]) -> list[Turn]:
    """Render messages as structured ``{speaker, text}`` turns, oldest first."""
    return [Turn(speaker=msg.role.value, text=msg.content) for msg in messages]


def build_prompt(context_block: str, prompt: str) -> str:
    """Append the new user prompt to a rendered context block."""
    return f"{context_block}{_LABELS[Role.USER]}: {prompt}"
