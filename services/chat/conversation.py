"""Conversation orchestration: context manager + generation client.

Two modes are offered:

- ``respond``: the stored history is rendered as a text block and prepended
  to the prompt (or skipped entirely for stateless calls).
- ``chat``: the stored history is sent as structured turns.

A reply is recorded only after generation succeeds, user message first.
When that write fails the reply is still returned, with
``context_used=False`` and a warning, so the caller never believes a
session was updated when it was not.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from services.common.structured_logging import get_logger
from services.chat.context import (
    ContextManager,
    ContextPersistenceError,
    Role,
    build_prompt,
)
from services.chat.generation import GenerationClient, GenerationUnavailableError


logger = get_logger(__name__, service_name="chat")

PERSISTENCE_WARNING = "context_persistence_failed"


@dataclass
class ConversationResult:
    """Outcome of a ``respond`` call."""

    text: str
    session_id: str | None
    context_used: bool
    sessions_enabled: bool
    warning: str | None = None


@dataclass
class ChatResult:
    """Outcome of a ``chat`` call."""

    text: str
    session_id: str
    message_count: int
    context_used: bool
    warning: str | None = None


class ConversationService:
    """Composes conversation memory with the generation backend."""

    def __init__(
        self,
        context_manager: ContextManager,
        generation_client: GenerationClient,
        *,
        max_attempts: int = 1,
        retry_wait_seconds: float = 0.5,
    ) -> None:
        """Initialize the service.

        Args:
            context_manager: Conversation memory
            generation_client: Generation backend adapter
            max_attempts: Attempts per generation on transient failures
            retry_wait_seconds: Base of the exponential backoff between attempts
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.context_manager = context_manager
        self.generation_client = generation_client
        self.max_attempts = max_attempts
        self.retry_wait_seconds = retry_wait_seconds
        self._logger = logger

    def should_use_context(self, session_id: str | None, use_context: bool) -> bool:
        return self.context_manager.is_enabled() and bool(session_id) and use_context

    async def respond(
        self,
        prompt: str,
        session_id: str | None = None,
        use_context: bool = True,
    ) -> ConversationResult:
        """Generate a reply, optionally continuing a stored conversation.

        Raises:
            GenerationError: If generation fails; no message is recorded
        """
        sessions_enabled = self.context_manager.is_enabled()

        if session_id is None or not self.should_use_context(
            session_id, use_context
        ):
            text = await self._with_retry(self.generation_client.generate, prompt)
            self._logger.info(
                "conversation.stateless_reply",
                prompt_length=len(prompt),
                response_length=len(text),
            )
            return ConversationResult(
                text=text,
                session_id=None,
                context_used=False,
                sessions_enabled=sessions_enabled,
            )

        context_block = await self.context_manager.format_for_generation(session_id)
        text = await self._with_retry(
            self.generation_client.generate, build_prompt(context_block, prompt)
        )

        warning = await self._record_exchange(session_id, prompt, text)
        self._logger.info(
            "conversation.contextual_reply",
            session_id=session_id,
            had_history=bool(context_block),
            persisted=warning is None,
        )
        return ConversationResult(
            text=text,
            session_id=session_id,
            context_used=warning is None,
            sessions_enabled=sessions_enabled,
            warning=warning,
        )

    async def chat(self, message: str, session_id: str) -> ChatResult:
        """Generate a reply using the session history as structured turns.

        Raises:
            GenerationError: If generation fails; no message is recorded
        """
        history = await self.context_manager.format_history(session_id)
        text = await self._with_retry(
            self.generation_client.generate_with_history, history, message
        )

        if not self.context_manager.is_enabled():
            return ChatResult(
                text=text, session_id=session_id, message_count=0, context_used=False
            )

        warning = await self._record_exchange(session_id, message, text)
        stats = await self.context_manager.get_session_stats(session_id)
        self._logger.info(
            "conversation.chat_reply",
            session_id=session_id,
            history_turns=len(history),
            message_count=stats.total_messages,
            persisted=warning is None,
        )
        return ChatResult(
            text=text,
            session_id=session_id,
            message_count=stats.total_messages,
            context_used=warning is None,
            warning=warning,
        )

    async def _record_exchange(
        self, session_id: str, prompt: str, reply: str
    ) -> str | None:
        """Append the user prompt then the reply; return a warning on failure."""
        try:
            await self.context_manager.add_message(session_id, Role.USER, prompt)
            await self.context_manager.add_message(session_id, Role.ASSISTANT, reply)
        except ContextPersistenceError as exc:
            self._logger.warning(
                "conversation.persistence_failed",
                session_id=session_id,
                error=str(exc),
            )
            return PERSISTENCE_WARNING
        return None

    async def _with_retry(
        self, func: Callable[..., Awaitable[str]], *args: Any
    ) -> str:
        """Call the generation backend, retrying transient failures."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_wait_seconds, max=10),
            retry=retry_if_exception_type(GenerationUnavailableError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    self._logger.warning(
                        "conversation.generation_retry",
                        attempt=attempt.retry_state.attempt_number,
                        max_attempts=self.max_attempts,
                    )
                return await func(*args)
        raise AssertionError("unreachable")
