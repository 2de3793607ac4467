"""Test configuration for services.chat module."""

from __future__ import annotations

from collections.abc import Generator, Sequence
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from services.chat.app import create_app
from services.chat.config import ChatServiceConfig
from services.chat.context import ContextManager, MemoryStorage, Turn
from services.chat.generation import GenerationClient


class FakeGenerationClient(GenerationClient):
    """Generation backend that records its inputs and replies from a script."""

    def __init__(self, replies: Sequence[str | Exception] | None = None) -> None:
        self.replies = list(replies or [])
        self.prompts: list[str] = []
        self.histories: list[list[Turn]] = []
        self.closed = False
        self.is_configured = True

    def _next(self) -> str:
        if not self.replies:
            return f"reply {len(self.prompts)}"
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self._next()

    async def generate_with_history(self, history: Sequence[Turn], prompt: str) -> str:
        self.histories.append(list(history))
        self.prompts.append(prompt)
        return self._next()

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def base_time() -> datetime:
    return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def at(base_time):
    """Build timestamps as minute offsets from ``base_time``."""

    def _at(minutes: int) -> datetime:
        return base_time + timedelta(minutes=minutes)

    return _at


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage(max_sessions=100)


@pytest.fixture
def context_manager(memory_storage) -> ContextManager:
    return ContextManager(memory_storage, max_messages=10)


@pytest.fixture
def fake_client() -> FakeGenerationClient:
    return FakeGenerationClient()


@pytest.fixture
def service_config() -> ChatServiceConfig:
    return ChatServiceConfig(
        context={"enabled": True, "max_messages": 10, "storage_backend": "memory"},
        rate_limit={"ai_per_minute": 0, "context_per_minute": 0},
        server={"environment": "testing"},
    )


@pytest.fixture
def chat_app(service_config, memory_storage, fake_client):
    return create_app(
        service_config, storage=memory_storage, generation_client=fake_client
    )


@pytest.fixture
def client(chat_app) -> Generator[TestClient, None, None]:
    with TestClient(chat_app) as test_client:
        yield test_client


@pytest.fixture
def fake_client_class() -> type[FakeGenerationClient]:
    return FakeGenerationClient
