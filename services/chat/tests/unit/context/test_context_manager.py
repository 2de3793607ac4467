"""Tests for ContextManager implementation."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from services.chat.context.manager import ContextManager, ContextPersistenceError
from services.chat.context.memory_storage import MemoryStorage
from services.chat.context.storage_interface import StorageError
from services.chat.context.types import MAX_CONTENT_LENGTH, Role, Turn, utcnow


class TestContextManager:
    """Test cases for ContextManager with a real in-memory store."""

    @pytest.fixture
    def manager(self):
        return ContextManager(MemoryStorage(), max_messages=3)

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValueError):
            ContextManager(MemoryStorage(), max_messages=0)

    @pytest.mark.asyncio
    async def test_get_context_unknown_session(self, manager):
        assert await manager.get_context("nobody") == []

    @pytest.mark.asyncio
    async def test_sliding_window_example(self, manager):
        for role, content in [
            (Role.USER, "a"),
            (Role.ASSISTANT, "b"),
            (Role.USER, "c"),
            (Role.ASSISTANT, "d"),
        ]:
            await manager.add_message("s1", role, content)

        messages = await manager.get_context("s1")
        stats = await manager.get_session_stats("s1")

        assert [(m.role, m.content) for m in messages] == [
            (Role.ASSISTANT, "b"),
            (Role.USER, "c"),
            (Role.ASSISTANT, "d"),
        ]
        assert stats.total_messages == 3
        assert stats.user_messages == 1
        assert stats.assistant_messages == 2
        assert stats.max_messages == 3

    @pytest.mark.asyncio
    async def test_window_never_exceeds_cap(self, manager):
        for index in range(10):
            session = await manager.add_message("s1", "user", f"m{index}")
            assert len(session.messages) <= 3

        messages = await manager.get_context("s1")
        assert [m.content for m in messages] == ["m7", "m8", "m9"]

    @pytest.mark.asyncio
    async def test_first_write_creates_session(self, manager):
        session = await manager.add_message("new", "user", "hello")

        assert session.session_id == "new"
        assert session.created_at <= session.last_activity
        assert session.metadata.total_messages == 1

    @pytest.mark.asyncio
    async def test_concurrent_user_then_assistant_appends(self, manager):
        await asyncio.gather(
            manager.add_message("s1", Role.USER, "question"),
            manager.add_message("s1", Role.ASSISTANT, "answer"),
        )

        messages = await manager.get_context("s1")

        assert [m.role for m in messages] == [Role.USER, Role.ASSISTANT]

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_not_lost(self):
        manager = ContextManager(MemoryStorage(), max_messages=100)

        await asyncio.gather(
            *(manager.add_message("s1", "user", f"m{index}") for index in range(20))
        )

        stats = await manager.get_session_stats("s1")
        assert stats.total_messages == 20

    @pytest.mark.asyncio
    async def test_clear_then_get_is_empty(self, manager):
        await manager.add_message("s1", "user", "hello")

        assert await manager.clear_context("s1") is True
        assert await manager.get_context("s1") == []
        assert await manager.clear_context("s1") is False

    @pytest.mark.asyncio
    async def test_content_is_clipped(self, manager):
        session = await manager.add_message(
            "s1", "user", "x" * (MAX_CONTENT_LENGTH + 50)
        )

        assert len(session.messages[0].content) == MAX_CONTENT_LENGTH

    @pytest.mark.asyncio
    async def test_empty_content_rejected(self, manager):
        with pytest.raises(ValueError):
            await manager.add_message("s1", "user", "")

    @pytest.mark.asyncio
    async def test_unknown_role_rejected(self, manager):
        with pytest.raises(ValueError):
            await manager.add_message("s1", "system", "hello")

    @pytest.mark.asyncio
    async def test_format_for_generation_empty(self, manager):
        assert await manager.format_for_generation("s1") == ""
        assert await manager.format_history("s1") == []

    @pytest.mark.asyncio
    async def test_format_for_generation_renders_every_message(self, manager):
        await manager.add_message("s1", "user", "Hi")
        await manager.add_message("s1", "assistant", "Hello!")

        block = await manager.format_for_generation("s1")
        turns = await manager.format_history("s1")

        assert block == (
            "Previous conversation context:\n\n"
            "User: Hi\n\n"
            "Assistant: Hello!\n\n"
            "---\n\n"
        )
        assert turns == [Turn("user", "Hi"), Turn("assistant", "Hello!")]

    @pytest.mark.asyncio
    async def test_list_sessions_page(self, manager):
        for sid in ("a", "b", "c"):
            await manager.add_message(sid, "user", "hello")

        page = await manager.list_sessions(limit=2, offset=0)

        assert page.total == 3
        assert len(page.sessions) == 2
        assert page.has_more is True
        assert {s.session_id for s in page.sessions} <= {"a", "b", "c"}

    @pytest.mark.asyncio
    async def test_list_sessions_rejects_bad_paging(self, manager):
        with pytest.raises(ValueError):
            await manager.list_sessions(limit=0)

    @pytest.mark.asyncio
    async def test_system_stats(self, manager):
        await manager.add_message("a", "user", "x")
        await manager.add_message("a", "assistant", "y")
        await manager.add_message("b", "user", "z")

        stats = await manager.system_stats()

        assert stats["enabled"] is True
        assert stats["storage_backend"] == "MemoryStorage"
        assert stats["total_sessions"] == 2
        assert stats["total_messages"] == 3
        assert stats["avg_messages"] == 1.5

    @pytest.mark.asyncio
    async def test_cleanup_old_sessions(self, manager):
        await manager.add_message("s1", "user", "hello")

        assert await manager.cleanup_old_sessions(days_old=1) == 0
        # Zero days means anything last touched before now is stale
        assert await manager.cleanup_old_sessions(days_old=0) == 1
        assert await manager.get_context("s1") == []

    @pytest.mark.asyncio
    async def test_cleanup_rejects_negative_days(self, manager):
        with pytest.raises(ValueError):
            await manager.cleanup_old_sessions(days_old=-1)

    @pytest.mark.asyncio
    async def test_health_check(self, manager):
        health = await manager.health_check()

        assert health["status"] == "healthy"
        assert health["enabled"] is True
        assert health["storage_health"]["storage_type"] == "MemoryStorage"


class TestDisabledContextManager:
    """With the feature flag off every operation is a neutral no-op."""

    @pytest.fixture
    def storage(self):
        return AsyncMock(spec=MemoryStorage)

    @pytest.fixture
    def manager(self, storage):
        return ContextManager(storage, max_messages=3, enabled=False)

    @pytest.mark.asyncio
    async def test_operations_are_noops(self, manager, storage):
        assert manager.is_enabled() is False
        assert await manager.add_message("s1", "user", "hello") is None
        assert await manager.get_context("s1") == []
        assert await manager.clear_context("s1") is False
        assert await manager.format_for_generation("s1") == ""
        assert await manager.format_history("s1") == []
        assert await manager.cleanup_old_sessions() == 0

        storage.find_session.assert_not_called()
        storage.upsert_session.assert_not_called()
        storage.delete_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_stats_are_neutral(self, manager):
        stats = await manager.get_session_stats("s1")
        page = await manager.list_sessions()
        system = await manager.system_stats()

        assert stats.total_messages == 0
        assert page.total == 0
        assert system["enabled"] is False
        assert system["total_sessions"] == 0

    @pytest.mark.asyncio
    async def test_health_check_reports_disabled(self, manager):
        assert await manager.health_check() == {"status": "disabled", "enabled": False}


class TestStorageFailures:
    """Reads degrade, writes surface persistence errors."""

    @pytest.fixture
    def storage(self):
        return AsyncMock(spec=MemoryStorage)

    @pytest.fixture
    def manager(self, storage):
        return ContextManager(storage, max_messages=3)

    @pytest.mark.asyncio
    async def test_read_degrades_to_empty(self, manager, storage):
        storage.find_session.side_effect = StorageError("store down")

        assert await manager.get_context("s1") == []
        assert await manager.format_for_generation("s1") == ""
        stats = await manager.get_session_stats("s1")
        assert stats.total_messages == 0

    @pytest.mark.asyncio
    async def test_list_and_stats_degrade(self, manager, storage):
        storage.count_sessions.side_effect = StorageError("store down")
        storage.aggregate_stats.side_effect = StorageError("store down")

        page = await manager.list_sessions()
        stats = await manager.system_stats()

        assert page.sessions == []
        assert stats["total_sessions"] == 0

    @pytest.mark.asyncio
    async def test_write_raises_persistence_error(self, manager, storage):
        storage.find_session.return_value = None
        storage.upsert_session.side_effect = StorageError("store down")

        with pytest.raises(ContextPersistenceError) as exc_info:
            await manager.add_message("s1", "user", "hello")

        assert isinstance(exc_info.value.original_error, StorageError)

    @pytest.mark.asyncio
    async def test_unreachable_store_on_write(self, manager, storage):
        storage.find_session.side_effect = StorageError("store down")

        with pytest.raises(ContextPersistenceError):
            await manager.add_message("s1", "user", "hello")

    @pytest.mark.asyncio
    async def test_clear_raises_persistence_error(self, manager, storage):
        storage.delete_session.side_effect = StorageError("store down")

        with pytest.raises(ContextPersistenceError):
            await manager.clear_context("s1")

    @pytest.mark.asyncio
    async def test_cleanup_raises_persistence_error(self, manager, storage):
        storage.delete_inactive.side_effect = StorageError("store down")

        with pytest.raises(ContextPersistenceError):
            await manager.cleanup_old_sessions(1)

    @pytest.mark.asyncio
    async def test_cleanup_cutoff(self, manager, storage):
        storage.delete_inactive.return_value = 2

        before = utcnow()
        removed = await manager.cleanup_old_sessions(days_old=7)

        assert removed == 2
        (cutoff,), _ = storage.delete_inactive.call_args
        assert before - timedelta(days=7, seconds=1) <= cutoff <= utcnow()

    @pytest.mark.asyncio
    async def test_health_check_reports_storage_failure(self, manager, storage):
        storage.health_check.side_effect = RuntimeError("boom")

        health = await manager.health_check()

        assert health["status"] == "unhealthy"
        assert health["error"] == "boom"
