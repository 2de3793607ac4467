"""Tests for FileStorage implementation."""

import json

import pytest

from services.chat.context.file_storage import FileStorage
from services.chat.context.manager import ContextManager
from services.chat.context.storage_interface import StorageError
from services.chat.context.types import Message, Session


def _session(session_id, created, *contents):
    session = Session.new(session_id, created)
    for content in contents:
        session.append(Message(role="user", content=content, timestamp=created), 10)
    return session


class TestFileStorage:
    """Test cases for FileStorage."""

    @pytest.fixture
    def path(self, tmp_path):
        return tmp_path / "data" / "context.json"

    @pytest.fixture
    def storage(self, path):
        return FileStorage(path)

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, storage, path):
        assert await storage.find_session("s1") is None
        assert await storage.count_sessions() == 0
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_upsert_writes_document(self, storage, path, at):
        await storage.upsert_session(_session("s1", at(0), "hello"))

        document = json.loads(path.read_text(encoding="utf-8"))

        record = document["sessions"]["s1"]
        assert record["sessionId"] == "s1"
        assert record["messages"][0]["content"] == "hello"
        assert record["metadata"]["totalMessages"] == 1

    @pytest.mark.asyncio
    async def test_sessions_survive_reload(self, storage, path, at):
        await storage.upsert_session(_session("s1", at(0), "hello", "again"))

        reopened = FileStorage(path)
        found = await reopened.find_session("s1")

        assert [m.content for m in found.messages] == ["hello", "again"]
        assert found.created_at == at(0)

    @pytest.mark.asyncio
    async def test_delete_and_cleanup(self, storage, at):
        await storage.upsert_session(_session("old", at(0), "x"))
        await storage.upsert_session(_session("new", at(10), "x"))

        assert await storage.delete_session("missing") == 0
        assert await storage.delete_inactive(at(5)) == 1
        assert await storage.delete_session("new") == 1
        assert await storage.count_sessions() == 0

    @pytest.mark.asyncio
    async def test_list_and_stats(self, storage, at):
        await storage.upsert_session(_session("a", at(0), "x"))
        await storage.upsert_session(_session("b", at(1), "x", "y", "z"))

        listed = await storage.list_sessions(limit=1)
        stats = await storage.aggregate_stats()

        assert [s.session_id for s in listed] == ["b"]
        assert stats.total_messages == 4
        assert stats.avg_messages == 2.0

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_storage_error(self, path):
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")
        storage = FileStorage(path)

        with pytest.raises(StorageError):
            await storage.find_session("s1")

        health = await storage.health_check()
        assert health["status"] == "unhealthy"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "document",
        [
            "[]",
            '"text"',
            '{"sessions": []}',
            '{"sessions": {"s1": 1}}',
            '{"sessions": {"s1": {"sessionId": "s1", "messages": 5}}}',
            '{"sessions": {"s1": {"sessionId": "s1", "messages": [7]}}}',
        ],
    )
    async def test_malformed_document_raises_storage_error(self, path, document):
        path.parent.mkdir(parents=True)
        path.write_text(document, encoding="utf-8")
        storage = FileStorage(path)

        with pytest.raises(StorageError):
            await storage.find_session("s1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("document", ["[]", '"text"', '{"sessions": {"s1": 1}}'])
    async def test_manager_reads_degrade_on_malformed_document(self, path, document):
        path.parent.mkdir(parents=True)
        path.write_text(document, encoding="utf-8")
        manager = ContextManager(FileStorage(path), max_messages=10)

        assert await manager.get_context("s1") == []
        stats = await manager.get_session_stats("s1")
        assert stats.total_messages == 0

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_state(self, storage, path, at):
        await storage.upsert_session(_session("s1", at(0), "x"))
        # A directory where the file should be makes the rename fail
        path.unlink()
        path.mkdir()

        with pytest.raises(StorageError):
            await storage.upsert_session(_session("s2", at(1), "y"))

        assert await storage.find_session("s2") is None
        assert await storage.find_session("s1") is not None
