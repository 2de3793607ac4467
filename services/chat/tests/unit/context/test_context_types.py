"""Tests for context type definitions."""

import pytest

from services.chat.context.types import (
    MAX_CONTENT_LENGTH,
    Message,
    Role,
    Session,
    SessionMetadata,
    SessionPage,
    SessionStats,
    StorageStats,
    is_valid_session_id,
)


class TestMessage:
    """Test cases for Message."""

    def test_role_is_coerced_from_string(self, at):
        message = Message(role="assistant", content="hi", timestamp=at(0))

        assert message.role is Role.ASSISTANT

    def test_unknown_role_is_rejected(self, at):
        with pytest.raises(ValueError):
            Message(role="system", content="hi", timestamp=at(0))

    def test_empty_content_is_rejected(self, at):
        with pytest.raises(ValueError):
            Message(role=Role.USER, content="", timestamp=at(0))

    def test_oversized_content_is_rejected(self, at):
        with pytest.raises(ValueError):
            Message(
                role=Role.USER, content="x" * (MAX_CONTENT_LENGTH + 1), timestamp=at(0)
            )

    def test_dict_shape(self, at):
        message = Message(role=Role.USER, content="hello", timestamp=at(0))

        assert message.to_dict() == {
            "role": "user",
            "content": "hello",
            "timestamp": "2024-05-01T12:00:00+00:00",
        }
        assert Message.from_dict(message.to_dict()) == message


class TestSession:
    """Test cases for Session."""

    def test_window_keeps_most_recent_messages(self, at):
        """Cap 3 with appends a,b,c,d keeps b,c,d."""
        session = Session.new("s1", at(0))
        for minute, (role, content) in enumerate(
            [("user", "a"), ("assistant", "b"), ("user", "c"), ("assistant", "d")]
        ):
            session.append(Message(role=role, content=content, timestamp=at(minute)), 3)

        assert [m.content for m in session.messages] == ["b", "c", "d"]
        assert session.metadata == SessionMetadata(
            total_messages=3, user_messages=1, assistant_messages=2
        )

    def test_append_updates_last_activity_only(self, at):
        session = Session.new("s1", at(0))

        session.append(Message(role="user", content="a", timestamp=at(5)), 10)

        assert session.created_at == at(0)
        assert session.last_activity == at(5)

    def test_append_rejects_non_positive_cap(self, at):
        session = Session.new("s1", at(0))

        with pytest.raises(ValueError):
            session.append(Message(role="user", content="a", timestamp=at(0)), 0)

    def test_copy_is_independent(self, at):
        session = Session.new("s1", at(0))
        session.append(Message(role="user", content="a", timestamp=at(0)), 10)

        clone = session.copy()
        clone.append(Message(role="assistant", content="b", timestamp=at(1)), 10)

        assert len(session.messages) == 1
        assert len(clone.messages) == 2

    def test_persisted_record_shape(self, at):
        session = Session.new("s1", at(0))
        session.append(Message(role="user", content="a", timestamp=at(1)), 10)

        record = session.to_dict()

        assert record["sessionId"] == "s1"
        assert record["createdAt"] == "2024-05-01T12:00:00+00:00"
        assert record["lastActivity"] == "2024-05-01T12:01:00+00:00"
        assert record["metadata"] == {
            "totalMessages": 1,
            "userMessages": 1,
            "assistantMessages": 0,
        }

    def test_from_dict_rebuilds_metadata(self, at):
        session = Session.new("s1", at(0))
        session.append(Message(role="user", content="a", timestamp=at(1)), 10)
        record = session.to_dict()
        record["metadata"] = {"totalMessages": 99, "userMessages": 0, "assistantMessages": 0}

        restored = Session.from_dict(record)

        assert restored.metadata.total_messages == 1
        assert restored.metadata.user_messages == 1


class TestDerivedViews:
    """Test cases for stats and pages."""

    def test_empty_session_stats(self):
        stats = SessionStats.empty(100)

        assert stats.total_messages == 0
        assert stats.first_message is None
        assert stats.max_messages == 100

    def test_stats_from_messages(self, at):
        messages = [
            Message(role="user", content="a", timestamp=at(0)),
            Message(role="assistant", content="b", timestamp=at(1)),
        ]

        stats = SessionStats.from_messages(messages, 10)

        assert (stats.user_messages, stats.assistant_messages) == (1, 1)
        assert stats.first_message == at(0)
        assert stats.last_message == at(1)

    def test_page_has_more(self):
        assert SessionPage(sessions=[], total=0, limit=10, offset=0).has_more is False
        page = SessionPage(sessions=[object()] * 2, total=5, limit=2, offset=2)
        assert page.has_more is True

    def test_storage_stats_average(self, at):
        first = Session.new("a", at(0))
        first.append(Message(role="user", content="x", timestamp=at(0)), 10)
        second = Session.new("b", at(5))

        stats = StorageStats.from_sessions([first, second])

        assert stats.total_sessions == 2
        assert stats.total_messages == 1
        assert stats.avg_messages == 0.5
        assert stats.oldest_session == at(0)
        assert stats.newest_session == at(5)

    def test_storage_stats_empty(self):
        assert StorageStats.from_sessions([]) == StorageStats()


@pytest.mark.parametrize(
    "session_id,expected",
    [
        ("user_123-abc", True),
        ("a" * 100, True),
        ("a" * 101, False),
        ("", False),
        ("has space", False),
        ("semi;colon", False),
        (None, False),
    ],
)
def test_is_valid_session_id(session_id, expected):
    assert is_valid_session_id(session_id) is expected
