"""
Tests for ChatService against a real SQLite file.
"""

from datetime import timedelta

import pytest

from nojs_chat.chat.service import NEW_CHAT_PREVIEW, session_preview
from nojs_chat.core.errors import ValidationError
from nojs_chat.memory import store
from nojs_chat.schemas.session import Message

SID = "abcdefghij"


def _set_updated_at(conn, session_id, when):
    conn.execute("UPDATE chats SET updated_at = ? WHERE session_id = ?", (store.to_iso(when), session_id))
    conn.commit()


def _updated_at(conn, session_id):
    return conn.execute("SELECT updated_at FROM chats WHERE session_id = ?", (session_id,)).fetchone()[0]


class TestGetOrCreate:
    def test_creates_empty_session_with_default_model(self, service, settings):
        chat = service.get_or_create(SID)
        assert chat.session_id == SID
        assert chat.messages == []
        assert chat.system_prompt == ""
        assert chat.selected_model == settings.default_model

    def test_is_idempotent(self, service):
        service.append_message(SID, "user", "hello")
        service.update_system_prompt(SID, "be brief")

        first = service.get_or_create(SID)
        second = service.get_or_create(SID)
        assert first.messages == second.messages
        assert first.system_prompt == second.system_prompt
        assert first.selected_model == second.selected_model

    def test_invalid_id_rejected_before_store(self, service, conn):
        with pytest.raises(ValidationError):
            service.get_or_create("bad id!")
        assert conn.execute("SELECT COUNT(*) FROM chats").fetchone()[0] == 0

    def test_trailing_newline_is_not_a_separate_session(self, service, conn):
        with pytest.raises(ValidationError):
            service.get_or_create(SID + "\n")
        with pytest.raises(ValidationError):
            service.append_message(SID + "\n", "user", "hi")
        assert conn.execute("SELECT COUNT(*) FROM chats").fetchone()[0] == 0

    def test_get_session_does_not_create(self, service, conn):
        assert service.get_session(SID) is None
        assert conn.execute("SELECT COUNT(*) FROM chats").fetchone()[0] == 0

    def test_backfills_missing_model_without_touching_updated_at(self, service, conn, settings):
        store.insert_chat(conn, SID, selected_model=None)
        before = _updated_at(conn, SID)

        chat = service.get_or_create(SID)

        assert chat.selected_model == settings.default_model
        row = conn.execute("SELECT selected_model, updated_at FROM chats WHERE session_id = ?", (SID,)).fetchone()
        assert row[0] == settings.default_model
        assert row[1] == before


class TestAppendMessage:
    def test_stores_trimmed_content(self, service):
        chat = service.append_message(SID, "user", "   hi there \n ")
        assert chat.messages[-1].content == "hi there"
        assert chat.messages[-1].role == "user"

    def test_empty_after_trim_fails_and_keeps_updated_at(self, service, conn):
        service.get_or_create(SID)
        before = _updated_at(conn, SID)

        with pytest.raises(ValidationError):
            service.append_message(SID, "user", "    ")

        assert _updated_at(conn, SID) == before
        assert service.get_history(SID) == []

    def test_preserves_order(self, service):
        for text in ["m1", "m2", "m3"]:
            service.append_message(SID, "user", text)
        assert [m.content for m in service.get_history(SID)] == ["m1", "m2", "m3"]

    def test_bumps_updated_at(self, service, conn):
        service.get_or_create(SID)
        _set_updated_at(conn, SID, store.utc_now() - timedelta(days=3))
        before = _updated_at(conn, SID)

        service.append_message(SID, "assistant", "reply")
        assert _updated_at(conn, SID) > before

    def test_without_create_drops_message_for_missing_session(self, service, conn):
        assert service.append_message(SID, "assistant", "late reply", create=False) is None
        assert conn.execute("SELECT COUNT(*) FROM chats").fetchone()[0] == 0
        assert conn.execute("SELECT COUNT(*) FROM chat_messages").fetchone()[0] == 0

    def test_without_create_appends_to_existing_session(self, service):
        service.append_message(SID, "user", "hi")
        chat = service.append_message(SID, "assistant", "hello", create=False)
        assert [m.content for m in chat.messages] == ["hi", "hello"]

    def test_model_update_without_create_leaves_deleted_session_gone(self, service):
        service.get_or_create(SID)
        service.delete_session(SID)

        assert service.update_selected_model(SID, "mistral:latest", create=False) is None
        assert service.list_sessions() == []

    def test_rejects_unknown_role(self, service):
        with pytest.raises(ValidationError):
            service.append_message(SID, "system", "hello")

    def test_assistant_replies_use_response_limit(self, service, settings):
        long_reply = "a" * (settings.max_message_length + 1)
        chat = service.append_message(SID, "assistant", long_reply)
        assert chat.messages[-1].content == long_reply

        with pytest.raises(ValidationError):
            service.append_message(SID, "user", long_reply)


class TestListSessions:
    def test_sorted_by_updated_at_descending(self, service, conn):
        now = store.utc_now()
        ids = ["sessionaaaa", "sessionbbbb", "sessioncccc"]
        for i, sid in enumerate(ids):
            service.append_message(sid, "user", f"question {i}")
            _set_updated_at(conn, sid, now - timedelta(hours=10 - i))

        # oldest becomes newest
        _set_updated_at(conn, "sessionaaaa", now)

        listed = [s.session_id for s in service.list_sessions()]
        assert listed == ["sessionaaaa", "sessioncccc", "sessionbbbb"]

    def test_summary_fields(self, service):
        service.append_message(SID, "user", "What   is\nthe weather like on Mars today, and tomorrow, and next week?")
        service.append_message(SID, "assistant", "Cold.")

        summary = service.list_sessions()[0]
        assert summary.message_count == 2
        assert summary.message_counts.user == 1
        assert summary.message_counts.assistant == 1
        assert summary.preview.endswith("...")
        assert summary.preview.startswith("What is the weather")
        assert summary.last_message.content == "Cold."

    def test_limit_and_skip(self, service):
        for sid in ["sessionaaaa", "sessionbbbb", "sessioncccc"]:
            service.get_or_create(sid)
        assert len(service.list_sessions(limit=2)) == 2
        assert len(service.list_sessions(limit=2, skip=2)) == 1
        assert len(service.list_sessions(limit=0)) == 1


def test_session_preview_defaults():
    assert session_preview([]) == NEW_CHAT_PREVIEW
    msgs = [Message(role="user", content="short one", timestamp=store.utc_now())]
    assert session_preview(msgs) == "short one"


class TestDeleteSession:
    def test_unknown_id_returns_false(self, service):
        assert service.delete_session("doesnotexist") is False

    def test_existing_id_then_recreated_empty(self, service):
        service.append_message(SID, "user", "hello")
        service.update_system_prompt(SID, "pirate voice")

        assert service.delete_session(SID) is True

        fresh = service.get_or_create(SID)
        assert fresh.messages == []
        assert fresh.system_prompt == ""


class TestSettingsUpdates:
    def test_system_prompt(self, service):
        chat = service.update_system_prompt(SID, "  answer in French ")
        assert chat.system_prompt == "answer in French"

    def test_selected_model(self, service):
        chat = service.update_selected_model(SID, "mistral:latest")
        assert chat.selected_model == "mistral:latest"

    def test_selected_model_required(self, service):
        with pytest.raises(ValidationError):
            service.update_selected_model(SID, "  ")


def test_clear_session_and_stats(service):
    service.append_message(SID, "user", "abc")
    service.append_message(SID, "assistant", "defg")

    stats = service.get_session_stats(SID)
    assert stats.total_messages == 2
    assert stats.user_messages == 1
    assert stats.assistant_messages == 1
    assert stats.total_characters == 7

    assert service.clear_session(SID).messages == []
    assert service.get_session_stats("neverseenbefore") is None


class TestCleanup:
    def test_removes_only_sessions_past_cutoff(self, service, conn):
        now = store.utc_now()
        for sid in ["oldsession1", "oldsession2", "newsession1"]:
            service.append_message(sid, "user", "hi")
        _set_updated_at(conn, "oldsession1", now - timedelta(days=10))
        _set_updated_at(conn, "oldsession2", now - timedelta(days=8))
        _set_updated_at(conn, "newsession1", now - timedelta(days=6))

        assert service.cleanup_old_sessions(days_old=7) == 2

        remaining = [s.session_id for s in service.list_sessions()]
        assert remaining == ["newsession1"]
        assert [m.content for m in service.get_history("newsession1")] == ["hi"]
        msg_rows = conn.execute("SELECT COUNT(*) FROM chat_messages WHERE session_id LIKE 'oldsession%'").fetchone()[0]
        assert msg_rows == 0

    def test_nothing_to_remove(self, service):
        service.get_or_create(SID)
        assert service.cleanup_old_sessions(days_old=7) == 0
        assert len(service.list_sessions()) == 1

    def test_purge_expired_uses_retention_window(self, service, conn):
        service.get_or_create("expiredsess1")
        service.get_or_create(SID)
        _set_updated_at(conn, "expiredsess1", store.utc_now() - timedelta(days=31))

        assert store.purge_expired(conn, 30) == 1
        assert store.purge_expired(conn, 0) == 0
        assert [s.session_id for s in service.list_sessions()] == [SID]
