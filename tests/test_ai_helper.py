"""Tests for the AI story helper: sessions, quota and message bounds."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from flask import current_app

import ai_helper
from ai_resilience import AIProviderError
from settings_store import SettingsStore

STUDENT = ("홍길동", 1)


@pytest.fixture
def key(app):
    ai_helper.set_api_key("test-key")


@pytest.fixture
def reply():
    with patch("ai_helper.resilient_chat", return_value="What happens next?") as mock:
        yield mock


def _session(step=1, title=""):
    result = ai_helper.create_session(*STUDENT, step, title)
    assert result["success"], result
    return result["session"]["sessionId"]


class TestSessions:
    def test_create_list_get_delete(self, app):
        session_id = _session(1, "Dragon story")
        listed = ai_helper.list_sessions(*STUDENT)["sessions"]
        assert [s["sessionId"] for s in listed] == [session_id]
        assert ai_helper.get_session(*STUDENT, session_id)["session"]["messages"] == []
        assert ai_helper.delete_session(*STUDENT, session_id)["success"]
        assert ai_helper.get_session(*STUDENT, session_id)["notFound"] is True

    def test_oldest_session_is_evicted(self, app):
        current_app.config["AI_MAX_SESSIONS"] = 2
        first = _session()
        second = _session()
        result = ai_helper.create_session(*STUDENT, 1)
        assert result["evicted"] == [first]
        ids = {s["sessionId"] for s in ai_helper.list_sessions(*STUDENT, 1)["sessions"]}
        assert ids == {second, result["session"]["sessionId"]}

    def test_limit_is_per_step(self, app):
        current_app.config["AI_MAX_SESSIONS"] = 1
        _session(1)
        result = ai_helper.create_session(*STUDENT, 2)
        assert result["evicted"] == []

    def test_other_students_sessions_are_hidden(self, app):
        session_id = _session()
        assert ai_helper.get_session("Other", 2, session_id)["notFound"] is True
        assert ai_helper.delete_session("Other", 2, session_id)["notFound"] is True

    def test_invalid_step(self, app):
        assert ai_helper.create_session(*STUDENT, 7)["field"] == "step"


class TestChat:
    def test_exchange_is_stored(self, app, key, reply):
        session_id = _session(2)
        result = ai_helper.chat(*STUDENT, session_id, "I need a twist")
        assert result["success"]
        assert result["reply"] == "What happens next?"
        assert result["usage"] == {"used": 1, "limit": 20, "remaining": 19}

        session = ai_helper.get_session(*STUDENT, session_id)["session"]
        assert [m["role"] for m in session["messages"]] == ["user", "assistant"]
        assert session["title"] == "I need a twist"

        api_key, model, system, messages = reply.call_args.args
        assert api_key == "test-key"
        assert "twist" in system
        assert messages[-1] == {"role": "user", "content": "I need a twist"}

    def test_history_is_sent(self, app, key, reply):
        session_id = _session()
        ai_helper.chat(*STUDENT, session_id, "first")
        ai_helper.chat(*STUDENT, session_id, "second")
        messages = reply.call_args.args[3]
        assert [m["content"] for m in messages] == ["first", "What happens next?", "second"]

    def test_daily_quota(self, app, key, reply):
        current_app.config["AI_DAILY_LIMIT"] = 2
        session_id = _session()
        ai_helper.chat(*STUDENT, session_id, "one")
        ai_helper.chat(*STUDENT, session_id, "two")
        result = ai_helper.chat(*STUDENT, session_id, "three")
        assert result["quotaExceeded"] is True
        assert reply.call_count == 2
        assert ai_helper.get_usage(*STUDENT)["remaining"] == 0

    def test_quota_rechecked_when_recording(self, app, key):
        current_app.config["AI_DAILY_LIMIT"] = 1
        session_id = _session()

        def concurrent_exchange(*args):
            # another request used the last question while this one waited
            ai_helper.AIUsageStore().increment(ai_helper.today(), *STUDENT)
            return "What happens next?"

        with patch("ai_helper.resilient_chat", side_effect=concurrent_exchange):
            result = ai_helper.chat(*STUDENT, session_id, "one")
        assert result["quotaExceeded"] is True
        assert ai_helper.get_usage(*STUDENT)["used"] == 1
        assert ai_helper.get_session(*STUDENT, session_id)["session"]["messageCount"] == 0

    def test_session_message_bound(self, app, key, reply):
        current_app.config["AI_MAX_MESSAGES"] = 4
        session_id = _session()
        ai_helper.chat(*STUDENT, session_id, "one")
        ai_helper.chat(*STUDENT, session_id, "two")
        result = ai_helper.chat(*STUDENT, session_id, "three")
        assert result["sessionFull"] is True
        assert ai_helper.get_session(*STUDENT, session_id)["session"]["messageCount"] == 4

    def test_disabled_by_setting(self, app, key, reply):
        SettingsStore().set("aiEnabled", "false")
        result = ai_helper.chat(*STUDENT, _session(), "hi")
        assert result["success"] is False
        reply.assert_not_called()

    def test_requires_key(self, app, reply):
        result = ai_helper.chat(*STUDENT, _session(), "hi")
        assert result["success"] is False
        assert ai_helper.ai_status()["available"] is False

    def test_config_key_is_fallback(self, app, reply):
        current_app.config["GOOGLE_API_KEY"] = "env-key"
        assert ai_helper.chat(*STUDENT, _session(), "hi")["success"]
        assert reply.call_args.args[0] == "env-key"

    def test_provider_failure_is_generic_and_not_counted(self, app, key):
        session_id = _session()
        with patch("ai_helper.resilient_chat", side_effect=AIProviderError("The AI helper could not answer right now.")):
            result = ai_helper.chat(*STUDENT, session_id, "hi")
        assert result["success"] is False
        assert result["retryable"] is True
        assert ai_helper.get_usage(*STUDENT)["used"] == 0
        assert ai_helper.get_session(*STUDENT, session_id)["session"]["messageCount"] == 0

    def test_empty_message(self, app, key, reply):
        assert ai_helper.chat(*STUDENT, _session(), "   ")["field"] == "message"


class TestApiKey:
    def test_set_exists_delete(self, app):
        assert ai_helper.has_api_key()["exists"] is False
        assert ai_helper.set_api_key("abc")["success"]
        assert ai_helper.has_api_key()["exists"] is True
        assert ai_helper.delete_api_key()["deleted"] is True
        assert ai_helper.has_api_key()["exists"] is False

    def test_key_is_not_in_settings(self, app):
        ai_helper.set_api_key("abc")
        assert "abc" not in SettingsStore().all().values()

    def test_blank_key_rejected(self, app):
        assert ai_helper.set_api_key("  ")["field"] == "apiKey"
