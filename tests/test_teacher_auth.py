"""Tests for teacher logins, bearer sessions and authorization."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import patch

import teacher_auth
from credentials import hash_password
from row_store import TEACHERS, get_row_store
from settings_store import TEACHER_SESSION_KEY, SettingsStore
from teacher_auth import (
    change_teacher_pin,
    federated_login,
    has_teacher_pin,
    is_authorized,
    logout,
    password_login,
    resolve_caller,
    setup_teacher_pin,
    teacher_pin_login,
    verify_session,
)
from teachers import TeacherRegistry, add_teacher, register_teacher, set_teacher_status


class TestTeacherPin:
    def test_login_needs_setup_first(self, app):
        assert has_teacher_pin() is False
        assert teacher_pin_login("1234")["needSetup"] is True

    def test_setup_once(self, app):
        assert setup_teacher_pin("1234")["success"]
        assert has_teacher_pin()
        assert setup_teacher_pin("5678")["success"] is False

    def test_pin_format(self, app):
        assert setup_teacher_pin("12")["field"] == "pin"

    def test_login_issues_one_hour_session(self, app):
        setup_teacher_pin("1234")
        result = teacher_pin_login("1234")
        assert result["success"]
        expires = datetime.fromisoformat(result["expiresAt"])
        assert timedelta(minutes=59) < expires - datetime.now() <= timedelta(hours=1)
        caller = resolve_caller(result["sessionToken"], None)
        assert caller.role == "admin"
        assert caller.via == "pin"

    def test_wrong_pin_and_lockout(self, app):
        setup_teacher_pin("1234")
        for _ in range(5):
            assert teacher_pin_login("9999")["success"] is False
        result = teacher_pin_login("1234")
        assert result["locked"] is True
        assert result["retryAfter"] == 30

    def test_change_requires_current(self, app):
        setup_teacher_pin("1234")
        assert change_teacher_pin("0000", "5678")["success"] is False
        assert change_teacher_pin("1234", "5678")["success"]
        assert teacher_pin_login("5678")["success"]


class TestSessions:
    def test_new_login_replaces_previous(self, app, teacher_session):
        second = teacher_pin_login("4321")["sessionToken"]
        assert verify_session(teacher_session) is None
        assert verify_session(second) is not None

    def test_expired_session_rejected(self, app, teacher_session):
        settings = SettingsStore()
        record = settings.get_json(TEACHER_SESSION_KEY)
        record["expiresAt"] = (datetime.now() - timedelta(seconds=1)).isoformat(timespec="seconds")
        settings.set_json(TEACHER_SESSION_KEY, record)
        assert verify_session(teacher_session) is None
        assert is_authorized(teacher_session, None) is False

    def test_garbage_session_blob(self, app):
        SettingsStore().set(TEACHER_SESSION_KEY, "{not json")
        assert verify_session("anything") is None

    def test_logout(self, app, teacher_session):
        assert logout("wrong")["loggedOut"] is False
        assert logout(teacher_session)["loggedOut"] is True
        assert is_authorized(teacher_session, None) is False

    def test_empty_token(self, app, teacher_session):
        assert is_authorized("", None) is False
        assert is_authorized(None, None) is False


class TestPasswordLogin:
    def test_success(self, app, admin):
        result = password_login("ADMIN@school.test", "AdminPass1")
        assert result["success"]
        caller = resolve_caller(result["sessionToken"], None)
        assert caller.email == "admin@school.test"
        assert caller.via == "session"

    def test_wrong_password_is_generic(self, app, admin):
        wrong = password_login("admin@school.test", "WrongPass1")
        unknown = password_login("nobody@school.test", "WrongPass1")
        assert wrong["error"] == unknown["error"]

    def test_pending_needs_approval(self, app, admin):
        register_teacher("p@school.test", "P", "Password1")
        assert password_login("p@school.test", "Password1")["needsApproval"] is True

    def test_lockout(self, app, admin):
        for _ in range(5):
            password_login("admin@school.test", "WrongPass1")
        assert password_login("admin@school.test", "AdminPass1")["locked"] is True

    def test_suspended_session_stops_authorizing(self, app, admin):
        add_teacher(admin, "t@school.test")
        registry = TeacherRegistry()
        registry.write(registry.find("t@school.test"), "passwordHash", hash_password("Password1"))
        token = password_login("t@school.test", "Password1")["sessionToken"]
        assert is_authorized(token, None)
        set_teacher_status(admin, "t@school.test", "suspended")
        assert is_authorized(token, None) is False


class TestFederated:
    def test_requires_sign_in(self, app):
        assert federated_login(None)["needsSignIn"] is True

    def test_unknown_can_register(self, app):
        result = federated_login("new@school.test")
        assert result["notFound"] is True
        assert result["canRegister"] is True

    def test_pending(self, app, admin):
        register_teacher("p@school.test", "P")
        assert federated_login("p@school.test")["needsApproval"] is True

    def test_approved_gets_session(self, app, admin):
        result = federated_login("Admin@School.test")
        assert result["success"]
        assert resolve_caller(result["sessionToken"], None).email == "admin@school.test"

    def test_federated_identity_alone_authorizes(self, app, admin):
        caller = resolve_caller(None, "admin@school.test")
        assert caller.via == "federated"
        assert is_authorized(None, "someone@else.test") is False


class TestLastAccess:
    def test_earlier_row_deleted_between_lookup_and_stamp(self, app, admin):
        add_teacher(admin, "b@school.test")
        add_teacher(admin, "c@school.test")
        real = teacher_auth._issue_session

        def delete_admin_then_issue(email, hours):
            get_row_store().delete_row(TEACHERS, 1)
            return real(email, hours)

        with patch("teacher_auth._issue_session", side_effect=delete_admin_then_issue):
            assert federated_login("b@school.test")["success"]

        accessed = {t.email: t.last_access_at for t in TeacherRegistry().all()}
        assert set(accessed) == {"b@school.test", "c@school.test"}
        assert accessed["b@school.test"]
        assert accessed["c@school.test"] == ""

    def test_password_login_stamps_own_row(self, app, admin):
        add_teacher(admin, "t@school.test")
        assert password_login("admin@school.test", "AdminPass1")["success"]
        accessed = {t.email: t.last_access_at for t in TeacherRegistry().all()}
        assert accessed["admin@school.test"]
        assert accessed["t@school.test"] == ""
