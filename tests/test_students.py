"""Tests for student registration, PIN setup and login."""

from __future__ import annotations

from unittest.mock import patch

import students
from read_cache import get_read_cache
from rate_limit import get_rate_limiter, student_identifier
from row_store import STUDENTS, get_row_store
from students import (
    LOGIN_ACTION,
    check_student,
    delete_student,
    list_students,
    login_with_pin,
    login_with_token,
    regenerate_token,
    register_student,
    register_students,
    reset_pin,
    set_pin,
    set_student_status,
    student_for_token,
)


def _all_students():
    cache = get_read_cache()
    cache.invalidate_students()
    return cache.get_students()


def _assert_status_invariant():
    for s in _all_students():
        if s.status == "active":
            assert s.pin_hash
        if s.status == "pending":
            assert s.pin_hash == ""


class TestRoundTrip:
    def test_register_set_pin_login(self, app):
        registered = register_student("홍길동", 1)
        assert registered["success"]
        assert registered["student"]["status"] == "pending"

        check = check_student("홍길동", 1)
        assert check["needSetPin"] is True

        result = set_pin("홍길동", 1, "123456")
        assert result["success"]
        assert result["student"]["status"] == "active"

        login = login_with_pin("홍길동", 1, "123456")
        assert login["success"]
        assert login["token"] == registered["student"]["token"]
        _assert_status_invariant()

    def test_wrong_pin_records_one_attempt(self, app):
        register_student("홍길동", 1)
        set_pin("홍길동", 1, "123456")

        result = login_with_pin("홍길동", 1, "000000")
        assert result["success"] is False
        assert result["remaining"] == 4
        status = get_rate_limiter().check_limit(student_identifier("홍길동", 1), LOGIN_ACTION)
        assert status.remaining == 3

    def test_lockout_after_five_failures(self, app, active_student):
        for _ in range(5):
            assert not login_with_pin("홍길동", 1, "000000")["success"]
        result = login_with_pin("홍길동", 1, "123456")
        assert result["success"] is False
        assert result["locked"] is True
        assert result["retryAfter"] == 30

    def test_success_resets_counter(self, app, active_student):
        for _ in range(4):
            login_with_pin("홍길동", 1, "000000")
        assert login_with_pin("홍길동", 1, "123456")["success"]
        assert login_with_pin("홍길동", 1, "000000")["remaining"] == 4


class TestValidation:
    def test_bad_number_names_field(self, app):
        result = register_student("A", "abc")
        assert result["field"] == "number"

    def test_number_out_of_range(self, app):
        assert register_student("A", 101)["field"] == "number"

    def test_long_name(self, app):
        assert register_student("x" * 21, 1)["field"] == "name"

    def test_reserved_name(self, app):
        assert register_student("_personal", 1)["field"] == "name"

    def test_pin_must_be_six_digits(self, app):
        register_student("A", 1)
        assert set_pin("A", 1, "12345")["field"] == "pin"
        assert set_pin("A", 1, "abcdef")["field"] == "pin"


class TestLookupAndLogin:
    def test_unknown_student(self, app):
        assert check_student("Nobody", 9)["notFound"] is True
        assert login_with_pin("Nobody", 9, "123456")["notFound"] is True

    def test_pending_student_must_set_pin(self, app):
        register_student("A", 1)
        assert login_with_pin("A", 1, "123456")["needSetPin"] is True

    def test_set_pin_only_once(self, app, active_student):
        assert set_pin("홍길동", 1, "654321")["success"] is False

    def test_token_login(self, app, active_student):
        _, _, token = active_student
        result = login_with_token(token)
        assert result["success"]
        assert result["student"]["name"] == "홍길동"

    def test_token_login_rejects_unknown(self, app):
        assert login_with_token("nope")["success"] is False

    def test_inactive_cannot_log_in(self, app, active_student):
        _, _, token = active_student
        set_student_status("홍길동", 1, False)
        assert login_with_pin("홍길동", 1, "123456")["success"] is False
        assert login_with_token(token)["success"] is False
        assert student_for_token(token) is None

    def test_login_records_last_access(self, app, active_student):
        login_with_pin("홍길동", 1, "123456")
        assert _all_students()[0].last_access_at

    def test_unknown_student_is_throttled(self, app):
        for _ in range(5):
            assert login_with_pin("Nobody", 9, "123456")["notFound"] is True
        result = login_with_pin("Nobody", 9, "123456")
        assert result["locked"] is True
        assert "notFound" not in result


class TestLastAccess:
    def _delete_row_during_login(self, row):
        real = students.digests_match

        def delete_then_compare(candidate, stored):
            get_row_store().delete_row(STUDENTS, row)
            return real(candidate, stored)

        return patch("students.digests_match", side_effect=delete_then_compare)

    def test_earlier_row_deleted_between_lookup_and_stamp(self, app):
        for name in ("A", "B", "C"):
            assert register_student(name, 1, "123456")["success"]
        with self._delete_row_during_login(1):
            assert login_with_pin("B", 1, "123456")["success"]

        accessed = {s.name: s.last_access_at for s in _all_students()}
        assert set(accessed) == {"B", "C"}
        assert accessed["B"]
        assert accessed["C"] == ""

    def test_own_row_deleted_before_stamp(self, app):
        for name in ("A", "B"):
            assert register_student(name, 1, "123456")["success"]
        with self._delete_row_during_login(2):
            assert login_with_pin("B", 1, "123456")["success"]
        assert [(s.name, s.last_access_at) for s in _all_students()] == [("A", "")]


class TestRegistration:
    def test_duplicate_rejected(self, app):
        register_student("A", 1)
        result = register_student("A", 1)
        assert result["success"] is False
        assert result["duplicate"] is True
        assert len(_all_students()) == 1

    def test_same_name_different_number(self, app):
        assert register_student("A", 1)["success"]
        assert register_student("A", 2)["success"]

    def test_with_pin_is_active(self, app):
        result = register_student("A", 1, "123456")
        assert result["student"]["status"] == "active"
        _assert_status_invariant()

    def test_bulk_reports_skips(self, app):
        register_student("A", 1)
        result = register_students([
            {"name": "A", "number": 1},
            {"name": "B", "number": 2},
            {"name": "B", "number": 2},
            {"name": "", "number": 3},
            {"name": "C", "number": 4, "pin": "111111"},
        ])
        assert result["success"]
        assert [a["name"] for a in result["added"]] == ["B", "C"]
        assert len(result["skipped"]) == 3
        names = {(s.name, s.number) for s in _all_students()}
        assert names == {("A", 1), ("B", 2), ("C", 4)}
        _assert_status_invariant()

    def test_bulk_requires_list(self, app):
        assert register_students("nope")["field"] == "students"

    def test_tokens_are_unique(self, app):
        register_students([{"name": f"S{i}", "number": i} for i in range(1, 21)])
        tokens = [s.token for s in _all_students()]
        assert len(set(tokens)) == len(tokens) == 20


class TestTeacherManagement:
    def test_list_never_exposes_hash(self, app, active_student):
        students = list_students()["students"]
        assert students[0]["hasPin"] is True
        assert "pinHash" not in students[0]

    def test_reset_pin_to_new_value(self, app, active_student):
        assert reset_pin("홍길동", 1, "999999")["success"]
        assert login_with_pin("홍길동", 1, "999999")["success"]

    def test_reset_pin_clears_to_pending(self, app, active_student):
        result = reset_pin("홍길동", 1)
        assert result["student"]["status"] == "pending"
        _assert_status_invariant()
        assert set_pin("홍길동", 1, "222222")["success"]

    def test_reset_clears_lockout(self, app, active_student):
        for _ in range(5):
            login_with_pin("홍길동", 1, "000000")
        reset_pin("홍길동", 1, "123456")
        assert login_with_pin("홍길동", 1, "123456")["success"]

    def test_reactivate_without_pin_is_pending(self, app):
        register_student("A", 1)
        set_student_status("A", 1, False)
        result = set_student_status("A", 1, True)
        assert result["student"]["status"] == "pending"
        _assert_status_invariant()

    def test_regenerate_token(self, app, active_student):
        _, _, old = active_student
        result = regenerate_token("홍길동", 1)
        new = result["student"]["token"]
        assert new != old
        assert login_with_token(old)["success"] is False
        assert login_with_token(new)["success"] is True

    def test_delete(self, app, active_student):
        assert delete_student("홍길동", 1)["success"]
        assert check_student("홍길동", 1)["notFound"] is True
        assert delete_student("홍길동", 1)["notFound"] is True
