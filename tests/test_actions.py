"""Tests for the action catalogue and the /api endpoint."""

from __future__ import annotations

from unittest.mock import patch

from actions import HANDLERS, STUDENT_ACTIONS, TEACHER_ACTIONS, TEACHER_READ_ACTIONS, Action, dispatch
from row_store import RowStoreError


class TestCatalogue:
    def test_every_action_has_a_handler(self):
        assert set(HANDLERS) == set(Action)

    def test_student_and_teacher_sets_are_disjoint(self):
        assert not STUDENT_ACTIONS & TEACHER_ACTIONS

    def test_read_actions_are_teacher_actions(self):
        assert TEACHER_READ_ACTIONS <= TEACHER_ACTIONS

    def test_unknown_action(self, app):
        result = dispatch({"action": "dropTables"})
        assert result["success"] is False
        assert result["field"] == "action"

    def test_unexpected_exception_is_generic(self, app, teacher_session):
        with patch.dict(HANDLERS, {Action.LIST_STUDENTS: lambda r: 1 / 0}):
            result = dispatch({"action": "listStudents", "sessionToken": teacher_session})
        assert result == {"success": False, "error": "Something went wrong. Please try again."}

    def test_store_failure_during_teacher_authorization(self, app):
        with patch("teacher_auth.verify_session", side_effect=RowStoreError("store down")):
            result = dispatch({"action": "listStudents", "sessionToken": "abc"})
        assert result == {"success": False, "error": "Something went wrong. Please try again."}

    def test_store_failure_during_student_authorization(self, api):
        with patch("students.student_for_token", side_effect=RowStoreError("store down")):
            result = api("getMyWorks", token="abc")
        assert result["success"] is False
        assert "needsLogin" not in result


class TestEndpoint:
    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.get_json() == {"status": "ok"}

    def test_non_json_body(self, client):
        response = client.post("/api", data="not json", content_type="text/plain")
        assert response.status_code == 400
        assert response.get_json()["success"] is False

    def test_non_object_body(self, client):
        response = client.post("/api", json=["login"])
        assert response.status_code == 400

    def test_public_settings(self, api):
        result = api("getPublicSettings")
        assert result["success"]
        assert result["settings"]["aiEnabled"] is True
        assert "salt" not in result["settings"]

    def test_security_headers(self, client):
        response = client.get("/healthz")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Request-ID"]


class TestTeacherGate:
    def test_teacher_action_requires_authorization(self, api):
        result = api("listStudents")
        assert result["success"] is False
        assert result["unauthorized"] is True

    def test_pin_session_authorizes(self, api, teacher_session):
        assert api("registerStudent", sessionToken=teacher_session, name="홍길동", number=1)["success"]
        students = api("listStudents", sessionToken=teacher_session)["students"]
        assert [s["name"] for s in students] == ["홍길동"]

    def test_viewer_is_read_only(self, app, api, admin):
        from credentials import hash_password
        from teachers import TeacherRegistry, add_teacher

        add_teacher(admin, "v@school.test", "V", "viewer")
        registry = TeacherRegistry()
        registry.write(registry.find("v@school.test"), "passwordHash", hash_password("Viewer123"))
        token = api("passwordLogin", email="v@school.test", password="Viewer123")["sessionToken"]

        assert api("listStudents", sessionToken=token)["success"]
        result = api("registerStudent", sessionToken=token, name="A", number=1)
        assert result["forbidden"] is True

    def test_whoami(self, api, teacher_session):
        caller = api("whoami", sessionToken=teacher_session)["caller"]
        assert caller == {"email": None, "role": "admin", "via": "pin"}

    def test_federated_session_cookie(self, client, api, admin):
        with client.session_transaction() as session:
            session["federated_email"] = "admin@school.test"
        assert api("isAuthorized")["authorized"] is True
        assert api("listTeachers")["success"]

    def test_update_settings_only_known_keys(self, api, teacher_session):
        result = api("updateSettings", sessionToken=teacher_session, settings={"salt": "x"})
        assert result["success"] is False
        result = api("updateSettings", sessionToken=teacher_session,
                     settings={"classTitle": "Class 3-2", "aiEnabled": False})
        assert result["settings"]["classTitle"] == "Class 3-2"
        assert api("getPublicSettings")["settings"]["aiEnabled"] is False

    def test_flag_settings_must_be_bool(self, api, teacher_session):
        result = api("updateSettings", sessionToken=teacher_session, settings={"aiEnabled": "yes"})
        assert result["field"] == "aiEnabled"

    def test_personal_mode_can_be_disabled(self, api, teacher_session):
        assert api("savePersonalWork", sessionToken=teacher_session, step=1, data={"title": "x"})["success"]
        api("updateSettings", sessionToken=teacher_session, settings={"personalModeEnabled": False})
        assert api("listPersonalWorks", sessionToken=teacher_session)["success"] is False

    def test_api_key_actions(self, api, teacher_session):
        assert api("setApiKey", sessionToken=teacher_session, apiKey="abc")["success"]
        assert api("hasApiKey", sessionToken=teacher_session)["exists"] is True


class TestStudentFlow:
    def test_login_then_save_and_submit(self, api, teacher_session):
        api("registerStudent", sessionToken=teacher_session, name="홍길동", number=1)
        assert api("checkStudent", name="홍길동", number=1)["needSetPin"] is True
        token = api("setPin", name="홍길동", number=1, pin="123456")["token"]

        login = api("login", name="홍길동", number=1, pin="123456")
        assert login["token"] == token

        assert api("saveWork", token=token, step=1, data={"title": "A"})["success"]
        assert api("submitWork", token=token, step=1)["work"]["status"] == "submitted"
        works = api("getMyWorks", token=token)["works"]
        assert works["1"]["workData"] == {"title": "A"}

        review = api("getStudentWorks", sessionToken=teacher_session, name="홍길동", number=1)
        assert review["works"]["1"]["status"] == "submitted"

    def test_student_actions_need_token(self, api):
        result = api("saveWork", token="bogus", step=1, data={})
        assert result["needsLogin"] is True

    def test_student_cannot_target_another_student(self, api, teacher_session):
        api("registerStudent", sessionToken=teacher_session, name="A", number=1, pin="111111")
        api("registerStudent", sessionToken=teacher_session, name="B", number=2, pin="222222")
        token_a = api("login", name="A", number=1, pin="111111")["token"]
        api("saveWork", token=token_a, step=1, data={"title": "mine"}, name="B", number=2)
        b_works = api("getStudentWorks", sessionToken=teacher_session, name="B", number=2)["works"]
        assert b_works["1"] is None

    def test_ai_chat_through_api(self, api, teacher_session, active_student):
        _, _, token = active_student
        api("setApiKey", sessionToken=teacher_session, apiKey="abc")
        session_id = api("aiCreateSession", token=token, step=1)["session"]["sessionId"]
        with patch("ai_helper.resilient_chat", return_value="Who is your hero?"):
            result = api("aiChat", token=token, sessionId=session_id, message="help")
        assert result["reply"] == "Who is your hero?"
        assert api("aiUsage", token=token)["used"] == 1


class TestTeacherRegistrationFlow:
    def test_register_with_password_then_approve(self, api, admin):
        assert api("registerTeacher", email="new@school.test", name="New",
                   password="Password1")["needsApproval"] is True
        assert api("passwordLogin", email="new@school.test", password="Password1")["needsApproval"] is True

        token = api("passwordLogin", email="admin@school.test", password="AdminPass1")["sessionToken"]
        assert api("approveTeacher", sessionToken=token, email="new@school.test")["success"]
        assert api("passwordLogin", email="new@school.test", password="Password1")["success"]

    def test_register_without_password_needs_federated_identity(self, api):
        assert api("registerTeacher", name="X")["needsSignIn"] is True

    def test_federated_registration(self, client, api, admin):
        with client.session_transaction() as session:
            session["federated_email"] = "fed@school.test"
        assert api("federatedLogin")["canRegister"] is True
        assert api("registerTeacher", name="Fed")["needsApproval"] is True
        assert api("federatedLogin")["needsApproval"] is True

    def test_logout(self, api, teacher_session):
        assert api("teacherLogout", sessionToken=teacher_session)["loggedOut"] is True
        assert api("listStudents", sessionToken=teacher_session)["unauthorized"] is True


def test_google_routes_unavailable_without_config(client):
    response = client.get("/login/google")
    assert response.status_code == 503
    assert client.get("/callback/google").status_code == 503


def test_google_logout_clears_identity(client, api, admin):
    with client.session_transaction() as session:
        session["federated_email"] = "admin@school.test"
    assert client.get("/logout/google").get_json() == {"success": True}
    assert api("isAuthorized")["authorized"] is False
