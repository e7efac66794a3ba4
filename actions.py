"""
Action dispatch — the closed catalogue behind ``POST /api``.

Every request names one ``Action``. Teacher actions require an authorized
caller (bearer session or approved federated identity); viewers may only
use the read-only subset. Student actions authenticate with the student's
login token. Everything else is public (login, registration, status).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import ai_helper
import settings_store
import students
import teacher_auth
import teachers
import works
from helpers import fail, ok
from models import Student
from settings_store import SettingsStore
from teachers import Caller

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong. Please try again."


class Action(str, Enum):
    # public
    CHECK_STUDENT = "checkStudent"
    SET_PIN = "setPin"
    LOGIN = "login"
    LOGIN_WITH_TOKEN = "loginWithToken"
    GET_PUBLIC_SETTINGS = "getPublicSettings"
    TEACHER_PIN_STATUS = "teacherPinStatus"
    SETUP_TEACHER_PIN = "setupTeacherPin"
    TEACHER_PIN_LOGIN = "teacherPinLogin"
    FEDERATED_LOGIN = "federatedLogin"
    PASSWORD_LOGIN = "passwordLogin"
    REGISTER_TEACHER = "registerTeacher"
    TEACHER_LOGOUT = "teacherLogout"
    IS_AUTHORIZED = "isAuthorized"

    # student (token)
    GET_MY_WORKS = "getMyWorks"
    GET_WORK = "getWork"
    SAVE_WORK = "saveWork"
    SUBMIT_WORK = "submitWork"
    AI_STATUS = "aiStatus"
    AI_USAGE = "aiUsage"
    AI_CREATE_SESSION = "aiCreateSession"
    AI_LIST_SESSIONS = "aiListSessions"
    AI_GET_SESSION = "aiGetSession"
    AI_DELETE_SESSION = "aiDeleteSession"
    AI_CHAT = "aiChat"

    # teacher
    WHOAMI = "whoami"
    GET_SETTINGS = "getSettings"
    UPDATE_SETTINGS = "updateSettings"
    CHANGE_TEACHER_PIN = "changeTeacherPin"
    LIST_STUDENTS = "listStudents"
    REGISTER_STUDENT = "registerStudent"
    REGISTER_STUDENTS = "registerStudents"
    RESET_PIN = "resetPin"
    SET_STUDENT_STATUS = "setStudentStatus"
    REGENERATE_TOKEN = "regenerateToken"
    DELETE_STUDENT = "deleteStudent"
    LIST_WORKS = "listWorks"
    GET_STUDENT_WORKS = "getStudentWorks"
    SET_WORK_STATUS = "setWorkStatus"
    DELETE_WORK = "deleteWork"
    SAVE_PERSONAL_WORK = "savePersonalWork"
    GET_PERSONAL_WORK = "getPersonalWork"
    LIST_PERSONAL_WORKS = "listPersonalWorks"
    DELETE_PERSONAL_WORK = "deletePersonalWork"
    LIST_TEACHERS = "listTeachers"
    ADD_TEACHER = "addTeacher"
    APPROVE_TEACHER = "approveTeacher"
    REJECT_TEACHER = "rejectTeacher"
    CHANGE_TEACHER_ROLE = "changeTeacherRole"
    SET_TEACHER_STATUS = "setTeacherStatus"
    DELETE_TEACHER = "deleteTeacher"
    SET_API_KEY = "setApiKey"
    DELETE_API_KEY = "deleteApiKey"
    HAS_API_KEY = "hasApiKey"


@dataclass
class Request:
    params: dict[str, Any]
    federated_email: str | None = None
    caller: Caller | None = None
    student: Student | None = None

    def get(self, key: str, default: Any = None) -> Any:
        return self.params.get(key, default)


Handler = Callable[[Request], dict[str, Any]]


# ── Public ─────────────────────────────────────────────────

def _register_teacher(r: Request) -> dict[str, Any]:
    password = r.get("password")
    if password:
        return teachers.register_teacher(r.get("email"), r.get("name"), password)
    # without a password the account is tied to the signed-in identity
    if not r.federated_email:
        return fail("Sign in with your school account first.", needsSignIn=True)
    return teachers.register_teacher(r.federated_email, r.get("name"))


def _is_authorized(r: Request) -> dict[str, Any]:
    caller = teacher_auth.resolve_caller(r.get("sessionToken"), r.federated_email)
    return ok(authorized=caller is not None,
              caller=caller.to_dict() if caller else None)


# ── Student ────────────────────────────────────────────────

def _student_key(r: Request) -> tuple[str, int]:
    return r.student.name, r.student.number


def _ai_chat(r: Request) -> dict[str, Any]:
    work_data = r.get("workData")
    return ai_helper.chat(*_student_key(r), r.get("sessionId"), r.get("message"),
                          work_data if isinstance(work_data, dict) else None)


# ── Teacher ────────────────────────────────────────────────

def _personal(handler: Handler) -> Handler:
    def guarded(r: Request) -> dict[str, Any]:
        if not SettingsStore().flag("personalModeEnabled"):
            return fail("Personal mode is turned off.")
        return handler(r)
    return guarded


HANDLERS: dict[Action, Handler] = {
    Action.CHECK_STUDENT: lambda r: students.check_student(r.get("name"), r.get("number")),
    Action.SET_PIN: lambda r: students.set_pin(r.get("name"), r.get("number"), r.get("pin")),
    Action.LOGIN: lambda r: students.login_with_pin(r.get("name"), r.get("number"), r.get("pin")),
    Action.LOGIN_WITH_TOKEN: lambda r: students.login_with_token(r.get("token")),
    Action.GET_PUBLIC_SETTINGS: lambda r: settings_store.get_public_settings(),
    Action.TEACHER_PIN_STATUS: lambda r: ok(hasPin=teacher_auth.has_teacher_pin()),
    Action.SETUP_TEACHER_PIN: lambda r: teacher_auth.setup_teacher_pin(r.get("pin")),
    Action.TEACHER_PIN_LOGIN: lambda r: teacher_auth.teacher_pin_login(r.get("pin")),
    Action.FEDERATED_LOGIN: lambda r: teacher_auth.federated_login(r.federated_email),
    Action.PASSWORD_LOGIN: lambda r: teacher_auth.password_login(r.get("email"), r.get("password")),
    Action.REGISTER_TEACHER: _register_teacher,
    Action.TEACHER_LOGOUT: lambda r: teacher_auth.logout(r.get("sessionToken")),
    Action.IS_AUTHORIZED: _is_authorized,

    Action.GET_MY_WORKS: lambda r: works.get_student_works(*_student_key(r)),
    Action.GET_WORK: lambda r: works.get_work(*_student_key(r), r.get("step")),
    Action.SAVE_WORK: lambda r: works.save_work(*_student_key(r), r.get("step"), r.get("data"),
                                                r.get("isComplete")),
    Action.SUBMIT_WORK: lambda r: works.submit_work(*_student_key(r), r.get("step")),
    Action.AI_STATUS: lambda r: ai_helper.ai_status(),
    Action.AI_USAGE: lambda r: ai_helper.get_usage(*_student_key(r)),
    Action.AI_CREATE_SESSION: lambda r: ai_helper.create_session(*_student_key(r), r.get("step"),
                                                                 r.get("title")),
    Action.AI_LIST_SESSIONS: lambda r: ai_helper.list_sessions(*_student_key(r), r.get("step")),
    Action.AI_GET_SESSION: lambda r: ai_helper.get_session(*_student_key(r), r.get("sessionId")),
    Action.AI_DELETE_SESSION: lambda r: ai_helper.delete_session(*_student_key(r), r.get("sessionId")),
    Action.AI_CHAT: _ai_chat,

    Action.WHOAMI: lambda r: ok(caller=r.caller.to_dict()),
    Action.GET_SETTINGS: lambda r: settings_store.get_settings(),
    Action.UPDATE_SETTINGS: lambda r: settings_store.update_settings(r.get("settings")),
    Action.CHANGE_TEACHER_PIN: lambda r: teacher_auth.change_teacher_pin(r.get("currentPin"), r.get("newPin")),
    Action.LIST_STUDENTS: lambda r: students.list_students(),
    Action.REGISTER_STUDENT: lambda r: students.register_student(r.get("name"), r.get("number"), r.get("pin")),
    Action.REGISTER_STUDENTS: lambda r: students.register_students(r.get("students")),
    Action.RESET_PIN: lambda r: students.reset_pin(r.get("name"), r.get("number"), r.get("pin")),
    Action.SET_STUDENT_STATUS: lambda r: students.set_student_status(r.get("name"), r.get("number"),
                                                                     r.get("active")),
    Action.REGENERATE_TOKEN: lambda r: students.regenerate_token(r.get("name"), r.get("number")),
    Action.DELETE_STUDENT: lambda r: students.delete_student(r.get("name"), r.get("number")),
    Action.LIST_WORKS: lambda r: works.list_works(r.get("step")),
    Action.GET_STUDENT_WORKS: lambda r: works.get_student_works(r.get("name"), r.get("number")),
    Action.SET_WORK_STATUS: lambda r: works.set_work_status(r.get("name"), r.get("number"), r.get("step"),
                                                            r.get("status")),
    Action.DELETE_WORK: lambda r: works.delete_work(r.get("name"), r.get("number"), r.get("step")),
    Action.SAVE_PERSONAL_WORK: _personal(lambda r: works.save_personal_work(r.get("step"), r.get("data"),
                                                                            r.get("workId"))),
    Action.GET_PERSONAL_WORK: _personal(lambda r: works.get_personal_work(r.get("workId"))),
    Action.LIST_PERSONAL_WORKS: _personal(lambda r: works.list_personal_works(r.get("step"))),
    Action.DELETE_PERSONAL_WORK: _personal(lambda r: works.delete_personal_work(r.get("workId"))),
    Action.LIST_TEACHERS: lambda r: teachers.list_teachers(),
    Action.ADD_TEACHER: lambda r: teachers.add_teacher(r.caller, r.get("email"), r.get("name"),
                                                       r.get("role", "teacher")),
    Action.APPROVE_TEACHER: lambda r: teachers.approve_teacher(r.caller, r.get("email")),
    Action.REJECT_TEACHER: lambda r: teachers.reject_teacher(r.caller, r.get("email")),
    Action.CHANGE_TEACHER_ROLE: lambda r: teachers.change_role(r.caller, r.get("email"), r.get("role")),
    Action.SET_TEACHER_STATUS: lambda r: teachers.set_teacher_status(r.caller, r.get("email"), r.get("status")),
    Action.DELETE_TEACHER: lambda r: teachers.delete_teacher(r.caller, r.get("email")),
    Action.SET_API_KEY: lambda r: ai_helper.set_api_key(r.get("apiKey")),
    Action.DELETE_API_KEY: lambda r: ai_helper.delete_api_key(),
    Action.HAS_API_KEY: lambda r: ai_helper.has_api_key(),
}

STUDENT_ACTIONS = frozenset({
    Action.GET_MY_WORKS, Action.GET_WORK, Action.SAVE_WORK, Action.SUBMIT_WORK,
    Action.AI_STATUS, Action.AI_USAGE, Action.AI_CREATE_SESSION, Action.AI_LIST_SESSIONS,
    Action.AI_GET_SESSION, Action.AI_DELETE_SESSION, Action.AI_CHAT,
})

# Teacher actions a viewer may call.
TEACHER_READ_ACTIONS = frozenset({
    Action.WHOAMI, Action.GET_SETTINGS, Action.LIST_STUDENTS, Action.LIST_WORKS,
    Action.GET_STUDENT_WORKS, Action.LIST_TEACHERS, Action.HAS_API_KEY,
})

TEACHER_ACTIONS = frozenset({
    Action.UPDATE_SETTINGS, Action.CHANGE_TEACHER_PIN, Action.REGISTER_STUDENT,
    Action.REGISTER_STUDENTS, Action.RESET_PIN, Action.SET_STUDENT_STATUS,
    Action.REGENERATE_TOKEN, Action.DELETE_STUDENT, Action.SET_WORK_STATUS, Action.DELETE_WORK,
    Action.SAVE_PERSONAL_WORK, Action.GET_PERSONAL_WORK, Action.LIST_PERSONAL_WORKS,
    Action.DELETE_PERSONAL_WORK, Action.ADD_TEACHER, Action.APPROVE_TEACHER,
    Action.REJECT_TEACHER, Action.CHANGE_TEACHER_ROLE, Action.SET_TEACHER_STATUS,
    Action.DELETE_TEACHER, Action.SET_API_KEY, Action.DELETE_API_KEY,
}) | TEACHER_READ_ACTIONS

_unhandled = set(Action) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"Actions without a handler: {sorted(a.value for a in _unhandled)}")
if STUDENT_ACTIONS & TEACHER_ACTIONS:
    raise RuntimeError("An action cannot be both a student and a teacher action")


def parse_action(value: Any) -> Action | None:
    try:
        return Action(value)
    except ValueError:
        return None


def dispatch(payload: dict[str, Any], federated_email: str | None = None) -> dict[str, Any]:
    """Route one ``{action, ...params}`` envelope to its handler."""
    action = parse_action(payload.get("action"))
    if action is None:
        return fail("Unknown action.", field="action")

    request = Request(params=payload, federated_email=federated_email)

    try:
        denied = _authorize(action, request)
        if denied is not None:
            return denied
        return HANDLERS[action](request)
    except Exception:
        logger.exception("Action %s failed", action.value)
        return fail(GENERIC_ERROR)


def _authorize(action: Action, request: Request) -> dict[str, Any] | None:
    """Attach the acting teacher or student; a failure result if denied."""
    if action in TEACHER_ACTIONS:
        caller = teacher_auth.resolve_caller(request.get("sessionToken"), request.federated_email)
        if caller is None:
            return fail("Teacher authorization required.", unauthorized=True)
        if not caller.can_write and action not in TEACHER_READ_ACTIONS:
            return fail("Your account has read-only access.", forbidden=True)
        request.caller = caller
    elif action in STUDENT_ACTIONS:
        student = students.student_for_token(request.get("token"))
        if student is None:
            return fail("Please log in again.", needsLogin=True)
        request.student = student
    return None
