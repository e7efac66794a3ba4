"""Teacher login, bearer sessions, and request authorization.

Three ways in:

- single shared teacher PIN (global, kept hashed in Settings)
- federated identity (Google sign-in asserted by oauth.py)
- email + password

All of them issue the same bearer session: a random token plus a record
``{token, email?, createdAt, expiresAt}`` stored as one Settings value. Only
one session is active at a time; a new login replaces the previous one.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from flask import current_app

from audit import log_event
from credentials import digests_match, hash_password, hash_teacher_pin, new_token
from helpers import clean_email, clean_teacher_pin, fail, ok, with_write_lock
from rate_limit import get_rate_limiter
from settings_store import TEACHER_PIN_KEY, TEACHER_SESSION_KEY, SettingsStore
from teachers import Caller, TeacherRegistry, touch

logger = logging.getLogger(__name__)

PIN_LOGIN_ACTION = "teacher_login"
PASSWORD_LOGIN_ACTION = "teacher_password_login"
PIN_IDENTIFIER = "teacher"

DENIED = "Invalid credentials."


# ── Sessions ───────────────────────────────────────────────

def _issue_session(email: str | None, hours: int) -> dict[str, Any]:
    now = datetime.now()
    record = {
        "token": new_token(),
        "createdAt": now.isoformat(timespec="seconds"),
        "expiresAt": (now + timedelta(hours=hours)).isoformat(timespec="seconds"),
    }
    if email:
        record["email"] = email
    SettingsStore().set_json(TEACHER_SESSION_KEY, record)
    return record


def verify_session(token: Any) -> dict[str, Any] | None:
    """The stored session record if ``token`` matches and has not expired."""
    token = str(token or "")
    if not token:
        return None
    record = SettingsStore().get_json(TEACHER_SESSION_KEY)
    if not isinstance(record, dict) or not digests_match(token, str(record.get("token", ""))):
        return None
    try:
        expires_at = datetime.fromisoformat(str(record.get("expiresAt")))
    except ValueError:
        logger.warning("Teacher session has an unreadable expiry")
        return None
    if datetime.now() >= expires_at:
        return None
    return record


def logout(token: Any) -> dict[str, Any]:
    settings = SettingsStore()
    record = verify_session(token)
    if record is None:
        return ok(loggedOut=False)
    settings.set(TEACHER_SESSION_KEY, "")
    log_event("teacher_logout", record.get("email"))
    return ok(loggedOut=True)


def _approved_teacher(email: str | None):
    if not email:
        return None
    teacher = TeacherRegistry().find(email)
    if teacher is None or teacher.status != "approved":
        return None
    return teacher


def resolve_caller(session_token: Any, federated_email: str | None) -> Caller | None:
    """Identify the teacher behind a request, or None if not authorized.

    A valid session wins; otherwise an approved federated identity.
    PIN sessions carry no email and act with the owner's admin rights.
    """
    record = verify_session(session_token)
    if record is not None:
        email = record.get("email")
        if not email:
            return Caller(email=None, role="admin", via="pin")
        teacher = _approved_teacher(email)
        if teacher is not None:
            return Caller(email=teacher.email, role=teacher.role, via="session")
    teacher = _approved_teacher((federated_email or "").strip().lower())
    if teacher is not None:
        return Caller(email=teacher.email, role=teacher.role, via="federated")
    return None


def is_authorized(session_token: Any, federated_email: str | None) -> bool:
    return resolve_caller(session_token, federated_email) is not None


# ── Teacher PIN ────────────────────────────────────────────

def has_teacher_pin() -> bool:
    return bool(SettingsStore().get(TEACHER_PIN_KEY))


def teacher_pin_login(pin: Any) -> dict[str, Any]:
    clean, err = clean_teacher_pin(pin)
    if err:
        return err

    limiter = get_rate_limiter()
    status = limiter.check_limit(PIN_IDENTIFIER, PIN_LOGIN_ACTION)
    if not status.allowed:
        log_event("teacher_login_locked", PIN_IDENTIFIER)
        return fail(status.message, locked=True, retryable=True, retryAfter=status.retry_after)

    stored = SettingsStore().get(TEACHER_PIN_KEY)
    if not stored:
        return fail("The teacher PIN has not been set up yet.", needSetup=True)

    if not digests_match(hash_teacher_pin(clean), stored):
        attempts = limiter.record_attempt(PIN_IDENTIFIER, PIN_LOGIN_ACTION)
        log_event("teacher_login_failed", PIN_IDENTIFIER, f"attempts={attempts}")
        return fail(DENIED, remaining=max(0, limiter.max_attempts - attempts))

    limiter.reset_attempts(PIN_IDENTIFIER, PIN_LOGIN_ACTION)
    hours = current_app.config.get("TEACHER_PIN_SESSION_HOURS", 1)
    session = _issue_session(None, hours)
    log_event("teacher_login", PIN_IDENTIFIER)
    return ok(sessionToken=session["token"], expiresAt=session["expiresAt"])


@with_write_lock
def _store_pin_locked(pin_hash: str, only_if_unset: bool) -> dict[str, Any]:
    settings = SettingsStore()
    if only_if_unset and settings.get(TEACHER_PIN_KEY):
        return fail("The teacher PIN is already set.")
    settings.set(TEACHER_PIN_KEY, pin_hash)
    return ok()


def setup_teacher_pin(pin: Any) -> dict[str, Any]:
    """First-time PIN setup; refused once a PIN exists."""
    clean, err = clean_teacher_pin(pin)
    if err:
        return err
    result = _store_pin_locked(hash_teacher_pin(clean), True)
    if result["success"]:
        log_event("teacher_pin_setup", PIN_IDENTIFIER)
    return result


def change_teacher_pin(current: Any, new: Any) -> dict[str, Any]:
    clean_new, err = clean_teacher_pin(new, field="newPin")
    if err:
        return err
    stored = SettingsStore().get(TEACHER_PIN_KEY)
    if stored:
        clean_current, err = clean_teacher_pin(current, field="currentPin")
        if err:
            return err
        if not digests_match(hash_teacher_pin(clean_current), stored):
            return fail(DENIED)
    result = _store_pin_locked(hash_teacher_pin(clean_new), False)
    if result["success"]:
        log_event("teacher_pin_change", PIN_IDENTIFIER)
    return result


# ── Federated and password logins ──────────────────────────

def federated_login(email: str | None) -> dict[str, Any]:
    """Trust the platform-asserted email; no password involved."""
    if not email:
        return fail("Sign in with your school account first.", needsSignIn=True)
    email = email.strip().lower()
    teacher = TeacherRegistry().find(email)
    if teacher is None:
        return fail("This account is not registered.", notFound=True, canRegister=True)
    if teacher.status == "pending":
        return fail("Your account is waiting for administrator approval.", needsApproval=True)
    if teacher.status != "approved":
        log_event("teacher_federated_denied", email, f"status={teacher.status}")
        return fail("This account cannot sign in.")

    hours = current_app.config.get("TEACHER_SESSION_HOURS", 8)
    session = _issue_session(teacher.email, hours)
    touch(teacher)
    log_event("teacher_federated_login", teacher.email)
    return ok(sessionToken=session["token"], expiresAt=session["expiresAt"],
              teacher=teacher.public())


def password_login(email: Any, password: Any) -> dict[str, Any]:
    email, err = clean_email(email)
    if err:
        return err
    password = str(password or "")
    if not password:
        return fail("Password is required.", field="password")

    limiter = get_rate_limiter()
    status = limiter.check_limit(email, PASSWORD_LOGIN_ACTION)
    if not status.allowed:
        log_event("teacher_login_locked", email)
        return fail(status.message, locked=True, retryable=True, retryAfter=status.retry_after)

    teacher = TeacherRegistry().find(email)
    if teacher is None or not digests_match(hash_password(password), teacher.password_hash):
        attempts = limiter.record_attempt(email, PASSWORD_LOGIN_ACTION)
        log_event("teacher_login_failed", email, f"attempts={attempts}")
        return fail("Invalid email or password.", remaining=max(0, limiter.max_attempts - attempts))

    limiter.reset_attempts(email, PASSWORD_LOGIN_ACTION)
    if teacher.status == "pending":
        return fail("Your account is waiting for administrator approval.", needsApproval=True)
    if teacher.status != "approved":
        log_event("teacher_login_denied", email, f"status={teacher.status}")
        return fail("This account cannot sign in.")

    hours = current_app.config.get("TEACHER_SESSION_HOURS", 8)
    session = _issue_session(teacher.email, hours)
    touch(teacher)
    log_event("teacher_login", teacher.email)
    return ok(sessionToken=session["token"], expiresAt=session["expiresAt"],
              teacher=teacher.public())
