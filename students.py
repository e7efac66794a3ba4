"""Student registration, PIN setup, and login.

Students are identified by (name, number) and additionally by a random
token that can be handed out as a QR code. Status invariants:

- ``pending``  — no PIN yet (pinHash empty); the student must set one.
- ``active``   — PIN set (pinHash non-empty); may log in.
- ``inactive`` — disabled by the teacher.
"""

from __future__ import annotations

import logging
from typing import Any

from audit import log_event
from credentials import digests_match, get_salt, hash_pin, new_token
from helpers import (
    clean_name,
    clean_number,
    clean_pin,
    fail,
    now_iso,
    ok,
    with_write_lock,
)
from models import Student
from rate_limit import get_rate_limiter, student_identifier
from read_cache import get_read_cache
from row_store import STUDENTS, column, get_row_store

logger = logging.getLogger(__name__)

LOGIN_ACTION = "student_login"
MAX_BULK = 200

NOT_REGISTERED = "This student is not registered. Check your name and number."


def _identity(name: Any, number: Any) -> tuple[tuple[str, int] | None, dict | None]:
    clean, err = clean_name(name)
    if err:
        return None, err
    num, err = clean_number(number)
    if err:
        return None, err
    return (clean, num), None


def _identity_payload(student: Student) -> dict[str, Any]:
    return {"name": student.name, "number": student.number, "status": student.status}


# ── Lookup ─────────────────────────────────────────────────

def check_student(name: Any, number: Any) -> dict[str, Any]:
    """Tell the login screen whether to ask for a PIN or for PIN setup."""
    ident, err = _identity(name, number)
    if err:
        return err
    student = get_read_cache().find_student(*ident)
    if student is None:
        return fail(NOT_REGISTERED, notFound=True)
    return ok(status=student.status, needSetPin=student.status == "pending")


def student_for_token(token: str) -> Student | None:
    """Active student owning ``token``, or None."""
    student = get_read_cache().find_student_by_token(str(token or ""))
    if student is None or student.status != "active":
        return None
    return student


def list_students() -> dict[str, Any]:
    students = sorted(get_read_cache().get_students(), key=lambda s: (s.number, s.name))
    return ok(students=[s.public() for s in students])


# ── Registration ───────────────────────────────────────────

@with_write_lock
def _register_locked(entries: list[tuple[str, int, str | None]]) -> dict[str, Any]:
    cache = get_read_cache()
    cache.invalidate_students()
    students = cache.get_students()
    taken = {(s.name, s.number) for s in students}
    tokens = {s.token for s in students}
    store = get_row_store()
    salt = get_salt()

    added, skipped = [], []
    for name, number, pin in entries:
        if (name, number) in taken:
            skipped.append({"name": name, "number": number, "reason": "Already registered."})
            continue
        token = new_token()
        while token in tokens:
            token = new_token()
        student = Student(
            name=name,
            number=number,
            pin_hash=hash_pin(pin, salt) if pin else "",
            token=token,
            created_at=now_iso(),
            status="active" if pin else "pending",
        )
        store.append_row(STUDENTS, student.to_row())
        taken.add((name, number))
        tokens.add(token)
        added.append({"name": name, "number": number, "token": token, "status": student.status})

    cache.invalidate_students()
    return ok(added=added, skipped=skipped)


def register_student(name: Any, number: Any, pin: Any = None) -> dict[str, Any]:
    ident, err = _identity(name, number)
    if err:
        return err
    clean_pin_value = None
    if pin not in (None, ""):
        clean_pin_value, err = clean_pin(pin)
        if err:
            return err

    result = _register_locked([(ident[0], ident[1], clean_pin_value)])
    if not result["success"]:
        return result
    if result["skipped"]:
        return fail(f"{ident[0]} ({ident[1]}) is already registered.", duplicate=True)
    student = result["added"][0]
    log_event("student_register", "teacher", f"name={ident[0]} number={ident[1]}")
    return ok(student=student)


def register_students(entries: Any) -> dict[str, Any]:
    """Bulk registration; invalid and duplicate rows are skipped, not fatal."""
    if not isinstance(entries, list) or not entries:
        return fail("A non-empty list of students is required.", field="students")
    if len(entries) > MAX_BULK:
        return fail(f"At most {MAX_BULK} students can be registered at once.", field="students")

    valid: list[tuple[str, int, str | None]] = []
    skipped: list[dict[str, Any]] = []
    seen: set[tuple[str, int]] = set()
    for entry in entries:
        entry = entry if isinstance(entry, dict) else {}
        ident, err = _identity(entry.get("name"), entry.get("number"))
        pin = entry.get("pin")
        if not err and pin not in (None, ""):
            pin, err = clean_pin(pin)
        if err:
            skipped.append({"name": entry.get("name"), "number": entry.get("number"), "reason": err["error"]})
            continue
        if ident in seen:
            skipped.append({"name": ident[0], "number": ident[1], "reason": "Duplicated in this list."})
            continue
        seen.add(ident)
        valid.append((ident[0], ident[1], pin or None))

    if not valid:
        return ok(added=[], skipped=skipped)

    result = _register_locked(valid)
    if not result["success"]:
        return result
    log_event("student_bulk_register", "teacher", f"added={len(result['added'])}")
    return ok(added=result["added"], skipped=skipped + result["skipped"])


# ── PIN setup and reset ────────────────────────────────────

@with_write_lock
def _set_pin_locked(name: str, number: int, pin_hash: str) -> dict[str, Any]:
    cache = get_read_cache()
    cache.invalidate_students()
    student = cache.find_student(name, number)
    if student is None:
        return fail(NOT_REGISTERED, notFound=True)
    if student.status != "pending":
        return fail("A PIN is already set for this student.")

    get_row_store().write_range(
        STUDENTS, student.row, column(STUDENTS, "pinHash"),
        [pin_hash, student.token, student.created_at, now_iso(), "active"],
    )
    cache.invalidate_students()
    return ok(student={"name": name, "number": number, "status": "active"}, token=student.token)


def set_pin(name: Any, number: Any, pin: Any) -> dict[str, Any]:
    """First-time PIN setup by the student; only allowed while pending."""
    ident, err = _identity(name, number)
    if err:
        return err
    clean, err = clean_pin(pin)
    if err:
        return err

    student = get_read_cache().find_student(*ident)
    if student is None:
        return fail(NOT_REGISTERED, notFound=True)
    if student.status != "pending":
        return fail("A PIN is already set for this student.")

    result = _set_pin_locked(ident[0], ident[1], hash_pin(clean))
    if result["success"]:
        log_event("student_set_pin", f"student:{ident[0]}:{ident[1]}")
    return result


@with_write_lock
def _reset_pin_locked(name: str, number: int, pin_hash: str) -> dict[str, Any]:
    cache = get_read_cache()
    cache.invalidate_students()
    student = cache.find_student(name, number)
    if student is None:
        return fail(NOT_REGISTERED, notFound=True)
    if pin_hash:
        status = "active"
    else:
        status = "inactive" if student.status == "inactive" else "pending"
    get_row_store().write_range(
        STUDENTS, student.row, column(STUDENTS, "pinHash"),
        [pin_hash, student.token, student.created_at, student.last_access_at, status],
    )
    cache.invalidate_students()
    return ok(student={"name": name, "number": number, "status": status})


def reset_pin(name: Any, number: Any, pin: Any = None) -> dict[str, Any]:
    """Teacher reset: set a new PIN, or clear it so the student sets their own."""
    ident, err = _identity(name, number)
    if err:
        return err
    pin_hash = ""
    if pin not in (None, ""):
        clean, err = clean_pin(pin)
        if err:
            return err
        pin_hash = hash_pin(clean)

    result = _reset_pin_locked(ident[0], ident[1], pin_hash)
    if result["success"]:
        get_rate_limiter().reset_attempts(student_identifier(*ident), LOGIN_ACTION)
        log_event("student_reset_pin", "teacher", f"name={ident[0]} number={ident[1]} cleared={not pin_hash}")
    return result


# ── Login ──────────────────────────────────────────────────

def login_with_pin(name: Any, number: Any, pin: Any) -> dict[str, Any]:
    ident, err = _identity(name, number)
    if err:
        return err
    clean, err = clean_pin(pin)
    if err:
        return err

    limiter = get_rate_limiter()
    identifier = student_identifier(*ident)
    status = limiter.check_limit(identifier, LOGIN_ACTION)
    if not status.allowed:
        log_event("student_login_locked", identifier)
        return fail(status.message, locked=True, retryable=True, retryAfter=status.retry_after)

    cache = get_read_cache()
    student = cache.find_student(*ident)
    if student is None:
        attempts = limiter.record_attempt(identifier, LOGIN_ACTION)
        log_event("student_login_unknown", identifier, f"attempts={attempts}")
        return fail(NOT_REGISTERED, notFound=True)
    if student.status == "pending":
        return fail("Please set your PIN first.", needSetPin=True)
    if student.status != "active":
        return fail("This account is inactive. Please ask your teacher.")

    if not digests_match(hash_pin(clean), student.pin_hash):
        attempts = limiter.record_attempt(identifier, LOGIN_ACTION)
        log_event("student_login_failed", identifier, f"attempts={attempts}")
        return fail("Incorrect PIN.", remaining=max(0, limiter.max_attempts - attempts))

    limiter.reset_attempts(identifier, LOGIN_ACTION)
    _touch(student)
    cache.invalidate_students()
    log_event("student_login", identifier)
    return ok(student=_identity_payload(student), token=student.token)


def login_with_token(token: Any) -> dict[str, Any]:
    """QR login: the token itself is the secret, so no PIN and no rate limit."""
    token = str(token or "").strip()
    if not token:
        return fail("A login token is required.", field="token")
    cache = get_read_cache()
    student = cache.find_student_by_token(token)
    if student is None:
        return fail("This login code is not valid.")
    if student.status != "active":
        if student.status == "pending":
            return fail("Please set your PIN first.", needSetPin=True,
                        student=_identity_payload(student))
        return fail("This account is inactive. Please ask your teacher.")

    _touch(student)
    cache.invalidate_students()
    log_event("student_token_login", f"student:{student.name}:{student.number}")
    return ok(student=_identity_payload(student), token=student.token)


@with_write_lock
def _touch_locked(name: str, number: int) -> dict[str, Any]:
    # rows may have shifted since the login lookup; resolve by identity again
    cache = get_read_cache()
    cache.invalidate_students()
    student = cache.find_student(name, number)
    if student is None:
        return fail(NOT_REGISTERED, notFound=True)
    get_row_store().write_cell(STUDENTS, student.row, column(STUDENTS, "lastAccessAt"), now_iso())
    cache.invalidate_students()
    return ok()


def _touch(student: Student) -> None:
    result = _touch_locked(student.name, student.number)
    if not result["success"]:
        logger.info("Last access not recorded for %s (%d): %s",
                    student.name, student.number, result["error"])


# ── Teacher management ─────────────────────────────────────

@with_write_lock
def _update_locked(name: str, number: int, field: str, value: Any) -> dict[str, Any]:
    cache = get_read_cache()
    cache.invalidate_students()
    student = cache.find_student(name, number)
    if student is None:
        return fail(NOT_REGISTERED, notFound=True)
    if field == "status" and value == "active" and not student.pin_hash:
        value = "pending"
    get_row_store().write_cell(STUDENTS, student.row, column(STUDENTS, field), value)
    cache.invalidate_students()
    return ok(student={"name": name, "number": number, field: value})


def set_student_status(name: Any, number: Any, active: Any) -> dict[str, Any]:
    """Deactivate or reactivate; a student without a PIN reactivates as pending."""
    ident, err = _identity(name, number)
    if err:
        return err
    if not isinstance(active, bool):
        return fail("active must be true or false.", field="active")
    result = _update_locked(ident[0], ident[1], "status", "active" if active else "inactive")
    if result["success"]:
        log_event("student_status", "teacher", f"name={ident[0]} number={ident[1]} active={active}")
    return result


def regenerate_token(name: Any, number: Any) -> dict[str, Any]:
    """Invalidate an old QR code by issuing a new token."""
    ident, err = _identity(name, number)
    if err:
        return err
    tokens = {s.token for s in get_read_cache().get_students()}
    token = new_token()
    while token in tokens:
        token = new_token()
    result = _update_locked(ident[0], ident[1], "token", token)
    if result["success"]:
        log_event("student_token_regenerated", "teacher", f"name={ident[0]} number={ident[1]}")
    return result


@with_write_lock
def _delete_locked(name: str, number: int) -> dict[str, Any]:
    cache = get_read_cache()
    cache.invalidate_students()
    student = cache.find_student(name, number)
    if student is None:
        return fail(NOT_REGISTERED, notFound=True)
    get_row_store().delete_row(STUDENTS, student.row)
    cache.invalidate_students()
    return ok()


def delete_student(name: Any, number: Any) -> dict[str, Any]:
    """Remove the student row; their works are left in place."""
    ident, err = _identity(name, number)
    if err:
        return err
    result = _delete_locked(*ident)
    if result["success"]:
        log_event("student_delete", "teacher", f"name={ident[0]} number={ident[1]}")
    return result
