"""
Shared helpers used across the service modules.

Result builders, input validation, timestamps, and the write-lock wrapper.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime
from functools import wraps
from typing import Any

from flask import current_app

from write_lock import LockContention, get_write_lock, held

NAME_MAX_LENGTH = 20
NUMBER_MIN, NUMBER_MAX = 1, 100
STUDENT_PIN_RE = re.compile(r"^\d{6}$")
TEACHER_PIN_RE = re.compile(r"^\d{4,8}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
STEPS = (1, 2, 3)

BUSY_MESSAGE = "Another save is in progress. Please try again shortly."


def ok(**data: Any) -> dict[str, Any]:
    return {"success": True, **data}


def fail(error: str, **flags: Any) -> dict[str, Any]:
    return {"success": False, "error": error, **flags}


def invalid(field: str, error: str) -> dict[str, Any]:
    """Validation failure naming the offending field."""
    return fail(error, field=field)


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def today() -> str:
    return datetime.now().date().isoformat()


# ── Validation ─────────────────────────────────────────────
# Each validator returns (clean value, None) or (None, failure result).

def clean_name(value: Any) -> tuple[str | None, dict | None]:
    name = str(value or "").strip()
    if not name:
        return None, invalid("name", "Name is required.")
    if len(name) > NAME_MAX_LENGTH:
        return None, invalid("name", f"Name must be at most {NAME_MAX_LENGTH} characters.")
    if name.startswith("_"):
        return None, invalid("name", "Name may not start with an underscore.")
    return name, None


def clean_number(value: Any) -> tuple[int | None, dict | None]:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None, invalid("number", "Number must be a whole number.")
    if not NUMBER_MIN <= number <= NUMBER_MAX:
        return None, invalid("number", f"Number must be between {NUMBER_MIN} and {NUMBER_MAX}.")
    return number, None


def clean_pin(value: Any, field: str = "pin") -> tuple[str | None, dict | None]:
    pin = str(value or "").strip()
    if not STUDENT_PIN_RE.match(pin):
        return None, invalid(field, "PIN must be exactly 6 digits.")
    return pin, None


def clean_teacher_pin(value: Any, field: str = "pin") -> tuple[str | None, dict | None]:
    pin = str(value or "").strip()
    if not TEACHER_PIN_RE.match(pin):
        return None, invalid(field, "Teacher PIN must be 4 to 8 digits.")
    return pin, None


def clean_step(value: Any) -> tuple[int | None, dict | None]:
    try:
        step = int(value)
    except (TypeError, ValueError):
        return None, invalid("step", "Step must be 1, 2 or 3.")
    if step not in STEPS:
        return None, invalid("step", "Step must be 1, 2 or 3.")
    return step, None


def clean_email(value: Any) -> tuple[str | None, dict | None]:
    email = str(value or "").strip().lower()
    if not EMAIL_RE.match(email):
        return None, invalid("email", "A valid email address is required.")
    return email, None


def password_problem(password: str) -> str | None:
    """Return an error message if password is too weak, else None."""
    if len(password) < 8:
        return "Password must be at least 8 characters."
    if not any(c.isupper() for c in password):
        return "Password must contain at least one uppercase letter."
    if not any(c.islower() for c in password):
        return "Password must contain at least one lowercase letter."
    if not any(c.isdigit() for c in password):
        return "Password must contain at least one digit."
    return None


# ── Write lock ─────────────────────────────────────────────

def busy(timeout: float) -> dict[str, Any]:
    return fail(BUSY_MESSAGE, retryable=True, retryAfter=max(1, int(timeout)))


def with_write_lock(f: Callable[..., dict]) -> Callable[..., dict]:
    """Run the decorated mutation while holding the write lock.

    Contention becomes a retryable failure result instead of an exception.
    """
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> dict:
        timeout = float(current_app.config.get("WRITE_LOCK_TIMEOUT", 10))
        try:
            with held(get_write_lock(), timeout):
                return f(*args, **kwargs)
        except LockContention:
            return busy(timeout)
    return decorated
