"""Teacher accounts and the approval workflow.

The first teacher record ever created becomes an approved admin (either the
configured owner at bootstrap, or the first self-registration). Everyone
after that registers as a pending teacher and waits for an admin.

Admins cannot demote, suspend or delete themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from audit import log_event
from credentials import hash_password
from helpers import clean_email, fail, now_iso, ok, password_problem, with_write_lock
from models import TEACHER_ROLES, Teacher
from row_store import TEACHERS, RowStore, column, get_row_store

logger = logging.getLogger(__name__)

ADMIN_ONLY = "Only an administrator can do this."


@dataclass
class Caller:
    """Who is acting on a teacher-only request."""

    email: str | None
    role: str
    via: str  # "pin", "session" or "federated"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def can_write(self) -> bool:
        return self.role in ("admin", "teacher")

    def to_dict(self) -> dict[str, Any]:
        return {"email": self.email, "role": self.role, "via": self.via}


class TeacherRegistry:
    """Reads the Teachers sheet; no cross-call caching."""

    def __init__(self, store: RowStore | None = None):
        self._store = store or get_row_store()

    def all(self) -> list[Teacher]:
        return [
            Teacher.from_row(cells, index)
            for index, cells in enumerate(self._store.list_rows(TEACHERS), start=1)
            if cells and cells[0]
        ]

    def find(self, email: str) -> Teacher | None:
        email = (email or "").strip().lower()
        for teacher in self.all():
            if teacher.email == email:
                return teacher
        return None

    def append(self, teacher: Teacher) -> None:
        self._store.append_row(TEACHERS, teacher.to_row())

    def write(self, teacher: Teacher, field: str, value: Any) -> None:
        self._store.write_cell(TEACHERS, teacher.row, column(TEACHERS, field), value)


def provision_owner(email: str, name: str) -> bool:
    """Create the owner admin if the sheet is empty. Caller holds the lock."""
    registry = TeacherRegistry()
    if registry.all():
        return False
    now = now_iso()
    registry.append(Teacher(
        email=email, name=name, role="admin", status="approved",
        registered_at=now, approved_at=now,
    ))
    log_event("teacher_owner_provisioned", email)
    return True


def list_teachers() -> dict[str, Any]:
    return ok(teachers=[t.public() for t in TeacherRegistry().all()])


@with_write_lock
def _touch_locked(email: str) -> dict[str, Any]:
    registry = TeacherRegistry()
    current = registry.find(email)
    if current is None:
        return fail("This account is not registered.", notFound=True)
    registry.write(current, "lastAccessAt", now_iso())
    return ok()


def touch(teacher: Teacher) -> None:
    """Stamp lastAccessAt on the row that holds ``teacher.email`` now."""
    result = _touch_locked(teacher.email)
    if not result["success"]:
        logger.info("Last access not recorded for %s: %s", teacher.email, result["error"])


# ── Self-registration ──────────────────────────────────────

@with_write_lock
def _register_locked(email: str, name: str, password_hash: str) -> dict[str, Any]:
    registry = TeacherRegistry()
    existing = registry.all()
    if any(t.email == email for t in existing):
        return fail("An account with this email already exists.", duplicate=True)
    now = now_iso()
    first = not existing
    teacher = Teacher(
        email=email,
        name=name,
        password_hash=password_hash,
        role="admin" if first else "teacher",
        status="approved" if first else "pending",
        registered_at=now,
        approved_at=now if first else "",
    )
    registry.append(teacher)
    return ok(teacher=teacher.public(), needsApproval=not first)


def register_teacher(email: Any, name: Any, password: Any = None) -> dict[str, Any]:
    """Self-registration, with a password or through a federated identity."""
    email, err = clean_email(email)
    if err:
        return err
    name = str(name or "").strip() or email.split("@")[0]
    password_hash = ""
    if password:
        problem = password_problem(str(password))
        if problem:
            return fail(problem, field="password")
        password_hash = hash_password(str(password))

    result = _register_locked(email, name, password_hash)
    if result["success"]:
        log_event("teacher_register", email, f"status={result['teacher']['status']}")
    return result


# ── Admin operations ───────────────────────────────────────

def _target(email: Any) -> tuple[str | None, dict | None]:
    return clean_email(email)


@with_write_lock
def _add_locked(email: str, name: str, role: str) -> dict[str, Any]:
    registry = TeacherRegistry()
    if registry.find(email):
        return fail("An account with this email already exists.", duplicate=True)
    now = now_iso()
    teacher = Teacher(email=email, name=name, role=role, status="approved",
                      registered_at=now, approved_at=now)
    registry.append(teacher)
    return ok(teacher=teacher.public())


def add_teacher(caller: Caller, email: Any, name: Any = "", role: Any = "teacher") -> dict[str, Any]:
    if not caller.is_admin:
        return fail(ADMIN_ONLY, forbidden=True)
    email, err = _target(email)
    if err:
        return err
    if role not in TEACHER_ROLES:
        return fail("Role must be admin, teacher or viewer.", field="role")
    name = str(name or "").strip() or email.split("@")[0]
    result = _add_locked(email, name, role)
    if result["success"]:
        log_event("teacher_add", caller.email, f"email={email} role={role}")
    return result


@with_write_lock
def _decide_locked(email: str, approve: bool) -> dict[str, Any]:
    registry = TeacherRegistry()
    teacher = registry.find(email)
    if teacher is None:
        return fail("Teacher not found.", notFound=True)
    if teacher.status != "pending":
        return fail(f"This account is already {teacher.status}.")
    store = get_row_store()
    if approve:
        teacher.status = "approved"
        teacher.approved_at = now_iso()
        store.write_range(
            TEACHERS, teacher.row, column(TEACHERS, "status"),
            [teacher.status, teacher.registered_at, teacher.approved_at],
        )
    else:
        teacher.status = "rejected"
        registry.write(teacher, "status", teacher.status)
    return ok(teacher=teacher.public())


def approve_teacher(caller: Caller, email: Any) -> dict[str, Any]:
    if not caller.is_admin:
        return fail(ADMIN_ONLY, forbidden=True)
    email, err = _target(email)
    if err:
        return err
    result = _decide_locked(email, True)
    if result["success"]:
        log_event("teacher_approve", caller.email, f"email={email}")
    return result


def reject_teacher(caller: Caller, email: Any) -> dict[str, Any]:
    if not caller.is_admin:
        return fail(ADMIN_ONLY, forbidden=True)
    email, err = _target(email)
    if err:
        return err
    result = _decide_locked(email, False)
    if result["success"]:
        log_event("teacher_reject", caller.email, f"email={email}")
    return result


@with_write_lock
def _update_locked(email: str, field: str, value: str) -> dict[str, Any]:
    registry = TeacherRegistry()
    teacher = registry.find(email)
    if teacher is None:
        return fail("Teacher not found.", notFound=True)
    registry.write(teacher, field, value)
    setattr(teacher, field, value)
    return ok(teacher=teacher.public())


def _is_self(caller: Caller, email: str) -> bool:
    return bool(caller.email) and caller.email == email


def change_role(caller: Caller, email: Any, role: Any) -> dict[str, Any]:
    if not caller.is_admin:
        return fail(ADMIN_ONLY, forbidden=True)
    email, err = _target(email)
    if err:
        return err
    if role not in TEACHER_ROLES:
        return fail("Role must be admin, teacher or viewer.", field="role")
    if _is_self(caller, email) and role != "admin":
        return fail("You cannot change your own role.")
    result = _update_locked(email, "role", role)
    if result["success"]:
        log_event("teacher_role", caller.email, f"email={email} role={role}")
    return result


def set_teacher_status(caller: Caller, email: Any, status: Any) -> dict[str, Any]:
    """Suspend an approved teacher or reinstate a suspended one."""
    if not caller.is_admin:
        return fail(ADMIN_ONLY, forbidden=True)
    email, err = _target(email)
    if err:
        return err
    if status not in ("approved", "suspended"):
        return fail("Status must be approved or suspended.", field="status")
    if _is_self(caller, email):
        return fail("You cannot change your own status.")
    current = TeacherRegistry().find(email)
    if current is None:
        return fail("Teacher not found.", notFound=True)
    if current.status not in ("approved", "suspended"):
        return fail(f"This account is {current.status}; use approve or reject instead.")
    result = _update_locked(email, "status", status)
    if result["success"]:
        log_event("teacher_status", caller.email, f"email={email} status={status}")
    return result


@with_write_lock
def _delete_locked(email: str) -> dict[str, Any]:
    registry = TeacherRegistry()
    teacher = registry.find(email)
    if teacher is None:
        return fail("Teacher not found.", notFound=True)
    get_row_store().delete_row(TEACHERS, teacher.row)
    return ok()


def delete_teacher(caller: Caller, email: Any) -> dict[str, Any]:
    if not caller.is_admin:
        return fail(ADMIN_ONLY, forbidden=True)
    email, err = _target(email)
    if err:
        return err
    if _is_self(caller, email):
        return fail("You cannot delete your own account.")
    result = _delete_locked(email)
    if result["success"]:
        log_event("teacher_delete", caller.email, f"email={email}")
    return result
