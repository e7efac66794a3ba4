"""Record types for the rows of each sheet.

Each record knows how to build itself from a raw row (``from_row``) and how
to serialise back (``to_row``). ``row`` is the 1-based row index the record
was read from; it is only meaningful until the next row deletion.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

STUDENT_STATUSES = ("pending", "active", "inactive")
WORK_STATUSES = ("draft", "submitted", "published")
TEACHER_ROLES = ("admin", "teacher", "viewer")
TEACHER_STATUSES = ("pending", "approved", "rejected", "suspended")

PERSONAL_NAME = "_personal"
PERSONAL_NUMBER = 0


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


# ── Students ────────────────────────────────────────────────

@dataclass
class Student:
    name: str
    number: int
    pin_hash: str = ""
    token: str = ""
    created_at: str = ""
    last_access_at: str = ""
    status: str = "pending"
    row: int = 0

    @classmethod
    def from_row(cls, cells: list[Any], row: int) -> Student:
        return cls(
            name=_as_str(cells[0]).strip(),
            number=_as_int(cells[1]),
            pin_hash=_as_str(cells[2]),
            token=_as_str(cells[3]),
            created_at=_as_str(cells[4]),
            last_access_at=_as_str(cells[5]),
            status=_as_str(cells[6]) or "pending",
            row=row,
        )

    def to_row(self) -> list[Any]:
        return [
            self.name, self.number, self.pin_hash, self.token,
            self.created_at, self.last_access_at, self.status,
        ]

    def matches(self, name: str, number: int) -> bool:
        return self.name == name and self.number == number

    def public(self) -> dict[str, Any]:
        """Teacher-facing view; never includes the PIN hash."""
        return {
            "name": self.name,
            "number": self.number,
            "token": self.token,
            "status": self.status,
            "hasPin": bool(self.pin_hash),
            "createdAt": self.created_at,
            "lastAccessAt": self.last_access_at or None,
        }


# ── Works ───────────────────────────────────────────────────

_UNPARSED = object()


@dataclass
class Work:
    """One step of one student's story.

    The stored JSON payload is parsed on first access to ``data`` only, so a
    scan over many rows never pays for rows it does not return.
    """

    student_name: str
    student_number: int
    step: int
    work_json: str = "{}"
    created_at: str = ""
    updated_at: str = ""
    is_complete: bool = False
    status: str = "draft"
    work_id: str = ""
    row: int = 0
    _data: Any = field(default=_UNPARSED, repr=False, compare=False)

    @classmethod
    def from_row(cls, cells: list[Any], row: int, step: int) -> Work:
        return cls(
            student_name=_as_str(cells[0]).strip(),
            student_number=_as_int(cells[1]),
            step=step,
            work_json=_as_str(cells[2]) or "{}",
            created_at=_as_str(cells[3]),
            updated_at=_as_str(cells[4]),
            is_complete=_as_bool(cells[5]),
            status=_as_str(cells[6]) or "draft",
            work_id=_as_str(cells[7]),
            row=row,
        )

    def to_row(self) -> list[Any]:
        return [
            self.student_name, self.student_number, self.work_json, self.created_at,
            self.updated_at, self.is_complete, self.status, self.work_id,
        ]

    def matches(self, name: str, number: int) -> bool:
        return self.student_name == name and self.student_number == number

    @property
    def data(self) -> dict[str, Any]:
        if self._data is _UNPARSED:
            try:
                parsed = json.loads(self.work_json)
            except (TypeError, ValueError):
                logger.warning("Unreadable work payload (step=%s row=%s)", self.step, self.row)
                parsed = {}
            self._data = parsed if isinstance(parsed, dict) else {}
        return self._data

    def to_dict(self) -> dict[str, Any]:
        return {
            "studentName": self.student_name,
            "studentNumber": self.student_number,
            "step": self.step,
            "workId": self.work_id,
            "workData": self.data,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "isComplete": self.is_complete,
            "status": self.status,
        }

    def summary(self) -> dict[str, Any]:
        """Listing view without the payload."""
        return {
            "studentName": self.student_name,
            "studentNumber": self.student_number,
            "step": self.step,
            "workId": self.work_id,
            "updatedAt": self.updated_at,
            "isComplete": self.is_complete,
            "status": self.status,
        }


# ── Teachers ────────────────────────────────────────────────

@dataclass
class Teacher:
    email: str
    name: str = ""
    password_hash: str = ""
    role: str = "teacher"
    status: str = "pending"
    registered_at: str = ""
    approved_at: str = ""
    last_access_at: str = ""
    row: int = 0

    @classmethod
    def from_row(cls, cells: list[Any], row: int) -> Teacher:
        return cls(
            email=_as_str(cells[0]).strip().lower(),
            name=_as_str(cells[1]),
            password_hash=_as_str(cells[2]),
            role=_as_str(cells[3]) or "teacher",
            status=_as_str(cells[4]) or "pending",
            registered_at=_as_str(cells[5]),
            approved_at=_as_str(cells[6]),
            last_access_at=_as_str(cells[7]),
            row=row,
        )

    def to_row(self) -> list[Any]:
        return [
            self.email, self.name, self.password_hash, self.role, self.status,
            self.registered_at, self.approved_at, self.last_access_at,
        ]

    def public(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "status": self.status,
            "hasPassword": bool(self.password_hash),
            "registeredAt": self.registered_at,
            "approvedAt": self.approved_at or None,
            "lastAccessAt": self.last_access_at or None,
        }


# ── AI sessions and usage ───────────────────────────────────

@dataclass
class AISession:
    session_id: str
    student_name: str
    student_number: int
    step: int
    title: str = ""
    messages: list[dict[str, Any]] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    row: int = 0

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @classmethod
    def from_row(cls, cells: list[Any], row: int) -> AISession:
        try:
            messages = json.loads(_as_str(cells[5]) or "[]")
        except ValueError:
            logger.warning("Unreadable AI session messages (row=%s)", row)
            messages = []
        return cls(
            session_id=_as_str(cells[0]),
            student_name=_as_str(cells[1]).strip(),
            student_number=_as_int(cells[2]),
            step=_as_int(cells[3]),
            title=_as_str(cells[4]),
            messages=messages if isinstance(messages, list) else [],
            created_at=_as_str(cells[7]),
            updated_at=_as_str(cells[8]),
            row=row,
        )

    def to_row(self) -> list[Any]:
        return [
            self.session_id, self.student_name, self.student_number, self.step, self.title,
            json.dumps(self.messages, ensure_ascii=False), self.message_count,
            self.created_at, self.updated_at,
        ]

    def summary(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "step": self.step,
            "title": self.title,
            "messageCount": self.message_count,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.summary(), "messages": self.messages}


@dataclass
class AIUsage:
    date: str
    student_name: str
    student_number: int
    count: int = 0
    row: int = 0

    @classmethod
    def from_row(cls, cells: list[Any], row: int) -> AIUsage:
        return cls(
            date=_as_str(cells[0]),
            student_name=_as_str(cells[1]).strip(),
            student_number=_as_int(cells[2]),
            count=_as_int(cells[3]),
            row=row,
        )

    def to_row(self) -> list[Any]:
        return [self.date, self.student_name, self.student_number, self.count]
