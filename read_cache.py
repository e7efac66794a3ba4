"""Request-scoped read cache for the student and work sheets.

Each request gets its own ReadCache (stored on Flask ``g``) so a handler that
looks up students or works several times reads each sheet at most once. The
cache is never shared between requests: another request's writes are only
visible after this request invalidates or ends.

Every mutation of students or works must call the matching ``invalidate_*``
method, otherwise later reads in the same request see stale rows.
"""

from __future__ import annotations

import logging

from flask import g

from models import Student, Work
from row_store import STUDENTS, WORK_STEPS, RowStore, get_row_store, works_sheet

logger = logging.getLogger(__name__)


class ReadCache:
    """Per-lifetime memoisation of the Students and Works sheets."""

    def __init__(self, store: RowStore):
        self._store = store
        self._students: list[Student] | None = None
        self._by_token: dict[str, Student] = {}
        self._works: dict[int, list[Work]] = {}

    # ── Students ───────────────────────────────────────────

    def get_students(self) -> list[Student]:
        if self._students is None:
            students = []
            by_token = {}
            for index, cells in enumerate(self._store.list_rows(STUDENTS), start=1):
                student = Student.from_row(cells, index)
                if not student.name:
                    continue
                students.append(student)
                if student.token:
                    by_token[student.token] = student
            self._students = students
            self._by_token = by_token
            logger.debug("Loaded %d students", len(students))
        return self._students

    def find_student(self, name: str, number: int) -> Student | None:
        for student in self.get_students():
            if student.matches(name, number):
                return student
        return None

    def find_student_by_token(self, token: str) -> Student | None:
        if not token:
            return None
        self.get_students()
        return self._by_token.get(token)

    def invalidate_students(self) -> None:
        self._students = None
        self._by_token = {}

    # ── Works ──────────────────────────────────────────────

    def get_works(self, step: int) -> list[Work]:
        works = self._works.get(step)
        if works is None:
            works = [
                Work.from_row(cells, index, step)
                for index, cells in enumerate(self._store.list_rows(works_sheet(step)), start=1)
            ]
            self._works[step] = works
            logger.debug("Loaded %d works for step %d", len(works), step)
        return works

    def find_work(self, name: str, number: int, step: int) -> Work | None:
        """First work row for (name, number) in ``step``; payload parsed on match only."""
        for work in self.get_works(step):
            if work.matches(name, number):
                return work
        return None

    def find_work_by_id(self, work_id: str, step: int | None = None) -> Work | None:
        if not work_id:
            return None
        steps = (step,) if step else WORK_STEPS
        for s in steps:
            for work in self.get_works(s):
                if work.work_id == work_id:
                    return work
        return None

    def invalidate_works(self, step: int | None = None) -> None:
        if step is None:
            self._works = {}
        else:
            self._works.pop(step, None)

    def clear(self) -> None:
        self.invalidate_students()
        self.invalidate_works()


def get_read_cache() -> ReadCache:
    """Return this request's cache, creating it on first use."""
    if "read_cache" not in g:
        g.read_cache = ReadCache(get_row_store())
    return g.read_cache


def discard_read_cache(e=None) -> None:
    cache = g.pop("read_cache", None)
    if cache is not None:
        cache.clear()


def init_app(app) -> None:
    app.teardown_appcontext(discard_read_cache)
