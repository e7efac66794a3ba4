"""Story works: one row per (student, step), upserted in place.

``createdAt`` is written once and carried through every later update.
Updates rewrite the contiguous columns workDataJson..workId in a single
range write so no reader sees a half-updated row.

Personal-mode works (the teacher's own drafts) use the sentinel identity
``_personal``/0 and are addressed by their generated ``workId``.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from audit import log_event
from helpers import clean_name, clean_number, clean_step, fail, now_iso, ok, with_write_lock
from models import PERSONAL_NAME, PERSONAL_NUMBER, WORK_STATUSES, Work
from read_cache import get_read_cache
from row_store import WORK_STEPS, column, get_row_store, works_sheet

logger = logging.getLogger(__name__)

MAX_PAYLOAD_CHARS = 50_000  # a single spreadsheet cell's limit


def new_work_id() -> str:
    return uuid.uuid4().hex


def _encode(data: Any) -> tuple[str | None, dict | None]:
    if not isinstance(data, dict):
        return None, fail("Work data must be an object.", field="workData")
    payload = json.dumps(data, ensure_ascii=False)
    if len(payload) > MAX_PAYLOAD_CHARS:
        return None, fail("This work is too large to save.", field="workData")
    return payload, None


def _identity(name: Any, number: Any, step: Any):
    clean, err = clean_name(name)
    if err:
        return None, err
    num, err = clean_number(number)
    if err:
        return None, err
    s, err = clean_step(step)
    if err:
        return None, err
    return (clean, num, s), None


def _upsert(work: Work | None, name: str, number: int, step: int, payload: str,
            is_complete: bool | None, status: str | None = None) -> Work:
    """Write one work row. Caller holds the write lock."""
    store = get_row_store()
    sheet = works_sheet(step)
    now = now_iso()
    if work is None:
        work = Work(
            student_name=name,
            student_number=number,
            step=step,
            work_json=payload,
            created_at=now,
            updated_at=now,
            is_complete=bool(is_complete),
            status=status or "draft",
            work_id=new_work_id(),
        )
        work.row = store.append_row(sheet, work.to_row())
        return work

    updated = Work(
        student_name=work.student_name,
        student_number=work.student_number,
        step=step,
        work_json=payload,
        created_at=work.created_at,
        updated_at=now,
        is_complete=work.is_complete if is_complete is None else bool(is_complete),
        status=status or work.status,
        work_id=work.work_id or new_work_id(),
        row=work.row,
    )
    store.write_range(sheet, work.row, column(sheet, "workDataJson"), updated.to_row()[2:])
    return updated


# ── Student works ──────────────────────────────────────────

def get_work(name: Any, number: Any, step: Any) -> dict[str, Any]:
    ident, err = _identity(name, number, step)
    if err:
        return err
    work = get_read_cache().find_work(*ident)
    if work is None:
        return ok(work=None)
    return ok(work=work.to_dict())


def get_student_works(name: Any, number: Any) -> dict[str, Any]:
    """All three steps for one student; missing steps are None."""
    clean, err = clean_name(name)
    if err:
        return err
    num, err = clean_number(number)
    if err:
        return err
    cache = get_read_cache()
    works = {}
    for step in WORK_STEPS:
        work = cache.find_work(clean, num, step)
        works[str(step)] = work.to_dict() if work else None
    return ok(works=works)


@with_write_lock
def _save_locked(name: str, number: int, step: int, payload: str,
                 is_complete: bool | None) -> dict[str, Any]:
    cache = get_read_cache()
    cache.invalidate_works(step)
    existing = cache.find_work(name, number, step)
    if existing is not None and existing.status == "published":
        return fail("This work has been published and can no longer be edited.")
    work = _upsert(existing, name, number, step, payload, is_complete)
    cache.invalidate_works(step)
    return ok(work=work.summary(), created=existing is None)


def save_work(name: Any, number: Any, step: Any, data: Any, is_complete: Any = None) -> dict[str, Any]:
    ident, err = _identity(name, number, step)
    if err:
        return err
    payload, err = _encode(data)
    if err:
        return err
    if is_complete is not None and not isinstance(is_complete, bool):
        return fail("isComplete must be true or false.", field="isComplete")

    result = _save_locked(*ident, payload, is_complete)
    if result["success"]:
        logger.info("Saved work step=%d for %s(%d)", ident[2], ident[0], ident[1])
    return result


@with_write_lock
def _set_status_locked(name: str, number: int, step: int, status: str,
                       is_complete: bool | None) -> dict[str, Any]:
    cache = get_read_cache()
    cache.invalidate_works(step)
    work = cache.find_work(name, number, step)
    if work is None:
        return fail("No work has been saved for this step yet.", notFound=True)
    updated = _upsert(work, name, number, step, work.work_json, is_complete, status)
    cache.invalidate_works(step)
    return ok(work=updated.summary())


def submit_work(name: Any, number: Any, step: Any) -> dict[str, Any]:
    """Student hands in a step: status submitted, marked complete."""
    ident, err = _identity(name, number, step)
    if err:
        return err
    work = get_read_cache().find_work(*ident)
    if work is not None and work.status == "published":
        return fail("This work has already been published.")
    result = _set_status_locked(*ident, "submitted", True)
    if result["success"]:
        log_event("work_submit", f"student:{ident[0]}:{ident[1]}", f"step={ident[2]}")
    return result


def set_work_status(name: Any, number: Any, step: Any, status: Any) -> dict[str, Any]:
    ident, err = _identity(name, number, step)
    if err:
        return err
    if status not in WORK_STATUSES:
        return fail("Status must be draft, submitted or published.", field="status")
    result = _set_status_locked(*ident, status, None)
    if result["success"]:
        log_event("work_status", "teacher", f"name={ident[0]} number={ident[1]} step={ident[2]} status={status}")
    return result


def list_works(step: Any) -> dict[str, Any]:
    """Teacher overview of one step, without payloads or personal works."""
    s, err = clean_step(step)
    if err:
        return err
    works = [
        w.summary() for w in get_read_cache().get_works(s)
        if w.student_name != PERSONAL_NAME
    ]
    return ok(step=s, works=works)


@with_write_lock
def _delete_locked(step: int, match) -> dict[str, Any]:
    cache = get_read_cache()
    cache.invalidate_works(step)
    for work in cache.get_works(step):
        if match(work):
            get_row_store().delete_row(works_sheet(step), work.row)
            cache.invalidate_works(step)
            return ok()
    return fail("Work not found.", notFound=True)


def delete_work(name: Any, number: Any, step: Any) -> dict[str, Any]:
    ident, err = _identity(name, number, step)
    if err:
        return err
    name, number, s = ident
    result = _delete_locked(s, lambda w: w.matches(name, number))
    if result["success"]:
        log_event("work_delete", "teacher", f"name={name} number={number} step={s}")
    return result


# ── Personal mode ──────────────────────────────────────────

@with_write_lock
def _save_personal_locked(step: int, payload: str, work_id: str | None) -> dict[str, Any]:
    cache = get_read_cache()
    cache.invalidate_works(step)
    existing = None
    if work_id:
        existing = cache.find_work_by_id(work_id, step)
        if existing is None or existing.student_name != PERSONAL_NAME:
            return fail("Work not found.", notFound=True)
    work = _upsert(existing, PERSONAL_NAME, PERSONAL_NUMBER, step, payload, None)
    cache.invalidate_works(step)
    return ok(work=work.summary(), workId=work.work_id, created=existing is None)


def save_personal_work(step: Any, data: Any, work_id: Any = None) -> dict[str, Any]:
    s, err = clean_step(step)
    if err:
        return err
    payload, err = _encode(data)
    if err:
        return err
    return _save_personal_locked(s, payload, str(work_id) if work_id else None)


def get_personal_work(work_id: Any) -> dict[str, Any]:
    work = get_read_cache().find_work_by_id(str(work_id or ""))
    if work is None or work.student_name != PERSONAL_NAME:
        return fail("Work not found.", notFound=True)
    return ok(work=work.to_dict())


def list_personal_works(step: Any = None) -> dict[str, Any]:
    steps = WORK_STEPS
    if step not in (None, ""):
        s, err = clean_step(step)
        if err:
            return err
        steps = (s,)
    cache = get_read_cache()
    works = [
        {**w.summary(), "title": w.data.get("title", "")}
        for s in steps for w in cache.get_works(s)
        if w.student_name == PERSONAL_NAME
    ]
    return ok(works=works)


def delete_personal_work(work_id: Any) -> dict[str, Any]:
    work_id = str(work_id or "")
    work = get_read_cache().find_work_by_id(work_id)
    if work is None or work.student_name != PERSONAL_NAME:
        return fail("Work not found.", notFound=True)
    return _delete_locked(work.step, lambda w: w.work_id == work_id)
