"""
AI story helper — a Socratic writing coach for the four-panel story.

Conversations are kept per (student, step) in the AISessions sheet, bounded
in number per step and in length per session. Each student has a daily
exchange quota tracked in the AIUsage sheet.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from flask import current_app

from ai_resilience import AIProviderError, resilient_chat
from helpers import clean_step, fail, now_iso, ok, today, with_write_lock
from models import AISession, AIUsage
from row_store import AI_SESSIONS, AI_USAGE, RowStore, column, get_row_store
from secret_store import AI_KEY_PROPERTY, get_secret_store
from settings_store import SettingsStore

logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 1000
TITLE_CHARS = 30

STEP_FOCUS = {
    1: "the beginning and development of the story: who the characters are, where it happens, and what starts to happen",
    2: "the twist: an unexpected turn that changes the direction of the story",
    3: "the ending: how the twist is resolved and how the characters feel afterwards",
}

SYSTEM_PROMPT = """You are a friendly writing coach helping a primary school student plan a four-panel illustrated story (beginning, development, twist, ending).

THE STUDENT IS WORKING ON: {focus}
{work_note}
RULES:
- Ask guiding questions instead of writing the story for the student
- Offer at most two or three short ideas at a time and let the student choose
- Use simple, warm language suitable for children
- Keep every answer under 5 sentences
- Never include violent, frightening or inappropriate content
- If the student asks for something unrelated to their story, gently steer back"""


def build_system_prompt(step: int, work_data: dict | None = None) -> str:
    work_note = ""
    if work_data:
        title = str(work_data.get("title", "")).strip()
        if title:
            work_note = f"\nTHE STORY SO FAR IS TITLED: {title[:100]}\n"
    return SYSTEM_PROMPT.format(focus=STEP_FOCUS[step], work_note=work_note)


# ── Sheet access ───────────────────────────────────────────

class AISessionStore:
    def __init__(self, store: RowStore | None = None):
        self._store = store or get_row_store()

    def all(self) -> list[AISession]:
        return [
            AISession.from_row(cells, index)
            for index, cells in enumerate(self._store.list_rows(AI_SESSIONS), start=1)
            if cells and cells[0]
        ]

    def for_student(self, name: str, number: int, step: int | None = None) -> list[AISession]:
        return [
            s for s in self.all()
            if s.student_name == name and s.student_number == number
            and (step is None or s.step == step)
        ]

    def find(self, session_id: str) -> AISession | None:
        for session in self.all():
            if session.session_id == session_id:
                return session
        return None


class AIUsageStore:
    def __init__(self, store: RowStore | None = None):
        self._store = store or get_row_store()

    def find(self, date: str, name: str, number: int) -> AIUsage | None:
        for index, cells in enumerate(self._store.list_rows(AI_USAGE), start=1):
            usage = AIUsage.from_row(cells, index)
            if usage.date == date and usage.student_name == name and usage.student_number == number:
                return usage
        return None

    def count(self, date: str, name: str, number: int) -> int:
        usage = self.find(date, name, number)
        return usage.count if usage else 0

    def increment(self, date: str, name: str, number: int) -> int:
        """Caller holds the write lock."""
        usage = self.find(date, name, number)
        if usage is None:
            self._store.append_row(AI_USAGE, AIUsage(date, name, number, 1).to_row())
            return 1
        self._store.write_cell(AI_USAGE, usage.row, column(AI_USAGE, "count"), usage.count + 1)
        return usage.count + 1


def _limits() -> tuple[int, int, int]:
    cfg = current_app.config
    return (
        int(cfg.get("AI_DAILY_LIMIT", 20)),
        int(cfg.get("AI_MAX_SESSIONS", 5)),
        int(cfg.get("AI_MAX_MESSAGES", 40)),
    )


def _api_key() -> str | None:
    return get_secret_store().get(AI_KEY_PROPERTY) or current_app.config.get("GOOGLE_API_KEY") or None


def ai_status() -> dict[str, Any]:
    enabled = SettingsStore().flag("aiEnabled")
    return ok(enabled=enabled, available=enabled and _api_key() is not None)


def get_usage(name: str, number: int) -> dict[str, Any]:
    daily_limit, _, _ = _limits()
    used = AIUsageStore().count(today(), name, number)
    return ok(used=used, limit=daily_limit, remaining=max(0, daily_limit - used))


# ── Sessions ───────────────────────────────────────────────

@with_write_lock
def _create_locked(name: str, number: int, step: int, title: str) -> dict[str, Any]:
    _, max_sessions, _ = _limits()
    store = get_row_store()
    existing = sorted(
        AISessionStore(store).for_student(name, number, step),
        key=lambda s: (s.created_at, s.row),
    )
    overflow = len(existing) - max_sessions + 1
    evicted = existing[:overflow] if overflow > 0 else []
    # delete bottom-up so earlier row indices stay valid
    for session in sorted(evicted, key=lambda s: s.row, reverse=True):
        store.delete_row(AI_SESSIONS, session.row)

    now = now_iso()
    session = AISession(
        session_id=uuid.uuid4().hex,
        student_name=name,
        student_number=number,
        step=step,
        title=title,
        created_at=now,
        updated_at=now,
    )
    store.append_row(AI_SESSIONS, session.to_row())
    return ok(session=session.summary(), evicted=[s.session_id for s in evicted])


def create_session(name: str, number: int, step: Any, title: Any = "") -> dict[str, Any]:
    s, err = clean_step(step)
    if err:
        return err
    return _create_locked(name, number, s, str(title or "").strip()[:TITLE_CHARS])


def list_sessions(name: str, number: int, step: Any = None) -> dict[str, Any]:
    s = None
    if step not in (None, ""):
        s, err = clean_step(step)
        if err:
            return err
    sessions = AISessionStore().for_student(name, number, s)
    sessions.sort(key=lambda x: x.updated_at, reverse=True)
    return ok(sessions=[x.summary() for x in sessions])


def _owned(session_id: Any, name: str, number: int) -> AISession | None:
    session = AISessionStore().find(str(session_id or ""))
    if session is None or session.student_name != name or session.student_number != number:
        return None
    return session


def get_session(name: str, number: int, session_id: Any) -> dict[str, Any]:
    session = _owned(session_id, name, number)
    if session is None:
        return fail("Conversation not found.", notFound=True)
    return ok(session=session.to_dict())


@with_write_lock
def _delete_locked(name: str, number: int, session_id: str) -> dict[str, Any]:
    session = _owned(session_id, name, number)
    if session is None:
        return fail("Conversation not found.", notFound=True)
    get_row_store().delete_row(AI_SESSIONS, session.row)
    return ok()


def delete_session(name: str, number: int, session_id: Any) -> dict[str, Any]:
    return _delete_locked(name, number, str(session_id or ""))


# ── Chat ───────────────────────────────────────────────────

@with_write_lock
def _record_exchange_locked(name: str, number: int, session_id: str,
                            question: str, reply: str) -> dict[str, Any]:
    daily_limit, _, max_messages = _limits()
    usage = AIUsageStore()
    used = usage.count(today(), name, number)
    if used >= daily_limit:
        return fail("You have used all of today's AI questions.", quotaExceeded=True,
                    used=used, limit=daily_limit)
    session = _owned(session_id, name, number)
    if session is None:
        return fail("Conversation not found.", notFound=True)
    if session.message_count + 2 > max_messages:
        return fail("This conversation is full. Start a new one.", sessionFull=True)

    now = now_iso()
    session.messages.append({"role": "user", "content": question, "timestamp": now})
    session.messages.append({"role": "assistant", "content": reply, "timestamp": now})
    if not session.title:
        session.title = question[:TITLE_CHARS]
    session.updated_at = now
    get_row_store().write_range(
        AI_SESSIONS, session.row, column(AI_SESSIONS, "title"), session.to_row()[4:],
    )
    used = usage.increment(today(), name, number)
    return ok(session=session.summary(), used=used)


def chat(name: str, number: int, session_id: Any, message: Any,
         work_data: dict | None = None) -> dict[str, Any]:
    message = str(message or "").strip()
    if not message:
        return fail("Message is required.", field="message")
    if len(message) > MAX_MESSAGE_CHARS:
        return fail(f"Message must be at most {MAX_MESSAGE_CHARS} characters.", field="message")

    if not SettingsStore().flag("aiEnabled"):
        return fail("The AI helper is turned off.")
    api_key = _api_key()
    if not api_key:
        return fail("The AI helper is not configured.")

    daily_limit, _, max_messages = _limits()
    used = AIUsageStore().count(today(), name, number)
    if used >= daily_limit:
        return fail("You have used all of today's AI questions.", quotaExceeded=True,
                    used=used, limit=daily_limit)

    session = _owned(session_id, name, number)
    if session is None:
        return fail("Conversation not found.", notFound=True)
    if session.message_count + 2 > max_messages:
        return fail("This conversation is full. Start a new one.", sessionFull=True)

    history = [{"role": m.get("role", "user"), "content": str(m.get("content", ""))}
               for m in session.messages]
    history.append({"role": "user", "content": message})
    try:
        reply = resilient_chat(
            api_key,
            current_app.config.get("AI_MODEL", "gemini-2.0-flash"),
            build_system_prompt(session.step, work_data if isinstance(work_data, dict) else None),
            history,
        )
    except AIProviderError as e:
        return fail(str(e), retryable=True)

    result = _record_exchange_locked(name, number, session.session_id, message, reply)
    if not result["success"]:
        return result
    return ok(
        reply=reply,
        session=result["session"],
        usage={"used": result["used"], "limit": daily_limit,
               "remaining": max(0, daily_limit - result["used"])},
    )


# ── API key management (teacher) ───────────────────────────

def set_api_key(value: Any) -> dict[str, Any]:
    value = str(value or "").strip()
    if not value:
        return fail("API key is required.", field="apiKey")
    get_secret_store().set(AI_KEY_PROPERTY, value)
    return ok()


def delete_api_key() -> dict[str, Any]:
    return ok(deleted=get_secret_store().delete(AI_KEY_PROPERTY))


def has_api_key() -> dict[str, Any]:
    return ok(exists=get_secret_store().exists(AI_KEY_PROPERTY))
