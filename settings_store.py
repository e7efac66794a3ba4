"""Flat key/value settings kept in the Settings sheet."""

from __future__ import annotations

import json
import logging
from typing import Any

from audit import log_event
from helpers import fail, ok, with_write_lock
from row_store import SETTINGS, RowStore, column, get_row_store

logger = logging.getLogger(__name__)

SALT_KEY = "salt"
VERSION_KEY = "version"
TEACHER_PIN_KEY = "teacherPinHash"
TEACHER_SESSION_KEY = "teacherSession"

SCHEMA_VERSION = "2"
MAX_VALUE_CHARS = 500

# Keys a teacher may read and change through the settings actions.
PUBLIC_DEFAULTS: dict[str, str] = {
    "classTitle": "Our Four-Panel Story",
    "welcomeMessage": "Log in with your name, number and PIN.",
    "step1Title": "Beginning and development",
    "step2Title": "Twist",
    "step3Title": "Ending",
    "aiEnabled": "true",
    "personalModeEnabled": "true",
}

# Keys that are never exposed through the settings actions.
PRIVATE_KEYS = frozenset({SALT_KEY, TEACHER_PIN_KEY, TEACHER_SESSION_KEY})

FLAG_KEYS = frozenset({"aiEnabled", "personalModeEnabled"})


class SettingsStore:
    """Reads the whole sheet on each call; settings rows are few."""

    def __init__(self, store: RowStore | None = None):
        self._store = store or get_row_store()

    def _rows(self) -> list[tuple[int, str, str]]:
        return [
            (index, str(cells[0]), "" if cells[1] is None else str(cells[1]))
            for index, cells in enumerate(self._store.list_rows(SETTINGS), start=1)
            if cells and cells[0]
        ]

    def all(self) -> dict[str, str]:
        return {key: value for _, key, value in self._rows()}

    def get(self, key: str, default: str | None = None) -> str | None:
        for _, k, value in self._rows():
            if k == key:
                return value
        return default

    def set(self, key: str, value: str) -> None:
        for index, k, _ in self._rows():
            if k == key:
                self._store.write_cell(SETTINGS, index, column(SETTINGS, "value"), value)
                return
        self._store.append_row(SETTINGS, [key, value])

    def delete(self, key: str) -> bool:
        for index, k, _ in self._rows():
            if k == key:
                self._store.delete_row(SETTINGS, index)
                return True
        return False

    def get_json(self, key: str) -> Any | None:
        raw = self.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Setting %s holds unreadable JSON", key)
            return None

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value))

    def flag(self, key: str) -> bool:
        value = self.get(key, PUBLIC_DEFAULTS.get(key, "false")) or ""
        return value.strip().lower() in ("true", "1", "yes")

    def public(self) -> dict[str, Any]:
        values = self.all()
        result: dict[str, Any] = {}
        for key, default in PUBLIC_DEFAULTS.items():
            raw = values.get(key, default)
            result[key] = raw.strip().lower() in ("true", "1", "yes") if key in FLAG_KEYS else raw
        return result


# ── Settings actions ───────────────────────────────────────

def get_public_settings() -> dict[str, Any]:
    return ok(settings=SettingsStore().public())


def get_settings() -> dict[str, Any]:
    """Teacher view: public settings plus whether a teacher PIN exists."""
    settings = SettingsStore()
    return ok(settings=settings.public(), hasTeacherPin=bool(settings.get(TEACHER_PIN_KEY)))


@with_write_lock
def _update_locked(changes: dict[str, str]) -> dict[str, Any]:
    settings = SettingsStore()
    for key, value in changes.items():
        settings.set(key, value)
    return ok(settings=settings.public())


def update_settings(values: Any) -> dict[str, Any]:
    """Change recognised public keys; anything else is rejected."""
    if not isinstance(values, dict) or not values:
        return fail("Settings must be a non-empty object.", field="settings")
    unknown = sorted(k for k in values if k not in PUBLIC_DEFAULTS)
    if unknown:
        return fail(f"Unknown setting: {', '.join(unknown)}", field="settings")

    changes: dict[str, str] = {}
    for key, value in values.items():
        if key in FLAG_KEYS:
            if not isinstance(value, bool):
                return fail(f"{key} must be true or false.", field=key)
            changes[key] = "true" if value else "false"
        else:
            text = str(value if value is not None else "").strip()
            if len(text) > MAX_VALUE_CHARS:
                return fail(f"{key} must be at most {MAX_VALUE_CHARS} characters.", field=key)
            changes[key] = text

    result = _update_locked(changes)
    if result["success"]:
        log_event("settings_update", "teacher", f"keys={','.join(sorted(changes))}")
    return result
