"""One-time storage initialization.

Creates every sheet with its header, the credential salt and the default
settings rows, and provisions the configured owner as the first admin.
Safe to run repeatedly: existing rows are never overwritten.
"""

from __future__ import annotations

import logging

from flask import current_app

from credentials import generate_salt
from row_store import AI_SESSIONS, AI_USAGE, SETTINGS, STUDENTS, TEACHERS, WORK_STEPS, get_row_store, works_sheet
from settings_store import (
    PUBLIC_DEFAULTS,
    SALT_KEY,
    SCHEMA_VERSION,
    TEACHER_PIN_KEY,
    TEACHER_SESSION_KEY,
    VERSION_KEY,
    SettingsStore,
)
from teachers import provision_owner
from write_lock import get_write_lock, held

logger = logging.getLogger(__name__)

SHEETS = (STUDENTS, SETTINGS, TEACHERS, AI_SESSIONS, AI_USAGE) + tuple(works_sheet(s) for s in WORK_STEPS)


def initialize_storage() -> None:
    timeout = float(current_app.config.get("WRITE_LOCK_TIMEOUT", 10))
    with held(get_write_lock(), timeout):
        store = get_row_store()
        for sheet in SHEETS:
            store.ensure_sheet(sheet)

        settings = SettingsStore(store)
        existing = settings.all()
        if not existing.get(SALT_KEY):
            settings.set(SALT_KEY, generate_salt())
            logger.info("Generated credential salt")
        if existing.get(VERSION_KEY) != SCHEMA_VERSION:
            settings.set(VERSION_KEY, SCHEMA_VERSION)
        for key, default in PUBLIC_DEFAULTS.items():
            if key not in existing:
                settings.set(key, default)
        for key in (TEACHER_PIN_KEY, TEACHER_SESSION_KEY):
            if key not in existing:
                settings.set(key, "")

        owner = (current_app.config.get("OWNER_EMAIL") or "").strip().lower()
        if owner:
            provision_owner(owner, current_app.config.get("OWNER_NAME") or owner.split("@")[0])
    logger.info("Storage initialized (%d sheets)", len(SHEETS))
