"""Salted SHA-256 digests for PINs and passwords.

hash = sha256(salt + secret). One global salt, created once and kept in the
Settings sheet, is shared by every credential class; classes are separated
by a role prefix on the secret instead of by distinct salts.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

from settings_store import SALT_KEY, SettingsStore

logger = logging.getLogger(__name__)

STUDENT_PREFIX = ""
TEACHER_PIN_PREFIX = "teacher:"
TEACHER_PASSWORD_PREFIX = "teacher-pw:"


def generate_salt() -> str:
    return secrets.token_hex(16)


def hash_secret(secret: str, salt: str) -> str:
    return hashlib.sha256((salt + secret).encode("utf-8")).hexdigest()


def digests_match(candidate: str, stored: str) -> bool:
    """Constant-time comparison of two hex digests."""
    if not candidate or not stored:
        return False
    return hmac.compare_digest(candidate.encode(), stored.encode())


class MissingSaltError(RuntimeError):
    """The Settings sheet has no salt; storage was never initialized."""


def get_salt(settings: SettingsStore | None = None) -> str:
    """The persisted salt. Only ``initialize_storage`` creates it."""
    settings = settings or SettingsStore()
    salt = settings.get(SALT_KEY)
    if not salt:
        logger.error("Credential salt is missing; storage has not been initialized")
        raise MissingSaltError("credential salt is missing")
    return salt


def hash_pin(pin: str, salt: str | None = None) -> str:
    return hash_secret(STUDENT_PREFIX + pin, salt or get_salt())


def hash_teacher_pin(pin: str, salt: str | None = None) -> str:
    return hash_secret(TEACHER_PIN_PREFIX + pin, salt or get_salt())


def hash_password(password: str, salt: str | None = None) -> str:
    return hash_secret(TEACHER_PASSWORD_PREFIX + password, salt or get_salt())


def new_token() -> str:
    """High-entropy opaque token for QR login and bearer sessions."""
    return secrets.token_urlsafe(16)
