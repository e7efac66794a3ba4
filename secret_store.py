"""Credential-secret store for the AI provider key.

Kept apart from the row store so the key never appears in sheet exports or
backups. Backed by a small JSON file created with owner-only permissions.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from flask import current_app

logger = logging.getLogger(__name__)

AI_KEY_PROPERTY = "GEMINI_API_KEY"

_file_lock = threading.Lock()


class SecretStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> dict[str, str]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.error("Secret store unreadable (%s): %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, self.path)

    def get(self, name: str) -> str | None:
        with _file_lock:
            return self._read().get(name) or None

    def set(self, name: str, value: str) -> None:
        with _file_lock:
            data = self._read()
            data[name] = value
            self._write(data)

    def delete(self, name: str) -> bool:
        with _file_lock:
            data = self._read()
            if name not in data:
                return False
            del data[name]
            self._write(data)
            return True

    def exists(self, name: str) -> bool:
        return self.get(name) is not None


def get_secret_store() -> SecretStore:
    return SecretStore(current_app.config["SECRET_STORE_PATH"])
