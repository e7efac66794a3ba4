"""Sheet-style row store.

Each named sheet has a fixed ordered column schema and an implicit header
row. Data rows are addressed by a 1-based row index (header excluded) that is
stable only until an earlier row is deleted: deletion shifts every later row
up by one. Columns are 1-based as well.

There are no multi-call transactions. A logical update spanning several
calls is only atomic with respect to other writers when the caller holds the
write lock (see write_lock.py).
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Sequence
from contextlib import contextmanager
from typing import Any, Iterator

from database import get_db

logger = logging.getLogger(__name__)


STUDENTS = "Students"
SETTINGS = "Settings"
TEACHERS = "Teachers"
AI_SESSIONS = "AISessions"
AI_USAGE = "AIUsage"


def works_sheet(step: int) -> str:
    return f"Works{step}"


WORK_STEPS = (1, 2, 3)

SHEET_COLUMNS: dict[str, list[str]] = {
    STUDENTS: ["name", "number", "pinHash", "token", "createdAt", "lastAccessAt", "status"],
    SETTINGS: ["key", "value"],
    TEACHERS: ["email", "name", "passwordHash", "role", "status", "registeredAt", "approvedAt", "lastAccessAt"],
    AI_SESSIONS: [
        "sessionId", "studentName", "studentNumber", "step", "title",
        "messagesJson", "messageCount", "createdAt", "updatedAt",
    ],
    AI_USAGE: ["date", "studentName", "studentNumber", "count"],
}
for _step in WORK_STEPS:
    SHEET_COLUMNS[works_sheet(_step)] = [
        "studentName", "studentNumber", "workDataJson", "createdAt",
        "updatedAt", "isComplete", "status", "workId",
    ]


def column(sheet: str, name: str) -> int:
    """1-based column index of ``name`` in ``sheet``."""
    return SHEET_COLUMNS[sheet].index(name) + 1


class RowStoreError(Exception):
    """The backing store rejected or failed an operation."""


class RowStore:
    """Row-oriented access to the named sheets.

    ``connect`` returns the sqlite connection to use; by default the
    request-scoped connection from database.get_db().
    """

    def __init__(self, connect: Callable[[], sqlite3.Connection] = get_db):
        self._connect = connect

    # ── Helpers ────────────────────────────────────────────

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        db = self._connect()
        try:
            db.execute("BEGIN IMMEDIATE")
            yield db
        except sqlite3.Error as e:
            db.rollback()
            raise RowStoreError(str(e)) from e
        except Exception:
            db.rollback()
            raise
        else:
            db.commit()

    @staticmethod
    def _require_sheet(db: sqlite3.Connection, sheet: str) -> None:
        row = db.execute("SELECT 1 FROM sheets WHERE name = ?", (sheet,)).fetchone()
        if row is None:
            raise RowStoreError(f"Unknown sheet: {sheet}")

    @staticmethod
    def _load_cells(db: sqlite3.Connection, sheet: str, row: int) -> tuple[int, list[Any]]:
        found = db.execute(
            "SELECT id, cells FROM sheet_rows WHERE sheet = ? AND position = ?",
            (sheet, row),
        ).fetchone()
        if found is None:
            raise RowStoreError(f"{sheet}: row {row} does not exist")
        return found["id"], json.loads(found["cells"])

    @staticmethod
    def _dump(cells: Sequence[Any]) -> str:
        return json.dumps(list(cells), ensure_ascii=False, default=str)

    # ── Contract ───────────────────────────────────────────

    def ensure_sheet(self, sheet: str, header: Sequence[str] | None = None) -> None:
        """Create ``sheet`` if absent and (re)establish its fixed header."""
        header = list(header if header is not None else SHEET_COLUMNS[sheet])
        with self._write() as db:
            db.execute(
                "INSERT INTO sheets (name, header) VALUES (?, ?) "
                "ON CONFLICT(name) DO UPDATE SET header = excluded.header",
                (sheet, self._dump(header)),
            )

    def header(self, sheet: str) -> list[str]:
        db = self._connect()
        row = db.execute("SELECT header FROM sheets WHERE name = ?", (sheet,)).fetchone()
        if row is None:
            raise RowStoreError(f"Unknown sheet: {sheet}")
        return json.loads(row["header"])

    def list_rows(self, sheet: str) -> list[list[Any]]:
        """All data rows in order, header excluded."""
        db = self._connect()
        try:
            self._require_sheet(db, sheet)
            rows = db.execute(
                "SELECT cells FROM sheet_rows WHERE sheet = ? ORDER BY position",
                (sheet,),
            ).fetchall()
        except sqlite3.Error as e:
            raise RowStoreError(str(e)) from e
        width = len(SHEET_COLUMNS.get(sheet, ()))
        result = []
        for r in rows:
            cells = json.loads(r["cells"])
            if len(cells) < width:
                cells.extend([""] * (width - len(cells)))
            result.append(cells)
        return result

    def append_row(self, sheet: str, values: Sequence[Any]) -> int:
        """Append a row and return its 1-based index."""
        with self._write() as db:
            self._require_sheet(db, sheet)
            (last,) = db.execute(
                "SELECT COALESCE(MAX(position), 0) FROM sheet_rows WHERE sheet = ?",
                (sheet,),
            ).fetchone()
            db.execute(
                "INSERT INTO sheet_rows (sheet, position, cells) VALUES (?, ?, ?)",
                (sheet, last + 1, self._dump(values)),
            )
        return last + 1

    def write_cell(self, sheet: str, row: int, col: int, value: Any) -> None:
        self.write_range(sheet, row, col, [value])

    def write_range(self, sheet: str, row: int, col_start: int, values: Sequence[Any]) -> None:
        """Overwrite contiguous columns starting at ``col_start`` in one call."""
        if col_start < 1:
            raise RowStoreError(f"Invalid column {col_start}")
        with self._write() as db:
            row_id, cells = self._load_cells(db, sheet, row)
            end = col_start - 1 + len(values)
            if len(cells) < end:
                cells.extend([""] * (end - len(cells)))
            cells[col_start - 1:end] = list(values)
            db.execute("UPDATE sheet_rows SET cells = ? WHERE id = ?", (self._dump(cells), row_id))

    def delete_row(self, sheet: str, row: int) -> None:
        """Delete a row; every later row's index shifts down by one."""
        with self._write() as db:
            row_id, _ = self._load_cells(db, sheet, row)
            db.execute("DELETE FROM sheet_rows WHERE id = ?", (row_id,))
            db.execute(
                "UPDATE sheet_rows SET position = position - 1 WHERE sheet = ? AND position > ?",
                (sheet, row),
            )
        logger.debug("Deleted %s row %d", sheet, row)


def get_row_store() -> RowStore:
    """Row store bound to the current app context's connection."""
    return RowStore()
