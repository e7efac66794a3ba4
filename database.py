"""
SQLite connection layer backing the sheet-style row store.

Uses raw sqlite3 with WAL mode and parameterized queries. Every sheet lives
in the same two tables: ``sheets`` holds each sheet's header and
``sheet_rows`` holds the data rows, ordered by a 1-based position.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from flask import current_app, g


SCHEMA = """
CREATE TABLE IF NOT EXISTS sheets (
    name TEXT PRIMARY KEY,
    header TEXT NOT NULL
);

-- position is 1-based within a sheet; deletes shift later rows down
CREATE TABLE IF NOT EXISTS sheet_rows (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sheet TEXT NOT NULL,
    position INTEGER NOT NULL,
    cells TEXT NOT NULL DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS idx_sheet_rows_position ON sheet_rows(sheet, position);
"""


def connect(path: str) -> sqlite3.Connection:
    """Open a connection configured the way the row store expects."""
    conn = sqlite3.connect(path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def get_db() -> sqlite3.Connection:
    """Return a DB connection from Flask g, creating if needed."""
    if "db" not in g:
        db_path = current_app.config.get("DATABASE", str(Path(__file__).parent / "classroom.db"))
        g.db = connect(db_path)
    return g.db


def close_db(e=None) -> None:
    """Teardown handler — close DB connection."""
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db() -> None:
    """Execute schema DDL to create the sheet tables."""
    db = get_db()
    db.executescript(SCHEMA)
    db.commit()


def init_app(app) -> None:
    """Register teardown and auto-init on first request."""
    app.teardown_appcontext(close_db)

    @app.before_request
    def _ensure_db():
        if not getattr(app, "_db_initialized", False):
            from bootstrap import initialize_storage

            init_db()
            initialize_storage()
            app._db_initialized = True
