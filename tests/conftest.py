"""
Test fixtures for the classroom story app.

Provides app (file-based SQLite in a temp dir, storage bootstrapped),
client, api and fake_redis fixtures plus small helpers for seeding
students and teachers. The AI provider is never called: tests patch
ai_helper.resilient_chat.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite and a bootstrapped row store."""
    from app import create_app

    app = create_app({
        "TESTING": True,
        "DATABASE": str(tmp_path / "test.db"),
        "SECRET_KEY": "test-secret-key",
        "SECRET_STORE_PATH": str(tmp_path / "secrets.json"),
        "WRITE_LOCK_TIMEOUT": 1,
        "WRITE_LOCK_LEASE": 5,
        "OWNER_EMAIL": "",
        "GOOGLE_API_KEY": "",
        "GOOGLE_OAUTH_CLIENT_ID": "",
    })

    with app.app_context():
        from bootstrap import initialize_storage
        from database import init_db

        init_db()
        initialize_storage()
        app._db_initialized = True
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def api(client):
    """POST an action envelope to /api and return the decoded JSON."""
    def call(action: str, **params):
        response = client.post("/api", json={"action": action, **params})
        assert response.status_code == 200
        return response.get_json()
    return call


@pytest.fixture
def fake_redis():
    import fakeredis

    return fakeredis.FakeRedis()


@pytest.fixture
def active_student(app):
    """Register 홍길동 (1) with PIN 123456; returns (name, number, token)."""
    from students import register_student

    result = register_student("홍길동", 1, "123456")
    assert result["success"], result
    return "홍길동", 1, result["student"]["token"]


@pytest.fixture
def admin(app):
    """An approved admin teacher with a password; returns the Caller."""
    from teachers import Caller, register_teacher

    result = register_teacher("admin@school.test", "Admin", "AdminPass1")
    assert result["success"], result
    return Caller(email="admin@school.test", role="admin", via="session")


@pytest.fixture
def teacher_session(app):
    """A teacher PIN session token (acts as admin)."""
    from teacher_auth import setup_teacher_pin, teacher_pin_login

    assert setup_teacher_pin("4321")["success"]
    result = teacher_pin_login("4321")
    assert result["success"], result
    return result["sessionToken"]
