"""Tests for the file-backed credential-secret store."""

from __future__ import annotations

import os
import stat

from secret_store import SecretStore


def test_round_trip(tmp_path):
    store = SecretStore(tmp_path / "secrets.json")
    assert store.get("K") is None
    store.set("K", "value")
    assert store.get("K") == "value"
    assert store.exists("K")


def test_delete(tmp_path):
    store = SecretStore(tmp_path / "secrets.json")
    store.set("K", "value")
    assert store.delete("K") is True
    assert store.delete("K") is False
    assert not store.exists("K")


def test_file_is_owner_only(tmp_path):
    path = tmp_path / "nested" / "secrets.json"
    SecretStore(path).set("K", "value")
    mode = stat.S_IMODE(os.stat(path).st_mode)
    assert mode & (stat.S_IRWXG | stat.S_IRWXO) == 0


def test_unreadable_file_is_empty(tmp_path):
    path = tmp_path / "secrets.json"
    path.write_text("{broken")
    store = SecretStore(path)
    assert store.get("K") is None
    store.set("K", "v")
    assert store.get("K") == "v"
