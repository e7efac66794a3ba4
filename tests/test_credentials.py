"""Tests for salted credential hashing."""

from __future__ import annotations

import hashlib

import pytest

from credentials import (
    MissingSaltError,
    digests_match,
    generate_salt,
    get_salt,
    hash_password,
    hash_pin,
    hash_secret,
    hash_teacher_pin,
    new_token,
)


class TestHashing:
    def test_sha256_of_salt_then_secret(self):
        expected = hashlib.sha256(b"salt123456").hexdigest()
        assert hash_secret("123456", "salt") == expected

    def test_deterministic_for_fixed_salt(self):
        assert hash_pin("123456", "s1") == hash_pin("123456", "s1")

    def test_salt_changes_digest(self):
        assert hash_pin("123456", "s1") != hash_pin("123456", "s2")

    def test_roles_are_separated(self):
        salt = "s"
        assert len({hash_pin("1234", salt), hash_teacher_pin("1234", salt), hash_password("1234", salt)}) == 3

    def test_generated_salts_differ(self):
        assert generate_salt() != generate_salt()
        assert len(generate_salt()) == 32


class TestDigestsMatch:
    def test_equal(self):
        assert digests_match("abc", "abc")

    def test_different(self):
        assert not digests_match("abc", "abd")

    def test_empty_never_matches(self):
        assert not digests_match("", "")
        assert not digests_match("abc", "")


def test_persisted_salt_is_reused(app):
    salt = get_salt()
    assert salt == get_salt()
    assert hash_pin("123456") == hash_pin("123456", salt)


def test_missing_salt_raises_instead_of_generating(app):
    from settings_store import SALT_KEY, SettingsStore

    SettingsStore().delete(SALT_KEY)
    with pytest.raises(MissingSaltError):
        get_salt()
    assert not SettingsStore().get(SALT_KEY)


def test_initialize_storage_restores_missing_salt(app):
    from bootstrap import initialize_storage
    from settings_store import SALT_KEY, SettingsStore

    SettingsStore().delete(SALT_KEY)
    initialize_storage()
    salt = get_salt()
    assert salt
    initialize_storage()
    assert get_salt() == salt


def test_tokens_are_unique():
    tokens = {new_token() for _ in range(100)}
    assert len(tokens) == 100
