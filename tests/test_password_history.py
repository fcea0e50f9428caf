"""Tests for password reuse detection and history pruning."""

import pytest

from adoptly.service.hashing import hash_password
from adoptly.service.password_history import PasswordHistoryGuard
from adoptly.storage.memory import MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def guard(store):
    return PasswordHistoryGuard(store, history_size=5)


class TestPasswordReuse:
    def test_recorded_password_is_reused(self, guard):
        guard.record_password("id-1", hash_password("Senha@123"))
        assert guard.is_password_reused("id-1", "Senha@123")
        assert not guard.is_password_reused("id-1", "Outra@456")

    def test_history_is_per_identity(self, guard):
        guard.record_password("id-1", hash_password("Senha@123"))
        assert not guard.is_password_reused("id-2", "Senha@123")

    def test_only_last_five_are_remembered(self, guard):
        passwords = [f"Senha@{n}x" for n in range(6)]
        for password in passwords:
            guard.record_password("id-1", hash_password(password))

        assert guard.history_count("id-1") == 5
        # the oldest dropped out of the window
        assert not guard.is_password_reused("id-1", passwords[0])
        for password in passwords[1:]:
            assert guard.is_password_reused("id-1", password)

    def test_clear_history(self, guard):
        guard.record_password("id-1", hash_password("Senha@123"))
        assert guard.clear_history("id-1") == 1
        assert guard.history_count("id-1") == 0
        assert not guard.is_password_reused("id-1", "Senha@123")


class TestFailOpen:
    def test_store_failure_allows_password(self):
        class BrokenStore(MemoryStore):
            def list_password_history(self, identity_id, limit=None):
                raise ConnectionError("history store offline")

        guard = PasswordHistoryGuard(BrokenStore())
        assert guard.is_password_reused("id-1", "Senha@123") is False
