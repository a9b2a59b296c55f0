"""Tests for the vault key manager: lifecycle, lockout, auto-lock, listeners."""

import sqlite3
import threading

import pytest

from conftest import MASTER_PASSWORD, TEST_ITERATIONS, FakeClock
from skyview.vault import (
    AuthError,
    KeyManager,
    UnlockPrompt,
    VaultLocked,
    VaultState,
    WeakCredential,
    unlock_prompt,
)

NEW_PASSWORD = "Battery-Staple-42"


@pytest.fixture
def clock():
    return FakeClock(start=1000.0)


@pytest.fixture
def km(vault_path, clock):
    manager = KeyManager(vault_path, iterations=TEST_ITERATIONS, clock=clock)
    manager.initialize(MASTER_PASSWORD)
    return manager


class TestInitialize:

    def test_starts_locked_and_uninitialized(self, vault_path):
        manager = KeyManager(vault_path, iterations=TEST_ITERATIONS)
        assert manager.state == VaultState.LOCKED
        assert manager.is_initialized() is False

    def test_initialize_keeps_vault_locked(self, km):
        assert km.is_initialized() is True
        assert km.is_unlocked() is False

    def test_weak_credential_rejected(self, vault_path):
        manager = KeyManager(vault_path, iterations=TEST_ITERATIONS)
        with pytest.raises(WeakCredential):
            manager.initialize("weak")
        assert manager.is_initialized() is False

    def test_cannot_initialize_twice(self, km):
        with pytest.raises(AuthError):
            km.initialize(NEW_PASSWORD)

    def test_credential_not_stored(self, km, vault_path):
        conn = sqlite3.connect(str(vault_path))
        values = [row[0] for row in conn.execute("SELECT value FROM vault_config")]
        conn.close()
        assert not any(MASTER_PASSWORD in value for value in values)

    def test_unlock_uninitialized_vault(self, vault_path):
        manager = KeyManager(vault_path, iterations=TEST_ITERATIONS)
        with pytest.raises(AuthError):
            manager.unlock(MASTER_PASSWORD)


class TestUnlockLock:

    def test_unlock_and_lock(self, km):
        km.unlock(MASTER_PASSWORD)
        assert km.state == VaultState.UNLOCKED
        assert len(km.require_key()) == 32
        km.lock()
        assert km.state == VaultState.LOCKED

    def test_require_key_while_locked(self, km):
        with pytest.raises(VaultLocked):
            km.require_key()

    def test_lock_is_idempotent(self, km):
        km.lock()
        km.lock()
        assert km.state == VaultState.LOCKED

    def test_same_key_across_unlocks(self, km):
        km.unlock(MASTER_PASSWORD)
        first = km.require_key()
        km.lock()
        km.unlock(MASTER_PASSWORD)
        assert km.require_key() == first

    def test_new_instance_unlocks_existing_vault(self, km, vault_path):
        km.unlock(MASTER_PASSWORD)
        key = km.require_key()
        other = KeyManager(vault_path, iterations=TEST_ITERATIONS)
        other.unlock(MASTER_PASSWORD)
        assert other.require_key() == key

    def test_wrong_credential(self, km):
        with pytest.raises(AuthError):
            km.unlock("Wrong-Password-1")
        assert km.state == VaultState.LOCKED
        assert km.failed_attempts == 1

    def test_corrupted_canary(self, km, vault_path):
        conn = sqlite3.connect(str(vault_path))
        conn.execute(
            "UPDATE vault_config SET value = ? WHERE key = 'verify_blob'",
            ("AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA",),
        )
        conn.commit()
        conn.close()
        with pytest.raises(AuthError, match="Corrupted"):
            km.unlock(MASTER_PASSWORD)


class TestLockout:

    def test_lockout_blocks_correct_credential(self, km, clock):
        with pytest.raises(AuthError):
            km.unlock("Wrong-Password-1")
        with pytest.raises(AuthError, match="Too many failed attempts"):
            km.unlock(MASTER_PASSWORD)
        assert km.lockout_remaining() == pytest.approx(1.0)

    def test_lockout_expires(self, km, clock):
        with pytest.raises(AuthError):
            km.unlock("Wrong-Password-1")
        clock.advance(1.5)
        km.unlock(MASTER_PASSWORD)
        assert km.is_unlocked()
        assert km.failed_attempts == 0
        assert km.lockout_remaining() == 0.0

    def test_backoff_doubles_and_caps(self, km, clock):
        delays = []
        for _ in range(7):
            with pytest.raises(AuthError):
                km.unlock("Wrong-Password-1")
            delays.append(km.lockout_remaining())
            clock.advance(100)
        assert delays == [1, 2, 4, 8, 16, 16, 16]

    def test_concurrent_failures_are_all_counted(self, km):
        wrong = []
        start = threading.Barrier(6)

        def attempt():
            start.wait()
            try:
                km.unlock("Wrong-Password-1")
            except AuthError as e:
                if "Incorrect master password" in str(e):
                    wrong.append(e)

        threads = [threading.Thread(target=attempt) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert km.failed_attempts == len(wrong)
        assert km.lockout_remaining() == min(2 ** (len(wrong) - 1), 16)


class TestChangeCredential:

    def test_change_keeps_data_key(self, km):
        km.unlock(MASTER_PASSWORD)
        key = km.require_key()
        km.change_credential(MASTER_PASSWORD, NEW_PASSWORD)
        km.lock()

        km.unlock(NEW_PASSWORD)
        assert km.require_key() == key

    def test_old_credential_rejected_after_change(self, km):
        km.change_credential(MASTER_PASSWORD, NEW_PASSWORD)
        with pytest.raises(AuthError):
            km.unlock(MASTER_PASSWORD)

    def test_change_with_wrong_old_credential(self, km, clock):
        with pytest.raises(AuthError):
            km.change_credential("Wrong-Password-1", NEW_PASSWORD)
        clock.advance(2)
        km.unlock(MASTER_PASSWORD)

    def test_change_to_weak_credential(self, km):
        with pytest.raises(WeakCredential):
            km.change_credential(MASTER_PASSWORD, "weak")


class TestAutoLock:

    def test_locks_after_idle(self, km, clock):
        km.unlock(MASTER_PASSWORD)
        clock.advance(299)
        assert km.lock_if_idle(300) is False
        clock.advance(1)
        assert km.lock_if_idle(300) is True
        assert km.state == VaultState.LOCKED

    def test_activity_resets_idle(self, km, clock):
        km.unlock(MASTER_PASSWORD)
        clock.advance(200)
        km.require_key()
        clock.advance(200)
        assert km.lock_if_idle(300) is False

    def test_zero_timeout_disables(self, km, clock):
        km.unlock(MASTER_PASSWORD)
        clock.advance(10_000)
        assert km.lock_if_idle(0) is False
        assert km.is_unlocked()


class TestListeners:

    def test_transitions_notify(self, km):
        seen = []
        km.add_state_listener(seen.append)
        km.unlock(MASTER_PASSWORD)
        km.unlock(MASTER_PASSWORD)  # already unlocked: no second event
        km.lock()
        km.lock()
        assert seen == [VaultState.UNLOCKED, VaultState.LOCKED]

    def test_failing_listener_does_not_block_transition(self, km):
        def broken(state):
            raise RuntimeError("boom")

        seen = []
        km.add_state_listener(broken)
        km.add_state_listener(seen.append)
        km.unlock(MASTER_PASSWORD)
        assert km.is_unlocked()
        assert seen == [VaultState.UNLOCKED]

    def test_remove_listener(self, km):
        seen = []
        km.add_state_listener(seen.append)
        km.remove_state_listener(seen.append)
        km.unlock(MASTER_PASSWORD)
        assert seen == []


class _Gate:
    def __init__(self, answer):
        self.answer = answer

    def authenticate(self):
        return self.answer


class _Prefs:
    def __init__(self, initialized=True, biometric=False):
        self.initialized = initialized
        self.biometric = biometric

    def vault_initialized(self):
        return self.initialized

    def biometric_enabled(self):
        return self.biometric


class TestGateAndPrompt:

    def test_unlock_with_gate(self, km):
        km.unlock_with(_Gate(MASTER_PASSWORD))
        assert km.is_unlocked()

    def test_cancelled_gate(self, km):
        with pytest.raises(AuthError):
            km.unlock_with(_Gate(None))
        assert km.state == VaultState.LOCKED

    def test_prompt_password(self, km):
        assert unlock_prompt(_Prefs(), km) == UnlockPrompt.PASSWORD

    def test_prompt_biometric(self, km):
        assert unlock_prompt(_Prefs(biometric=True), km) == UnlockPrompt.BIOMETRIC

    def test_no_prompt_when_unlocked(self, km):
        km.unlock(MASTER_PASSWORD)
        assert unlock_prompt(_Prefs(), km) is None

    def test_no_prompt_before_setup(self, vault_path):
        manager = KeyManager(vault_path, iterations=TEST_ITERATIONS)
        assert unlock_prompt(_Prefs(initialized=False), manager) is None
