"""
Shared pytest fixtures for the SkyView test suite.

Autouse fixtures isolate tests from live application data:
  - Audit logger   -> temp directory  (no test events in ./audit_logs)
  - Session token  -> reset           (API tests start without a token)

Vault fixtures use a low PBKDF2 iteration count so unlocks stay fast.
"""

import pytest

from skyview.vault import FolderManager, KeyManager, TrashManager, VaultQuery, VaultStore
from skyview.vault.changes import ChangeFeed

TEST_ITERATIONS = 1_000
MASTER_PASSWORD = "Correct-Horse-9"


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test."""
    import skyview.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _reset_session_token():
    import skyview.api.security as security_mod

    old_token = security_mod._SESSION_TOKEN
    security_mod._SESSION_TOKEN = None
    yield
    security_mod._SESSION_TOKEN = old_token


class FakeClock:
    """Manually advanced clock. Call it for the current reading."""

    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, amount):
        self.now += amount


@pytest.fixture
def vault_path(tmp_path):
    return tmp_path / "vault.db"


@pytest.fixture
def key_manager(vault_path):
    km = KeyManager(vault_path, iterations=TEST_ITERATIONS)
    km.initialize(MASTER_PASSWORD)
    return km


@pytest.fixture
def unlocked(key_manager):
    key_manager.unlock(MASTER_PASSWORD)
    yield key_manager
    key_manager.lock()


@pytest.fixture
def ms_clock():
    return FakeClock()


@pytest.fixture
def store(vault_path, unlocked, ms_clock):
    return VaultStore(vault_path, unlocked, feed=ChangeFeed(), clock=ms_clock)


@pytest.fixture
def folders(store):
    return FolderManager(store)


@pytest.fixture
def trash(store):
    return TrashManager(store)


@pytest.fixture
def query(store):
    return VaultQuery(store)
