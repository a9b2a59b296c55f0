# Vault - Key Manager
#
# Owns the vault's key material and the process-wide Locked/Unlocked state.
#
# Key material (table vault_config, same database file as the vault):
#   salt           PBKDF2 salt
#   iterations     PBKDF2 iteration count used when the vault was created
#   wrapped_key    random data key encrypted under the credential-derived key
#   verify_blob    canary plaintext encrypted under the data key
#
# The master credential is never stored. A wrong credential fails the
# AES-GCM tag check when unwrapping the data key.

import logging
import sqlite3
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Protocol

from cryptography.exceptions import InvalidTag

from ..core import EventSeverity, EventType, get_audit_logger
from ..core.config import DEFAULT_DB_TIMEOUT
from ..core.db import connect as db_connect
from .encryption import EncryptionService, verify_master_credential
from .errors import AuthError, StorageError, VaultLocked, WeakCredential

logger = logging.getLogger(__name__)

VAULT_FORMAT_VERSION = "2"

# Exponential unlock backoff cap (seconds)
MAX_LOCKOUT_SECONDS = 16


class VaultState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class UnlockPrompt(str, Enum):
    BIOMETRIC = "biometric"
    PASSWORD = "password"


class AuthenticationGate(Protocol):
    """External challenge (biometric prompt, passcode screen).

    Returns the master credential on success, None when the user cancels
    or the challenge fails.
    """

    def authenticate(self) -> Optional[str]:
        ...


class StartupPreferences(Protocol):
    def vault_initialized(self) -> bool:
        ...

    def biometric_enabled(self) -> bool:
        ...


StateListener = Callable[[VaultState], None]


class KeyManager:
    """
    Derives, holds and forgets the vault data key.

    State starts LOCKED. Only unlock() / lock() (and the idle auto-lock)
    transition it. Transitions happen under a lock and listeners are
    notified outside it, so a listener may call back into the vault.

    Security:
    - Data key lives only in memory while unlocked
    - Rate limiting on failed unlocks (1, 2, 4, 8, 16 second lockout)
    - Audit logging for every transition and failure
    """

    CANARY_PLAINTEXT = b"SKYVIEW_VAULT_OK"

    def __init__(
        self,
        vault_path: Path,
        iterations: int = EncryptionService.PBKDF2_ITERATIONS,
        db_timeout: float = DEFAULT_DB_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.vault_path = Path(vault_path)
        self.vault_path.parent.mkdir(parents=True, exist_ok=True)
        self.iterations = iterations
        self._db_timeout = db_timeout
        self._clock = clock

        self._lock = threading.Lock()
        self._state = VaultState.LOCKED
        self._data_key: Optional[bytes] = None
        self._last_activity = clock()
        self._listeners: List[StateListener] = []

        # Rate limiting for unlock attempts (prevent brute force)
        self.failed_attempts = 0
        self._lockout_until: Optional[float] = None

        self.logger = get_audit_logger()
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        return db_connect(self.vault_path, timeout=self._db_timeout)

    def _init_database(self) -> None:
        try:
            conn = self._connect()
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS vault_config (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                """)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open vault database: {e}") from e

    def _read_config(self) -> dict:
        try:
            conn = self._connect()
            try:
                rows = conn.execute("SELECT key, value FROM vault_config").fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read vault key material: {e}") from e
        return {key: value for key, value in rows}

    def _write_config(self, values: dict) -> None:
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.executemany(
                        "INSERT OR REPLACE INTO vault_config (key, value) VALUES (?, ?)",
                        list(values.items()),
                    )
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot write vault key material: {e}") from e

    # ── Lifecycle ────────────────────────────────────────────────────

    def is_initialized(self) -> bool:
        """True once key material has been created for this vault file."""
        return "wrapped_key" in self._read_config()

    def initialize(self, credential: str) -> None:
        """
        Create key material for a new vault. The vault stays locked.

        Raises:
            WeakCredential: credential fails strength rules
            AuthError: vault already initialized
            StorageError: key material could not be written
        """
        is_valid, error_msg = verify_master_credential(credential)
        if not is_valid:
            raise WeakCredential(error_msg)

        if self.is_initialized():
            raise AuthError("Vault already exists. Use unlock() instead.")

        salt = EncryptionService.generate_salt()
        data_key = EncryptionService.generate_key()
        self._write_config(self._key_material(credential, salt, data_key))

        self.logger.log_event(
            event_type=EventType.VAULT_CREATED,
            severity=EventSeverity.INFO,
            message="Vault initialized with master password",
        )

    def _key_material(self, credential: str, salt: bytes, data_key: bytes) -> dict:
        wrapping_key = EncryptionService.derive_key(credential, salt, self.iterations)
        encode = EncryptionService.encode_for_storage
        return {
            "salt": encode(salt),
            "iterations": str(self.iterations),
            "wrapped_key": encode(EncryptionService.wrap_key(data_key, wrapping_key)),
            "verify_blob": encode(EncryptionService.encrypt(self.CANARY_PLAINTEXT, data_key)),
            "created_at": datetime.now(timezone.utc).isoformat(),
            "version": VAULT_FORMAT_VERSION,
        }

    def _derive_data_key(self, credential: str) -> Optional[bytes]:
        """Unwrap the data key. Returns None when the credential is wrong."""
        config = self._read_config()
        if "wrapped_key" not in config:
            raise AuthError("Vault does not exist. Initialize vault first.")

        try:
            decode = EncryptionService.decode_from_storage
            salt = decode(config["salt"])
            iterations = int(config.get("iterations", self.iterations))
            wrapped = decode(config["wrapped_key"])
            verify_blob = decode(config["verify_blob"])
        except (KeyError, ValueError) as e:
            raise AuthError("Corrupted vault: key material unreadable") from e

        wrapping_key = EncryptionService.derive_key(credential, salt, iterations)
        try:
            data_key = EncryptionService.unwrap_key(wrapped, wrapping_key)
        except (InvalidTag, ValueError):
            return None

        try:
            canary = EncryptionService.decrypt(verify_blob, data_key)
        except (InvalidTag, ValueError) as e:
            raise AuthError("Corrupted vault: verification canary rejected") from e
        if canary != self.CANARY_PLAINTEXT:
            raise AuthError("Corrupted vault: verification canary mismatch")
        return data_key

    # ── Unlock / Lock ────────────────────────────────────────────────

    def unlock(self, credential: str) -> bytes:
        """
        Unlock the vault with the master credential and return the data key.

        Key derivation failure is terminal for this call. Nothing is
        retried here: the caller decides whether to ask again.

        Raises:
            AuthError: wrong credential, lockout in effect, corrupted keys
            StorageError: key material could not be read
        """
        with self._lock:
            now = self._clock()
            lockout_until = self._lockout_until
        if lockout_until is not None and now < lockout_until:
            remaining = int(lockout_until - now) + 1
            self.logger.log_event(
                event_type=EventType.VAULT_UNLOCK_FAILED,
                severity=EventSeverity.ALERT,
                message=f"Unlock attempt during lockout period ({remaining}s remaining)",
            )
            raise AuthError(f"Too many failed attempts. Please wait {remaining} seconds.")

        data_key = self._derive_data_key(credential)
        if data_key is None:
            self._handle_failed_unlock()

        with self._lock:
            previous = self._state
            self._data_key = data_key
            self._state = VaultState.UNLOCKED
            self._last_activity = self._clock()
            self.failed_attempts = 0
            self._lockout_until = None

        self.logger.log_event(
            event_type=EventType.VAULT_UNLOCKED,
            severity=EventSeverity.INFO,
            message="Vault unlocked successfully",
        )
        if previous != VaultState.UNLOCKED:
            self._fire_state_change(VaultState.UNLOCKED)
        return data_key

    def unlock_with(self, gate: AuthenticationGate) -> bytes:
        """Unlock using a credential supplied by an external challenge."""
        credential = gate.authenticate()
        if credential is None:
            self.logger.log_event(
                event_type=EventType.VAULT_UNLOCK_FAILED,
                severity=EventSeverity.INVESTIGATE,
                message="Authentication gate did not supply a credential",
            )
            raise AuthError("Authentication was not completed")
        return self.unlock(credential)

    def _handle_failed_unlock(self) -> None:
        """Rate-limited failure response for wrong credential attempts."""
        with self._lock:
            self.failed_attempts += 1
            attempt = self.failed_attempts
            delay_seconds = min(2 ** (attempt - 1), MAX_LOCKOUT_SECONDS)
            self._lockout_until = self._clock() + delay_seconds

        self.logger.log_event(
            event_type=EventType.VAULT_UNLOCK_FAILED,
            severity=EventSeverity.ALERT,
            message=f"Vault unlock failed: incorrect password (attempt {attempt}, {delay_seconds}s lockout)",
        )

        if attempt == 1:
            raise AuthError("Incorrect master password")
        raise AuthError(
            f"Incorrect master password. Please wait {delay_seconds} seconds before trying again."
        )

    def lockout_remaining(self) -> float:
        """Seconds until unlock attempts are accepted again (0 if none)."""
        with self._lock:
            if self._lockout_until is None:
                return 0.0
            return max(self._lockout_until - self._clock(), 0.0)

    def lock(self) -> None:
        """Forget the data key. Safe to call when already locked."""
        with self._lock:
            previous = self._state
            self._data_key = None
            self._state = VaultState.LOCKED

        if previous == VaultState.UNLOCKED:
            self.logger.log_event(
                event_type=EventType.VAULT_LOCKED,
                severity=EventSeverity.INFO,
                message="Vault locked",
            )
            self._fire_state_change(VaultState.LOCKED)

    @property
    def state(self) -> VaultState:
        with self._lock:
            return self._state

    def is_unlocked(self) -> bool:
        return self.state == VaultState.UNLOCKED

    def require_key(self) -> bytes:
        """Return the data key, or raise VaultLocked."""
        with self._lock:
            if self._state != VaultState.UNLOCKED or self._data_key is None:
                raise VaultLocked()
            self._last_activity = self._clock()
            return self._data_key

    # ── Credential change ────────────────────────────────────────────

    def change_credential(self, old_credential: str, new_credential: str) -> None:
        """
        Re-wrap the data key under a new credential.

        Item data stays encrypted under the same data key, so nothing else
        has to be re-encrypted.
        """
        is_valid, error_msg = verify_master_credential(new_credential)
        if not is_valid:
            raise WeakCredential(error_msg)

        data_key = self._derive_data_key(old_credential)
        if data_key is None:
            self._handle_failed_unlock()

        salt = EncryptionService.generate_salt()
        self._write_config(self._key_material(new_credential, salt, data_key))

        self.logger.log_event(
            event_type=EventType.VAULT_CREDENTIAL_CHANGED,
            severity=EventSeverity.INFO,
            message="Vault master password changed",
        )

    # ── Idle auto-lock ───────────────────────────────────────────────

    def touch(self) -> None:
        with self._lock:
            self._last_activity = self._clock()

    def lock_if_idle(self, timeout_seconds: float) -> bool:
        """Lock when no vault activity happened for timeout_seconds.

        A timeout of 0 or less disables auto-lock. Returns True if this
        call locked the vault.
        """
        if timeout_seconds <= 0:
            return False
        with self._lock:
            idle = self._clock() - self._last_activity
            should_lock = self._state == VaultState.UNLOCKED and idle >= timeout_seconds
        if should_lock:
            logger.info("Auto-locking vault after %.0fs idle", idle)
            self.lock()
        return should_lock

    # ── Listeners ────────────────────────────────────────────────────

    def add_state_listener(self, callback: StateListener) -> None:
        with self._lock:
            self._listeners.append(callback)

    def remove_state_listener(self, callback: StateListener) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _fire_state_change(self, new_state: VaultState) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(new_state)
            except Exception:
                logger.exception("Vault state listener failed")


def unlock_prompt(
    prefs: StartupPreferences, key_manager: KeyManager
) -> Optional[UnlockPrompt]:
    """Decide at startup whether (and how) to ask the user to unlock.

    Returns None when no prompt is needed: the vault is already unlocked,
    or it has not been set up yet (the host shows onboarding instead).
    """
    if key_manager.is_unlocked():
        return None
    if not (prefs.vault_initialized() and key_manager.is_initialized()):
        return None
    if prefs.biometric_enabled():
        return UnlockPrompt.BIOMETRIC
    return UnlockPrompt.PASSWORD
