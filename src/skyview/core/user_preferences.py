# User Preferences Store
# SQLite-backed key/value store for host application preferences.
# Uses the core.db connect helper like every other SkyView database.
#
# The vault core never owns these flags. It reads them through the
# VaultPreferences accessor handed to it at startup.

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from .config import DEFAULT_AUTO_LOCK_MINUTES

logger = logging.getLogger(__name__)

# Well-known preference keys
PREF_VAULT_INITIALIZED = "vault_initialized"
PREF_BIOMETRIC_ENABLED = "biometric_enabled"
PREF_AUTO_LOCK_TIMEOUT = "auto_lock_timeout"

DEFAULT_AUTO_LOCK_TIMEOUT = DEFAULT_AUTO_LOCK_MINUTES

_TRUE_VALUES = {"1", "true", "yes", "on"}


class UserPreferences:
    """SQLite key/value store for user preferences.

    Args:
        db_path: Path to SQLite file. Defaults to data/user_preferences.db.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = Path(db_path) if db_path else Path("data/user_preferences.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        from .db import connect as db_connect

        with db_connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_preferences (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        from .db import connect as db_connect

        return db_connect(self.db_path, row_factory=True)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a preference value by key. Returns default if not found."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM user_preferences WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return default
        return row["value"]

    def set(self, key: str, value: str) -> None:
        """Set a preference value (upsert)."""
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO user_preferences (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at""",
                (key, value, now),
            )
            conn.commit()

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        return value.strip().lower() in _TRUE_VALUES

    def set_bool(self, key: str, value: bool) -> None:
        self.set(key, "true" if value else "false")

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning("Preference %s is not an integer: %r", key, value)
            return default

    def get_all(self) -> Dict[str, str]:
        """Return all preferences as a dict."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key, value FROM user_preferences ORDER BY key"
            ).fetchall()
        return {row["key"]: row["value"] for row in rows}

    def delete(self, key: str) -> bool:
        """Delete a preference. Returns True if the key existed."""
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM user_preferences WHERE key = ?", (key,)
            )
            conn.commit()
            return cur.rowcount > 0


class VaultPreferences:
    """Read-only accessor over the flags the vault consumes at startup."""

    def __init__(self, prefs: UserPreferences):
        self._prefs = prefs

    def vault_initialized(self) -> bool:
        return self._prefs.get_bool(PREF_VAULT_INITIALIZED)

    def biometric_enabled(self) -> bool:
        return self._prefs.get_bool(PREF_BIOMETRIC_ENABLED)

    def auto_lock_timeout_minutes(self) -> int:
        return self._prefs.get_int(PREF_AUTO_LOCK_TIMEOUT, DEFAULT_AUTO_LOCK_TIMEOUT)
