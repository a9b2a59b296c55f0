"""
Tests for the central SQLite connect helper and the shared expiry sweep.

Covers: core/db.connect() PRAGMAs, autocommit mode, busy_timeout,
delete_expired() cutoff semantics, WAL on every SkyView database.
"""

import sqlite3

import pytest

from skyview.core.db import connect as db_connect, delete_expired


class TestCoreDBConnect:
    """Verify the core connect() utility sets correct PRAGMAs."""

    def test_wal_mode_enabled(self, tmp_path):
        conn = db_connect(tmp_path / "test.db")
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        conn.close()

    def test_busy_timeout_follows_timeout(self, tmp_path):
        conn = db_connect(tmp_path / "test.db", timeout=2.5)
        assert conn.execute("PRAGMA busy_timeout").fetchone()[0] == 2500
        conn.close()

    def test_default_busy_timeout(self, tmp_path):
        conn = db_connect(tmp_path / "test.db")
        assert conn.execute("PRAGMA busy_timeout").fetchone()[0] == 5000
        conn.close()

    def test_foreign_keys_on(self, tmp_path):
        conn = db_connect(tmp_path / "test.db")
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        conn.close()

    def test_row_factory(self, tmp_path):
        plain = db_connect(tmp_path / "test.db")
        rows = db_connect(tmp_path / "test.db", row_factory=True)
        assert plain.row_factory is None
        assert rows.row_factory is sqlite3.Row
        plain.close()
        rows.close()

    def test_autocommit_mode(self, tmp_path):
        conn = db_connect(tmp_path / "test.db", isolation_level=None)
        conn.execute("CREATE TABLE t (x INTEGER)")
        conn.execute("INSERT INTO t VALUES (1)")
        assert not conn.in_transaction
        conn.close()


class TestDeleteExpired:

    @pytest.fixture
    def conn(self, tmp_path):
        conn = db_connect(tmp_path / "expiry.db")
        conn.execute("CREATE TABLE entries (id INTEGER PRIMARY KEY, stamped_at INTEGER)")
        conn.executemany(
            "INSERT INTO entries (stamped_at) VALUES (?)", [(100,), (200,), (300,)]
        )
        conn.commit()
        yield conn
        conn.close()

    def test_deletes_strictly_older(self, conn):
        assert delete_expired(conn, "entries", "stamped_at", 200) == 1
        remaining = [r[0] for r in conn.execute("SELECT stamped_at FROM entries ORDER BY 1")]
        assert remaining == [200, 300]

    def test_nothing_expired_returns_zero(self, conn):
        assert delete_expired(conn, "entries", "stamped_at", 50) == 0

    def test_second_run_is_noop(self, conn):
        assert delete_expired(conn, "entries", "stamped_at", 1000) == 3
        assert delete_expired(conn, "entries", "stamped_at", 1000) == 0


class TestAllDatabasesUseWAL:

    def test_vault_database(self, store):
        conn = sqlite3.connect(str(store.vault_path))
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        conn.close()

    def test_weather_database(self, tmp_path):
        from skyview.weather import SavedLocationStore

        SavedLocationStore(tmp_path / "weather_cache.db")
        conn = sqlite3.connect(str(tmp_path / "weather_cache.db"))
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        conn.close()
