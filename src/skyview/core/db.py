# Core Module: Central SQLite Connection Helper
#
# Every SkyView SQLite database opens its connections through `connect()`
# instead of raw `sqlite3.connect()`. This ensures:
#
#   - WAL journal mode (concurrent readers + one writer)
#   - busy_timeout so contended writes fail with an error instead of hanging
#   - foreign_keys enforcement on every connection
#
# The vault store runs its own transactions (BEGIN IMMEDIATE / COMMIT), so it
# asks for autocommit mode with isolation_level=None.

import sqlite3
from pathlib import Path
from typing import Optional, Union

DEFAULT_TIMEOUT_SECONDS = 5.0


def connect(
    db_path: Union[str, Path],
    *,
    row_factory: bool = False,
    check_same_thread: bool = True,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    isolation_level: Optional[str] = "",
) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs.

    Args:
        db_path: Path to the database file.
        row_factory: If True, set conn.row_factory = sqlite3.Row.
        check_same_thread: Passed to sqlite3.connect().
        timeout: Seconds to wait on a locked database before raising
            sqlite3.OperationalError. Also applied as busy_timeout.
        isolation_level: Passed to sqlite3.connect(). None = autocommit,
            callers then manage BEGIN/COMMIT themselves.

    Returns:
        sqlite3.Connection with WAL mode, busy_timeout, and foreign_keys.
    """
    conn = sqlite3.connect(
        str(db_path),
        check_same_thread=check_same_thread,
        timeout=timeout,
        isolation_level=isolation_level,
    )
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout={int(timeout * 1000)}")
    conn.execute("PRAGMA foreign_keys=ON")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn


def delete_expired(
    conn: sqlite3.Connection, table: str, column: str, cutoff: int
) -> int:
    """Delete rows whose `column` timestamp is strictly older than `cutoff`.

    Shared by the trash sweep and the weather caches. `table` and `column`
    come from module constants, never from user input.

    Returns:
        Number of rows deleted (0 when nothing had expired).
    """
    cur = conn.execute(f"DELETE FROM {table} WHERE {column} < ?", (cutoff,))
    return cur.rowcount
