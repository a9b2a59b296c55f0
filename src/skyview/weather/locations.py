# Weather - Saved Locations
#
# Up to five named coordinates the user can switch between quickly.
# When any locations exist exactly one of them is the default; swapping the
# default is a single transaction so readers never see zero or two.

import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from ..core import EventSeverity, EventType, get_audit_logger
from ..core.config import DEFAULT_DB_TIMEOUT
from ..core.db import connect as db_connect
from ..vault.errors import LocationLimitReached, NotFound, StorageError
from ..vault.models import now_ms

logger = logging.getLogger(__name__)

MAX_SAVED_LOCATIONS = 5


@dataclass
class SavedLocation:
    id: str
    name: str
    latitude: float
    longitude: float
    is_default: bool = False
    order_index: int = 0
    created_at: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "is_default": self.is_default,
            "order_index": self.order_index,
            "created_at": self.created_at,
        }


def _row_to_location(row: sqlite3.Row) -> SavedLocation:
    return SavedLocation(
        id=row["id"],
        name=row["name"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        is_default=bool(row["is_default"]),
        order_index=row["order_index"],
        created_at=row["created_at"],
    )


class SavedLocationStore:
    """Thread-safe SQLite store for saved locations.

    Args:
        db_path: weather_cache.db (unencrypted, shared with the caches).
        max_locations: Cap on saved locations.
    """

    def __init__(
        self,
        db_path: Path,
        max_locations: int = MAX_SAVED_LOCATIONS,
        db_timeout: float = DEFAULT_DB_TIMEOUT,
        clock: Callable[[], int] = now_ms,
    ):
        self._lock = threading.RLock()
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_timeout = db_timeout
        self._clock = clock
        self.max_locations = max_locations
        self._init_database()

    def _get_conn(self) -> sqlite3.Connection:
        return db_connect(self._db_path, row_factory=True, timeout=self._db_timeout)

    def _init_database(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS saved_locations (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    latitude REAL NOT NULL,
                    longitude REAL NOT NULL,
                    is_default INTEGER NOT NULL DEFAULT 0,
                    order_index INTEGER NOT NULL DEFAULT 0,
                    created_at INTEGER NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_locations_default ON saved_locations(is_default)"
            )
            conn.commit()
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def add_location(
        self,
        name: str,
        latitude: float,
        longitude: float,
        make_default: bool = False,
    ) -> SavedLocation:
        """
        Save a location. The first saved location becomes the default.

        Raises:
            LocationLimitReached: max_locations already saved
        """
        with self._lock:
            try:
                conn = self._get_conn()
                try:
                    with conn:
                        count, next_index = conn.execute(
                            "SELECT COUNT(*), COALESCE(MAX(order_index) + 1, 0) FROM saved_locations"
                        ).fetchone()
                        if count >= self.max_locations:
                            raise LocationLimitReached(
                                f"At most {self.max_locations} locations can be saved"
                            )
                        location = SavedLocation(
                            id=str(uuid.uuid4()),
                            name=name,
                            latitude=latitude,
                            longitude=longitude,
                            is_default=make_default or count == 0,
                            order_index=next_index,
                            created_at=self._clock(),
                        )
                        if location.is_default:
                            conn.execute("UPDATE saved_locations SET is_default = 0")
                        conn.execute(
                            """INSERT INTO saved_locations
                               (id, name, latitude, longitude, is_default, order_index, created_at)
                               VALUES (?, ?, ?, ?, ?, ?, ?)""",
                            (
                                location.id,
                                location.name,
                                location.latitude,
                                location.longitude,
                                int(location.is_default),
                                location.order_index,
                                location.created_at,
                            ),
                        )
                finally:
                    conn.close()
            except sqlite3.Error as e:
                raise StorageError(f"Cannot save location: {e}") from e
        return location

    def rename_location(self, location_id: str, name: str) -> SavedLocation:
        with self._lock:
            try:
                conn = self._get_conn()
                try:
                    with conn:
                        cur = conn.execute(
                            "UPDATE saved_locations SET name = ? WHERE id = ?",
                            (name, location_id),
                        )
                        if cur.rowcount == 0:
                            raise NotFound("location", location_id)
                        row = conn.execute(
                            "SELECT * FROM saved_locations WHERE id = ?", (location_id,)
                        ).fetchone()
                finally:
                    conn.close()
            except sqlite3.Error as e:
                raise StorageError(f"Cannot rename location: {e}") from e
        return _row_to_location(row)

    def set_default_location(self, location_id: str) -> None:
        """Make location_id the only default, atomically."""
        with self._lock:
            try:
                conn = self._get_conn()
                try:
                    with conn:
                        exists = conn.execute(
                            "SELECT 1 FROM saved_locations WHERE id = ?", (location_id,)
                        ).fetchone()
                        if exists is None:
                            raise NotFound("location", location_id)
                        conn.execute("UPDATE saved_locations SET is_default = 0")
                        conn.execute(
                            "UPDATE saved_locations SET is_default = 1 WHERE id = ?",
                            (location_id,),
                        )
                finally:
                    conn.close()
            except sqlite3.Error as e:
                raise StorageError(f"Cannot set default location: {e}") from e

        get_audit_logger().log_event(
            event_type=EventType.LOCATION_DEFAULT_CHANGED,
            severity=EventSeverity.INFO,
            message="Default location changed",
            details={"location_id": location_id},
        )

    def delete_location(self, location_id: str) -> None:
        """Remove a location. Deleting the default promotes the first remaining one."""
        with self._lock:
            try:
                conn = self._get_conn()
                try:
                    with conn:
                        row = conn.execute(
                            "SELECT is_default FROM saved_locations WHERE id = ?",
                            (location_id,),
                        ).fetchone()
                        if row is None:
                            raise NotFound("location", location_id)
                        conn.execute("DELETE FROM saved_locations WHERE id = ?", (location_id,))
                        if row["is_default"]:
                            conn.execute(
                                """UPDATE saved_locations SET is_default = 1
                                   WHERE id = (SELECT id FROM saved_locations
                                               ORDER BY order_index, created_at LIMIT 1)"""
                            )
                finally:
                    conn.close()
            except sqlite3.Error as e:
                raise StorageError(f"Cannot delete location: {e}") from e

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def list_locations(self) -> List[SavedLocation]:
        with self._lock:
            conn = self._get_conn()
            try:
                rows = conn.execute(
                    "SELECT * FROM saved_locations ORDER BY order_index, created_at"
                ).fetchall()
            finally:
                conn.close()
        return [_row_to_location(row) for row in rows]

    def get_location(self, location_id: str) -> Optional[SavedLocation]:
        with self._lock:
            conn = self._get_conn()
            try:
                row = conn.execute(
                    "SELECT * FROM saved_locations WHERE id = ?", (location_id,)
                ).fetchone()
            finally:
                conn.close()
        return _row_to_location(row) if row else None

    def get_default_location(self) -> Optional[SavedLocation]:
        with self._lock:
            conn = self._get_conn()
            try:
                row = conn.execute(
                    "SELECT * FROM saved_locations WHERE is_default = 1 LIMIT 1"
                ).fetchone()
            finally:
                conn.close()
        return _row_to_location(row) if row else None

    def count(self) -> int:
        with self._lock:
            conn = self._get_conn()
            try:
                return conn.execute("SELECT COUNT(*) FROM saved_locations").fetchone()[0]
            finally:
                conn.close()
