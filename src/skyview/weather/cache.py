# Weather - Current Conditions and Forecast Cache
#
# Short-lived cache of what the (external) weather pipeline fetched, keyed
# by coordinates. Lookups match any entry within ±0.01° of the requested
# latitude and longitude, so small GPS jitter still hits the cache.
#
# Entries older than max_age (30 minutes by default) count as stale:
# lookups ignore them and delete_expired() reaps them with the same helper
# the vault trash sweep uses.

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..core.config import DEFAULT_DB_TIMEOUT, DEFAULT_WEATHER_CACHE_MAX_AGE
from ..core.db import connect as db_connect, delete_expired
from ..vault.errors import StorageError
from ..vault.models import now_ms

logger = logging.getLogger(__name__)

COORDINATE_TOLERANCE = 0.01

_NEAR = """
    latitude BETWEEN ? - {tol} AND ? + {tol}
    AND longitude BETWEEN ? - {tol} AND ? + {tol}
""".format(tol=COORDINATE_TOLERANCE)


class ForecastType(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"


@dataclass
class WeatherCacheEntry:
    latitude: float
    longitude: float
    payload: Dict[str, Any]
    timestamp: int
    cached_at: int
    id: Optional[int] = None


@dataclass
class ForecastCacheEntry:
    latitude: float
    longitude: float
    forecast_type: ForecastType
    timestamp: int
    payload: Dict[str, Any] = field(default_factory=dict)
    cached_at: int = 0
    id: Optional[int] = None


class _CacheDatabase:
    """Connection and expiry plumbing shared by both caches."""

    TABLE = ""
    SCHEMA: Tuple[str, ...] = ()

    def __init__(
        self,
        db_path: Path,
        max_age: float = DEFAULT_WEATHER_CACHE_MAX_AGE,
        db_timeout: float = DEFAULT_DB_TIMEOUT,
        clock: Callable[[], int] = now_ms,
    ):
        self._lock = threading.RLock()
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_timeout = db_timeout
        self._clock = clock
        self.max_age = max_age
        self._init_database()

    def _get_conn(self) -> sqlite3.Connection:
        return db_connect(self._db_path, row_factory=True, timeout=self._db_timeout)

    def _init_database(self) -> None:
        conn = self._get_conn()
        try:
            for statement in self.SCHEMA:
                conn.execute(statement)
            conn.commit()
        finally:
            conn.close()

    def _cutoff(self, max_age: Optional[float], now: Optional[int]) -> int:
        age = self.max_age if max_age is None else max_age
        return (self._clock() if now is None else now) - int(age * 1000)

    def _write(self, fn: Callable[[sqlite3.Connection], Any]) -> Any:
        with self._lock:
            try:
                conn = self._get_conn()
                try:
                    with conn:
                        return fn(conn)
                finally:
                    conn.close()
            except sqlite3.Error as e:
                raise StorageError(f"{self.TABLE} write failed: {e}") from e

    def _read(self, sql: str, params: Iterable[Any]) -> List[sqlite3.Row]:
        with self._lock:
            try:
                conn = self._get_conn()
                try:
                    return conn.execute(sql, tuple(params)).fetchall()
                finally:
                    conn.close()
            except sqlite3.Error as e:
                raise StorageError(f"{self.TABLE} read failed: {e}") from e

    def delete_expired(self, max_age: Optional[float] = None, now: Optional[int] = None) -> int:
        """Delete entries cached more than max_age seconds before now."""
        cutoff = self._cutoff(max_age, now)
        count = self._write(lambda conn: delete_expired(conn, self.TABLE, "cached_at", cutoff))
        if count:
            logger.debug("Reaped %d stale rows from %s", count, self.TABLE)
        return count

    def clear(self) -> int:
        return self._write(lambda conn: conn.execute(f"DELETE FROM {self.TABLE}").rowcount)


class WeatherCacheStore(_CacheDatabase):
    """Current-conditions cache (table weather_cache)."""

    TABLE = "weather_cache"
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS weather_cache (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            latitude REAL NOT NULL,
            longitude REAL NOT NULL,
            payload TEXT NOT NULL,
            timestamp INTEGER NOT NULL,
            cached_at INTEGER NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_weather_coords ON weather_cache(latitude, longitude)",
        "CREATE INDEX IF NOT EXISTS idx_weather_cached ON weather_cache(cached_at)",
    )

    def put(
        self,
        latitude: float,
        longitude: float,
        payload: Dict[str, Any],
        timestamp: Optional[int] = None,
    ) -> WeatherCacheEntry:
        now = self._clock()
        entry = WeatherCacheEntry(
            latitude=latitude,
            longitude=longitude,
            payload=payload,
            timestamp=now if timestamp is None else timestamp,
            cached_at=now,
        )

        def insert(conn: sqlite3.Connection) -> int:
            cur = conn.execute(
                """INSERT INTO weather_cache (latitude, longitude, payload, timestamp, cached_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (latitude, longitude, json.dumps(payload), entry.timestamp, entry.cached_at),
            )
            return cur.lastrowid

        entry.id = self._write(insert)
        return entry

    def get(
        self,
        latitude: float,
        longitude: float,
        max_age: Optional[float] = None,
    ) -> Optional[WeatherCacheEntry]:
        """Newest fresh entry near (latitude, longitude), or None."""
        rows = self._read(
            f"""SELECT * FROM weather_cache
                WHERE {_NEAR} AND cached_at >= ?
                ORDER BY cached_at DESC, id DESC
                LIMIT 1""",
            (latitude, latitude, longitude, longitude, self._cutoff(max_age, None)),
        )
        if not rows:
            return None
        row = rows[0]
        return WeatherCacheEntry(
            id=row["id"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            payload=json.loads(row["payload"]),
            timestamp=row["timestamp"],
            cached_at=row["cached_at"],
        )


class ForecastCacheStore(_CacheDatabase):
    """Hourly and daily forecast cache (table forecast_cache)."""

    TABLE = "forecast_cache"
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS forecast_cache (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            latitude REAL NOT NULL,
            longitude REAL NOT NULL,
            forecast_type TEXT NOT NULL,
            timestamp INTEGER NOT NULL,
            payload TEXT NOT NULL,
            cached_at INTEGER NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_forecast_coords ON forecast_cache(latitude, longitude)",
        "CREATE INDEX IF NOT EXISTS idx_forecast_cached ON forecast_cache(cached_at)",
    )

    def put_forecasts(
        self,
        latitude: float,
        longitude: float,
        forecast_type: ForecastType,
        entries: Iterable[Tuple[int, Dict[str, Any]]],
    ) -> int:
        """Replace the cached forecast of one type near a location.

        Args:
            entries: (timestamp, payload) pairs, one per forecast slot.

        Returns:
            Number of slots stored.
        """
        forecast_type = ForecastType(forecast_type)
        now = self._clock()
        rows = [
            (latitude, longitude, forecast_type.value, ts, json.dumps(payload), now)
            for ts, payload in entries
        ]

        def replace(conn: sqlite3.Connection) -> int:
            conn.execute(
                f"DELETE FROM forecast_cache WHERE {_NEAR} AND forecast_type = ?",
                (latitude, latitude, longitude, longitude, forecast_type.value),
            )
            conn.executemany(
                """INSERT INTO forecast_cache
                   (latitude, longitude, forecast_type, timestamp, payload, cached_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                rows,
            )
            return len(rows)

        return self._write(replace)

    def get_forecast(
        self,
        latitude: float,
        longitude: float,
        forecast_type: ForecastType,
        max_age: Optional[float] = None,
    ) -> List[ForecastCacheEntry]:
        """Fresh forecast slots near a location, earliest slot first."""
        forecast_type = ForecastType(forecast_type)
        rows = self._read(
            f"""SELECT * FROM forecast_cache
                WHERE {_NEAR} AND forecast_type = ? AND cached_at >= ?
                ORDER BY timestamp ASC""",
            (
                latitude, latitude, longitude, longitude,
                forecast_type.value, self._cutoff(max_age, None),
            ),
        )
        return [
            ForecastCacheEntry(
                id=row["id"],
                latitude=row["latitude"],
                longitude=row["longitude"],
                forecast_type=ForecastType(row["forecast_type"]),
                timestamp=row["timestamp"],
                payload=json.loads(row["payload"]),
                cached_at=row["cached_at"],
            )
            for row in rows
        ]

    def hourly(self, latitude: float, longitude: float) -> List[ForecastCacheEntry]:
        return self.get_forecast(latitude, longitude, ForecastType.HOURLY)

    def daily(self, latitude: float, longitude: float) -> List[ForecastCacheEntry]:
        return self.get_forecast(latitude, longitude, ForecastType.DAILY)

    def delete_for_location(self, latitude: float, longitude: float) -> int:
        return self._write(
            lambda conn: conn.execute(
                f"DELETE FROM forecast_cache WHERE {_NEAR}",
                (latitude, latitude, longitude, longitude),
            ).rowcount
        )
