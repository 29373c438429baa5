import logging
import sqlite3
from contextlib import closing
from datetime import datetime
from pathlib import Path

from .exceptions import StoreError
from .models import JSON_KEYS, format_timestamp

logger = logging.getLogger(__name__)

TABLE = "sensor_readings"

_COLUMN_TYPES = {
    "station_id": "TEXT NOT NULL",
    "timestamp": "TEXT NOT NULL",
    "weather_code": "INTEGER",
    "weather_description": "TEXT",
    "data_quality": "TEXT",
}
COLUMNS = [c for c in JSON_KEYS if c != "id"]


class WeatherDatabase:
    """Local SQLite store for sensor readings."""

    def __init__(self, db_file='weather_data.db'):
        self.db_file = str(db_file)
        self._create_tables()

    def _connect(self) -> sqlite3.Connection:
        Path(self.db_file).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_file)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout=5000;")
        return conn

    def _create_tables(self):
        column_defs = ",\n".join(f"{c} {_COLUMN_TYPES.get(c, 'REAL')}" for c in COLUMNS)
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute(f'''
                    CREATE TABLE IF NOT EXISTS {TABLE} (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        {column_defs}
                    )
                ''')
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{TABLE}_station_ts ON {TABLE} (station_id, timestamp)"
                )
        except sqlite3.Error as e:
            raise StoreError(f"Failed to prepare database {self.db_file}: {e}") from e
        logger.info("[DB] Database and tables ensured at %s", self.db_file)

    def _query(self, query, params=()):
        try:
            with closing(self._connect()) as conn:
                return [dict(r) for r in conn.execute(query, params).fetchall()]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to query sensor readings: {e}") from e

    @staticmethod
    def _where(station_id=None, start_time=None, end_time=None, after=False):
        clauses = []
        params = []
        if station_id:
            clauses.append("station_id = ?")
            params.append(station_id)
        if start_time:
            clauses.append("timestamp > ?" if after else "timestamp >= ?")
            params.append(format_timestamp(start_time))
        if end_time:
            clauses.append("timestamp <= ?")
            params.append(format_timestamp(end_time))
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        return where, params

    def describe(self) -> dict:
        return {"database": "SQLite", "platform": "Local"}

    def insert(self, row: dict) -> dict:
        values = [row.get(c) for c in COLUMNS]
        placeholders = ", ".join("?" for _ in COLUMNS)
        try:
            with closing(self._connect()) as conn, conn:
                cursor = conn.execute(
                    f"INSERT INTO {TABLE} ({', '.join(COLUMNS)}) VALUES ({placeholders})",
                    values,
                )
                new_id = cursor.lastrowid
                stored = conn.execute(f"SELECT * FROM {TABLE} WHERE id = ?", (new_id,)).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to create sensor reading: {e}") from e
        return dict(stored)

    def get(self, reading_id):
        rows = self._query(f"SELECT * FROM {TABLE} WHERE id = ?", (reading_id,))
        return rows[0] if rows else None

    def latest(self, station_id=None):
        where, params = self._where(station_id)
        rows = self._query(
            f"SELECT * FROM {TABLE}{where} ORDER BY timestamp DESC, id DESC LIMIT 1", params
        )
        return rows[0] if rows else None

    def select(self, station_id=None, start_time: datetime | None = None, end_time: datetime | None = None,
               limit=100, offset=0, ascending=False, after=False):
        where, params = self._where(station_id, start_time, end_time, after=after)
        direction = "ASC" if ascending else "DESC"
        return self._query(
            f"SELECT * FROM {TABLE}{where} ORDER BY timestamp {direction}, id {direction} LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )

    def count(self, station_id=None, start_time=None, end_time=None) -> int:
        where, params = self._where(station_id, start_time, end_time)
        return self._query(f"SELECT COUNT(*) AS n FROM {TABLE}{where}", params)[0]["n"]

    def station_ids(self) -> list[str]:
        rows = self._query(f"SELECT DISTINCT station_id FROM {TABLE} ORDER BY station_id")
        return [r["station_id"] for r in rows if r["station_id"]]

    def time_bounds(self):
        row = self._query(f"SELECT MIN(timestamp) AS earliest, MAX(timestamp) AS latest FROM {TABLE}")[0]
        return row["earliest"], row["latest"]

    def ping(self) -> bool:
        self._query("SELECT 1")
        return True
