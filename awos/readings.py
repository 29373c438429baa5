"""Reading access layer used by the API routes, the relay and the MQTT bridge."""

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping

from .config import Config, StoreBackend
from .database import WeatherDatabase
from .models import DEFAULT_STATION_ID, SensorReading, format_timestamp
from .supabase_store import SupabaseStore

logger = logging.getLogger(__name__)

AGGREGATE_LIMIT = 10000


def open_store(config: Config):
    """Pick the configured store: Supabase when credentials exist, local SQLite otherwise."""
    if config.backend is StoreBackend.SUPABASE:
        key = config.supabase_service_role_key or config.supabase_anon_key
        logger.info("[DB] Using Supabase store at %s", config.supabase_url)
        return SupabaseStore(config.supabase_url, key, timeout=config.supabase_timeout)
    logger.info("[DB] Supabase not configured, using local SQLite store %s", config.db_file)
    return WeatherDatabase(db_file=config.db_file)


def _mean(values):
    return sum(values) / len(values) if values else None


class SensorReadingModel:
    """Reads and writes SensorReading rows through a store."""

    def __init__(self, store, default_station_id: str = DEFAULT_STATION_ID):
        self.store = store
        self.default_station_id = default_station_id

    def create_server_side(self, data: Mapping[str, Any] | SensorReading) -> SensorReading:
        """Insert a reading and return it as stored, with its server-assigned id."""
        if isinstance(data, SensorReading):
            reading = data
        else:
            reading = SensorReading.from_input(data, default_station_id=self.default_station_id)
        row = self.store.insert(reading.to_row())
        return SensorReading.from_row(row)

    def find_latest(self, station_id: str | None = None) -> SensorReading | None:
        row = self.store.latest(station_id or None)
        return SensorReading.from_row(row) if row else None

    def find_by_id(self, reading_id) -> SensorReading | None:
        row = self.store.get(reading_id)
        return SensorReading.from_row(row) if row else None

    def find_many(
        self,
        station_id: str | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
        order_by: str = "desc",
        newer_than: datetime | None = None,
    ) -> list[SensorReading]:
        """
        List readings, newest first unless ``order_by`` is ``"asc"``.

        ``newer_than`` is an exclusive lower bound and takes precedence over
        ``start_time``.
        """
        if newer_than is not None:
            start_time, after = newer_than, True
        else:
            after = False
        rows = self.store.select(
            station_id=station_id or None,
            start_time=start_time,
            end_time=end_time,
            limit=limit,
            offset=offset,
            ascending=order_by == "asc",
            after=after,
        )
        return [SensorReading.from_row(r) for r in rows]

    def count(self, station_id=None, start_time=None, end_time=None) -> int:
        return self.store.count(station_id=station_id or None, start_time=start_time, end_time=end_time)

    def get_aggregated_data(self, start_time: datetime, end_time: datetime, station_id: str | None = None) -> dict:
        readings = self.find_many(
            station_id=station_id, start_time=start_time, end_time=end_time, limit=AGGREGATE_LIMIT
        )

        def values(attr):
            return [getattr(r, attr) for r in readings if getattr(r, attr) is not None]

        gusts = values("wind_gust")
        precipitation = values("precipitation_1h")
        return {
            "count": len(readings),
            "avgTemperature": _mean(values("temperature")),
            "avgHumidity": _mean(values("humidity")),
            "avgPressure": _mean(values("pressure")),
            "avgWindSpeed": _mean(values("wind_speed")),
            "maxWindGust": max(gusts) if gusts else None,
            "totalPrecipitation": sum(precipitation) if precipitation else None,
        }

    def insert_many(self, items: Iterable[Mapping[str, Any]]) -> dict:
        inserted = 0
        errors = 0
        for item in items:
            try:
                self.create_server_side(item)
                inserted += 1
            except Exception as e:
                errors += 1
                logger.warning("[DB] Skipped reading in bulk insert: %s", e)
        return {"insertedCount": inserted, "errors": errors}

    def station_ids(self) -> list[str]:
        return self.store.station_ids()

    def summary(self) -> dict:
        stations = self.store.station_ids()
        earliest, latest = self.store.time_bounds()
        return {
            "totalReadings": self.store.count(),
            "totalStations": len(stations),
            "stations": stations,
            "earliestReading": _iso(earliest),
            "latestReading": _iso(latest),
        }


def _iso(value):
    return format_timestamp(value) if value else None
