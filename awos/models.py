from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from typing import Any, Mapping

DEFAULT_STATION_ID = "VCBI"
DEFAULT_DATA_QUALITY = "good"

# Stored column name -> JSON key. Columns match the dataclass attributes.
JSON_KEYS = {
    "id": "id",
    "station_id": "stationId",
    "timestamp": "timestamp",
    "temperature": "temperature",
    "humidity": "humidity",
    "pressure": "pressure",
    "wind_speed": "windSpeed",
    "wind_direction": "windDirection",
    "wind_gust": "windGust",
    "visibility": "visibility",
    "precipitation_1h": "precipitation1h",
    "precipitation_3h": "precipitation3h",
    "precipitation_6h": "precipitation6h",
    "precipitation_24h": "precipitation24h",
    "weather_code": "weatherCode",
    "weather_description": "weatherDescription",
    "cloud_coverage": "cloudCoverage",
    "cloud_base": "cloudBase",
    "dew_point": "dewPoint",
    "sea_level_pressure": "seaLevelPressure",
    "altimeter_setting": "altimeterSetting",
    "battery_voltage": "batteryVoltage",
    "solar_panel_voltage": "solarPanelVoltage",
    "signal_strength": "signalStrength",
    "data_quality": "dataQuality",
}
COLUMNS_BY_JSON_KEY = {v: k for k, v in JSON_KEYS.items()}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """
    Coerce a datetime, ISO 8601 string or epoch seconds into an aware UTC datetime.
    Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """ISO 8601 UTC with millisecond precision and a Z suffix."""
    return parse_timestamp(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class SensorReading:
    """Represents a single station reading."""
    station_id: str
    timestamp: datetime
    id: int | str | None = None

    # Temperature (Celsius) and relative humidity (%)
    temperature: float | None = None
    humidity: float | None = None

    # Pressure (hPa)
    pressure: float | None = None

    # Wind: knots and degrees
    wind_speed: float | None = None
    wind_direction: float | None = None
    wind_gust: float | None = None

    # Visibility (meters)
    visibility: float | None = None

    # Precipitation (mm)
    precipitation_1h: float | None = None
    precipitation_3h: float | None = None
    precipitation_6h: float | None = None
    precipitation_24h: float | None = None

    weather_code: int | None = None
    weather_description: str | None = None

    # Cloud coverage (%) and base (feet)
    cloud_coverage: float | None = None
    cloud_base: float | None = None

    dew_point: float | None = None
    sea_level_pressure: float | None = None
    altimeter_setting: float | None = None  # inHg

    # System status
    battery_voltage: float | None = None
    solar_panel_voltage: float | None = None
    signal_strength: float | None = None  # dBm

    data_quality: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SensorReading":
        """Build a reading from a stored row (snake_case columns)."""
        known = {f.name for f in fields(cls)}
        values = {k: row[k] for k in row.keys() if k in known}
        values["timestamp"] = parse_timestamp(values["timestamp"])
        return cls(**values)

    @classmethod
    def from_input(cls, data: Mapping[str, Any], default_station_id: str = DEFAULT_STATION_ID) -> "SensorReading":
        """
        Build a new, unsaved reading from request input.

        Accepts camelCase (API) or snake_case keys. Missing station, timestamp
        and data quality fall back to defaults; unknown keys are ignored.
        """
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            column = COLUMNS_BY_JSON_KEY.get(key, key)
            if column in known and column != "id":
                values[column] = value

        values["station_id"] = values.get("station_id") or default_station_id
        ts = values.get("timestamp")
        values["timestamp"] = parse_timestamp(ts) if ts else utcnow()
        values["data_quality"] = values.get("data_quality") or DEFAULT_DATA_QUALITY
        return cls(**values)

    def to_row(self) -> dict[str, Any]:
        """Columns for an insert; the id is left to the store."""
        row = asdict(self)
        row.pop("id")
        row["timestamp"] = format_timestamp(self.timestamp)
        return row

    def to_dict(self) -> dict[str, Any]:
        """JSON shape used by the API and the realtime relay."""
        out = {}
        for column, key in JSON_KEYS.items():
            value = getattr(self, column)
            if column == "timestamp":
                value = format_timestamp(value)
            out[key] = value
        return out
