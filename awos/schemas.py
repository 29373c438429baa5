from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class IngestReading(BaseModel):
    """Reading posted to /api/ingest or published over MQTT. Sensors may fail, so every measurement is optional."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    temperature: Optional[float] = None
    humidity: Optional[float] = Field(None, ge=0, le=100)
    pressure: Optional[float] = Field(None, gt=0)
    wind_speed: Optional[float] = Field(None, ge=0)
    wind_direction: Optional[float] = Field(None, ge=0, le=360)
    wind_gust: Optional[float] = Field(None, ge=0)
    visibility: Optional[float] = Field(None, ge=0)

    precipitation_1h: Optional[float] = Field(None, ge=0, alias="precipitation1h")
    precipitation_3h: Optional[float] = Field(None, ge=0, alias="precipitation3h")
    precipitation_6h: Optional[float] = Field(None, ge=0, alias="precipitation6h")
    precipitation_24h: Optional[float] = Field(None, ge=0, alias="precipitation24h")

    weather_code: Optional[int] = None
    weather_description: Optional[str] = None

    cloud_coverage: Optional[float] = Field(None, ge=0, le=100)
    cloud_base: Optional[float] = Field(None, ge=0)

    dew_point: Optional[float] = None
    sea_level_pressure: Optional[float] = Field(None, gt=0)
    altimeter_setting: Optional[float] = Field(None, gt=0)

    battery_voltage: Optional[float] = Field(None, ge=0)
    solar_panel_voltage: Optional[float] = Field(None, ge=0)
    signal_strength: Optional[float] = None

    timestamp: Optional[datetime] = None
    station_id: str = "VCBI"
    data_quality: str = "good"


class ESP32Reading(BaseModel):
    """Payload posted by the ESP32 station firmware."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    temperature: float
    humidity: float = Field(ge=0, le=100)
    pressure: float = Field(gt=0)
    dew_point: float
    wind_speed: float = Field(ge=0)
    wind_direction: float = Field(ge=0, le=360)
    lat: Optional[float] = None
    lng: Optional[float] = None
    utc_time: Optional[str] = None
    last_packet_time: Optional[float] = None
    station_id: str = "VCBI-ESP32"


def validation_details(error: ValidationError) -> list[dict]:
    return [
        {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
        for e in error.errors()
    ]
