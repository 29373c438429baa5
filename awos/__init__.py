"""AWOS weather station hub: reading storage, JSON API and realtime relay."""

from .config import Config, StoreBackend
from .models import SensorReading
from .readings import SensorReadingModel, open_store
from .stats import StatsRecorder

# The Flask app factory lives in .server and the MQTT bridge in .ingest / .mqtt;
# import them directly so paho is only needed where MQTT is used.

__all__ = [
    "Config",
    "StoreBackend",
    "SensorReading",
    "SensorReadingModel",
    "StatsRecorder",
    "open_store",
]
