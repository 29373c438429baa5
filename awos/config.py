import os
from dataclasses import dataclass
from enum import Enum

from dotenv import load_dotenv


def _env(*names: str, default: str | None = None) -> str | None:
    """Return the first non-empty variable among ``names``."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


@dataclass
class Config:
    """Configuration for the station hub."""
    # Storage
    db_file: str = "weather_data.db"
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    supabase_service_role_key: str | None = None
    supabase_timeout: float = 10.0

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 5000
    api_url: str = "http://localhost:5000"
    environment: str = "development"

    # Station identification
    default_station_id: str = "VCBI"

    # Realtime relay
    realtime_poll_interval: float = 5.0     # seconds between store polls
    realtime_batch_limit: int = 10          # readings per poll

    # Realtime client reconnect policy
    reconnect_initial_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    reconnect_multiplier: float = 2.0
    reconnect_jitter: float = 0.5
    reconnect_max_attempts: int | None = None

    # MQTT ingestion
    mqtt_broker_address: str = "localhost"
    mqtt_broker_port: int = 1883
    mqtt_topic: str = "weather/readings"
    mqtt_client_id: str = "awos-hub"

    log_level: str = "INFO"

    @property
    def backend(self) -> "StoreBackend":
        if self.supabase_url and (self.supabase_service_role_key or self.supabase_anon_key):
            return StoreBackend.SUPABASE
        return StoreBackend.SQLITE

    @classmethod
    def from_env(cls) -> "Config":
        load_dotenv()
        attempts = _env("REALTIME_RECONNECT_ATTEMPTS")
        return cls(
            db_file=_env("WEATHER_DB_PATH", default=cls.db_file),
            supabase_url=_env("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
            supabase_anon_key=_env("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"),
            supabase_service_role_key=_env("SUPABASE_SERVICE_ROLE_KEY"),
            supabase_timeout=float(_env("SUPABASE_TIMEOUT", default="10")),
            host=_env("HOST", default=cls.host),
            port=int(_env("PORT", default=str(cls.port))),
            api_url=_env("API_URL", "NEXT_PUBLIC_API_URL", default=cls.api_url).rstrip("/"),
            environment=_env("APP_ENV", "NODE_ENV", default=cls.environment),
            default_station_id=_env("DEFAULT_STATION_ID", default=cls.default_station_id),
            realtime_poll_interval=float(_env("REALTIME_POLL_INTERVAL", default="5")),
            realtime_batch_limit=int(_env("REALTIME_BATCH_LIMIT", default="10")),
            reconnect_initial_delay=float(_env("REALTIME_RECONNECT_INITIAL", default="1")),
            reconnect_max_delay=float(_env("REALTIME_RECONNECT_MAX", default="30")),
            reconnect_multiplier=float(_env("REALTIME_RECONNECT_MULTIPLIER", default="2")),
            reconnect_jitter=float(_env("REALTIME_RECONNECT_JITTER", default="0.5")),
            reconnect_max_attempts=int(attempts) if attempts else None,
            mqtt_broker_address=_env("MQTT_BROKER_ADDRESS", default=cls.mqtt_broker_address),
            mqtt_broker_port=int(_env("MQTT_BROKER_PORT", default=str(cls.mqtt_broker_port))),
            mqtt_topic=_env("MQTT_TOPIC", default=cls.mqtt_topic),
            mqtt_client_id=_env("MQTT_CLIENT_ID", default=cls.mqtt_client_id),
            log_level=_env("LOG_LEVEL", default=cls.log_level).upper(),
        )


class StoreBackend(Enum):
    """Supported reading stores."""
    SQLITE = "sqlite"
    SUPABASE = "supabase"
