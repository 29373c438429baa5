from datetime import datetime, timedelta, timezone

import pytest

from awos.config import Config
from awos.database import WeatherDatabase
from awos.readings import SensorReadingModel
from awos.server import create_app
from awos.stats import StatsRecorder

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def config(tmp_path):
    return Config(db_file=str(tmp_path / "weather_test.db"), realtime_poll_interval=0)


@pytest.fixture
def store(config):
    return WeatherDatabase(db_file=config.db_file)


@pytest.fixture
def model(store):
    return SensorReadingModel(store)


@pytest.fixture
def stats():
    return StatsRecorder()


@pytest.fixture
def app(config, store, stats):
    app = create_app(config, store=store, stats=stats, relay_sleep=lambda _: None)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seeded(model):
    """Three VCBI readings at T0, T0+1m, T0+2m and one for another station at T0+5m."""
    for minutes, temp in ((0, 20.0), (1, 21.0), (2, 22.0)):
        model.create_server_side({
            "stationId": "VCBI",
            "temperature": temp,
            "timestamp": T0 + timedelta(minutes=minutes),
        })
    model.create_server_side({"stationId": "VCBI-09", "temperature": 30.0, "timestamp": T0 + timedelta(minutes=5)})
    return model
