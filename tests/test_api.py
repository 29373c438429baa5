from datetime import timedelta
from itertools import islice

from awos.models import format_timestamp, utcnow
from awos.server import parse_range_param

from .conftest import T0


class BrokenStore:
    """Store whose every call fails, as when the database is unreachable."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise RuntimeError("database unreachable")
        return fail

    def describe(self):
        return {"database": "broken", "platform": "test"}


def test_health(client):
    resp = client.get("/api/health")
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["status"] == "healthy"
    assert body["environment"] == "development"
    assert set(body["memory"]) == {"used", "total"}
    assert body["uptime"] >= 0


def test_cors_headers(client):
    resp = client.get("/api/health", headers={"Origin": "http://dashboard.local"})
    assert resp.headers["Access-Control-Allow-Origin"] in ("*", "http://dashboard.local")


def test_current_reading_returns_latest(client, seeded):
    body = client.get("/api/readings/current?stationId=VCBI").get_json()
    assert body["ok"] is True
    assert body["reading"]["timestamp"] == format_timestamp(T0 + timedelta(minutes=2))
    assert body["reading"]["stationId"] == "VCBI"


def test_current_reading_accepts_legacy_runway_param(client, seeded):
    body = client.get("/api/readings/current?runway=VCBI-09").get_json()
    assert body["reading"]["temperature"] == 30.0


def test_current_reading_empty(client):
    assert client.get("/api/readings/current").get_json() == {"ok": True, "reading": None}


def test_current_reading_store_failure(config):
    from awos.server import create_app

    client = create_app(config, store=BrokenStore()).test_client()
    resp = client.get("/api/readings/current")
    assert resp.status_code == 500
    body = resp.get_json()
    assert body["ok"] is False
    assert "database unreachable" in body["error"]


def test_readings_pagination(client, seeded):
    body = client.get("/api/readings?stationId=VCBI&limit=2").get_json()
    assert body["ok"] is True
    assert [r["temperature"] for r in body["data"]] == [22.0, 21.0]
    assert body["pagination"] == {"offset": 0, "limit": 2, "total": 3, "hasMore": True}
    assert body["filters"]["stationId"] == "VCBI"

    page2 = client.get("/api/readings?stationId=VCBI&limit=2&offset=2").get_json()
    assert [r["temperature"] for r in page2["data"]] == [20.0]
    assert page2["pagination"]["hasMore"] is False


def test_readings_time_filters(client, seeded):
    start = format_timestamp(T0 + timedelta(minutes=1))
    body = client.get(f"/api/readings?startTime={start}").get_json()
    assert body["pagination"]["total"] == 3

    resp = client.get("/api/readings?startTime=garbage")
    assert resp.status_code == 400


def test_readings_range_param(client, model):
    model.create_server_side({"temperature": 1.0})
    model.create_server_side({"temperature": 2.0, "timestamp": utcnow() - timedelta(days=3)})
    body = client.get("/api/readings?range=1h").get_json()
    assert [r["temperature"] for r in body["data"]] == [1.0]
    assert client.get("/api/readings?range=all").get_json()["pagination"]["total"] == 2


def test_parse_range_param():
    start, end = parse_range_param("6h")
    assert end - start == timedelta(hours=6)
    assert parse_range_param("all")[0] is None
    start, end = parse_range_param("bogus")
    assert end - start == timedelta(hours=1)
    assert parse_range_param("2024-05-01T12:00:00Z")[0] == T0
    start, end = parse_range_param("9999999999d")
    assert end - start == timedelta(hours=1)


def test_readings_oversized_range_falls_back_to_last_hour(client, seeded):
    resp = client.get("/api/readings?range=9999999999d")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["ok"] is True
    assert body["pagination"]["total"] == 0


def test_add_reading_defaults(client):
    resp = client.post("/api/readings/add", json={"temperature": 19.5})
    body = resp.get_json()
    assert body["ok"] is True
    assert body["data"]["stationId"] == "VCBI"
    assert body["data"]["dataQuality"] == "good"
    assert body["data"]["id"] is not None


def test_ingest_valid(client):
    resp = client.post("/api/ingest", json={
        "stationId": "VCBI-04",
        "temperature": 27.1,
        "humidity": 70,
        "windDirection": 120,
        "precipitation1h": 0.2,
        "timestamp": "2024-05-01T12:00:00Z",
    })
    body = resp.get_json()
    assert resp.status_code == 201
    assert body["success"] is True
    assert body["data"]["stationId"] == "VCBI-04"
    assert body["data"]["precipitation1h"] == 0.2
    assert body["data"]["timestamp"] == "2024-05-01T12:00:00.000Z"


def test_ingest_validation_errors(client):
    resp = client.post("/api/ingest", json={"humidity": 140, "windDirection": -5})
    body = resp.get_json()
    assert resp.status_code == 400
    assert body["error"] == "Validation failed"
    assert {d["field"] for d in body["details"]} == {"humidity", "windDirection"}


def test_ingest_get_is_health(client):
    assert client.get("/api/ingest").get_json()["status"] == "healthy"


ESP32_PAYLOAD = {
    "temperature": 28.2,
    "humidity": 65.0,
    "pressure": 1012.4,
    "dewPoint": 21.0,
    "windSpeed": 6.5,
    "windDirection": 200,
    "lat": 9.858,
    "lng": 80.034,
}


def test_esp32_post_records_stats(client, stats):
    assert client.get("/api/esp32").status_code == 404

    resp = client.post("/api/esp32", json=ESP32_PAYLOAD)
    assert resp.status_code == 201
    assert resp.get_json()["data"]["stationId"] == "VCBI-ESP32"

    bad = client.post("/api/esp32", json={"temperature": 20})
    assert bad.status_code == 400

    snap = stats.snapshot()
    assert snap["totalRequests"] == 2
    assert snap["successfulRequests"] == 1
    assert snap["failedRequests"] == 1
    assert snap["successRate"] == "50%"

    latest = client.get("/api/esp32").get_json()
    assert latest["success"] is True
    assert latest["data"]["temperature"] == 28.2
    assert latest["data"]["isDataFresh"] is True
    assert latest["data"]["connectionStatus"] == "connected"


def test_monitor_includes_stats(client, stats):
    stats.record(True, 12)
    body = client.get("/api/monitor").get_json()
    assert body["status"] == "running"
    assert body["uptime"].endswith("s")
    assert body["memory"]["used"].endswith("MB")
    assert body["esp32Stats"]["totalRequests"] == 1
    assert body["esp32Stats"]["successRate"] == "100%"


def test_aggregates(client, seeded):
    start = format_timestamp(T0 - timedelta(minutes=1))
    end = format_timestamp(T0 + timedelta(minutes=10))
    body = client.get(f"/api/aggregates?stationId=VCBI&start={start}&end={end}").get_json()
    assert body["ok"] is True
    assert body["span"] == "hour"
    assert body["results"][0]["avgTemperature"] == 21.0
    assert body["results"][0]["count"] == 3
    assert body["metadata"]["stationId"] == "VCBI"


def test_aggregates_requires_bounds(client):
    assert client.get("/api/aggregates").status_code == 400
    assert client.get("/api/aggregates?start=x&end=y").status_code == 400


def test_history_prefixes_runway(client, model):
    model.create_server_side({"stationId": "VCBI-09", "temperature": 25.0})
    model.create_server_side({"stationId": "VCBI-09", "temperature": 26.0,
                              "timestamp": utcnow() - timedelta(days=10)})

    recent = client.get("/api/history/09?days=1").get_json()
    assert [r["temperature"] for r in recent] == [25.0]
    assert recent[0]["stationId"] == "VCBI-09"

    assert len(client.get("/api/history/VCBI-09").get_json()) == 2


def test_realtime_insert_defaults(client):
    resp = client.post("/api/test/realtime-insert")
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["success"] is True
    data = body["data"]
    assert data["stationId"] == "VCBI"
    assert 25 <= data["temperature"] <= 35
    assert 50 <= data["humidity"] <= 90
    assert 1010 <= data["pressure"] <= 1030
    assert data["id"] is not None


def test_realtime_insert_custom_station(client, model):
    client.post("/api/test/realtime-insert", json={"stationId": "VCBI-27"})
    reading = model.find_latest("VCBI-27")
    assert 0 <= reading.wind_speed <= 20
    assert 0 <= reading.wind_direction < 360
    assert reading.weather_description in {"Clear", "Partly Cloudy", "Cloudy", "Windy"}


def test_db_health(client, seeded):
    body = client.get("/api/db/health").get_json()
    assert body["ok"] is True
    assert body["status"] == "connected"
    assert body["database"] == "SQLite"
    assert body["stats"]["totalReadings"] == 4
    assert body["stats"]["stations"] == ["VCBI", "VCBI-09"]


def test_db_health_failure(config):
    from awos.server import create_app

    resp = create_app(config, store=BrokenStore()).test_client().get("/api/db/health")
    assert resp.status_code == 500
    assert resp.get_json()["status"] == "error"


def test_stations(client, seeded):
    assert client.get("/api/stations").get_json() == {"stations": ["VCBI", "VCBI-09"]}


def test_realtime_stream(client, seeded):
    resp = client.get("/api/realtime?stationId=VCBI", buffered=False)
    assert resp.status_code == 200
    assert resp.mimetype == "text/event-stream"
    assert resp.headers["Cache-Control"] == "no-cache"

    chunks = list(islice(resp.response, 3))
    resp.close()
    text = "".join(c.decode() if isinstance(c, bytes) else c for c in chunks)
    assert '"type": "connected"' in text
    assert '"type": "initial_data"' in text
    assert '"type": "heartbeat"' in text
