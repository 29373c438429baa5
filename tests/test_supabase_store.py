from unittest.mock import Mock

import pytest
import requests

from awos.exceptions import StoreError
from awos.supabase_store import SupabaseStore

from .conftest import T0


def make_response(json_data=None, headers=None, status=200):
    resp = Mock()
    resp.json.return_value = json_data if json_data is not None else []
    resp.headers = headers or {}
    resp.status_code = status
    if status >= 400:
        resp.text = "permission denied for table sensor_readings"
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} Client Error", response=resp)
    return resp


@pytest.fixture
def session():
    s = Mock()
    s.headers = {}
    return s


@pytest.fixture
def store(session):
    return SupabaseStore("https://demo.supabase.co/", "anon-key", timeout=3, session=session)


def test_auth_headers(store, session):
    assert store.endpoint == "https://demo.supabase.co/rest/v1/sensor_readings"
    assert session.headers["apikey"] == "anon-key"
    assert session.headers["Authorization"] == "Bearer anon-key"


def test_insert_asks_for_representation_and_drops_nulls(store, session):
    session.request.return_value = make_response([{"id": 5, "station_id": "VCBI"}])

    row = store.insert({"station_id": "VCBI", "temperature": 21.0, "humidity": None})

    assert row == {"id": 5, "station_id": "VCBI"}
    method, url = session.request.call_args.args
    kwargs = session.request.call_args.kwargs
    assert method == "POST"
    assert url == store.endpoint
    assert kwargs["json"] == {"station_id": "VCBI", "temperature": 21.0}
    assert kwargs["headers"] == {"Prefer": "return=representation"}
    assert kwargs["timeout"] == 3


def test_insert_without_representation_fails(store, session):
    session.request.return_value = make_response([])
    with pytest.raises(StoreError):
        store.insert({"station_id": "VCBI"})


def test_select_builds_filters(store, session):
    session.request.return_value = make_response([])

    store.select(station_id="VCBI", start_time=T0, limit=10, offset=20, ascending=True, after=True)

    params = session.request.call_args.kwargs["params"]
    assert ("station_id", "eq.VCBI") in params
    assert ("timestamp", "gt.2024-05-01T12:00:00.000Z") in params
    assert ("order", "timestamp.asc") in params
    assert ("limit", "10") in params
    assert ("offset", "20") in params


def test_latest_returns_none_when_empty(store, session):
    session.request.return_value = make_response([])
    assert store.latest("VCBI") is None
    assert ("order", "timestamp.desc") in session.request.call_args.kwargs["params"]


def test_count_reads_content_range(store, session):
    session.request.return_value = make_response([{"id": 1}], headers={"Content-Range": "0-0/42"})
    assert store.count(station_id="VCBI") == 42
    assert session.request.call_args.kwargs["headers"] == {"Prefer": "count=exact"}

    session.request.return_value = make_response([], headers={"Content-Range": "*/0"})
    assert store.count() == 0


def test_station_ids_walk_past_busy_stations(store, session):
    # one row per request, so a station with thousands of rows cannot hide the next one
    session.request.side_effect = [
        make_response([{"station_id": "VCBI"}]),
        make_response([{"station_id": "VCBI-09"}]),
        make_response([]),
    ]

    assert store.station_ids() == ["VCBI", "VCBI-09"]

    calls = session.request.call_args_list
    assert len(calls) == 3
    assert ("station_id", "gt.VCBI") in calls[1].kwargs["params"]
    assert ("station_id", "gt.VCBI-09") in calls[2].kwargs["params"]
    assert ("limit", "1") in calls[0].kwargs["params"]


def test_http_error_becomes_store_error(store, session):
    session.request.return_value = make_response(status=401)
    with pytest.raises(StoreError, match="permission denied"):
        store.ping()


def test_transport_error_becomes_store_error(store, session):
    session.request.side_effect = requests.ConnectionError("name resolution failed")
    with pytest.raises(StoreError, match="unreachable"):
        store.latest()
