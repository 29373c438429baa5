import logging

import requests

from .exceptions import StoreError
from .models import format_timestamp

logger = logging.getLogger(__name__)

TABLE = "sensor_readings"
MAX_STATIONS = 500


class SupabaseStore:
    """Sensor reading store backed by the Supabase (PostgREST) REST interface."""

    def __init__(self, url: str, key: str, timeout: float = 10.0, session: requests.Session | None = None):
        self.url = url.rstrip("/")
        self.endpoint = f"{self.url}/rest/v1/{TABLE}"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Accept": "application/json",
        })

    def _request(self, method, params=None, json=None, headers=None) -> requests.Response:
        try:
            resp = self.session.request(
                method, self.endpoint, params=params, json=json, headers=headers, timeout=self.timeout
            )
            resp.raise_for_status()
        except requests.HTTPError as e:
            detail = e.response.text[:200] if e.response is not None else ""
            raise StoreError(f"Supabase request failed: {e} {detail}".strip()) from e
        except requests.RequestException as e:
            raise StoreError(f"Supabase unreachable: {e}") from e
        return resp

    @staticmethod
    def _filters(station_id=None, start_time=None, end_time=None, after=False):
        params = []
        if station_id:
            params.append(("station_id", f"eq.{station_id}"))
        if start_time:
            op = "gt" if after else "gte"
            params.append(("timestamp", f"{op}.{format_timestamp(start_time)}"))
        if end_time:
            params.append(("timestamp", f"lte.{format_timestamp(end_time)}"))
        return params

    def describe(self) -> dict:
        return {"database": "PostgreSQL (Supabase)", "platform": "Supabase"}

    def insert(self, row: dict) -> dict:
        payload = {k: v for k, v in row.items() if v is not None}
        resp = self._request("POST", json=payload, headers={"Prefer": "return=representation"})
        rows = resp.json()
        if not rows:
            raise StoreError("Supabase did not return the created sensor reading")
        return rows[0]

    def get(self, reading_id):
        rows = self._request("GET", params=[("select", "*"), ("id", f"eq.{reading_id}"), ("limit", "1")]).json()
        return rows[0] if rows else None

    def latest(self, station_id=None):
        params = [("select", "*"), *self._filters(station_id), ("order", "timestamp.desc"), ("limit", "1")]
        rows = self._request("GET", params=params).json()
        return rows[0] if rows else None

    def select(self, station_id=None, start_time=None, end_time=None,
               limit=100, offset=0, ascending=False, after=False):
        params = [
            ("select", "*"),
            *self._filters(station_id, start_time, end_time, after=after),
            ("order", f"timestamp.{'asc' if ascending else 'desc'}"),
            ("limit", str(limit)),
            ("offset", str(offset)),
        ]
        return self._request("GET", params=params).json()

    def count(self, station_id=None, start_time=None, end_time=None) -> int:
        params = [("select", "id"), *self._filters(station_id, start_time, end_time), ("limit", "1")]
        resp = self._request("GET", params=params, headers={"Prefer": "count=exact"})
        # Content-Range: 0-0/123 (or */0 when empty)
        total = resp.headers.get("Content-Range", "").rpartition("/")[2]
        return int(total) if total.isdigit() else len(resp.json())

    def station_ids(self) -> list[str]:
        """Distinct station ids, one request per station (PostgREST has no DISTINCT)."""
        stations = []
        while len(stations) < MAX_STATIONS:
            params = [("select", "station_id"), ("station_id", "not.is.null")]
            if stations:
                params.append(("station_id", f"gt.{stations[-1]}"))
            params += [("order", "station_id.asc"), ("limit", "1")]
            rows = self._request("GET", params=params).json()
            if not rows:
                break
            stations.append(rows[0]["station_id"])
        return stations

    def time_bounds(self):
        def edge(direction):
            rows = self._request(
                "GET", params=[("select", "timestamp"), ("order", f"timestamp.{direction}"), ("limit", "1")]
            ).json()
            return rows[0]["timestamp"] if rows else None

        return edge("asc"), edge("desc")

    def ping(self) -> bool:
        self._request("GET", params=[("select", "id"), ("limit", "1")])
        return True
