"""Server-sent events relay: polls the store and pushes new readings to one client."""

import json
import logging
import time
from typing import Callable, Iterator

from .models import format_timestamp, utcnow
from .readings import SensorReadingModel

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


def format_frame(message: dict) -> str:
    return f"data: {json.dumps(message)}\n\n"


class RealtimeRelay:
    def __init__(
        self,
        model: SensorReadingModel,
        poll_interval: float = 5.0,
        batch_limit: int = 10,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.model = model
        self.poll_interval = poll_interval
        self.batch_limit = batch_limit
        self._sleep = sleep

    def stream(self, station_id: str | None = None) -> Iterator[str]:
        """
        Yield SSE frames for one subscriber until the generator is closed.

        The first poll happens right after the initial data; later polls are
        ``poll_interval`` seconds apart.
        """
        yield format_frame({"type": "connected", "message": "Real-time connection established"})

        cursor = utcnow()
        try:
            initial = self.model.find_many(station_id=station_id, order_by="desc", limit=self.batch_limit)
            if initial:
                cursor = initial[0].timestamp
                yield format_frame({"type": "initial_data", "payload": [r.to_dict() for r in initial]})
        except Exception:
            logger.exception("[relay] Error fetching initial data")

        first = True
        while True:
            if not first:
                self._sleep(self.poll_interval)
            first = False

            try:
                fresh = self.model.find_many(
                    station_id=station_id, order_by="desc", limit=self.batch_limit, newer_than=cursor
                )
            except Exception as e:
                logger.error("[relay] Error polling for updates: %s", e)
                yield format_frame({"type": "error", "error": str(e)})
                continue

            if fresh:
                cursor = fresh[0].timestamp
                for reading in reversed(fresh):
                    yield format_frame({"type": "sensor_data", "payload": reading.to_dict()})

            yield format_frame({
                "type": "heartbeat",
                "timestamp": format_timestamp(utcnow()),
                "stationId": station_id or "all",
            })
