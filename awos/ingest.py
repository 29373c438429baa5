"""Stores readings published by stations over MQTT."""

import logging
import time

from pydantic import ValidationError

from .readings import SensorReadingModel
from .schemas import IngestReading
from .stats import StatsRecorder

logger = logging.getLogger(__name__)


class IngestBridge:
    """
    Handles decoded MQTT payloads.

    A payload is either a single reading or a batch
    ``{"stationId": ..., "readings": [...]}`` whose readings inherit the
    outer station id. Each reading is validated, stored and counted in the
    stats as one request.
    """

    def __init__(self, model: SensorReadingModel, stats: StatsRecorder):
        self.model = model
        self.stats = stats
        self._message_count = 0
        self._readings_count = 0

    @property
    def message_count(self) -> int:
        return self._message_count

    @property
    def readings_count(self) -> int:
        return self._readings_count

    def handle(self, message: dict) -> int:
        """Store every reading in ``message`` and return how many were stored."""
        self._message_count += 1
        if isinstance(message.get("readings"), list):
            outer_station = message.get("stationId") or message.get("station_id")
            readings = []
            for r in message["readings"]:
                if not isinstance(r, dict):
                    continue
                if outer_station and not (r.get("stationId") or r.get("station_id")):
                    r = {**r, "stationId": outer_station}
                readings.append(r)
        else:
            readings = [message]

        stored = sum(1 for r in readings if self._store(r))
        if readings:
            logger.info("[ingest] Stored %d/%d readings from message #%d",
                        stored, len(readings), self._message_count)
        return stored

    def _store(self, raw: dict) -> bool:
        started = time.perf_counter()
        try:
            validated = IngestReading.model_validate(raw)
            reading = self.model.create_server_side(validated.model_dump(by_alias=True))
        except ValidationError as e:
            self._record(False, started, f"Validation failed: {e.error_count()} error(s)")
            logger.warning("[ingest] Rejected reading: %s", e)
            return False
        except Exception as e:
            self._record(False, started, str(e))
            logger.error("[ingest] Failed to store reading: %s", e)
            return False

        self._record(True, started)
        self._readings_count += 1
        logger.debug("[ingest] %s @ %s stored as %s", reading.station_id, reading.timestamp, reading.id)
        return True

    def _record(self, success, started, error=None):
        elapsed_ms = (time.perf_counter() - started) * 1000
        self.stats.record(success, elapsed_ms, error)
