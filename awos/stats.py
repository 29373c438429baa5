"""In-memory request stats for the device ingestion endpoints (reset on restart)."""

import copy
import math
import threading
from collections import deque

from .models import format_timestamp, utcnow

MAX_RESPONSE_SAMPLES = 100
MAX_ERRORS = 10
MAX_ERROR_LENGTH = 200
RECENT_ERRORS = 3


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class StatsRecorder:
    """
    Counts ingestion outcomes and latency.

    One instance is shared by the Flask app and the MQTT bridge; every
    mutation holds the lock since both run on multiple threads.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.last_request: str | None = None
        self.average_response_time = 0
        self._response_times: deque[float] = deque(maxlen=MAX_RESPONSE_SAMPLES)
        self._errors: deque[dict] = deque(maxlen=MAX_ERRORS)

    def record(self, success: bool, response_time_ms: float, error: str | None = None) -> None:
        now = format_timestamp(utcnow())
        with self._lock:
            self.total_requests += 1
            self.last_request = now

            if success:
                self.successful_requests += 1
            else:
                self.failed_requests += 1
                if error:
                    self._errors.append({"timestamp": now, "error": str(error)[:MAX_ERROR_LENGTH]})

            self._response_times.append(response_time_ms)
            self.average_response_time = round_half_up(sum(self._response_times) / len(self._response_times))

    def snapshot(self) -> dict:
        with self._lock:
            errors = [dict(e) for e in self._errors]
            stats = {
                "totalRequests": self.total_requests,
                "successfulRequests": self.successful_requests,
                "failedRequests": self.failed_requests,
                "lastRequest": self.last_request,
                "averageResponseTime": self.average_response_time,
                "responseTimes": list(self._response_times),
                "errors": errors,
            }
        if stats["totalRequests"] > 0:
            stats["successRate"] = f"{round_half_up(stats['successfulRequests'] / stats['totalRequests'] * 100)}%"
        else:
            stats["successRate"] = "0%"
        stats["recentErrors"] = copy.deepcopy(errors[-RECENT_ERRORS:])
        return stats
