"""
Client helper for the ``/api/realtime`` server-sent events stream.

Subscriptions run on a daemon thread. Handler exceptions never reach the
read loop, and dropped connections are retried according to a
``ReconnectPolicy``.
"""

import json
import logging
import random
import threading
from dataclasses import dataclass
from typing import Any, Callable

import requests

from .config import Config

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], None]
OpenHandler = Callable[[], None]
ErrorHandler = Callable[[Exception], None]


def try_invoke(handler: Callable | None, *args) -> Any:
    """Call ``handler`` and log, rather than raise, anything it throws."""
    if handler is None:
        return None
    try:
        return handler(*args)
    except Exception:
        logger.warning("[realtime] Handler %r raised, ignoring", handler, exc_info=True)
        return None


@dataclass
class ReconnectPolicy:
    """Exponential backoff with proportional jitter."""
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.5             # +/- fraction of the computed delay
    max_attempts: int | None = None  # None retries forever

    @classmethod
    def from_config(cls, config: Config) -> "ReconnectPolicy":
        return cls(
            initial_delay=config.reconnect_initial_delay,
            max_delay=config.reconnect_max_delay,
            multiplier=config.reconnect_multiplier,
            jitter=config.reconnect_jitter,
            max_attempts=config.reconnect_max_attempts,
        )

    def should_retry(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt <= self.max_attempts

    def delay(self, attempt: int) -> float:
        base = min(self.max_delay, self.initial_delay * self.multiplier ** max(attempt - 1, 0))
        if self.jitter:
            base *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, base)


class StreamClosed(ConnectionError):
    """The server ended the event stream."""


class RealtimeSubscription:
    def __init__(
        self,
        url: str,
        on_message: MessageHandler | None = None,
        on_open: OpenHandler | None = None,
        on_error: ErrorHandler | None = None,
        reconnect: ReconnectPolicy | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ):
        self.url = url
        self.on_message = on_message
        self.on_open = on_open
        self.on_error = on_error
        self.reconnect = reconnect or ReconnectPolicy()
        self.timeout = timeout
        self._session = session or requests.Session()
        self._stop_event = threading.Event()
        self._response = None
        self._thread: threading.Thread | None = None

    @property
    def closed(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> "RealtimeSubscription":
        self._thread = threading.Thread(target=self._run, name="RealtimeSubscription", daemon=True)
        self._thread.start()
        return self

    def join(self, timeout: float | None = None) -> None:
        if self._thread:
            self._thread.join(timeout=timeout)

    def close(self) -> None:
        """Stop the subscription. Safe to call more than once."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        response = self._response
        if response is not None:
            try:
                response.close()
            except Exception:
                logger.debug("[realtime] Ignoring error while closing stream", exc_info=True)

    __call__ = close

    def _run(self) -> None:
        attempt = 0
        while not self._stop_event.is_set():
            opened = False
            try:
                opened = self._connect_and_read()
                error: Exception = StreamClosed(f"Realtime stream {self.url} closed by server")
            except (requests.RequestException, OSError) as e:
                error = e

            if self._stop_event.is_set():
                break

            logger.warning("[realtime] Stream error: %s", error)
            try_invoke(self.on_error, error)

            attempt = 1 if opened else attempt + 1
            if not self.reconnect.should_retry(attempt):
                logger.warning("[realtime] Giving up on %s after %d attempts", self.url, attempt - 1)
                break
            self._stop_event.wait(self.reconnect.delay(attempt))

        self._stop_event.set()

    def _connect_and_read(self) -> bool:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        with self._session.get(self.url, stream=True, headers=headers, timeout=self.timeout) as response:
            response.raise_for_status()
            self._response = response
            try:
                try_invoke(self.on_open)
                self._read(response)
            finally:
                self._response = None
        return True

    def _read(self, response) -> None:
        data_lines: list[str] = []
        # event streams are always UTF-8, whatever the Content-Type charset says
        for line in response.iter_lines():
            if self._stop_event.is_set():
                return
            if line is None:
                continue
            if isinstance(line, bytes):
                line = line.decode("utf-8", errors="replace")
            if line == "":
                if data_lines:
                    self._dispatch("\n".join(data_lines))
                    data_lines = []
                continue
            if line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            if field == "data":
                data_lines.append(value[1:] if value.startswith(" ") else value)
        if data_lines and not self._stop_event.is_set():
            self._dispatch("\n".join(data_lines))

    def _dispatch(self, payload: str) -> None:
        try:
            data = json.loads(payload)
        except ValueError as e:
            logger.warning("[realtime] Failed to parse SSE message: %s", e)
            return
        try_invoke(self.on_message, data)


def create_realtime_event_source(
    url: str | None = None,
    on_message: MessageHandler | None = None,
    on_open: OpenHandler | None = None,
    on_error: ErrorHandler | None = None,
    reconnect: ReconnectPolicy | None = None,
    session: requests.Session | None = None,
) -> Callable[[], None]:
    """
    Subscribe to the realtime relay and return an unsubscribe function.

    ``url`` defaults to ``<API_URL>/api/realtime``; the reconnect policy
    defaults to the one configured in the environment.
    """
    if url is None or reconnect is None:
        config = Config.from_env()
        url = url or f"{config.api_url}/api/realtime"
        reconnect = reconnect or ReconnectPolicy.from_config(config)
    subscription = RealtimeSubscription(
        url,
        on_message=on_message,
        on_open=on_open,
        on_error=on_error,
        reconnect=reconnect,
        session=session,
    )
    return subscription.start().close
