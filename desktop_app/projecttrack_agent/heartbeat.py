"""Background liveness signal for the running session."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .api_client import ApiClient, ApiError

logger = logging.getLogger(__name__)


class HeartbeatLoop:
    """Sends a heartbeat every ``interval`` seconds until stopped.

    A failed beat is logged and retried on the next tick; a 404 just means no
    session is running right now.
    """

    def __init__(self, client: ApiClient, interval: float) -> None:
        self.client = client
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def beat(self) -> bool:
        try:
            self.client.send_heartbeat()
        except ApiError as exc:
            if exc.status_code == 404:
                logger.debug("no active session, heartbeat skipped")
            else:
                logger.warning("heartbeat failed: %s", exc)
            return False
        return True

    def run(self) -> None:
        while not self._stop_event.is_set():
            self.beat()
            self._stop_event.wait(self.interval)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="heartbeat", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None


__all__ = ["HeartbeatLoop"]
