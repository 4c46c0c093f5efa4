"""Background heartbeat to OpenHIM."""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from .openhim_client import OpenHIMClient, OpenHIMError

log = logging.getLogger(__name__)


class HeartbeatMonitor:
    """Posts heartbeats on an interval and delivers pushed configs.

    Args:
        client: OpenHIMClient.
        on_config: Called with the config dict when OpenHIM pushes one.
        interval: Seconds between heartbeats.
    """

    def __init__(
        self,
        client: OpenHIMClient,
        on_config: Callable[[Dict[str, Any]], object],
        interval: float = 10.0,
    ):
        self.client = client
        self.on_config = on_config
        self.interval = interval
        self._started_at = time.monotonic()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def beat(self, force_config: bool = False) -> bool:
        """Send one heartbeat; returns False if it failed."""
        uptime = time.monotonic() - self._started_at
        try:
            config = self.client.heartbeat(uptime, force_config=force_config)
        except OpenHIMError as exc:
            log.warning("Heartbeat failed: %s", exc)
            return False

        if config:
            log.info("Received config update from OpenHIM")
            try:
                self.on_config(config)
            except Exception:
                log.exception("Failed to apply pushed config")
        return True

    def _run(self) -> None:
        self.beat(force_config=True)
        while not self._stop.wait(self.interval):
            self.beat()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="openhim-heartbeat", daemon=True)
        self._thread.start()
        log.info("Heartbeat started (interval=%ss)", self.interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
