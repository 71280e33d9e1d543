"""Periodic background sweep for the artifact cache."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# fraction of process memory in use above which one eviction batch is forced
PROBE_PRESSURE_THRESHOLD = 0.8


class BackgroundSweeper:
    """
    Runs `sweep()` every `interval` seconds on a daemon thread.

    The optional `memory_probe` returns process memory usage as a 0..1
    fraction. It is a secondary safety valve; the cache's own byte
    accounting drives eviction.
    """

    def __init__(
        self,
        sweep: Callable[[], None],
        interval: float,
        force_evict: Callable[[], int],
        memory_probe: Optional[Callable[[], float]] = None,
    ) -> None:
        self._sweep = sweep
        self._force_evict = force_evict
        self._interval = interval
        self._memory_probe = memory_probe
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.passes = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="artifact-cache-sweeper", daemon=True)
        self._thread.start()
        logger.debug(f"Background sweep started (interval={self._interval}s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.debug("Background sweep stopped")

    def run_once(self) -> None:
        try:
            self._sweep()
            self._check_probe()
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Background sweep failed: {exc}")
        self.passes += 1

    def _check_probe(self) -> None:
        if self._memory_probe is None:
            return
        usage = self._memory_probe()
        if usage > PROBE_PRESSURE_THRESHOLD:
            evicted = self._force_evict()
            logger.info(f"Memory probe at {usage:.0%}, forced eviction of {evicted} entries")

    def _loop(self) -> None:
        while not self._stop_event.wait(self._interval):
            self.run_once()
