"""
Periodic background task.

Runs a tick function on a daemon thread at a fixed interval until stopped.
Tests call run_once() instead of starting the thread.
"""

import logging
import threading
from typing import Callable, Optional

log = logging.getLogger(__name__)


class PeriodicTask:
    """
    Cancellable fixed-interval loop around tick().

    A tick that raises is logged and the loop carries on after the interval.
    """

    def __init__(self, name: str, tick: Callable[[], object], interval: float):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._tick = tick
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> bool:
        """Run a single tick. Returns False if it raised."""
        try:
            self._tick()
            return True
        except Exception as e:
            log.exception(f"{self.name} tick failed: {e}")
            return False

    def run_forever(self):
        """Tick until stop() is called. Blocks the calling thread."""
        log.info(f"{self.name} started (interval={self.interval}s)")
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval)
        log.info(f"{self.name} stopped")

    def start(self):
        """Start in a background thread."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
