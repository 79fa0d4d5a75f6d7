"""Background threads that run a maintenance callable at a fixed interval."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Daemon thread calling `func` every `interval_seconds` until stopped.

    Errors raised by `func` are logged and the loop keeps running.
    """

    def __init__(self, name: str, interval_seconds: float, func: Callable[[], object]):
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _run(self):
        # Event.wait returns True as soon as stop() is called
        while not self._stop.wait(self.interval_seconds):
            try:
                self.func()
            except Exception as e:
                logger.exception(f"[PERIODIC] Error in periodic task {self.name}: {e}")

    def start(self):
        if self.is_running():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info(f"[PERIODIC] Started {self.name} (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = 5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info(f"[PERIODIC] Stopped {self.name}")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
