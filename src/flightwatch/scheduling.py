"""Fixed-interval background loop used by the poller and the notification queue."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """Run ``function`` every ``interval`` seconds on a daemon thread.

    Ticks are scheduled against a monotonic clock, so a slow run does not
    push later ticks back; ticks that were missed entirely are skipped
    rather than run back to back. Exceptions from ``function`` are logged
    and the loop carries on.
    """

    def __init__(
        self,
        interval: float,
        function: Callable[[], object],
        name: str = "repeating-timer",
        run_immediately: bool = True,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self.function = function
        self.name = name
        self.run_immediately = run_immediately
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_alive:
            raise RuntimeError(f"{self.name} is already running")
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop scheduling new ticks. A tick already running is left to finish."""
        self._stopped.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        next_run = time.monotonic()
        if not self.run_immediately:
            next_run += self.interval

        while not self._stopped.is_set():
            delay = next_run - time.monotonic()
            if delay > 0 and self._stopped.wait(delay):
                break

            try:
                self.function()
            except Exception:
                logger.exception("%s: tick failed", self.name)

            next_run += self.interval
            now = time.monotonic()
            if next_run <= now:
                missed = int((now - next_run) // self.interval) + 1
                next_run += missed * self.interval
                logger.debug("%s: skipped %d missed tick(s)", self.name, missed)
