"""In-process periodic jobs (thread + event) with explicit start/stop."""

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta


def seconds_until_next_midnight(now: datetime | None = None) -> float:
    """Seconds from now until the next 00:00 UTC."""
    now = now or datetime.now(UTC)
    next_midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (next_midnight - now).total_seconds()


class PeriodicTask:
    """
    Runs ``func`` every ``interval`` on a daemon thread until stopped.

    Exceptions raised by ``func`` are logged so one failed run never ends the
    schedule; the next tick tries again.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], object],
        interval: timedelta,
        first_delay: timedelta | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if interval.total_seconds() <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.func = func
        self.interval = interval
        self.first_delay = first_delay if first_delay is not None else interval
        self.logger = logger or logging.getLogger(__name__)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"periodic-{self.name}", daemon=True)
        self._thread.start()
        self.logger.info(
            "Scheduled %s every %s (first run in %.0fs)",
            self.name,
            self.interval,
            self.first_delay.total_seconds(),
        )

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> bool:
        """Run the job now; returns False if it raised."""
        try:
            self.func()
            return True
        except Exception:
            self.logger.exception("Periodic task %s failed; will retry on next run", self.name)
            return False

    def _loop(self) -> None:
        delay = self.first_delay.total_seconds()
        while not self._stop.wait(delay):
            self.run_once()
            delay = self.interval.total_seconds()
