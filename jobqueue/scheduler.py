"""A small in-process scheduler for recurring jobs with a fluent interface."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

logger = logging.getLogger(__name__)

_UNITS = {
    "seconds": timedelta(seconds=1),
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
}


@dataclass
class _Job:
    func: Callable[[], object]
    interval: timedelta
    next_run: float

    def run(self) -> None:
        try:
            self.func()
        except Exception:
            logger.exception("scheduled job %r failed", self.func)


class Scheduler:
    """Runs registered functions at fixed intervals.

    Jobs are declared fluently, as in ``scheduler.every(5).minutes().do(func)``.
    ``run_pending`` runs the jobs that are due; ``start_async`` does so from a
    background thread until ``stop`` is called.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        tick: float = 1.0,
    ) -> None:
        if tick <= 0:
            raise ValueError("tick must be positive")
        self._clock = clock
        self._tick = tick
        self._jobs: list[_Job] = []
        self._lock = threading.Lock()
        self._interval: int | None = None
        self._unit: timedelta | None = None
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def jobs(self) -> list[_Job]:
        """A snapshot of the registered jobs."""
        with self._lock:
            return list(self._jobs)

    def every(self, interval: int) -> Scheduler:
        """Start declaring a job that repeats every ``interval`` units."""
        if isinstance(interval, bool) or not isinstance(interval, int) or interval <= 0:
            raise ValueError("interval must be a positive integer")
        self._interval = interval
        self._unit = None
        return self

    def _set_unit(self, name: str) -> Scheduler:
        if self._interval is None:
            raise ValueError(f"{name}() must follow every()")
        self._unit = _UNITS[name]
        return self

    def seconds(self) -> Scheduler:
        """Measure the pending interval in seconds."""
        return self._set_unit("seconds")

    def minutes(self) -> Scheduler:
        """Measure the pending interval in minutes."""
        return self._set_unit("minutes")

    def hours(self) -> Scheduler:
        """Measure the pending interval in hours."""
        return self._set_unit("hours")

    def do(self, func: Callable[[], object]) -> _Job:
        """Register ``func`` with the declared interval and return the job."""
        if not callable(func):
            raise TypeError("job function must be callable")
        if self._interval is None or self._unit is None:
            raise ValueError("an interval and a unit must be set before do()")
        interval = self._unit * self._interval
        self._interval = None
        self._unit = None
        job = _Job(func, interval, self._clock() + interval.total_seconds())
        with self._lock:
            self._jobs.append(job)
        return job

    def run_pending(self) -> int:
        """Run every job that is due and return how many ran."""
        now = self._clock()
        with self._lock:
            due = [job for job in self._jobs if job.next_run <= now]
            for job in due:
                job.next_run = now + job.interval.total_seconds()
        for job in due:
            job.run()
        return len(due)

    def _loop(self) -> None:
        while not self._stop_event.wait(self._tick):
            self.run_pending()

    def start_async(self) -> None:
        """Run due jobs from a background thread; does nothing if already running."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._loop, name="jobqueue-scheduler", daemon=True
            )
            self._thread.start()

    def stop(self) -> None:
        """Stop the background thread, waiting for it to finish."""
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def is_running(self) -> bool:
        """Return True while the background thread is active."""
        with self._lock:
            return (
                self._thread is not None
                and self._thread.is_alive()
                and not self._stop_event.is_set()
            )