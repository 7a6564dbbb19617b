"""
Cancellable periodic tasks.

Each task runs its callable on a daemon thread until stopped. The interval may
be a callable so live configuration (e.g. SCREEN.SAMPLE_INTERVAL_MS) is read
on every iteration.
"""

import logging
import threading
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)

Interval = Union[float, Callable[[], float]]


class PeriodicTask:
    """Runs `fn` every `interval` seconds; exceptions are logged and the loop continues."""

    def __init__(self, name: str, fn: Callable[[], None], interval: Interval):
        self.name = name
        self._fn = fn
        self._interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _next_interval(self) -> float:
        value = self._interval() if callable(self._interval) else self._interval
        return max(0.001, float(value))

    def start(self) -> None:
        if self.is_running():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self._next_interval()):
            try:
                self._fn()
            except Exception as e:
                logger.warning("Periodic task %s failed: %s", self.name, e)

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class TaskGroup:
    """Periodic tasks sharing one session lifetime."""

    def __init__(self):
        self._tasks = []

    def add(self, name: str, fn: Callable[[], None], interval: Interval) -> PeriodicTask:
        task = PeriodicTask(name, fn, interval)
        self._tasks.append(task)
        return task

    def start_all(self) -> None:
        for task in self._tasks:
            task.start()

    def stop_all(self) -> None:
        for task in self._tasks:
            task.stop()
        self._tasks = []

    def __len__(self) -> int:
        return len(self._tasks)
