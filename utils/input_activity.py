"""
OS-level input activity hooks.

Global mouse and keyboard listeners (pynput) that report "user is active" to
the idle monitor. Events are throttled so a mouse drag does not flood the
session lock.
"""

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)

MIN_REPORT_INTERVAL_SEC = 0.25


class InputActivityMonitor:
    def __init__(self, on_activity: Callable[[], None], min_interval: float = MIN_REPORT_INTERVAL_SEC):
        self.on_activity = on_activity
        self.min_interval = min_interval
        self._listeners = []
        self._last_report = 0.0
        self._lock = threading.Lock()

    def start(self) -> bool:
        """Start listeners. False (logged) when no input backend is available, e.g. headless."""
        if self._listeners:
            return True
        try:
            from pynput import keyboard, mouse
            self._listeners = [
                mouse.Listener(on_move=self._on_event, on_click=self._on_event, on_scroll=self._on_event),
                keyboard.Listener(on_press=self._on_event),
            ]
            for listener in self._listeners:
                listener.start()
        except Exception as e:
            logger.warning("Input activity hooks disabled: %s", e)
            self.stop()
            return False
        return True

    def _on_event(self, *args) -> None:
        now = time.monotonic()
        with self._lock:
            if now - self._last_report < self.min_interval:
                return
            self._last_report = now
        self.on_activity()

    def stop(self) -> None:
        for listener in self._listeners:
            listener.stop()
        self._listeners = []

    @property
    def is_running(self) -> bool:
        return bool(self._listeners)
