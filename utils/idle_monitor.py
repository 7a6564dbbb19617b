"""
Idle / Activity Monitor

Tracks a single "last active" timestamp. Qualifying activity refreshes it;
a periodic check reports the not-idle -> idle crossing exactly once, and the
first activity after going idle reports the way back.
"""

import threading


class IdleMonitor:
    """Thread-safe idle tracker. Times are epoch milliseconds."""

    def __init__(self, now_ms: float = 0.0):
        self._lock = threading.Lock()
        self._last_active_ms = float(now_ms)
        self._is_idle = False

    @property
    def is_idle(self) -> bool:
        with self._lock:
            return self._is_idle

    @property
    def last_active_ms(self) -> float:
        with self._lock:
            return self._last_active_ms

    def mark_active(self, now_ms: float) -> bool:
        """Refresh the baseline and clear idle. Returns True if we were idle."""
        with self._lock:
            was_idle = self._is_idle
            self._last_active_ms = float(now_ms)
            self._is_idle = False
            return was_idle

    def check(self, now_ms: float, timeout_ms: float) -> bool:
        """True only on the tick that crosses into idle."""
        with self._lock:
            if self._is_idle:
                return False
            if now_ms - self._last_active_ms > timeout_ms:
                self._is_idle = True
                return True
            return False

    def reset(self, now_ms: float) -> None:
        with self._lock:
            self._last_active_ms = float(now_ms)
            self._is_idle = False
