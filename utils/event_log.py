"""
Event Log

Bounded, append-only window of the most recent applied events, oldest first.
Fed into the escalation prompt with the elapsed time each entry stayed current.
"""

import random
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import List, Optional

from utils.visual_presets import VisualPreset

MAX_LOG_ENTRIES = 10


@dataclass(frozen=True)
class LogEntry:
    id: float  # epoch ms plus jitter so ids stay unique within a millisecond
    timestamp_ms: float
    timestamp_display: str  # HH:MM:SS local time
    preset: VisualPreset

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp_display,
            "preset": self.preset.to_dict(),
        }


class EventLog:
    def __init__(self, max_entries: int = MAX_LOG_ENTRIES):
        self._entries = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def append(self, preset: VisualPreset, now_ms: float) -> LogEntry:
        entry = LogEntry(
            id=now_ms + random.random(),
            timestamp_ms=now_ms,
            timestamp_display=time.strftime("%H:%M:%S", time.localtime(now_ms / 1000.0)),
            preset=preset,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(self) -> List[LogEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def format_for_prompt(self) -> str:
        """
        One line per entry, annotated with how long it stayed current
        (time to the next entry, or "now" for the last one).
        """
        entries = self.entries()
        lines = []
        for i, entry in enumerate(entries):
            nxt: Optional[LogEntry] = entries[i + 1] if i + 1 < len(entries) else None
            duration = "now" if nxt is None else f"{(nxt.timestamp_ms - entry.timestamp_ms) / 1000.0:.2f}s"
            p = entry.preset
            lines.append(f"- Duration: [{duration}] | Event: {p.label} | Message: \"{p.message}\" | System Thought: \"{p.thought}\"")
        return "\n".join(lines) if lines else "(no events recorded)"

    def to_list(self) -> List[dict]:
        return [e.to_dict() for e in self.entries()]
