"""
Event kinds and their visual presets.

Each classified event maps to a bundle of wave parameters plus narrative text
that the presentation layer renders. IDLE and LOCKED are states, not events:
they never pass through the scorer.
"""

from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Dict, Optional


class EventKind(Enum):
    """Discrete behavioral / visual changes the classifier can emit."""
    NORMAL = "NORMAL"
    NOD = "NOD"
    SHAKE = "SHAKE"
    LEAN_IN = "LEAN_IN"
    LEAN_OUT = "LEAN_OUT"
    EXPRESSION = "EXPRESSION"
    VISUAL_SURGE = "VISUAL_SURGE"
    STAGNATION = "STAGNATION"
    PRESENCE_FOUND = "PRESENCE_FOUND"
    PRESENCE_LOST = "PRESENCE_LOST"

    @property
    def is_system_alert(self) -> bool:
        return self in (EventKind.PRESENCE_FOUND, EventKind.PRESENCE_LOST)


@dataclass(frozen=True)
class VisualPreset:
    speed: float
    frequency: float
    amplitude: float
    color_primary: str
    color_secondary: str
    jitter: float
    label: str
    thought: str
    message: str

    def with_overrides(
        self,
        label: Optional[str] = None,
        thought: Optional[str] = None,
        message: Optional[str] = None,
        color_primary: Optional[str] = None,
    ) -> "VisualPreset":
        """Copy with narrative fields replaced; wave parameters are kept."""
        changes = {}
        if label is not None:
            changes["label"] = label
        if thought is not None:
            changes["thought"] = thought
        if message is not None:
            changes["message"] = message
        if color_primary is not None:
            changes["color_primary"] = color_primary
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict:
        return asdict(self)


IDLE_PRESET = VisualPreset(
    0.01, 0.005, 10, "#94a3b8", "rgba(148, 163, 184, 0.2)", 0,
    "SYS.IDLE", "No input detected for 30s.", "Entering power save mode.",
)

LOCKED_PRESET = VisualPreset(
    0.005, 0.002, 5, "#475569", "rgba(71, 85, 105, 0.1)", 0,
    "SYS.LOCKED", "Waiting for visual uplink...", "System Standby.",
)

PRESETS: Dict[EventKind, VisualPreset] = {
    EventKind.NORMAL: VisualPreset(
        0.05, 0.01, 20, "#22d3ee", "rgba(34, 211, 238, 0.2)", 0,
        "SYS.MONITOR", "Scanning biometric telemetry.", "Monitoring subject...",
    ),
    EventKind.NOD: VisualPreset(
        0.1, 0.02, 45, "#4ade80", "rgba(74, 222, 128, 0.3)", 0.02,
        "DET.GESTURE", "Vertical oscillation identified.", "Affirmative Action.",
    ),
    EventKind.SHAKE: VisualPreset(
        0.15, 0.08, 40, "#f87171", "rgba(248, 113, 113, 0.3)", 0.25,
        "DET.GESTURE", "Horizontal instability detected.", "Negative Response.",
    ),
    EventKind.LEAN_IN: VisualPreset(
        0.08, 0.015, 50, "#facc15", "rgba(250, 204, 21, 0.3)", 0.01,
        "DET.PROXIMITY", "Z-axis translation spike (+).", "Movement: Leaning Forward.",
    ),
    EventKind.LEAN_OUT: VisualPreset(
        0.08, 0.015, 50, "#fb923c", "rgba(251, 146, 60, 0.3)", 0.01,
        "DET.PROXIMITY", "Z-axis translation spike (-).", "Movement: Leaning Back.",
    ),
    EventKind.EXPRESSION: VisualPreset(
        0.12, 0.06, 45, "#d946ef", "rgba(217, 70, 239, 0.3)", 0.15,
        "BIO.EMOTION", "Blendshape variance exceeded threshold.", "Micro-expression detected.",
    ),
    EventKind.VISUAL_SURGE: VisualPreset(
        0.18, 0.1, 35, "#3b82f6", "rgba(59, 130, 246, 0.3)", 0.1,
        "SYS.VISUAL", "Optical flow variance spike.", "Significant screen activity.",
    ),
    EventKind.STAGNATION: VisualPreset(
        0.02, 0.15, 10, "#f43f5e", "rgba(244, 63, 94, 0.2)", 0.4,
        "BIO.STAGNANT", "Subject immobile for extended period.", "Vitality Check Required.",
    ),
    EventKind.PRESENCE_FOUND: VisualPreset(
        0.1, 0.02, 60, "#34d399", "rgba(52, 211, 153, 0.2)", 0,
        "SYS.ALERT", "Biometric signature acquired.", "Subject DETECTED.",
    ),
    EventKind.PRESENCE_LOST: VisualPreset(
        0.01, 0.005, 2, "#ef4444", "rgba(239, 68, 68, 0.2)", 0.05,
        "SYS.WARN", "Signal interrupted.", "Subject MISSING.",
    ),
}


def preset_for(kind: EventKind) -> VisualPreset:
    return PRESETS[kind]
