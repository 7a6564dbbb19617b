"""
Threshold Configuration

Live, versioned set of tunable knobs read by the classifier, scorer, idle
monitor and escalation pipeline on every tick. The settings surface
(PUT /config/thresholds) mutates it concurrently with the monitoring loop;
readers always go through get() so an edit takes effect on the next tick.

JSON format (partial updates allowed, nested by group):
  {"SCORING": {"SHAKE": 50}, "IDLE": {"TIMEOUT_MS": 30000}, ...}
"""

import copy
import json
import logging
import os
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

ANOMALY_LIMIT: float = 100.0
DECAY_RATE: float = 5.0  # points per second

DEFAULT_THRESHOLDS: Dict[str, Any] = {
    "SCORING": {
        "STAGNATION": 100,
        "PRESENCE_LOST": 35,
        "NOD": 50,
        "SHAKE": 50,
        "VISUAL_SURGE": 35,
        "EXPRESSION": 35,
        "LEAN_IN": 35,
        "LEAN_OUT": 35,
        "PRESENCE_FOUND": 35,
        "NORMAL": 0,
    },
    "EXPRESSION": {
        "SPIKE_THRESHOLD": 0.2,
        "RESET_THRESHOLD": 0.1,
    },
    "MOVEMENT": {
        "SPIKE_THRESHOLD": 0.15,
        "LEAN_Z_DISTANCE": 0.4,
        "RESET_THRESHOLD": 0.05,
    },
    "ROTATION": {
        "RESET_THRESHOLD": 0.1,
    },
    "GESTURE": {
        "BUFFER_SIZE": 15,
        "NOD": {"PITCH_RANGE_MIN": 12},
        "SHAKE": {"YAW_RANGE_MIN": 15},
    },
    "SCREEN": {
        "SAMPLE_INTERVAL_MS": 1000,
        "CHANGE_THRESHOLD": 0.15,
    },
    "IDLE": {
        "TIMEOUT_MS": 30000,
        "EVENT_COOLDOWN_MS": 1500,
        "COOLDOWN_SCORE_FACTOR": 1.0,
    },
    "AI": {
        "ANALYSIS_COOLDOWN_MS": 60000,
    },
}

# Knobs that must stay positive integers (buffer sizes, intervals)
_POSITIVE_INT_KEYS = {("GESTURE", "BUFFER_SIZE"), ("SCREEN", "SAMPLE_INTERVAL_MS")}


def _validate(changes: Dict[str, Any], reference: Dict[str, Any], path: tuple = ()) -> None:
    """Raise ValueError if changes contains unknown keys or non-numeric leaves."""
    if not isinstance(changes, dict):
        raise ValueError(f"{'.'.join(path) or 'thresholds'} must be an object")
    for key, value in changes.items():
        if key not in reference:
            raise ValueError(f"Unknown threshold: {'.'.join(path + (key,))}")
        ref = reference[key]
        if isinstance(ref, dict):
            _validate(value, ref, path + (key,))
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{'.'.join(path + (key,))} must be a number")
        if value < 0:
            raise ValueError(f"{'.'.join(path + (key,))} must be >= 0")
        if path + (key,) in _POSITIVE_INT_KEYS and (int(value) != value or value < 1):
            raise ValueError(f"{'.'.join(path + (key,))} must be a positive integer")


def _merge(target: Dict[str, Any], changes: Dict[str, Any]) -> None:
    for key, value in changes.items():
        if isinstance(value, dict):
            _merge(target[key], value)
        else:
            target[key] = value


class ThresholdConfig:
    """
    Thread-safe handle over the nested threshold mapping.

    Every accepted update bumps `version`, so callers holding derived state
    (e.g. the gesture window sized by GESTURE.BUFFER_SIZE) can notice changes.
    """

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self._lock = threading.RLock()
        self._values: Dict[str, Any] = copy.deepcopy(DEFAULT_THRESHOLDS)
        self.version = 0
        if values:
            self.update(values)

    def get(self, *path: str) -> Any:
        """Read one knob, e.g. get("GESTURE", "NOD", "PITCH_RANGE_MIN")."""
        with self._lock:
            node: Any = self._values
            for key in path:
                node = node[key]
            return copy.deepcopy(node) if isinstance(node, dict) else node

    def weight_for(self, kind_name: str) -> float:
        """Score weight for an event kind; unknown kinds weigh 0."""
        with self._lock:
            return float(self._values["SCORING"].get(kind_name, 0))

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the full configuration (safe to serialize)."""
        with self._lock:
            return copy.deepcopy(self._values)

    def update(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a partial nested update. Validation happens before any write so a
        rejected update leaves the configuration unchanged.

        Raises:
            ValueError: unknown key, non-numeric or out-of-range value
        """
        with self._lock:
            _validate(changes, self._values)
            _merge(self._values, changes)
            self.version += 1
            return copy.deepcopy(self._values)

    def reset(self) -> Dict[str, Any]:
        with self._lock:
            self._values = copy.deepcopy(DEFAULT_THRESHOLDS)
            self.version += 1
            return copy.deepcopy(self._values)

    @classmethod
    def from_file(cls, path: Optional[str]) -> "ThresholdConfig":
        """
        Build a configuration with a JSON override file merged over the defaults.
        A missing or invalid file is logged and ignored (defaults are used).
        """
        cfg = cls()
        if not path:
            return cfg
        if not os.path.isfile(path):
            logger.warning("Thresholds file not found: %s", path)
            return cfg
        try:
            with open(path, "r", encoding="utf-8") as f:
                cfg.update(json.load(f))
        except (OSError, json.JSONDecodeError, ValueError) as e:
            logger.warning("Failed to load thresholds from %s: %s", path, e)
        return cfg


# Lazy singleton shared by the session and the settings routes
_thresholds: Optional[ThresholdConfig] = None


def get_thresholds() -> ThresholdConfig:
    """Return the process-wide threshold configuration, creating it on first call."""
    global _thresholds
    if _thresholds is None:
        import config
        _thresholds = ThresholdConfig.from_file(config.THRESHOLDS_PATH)
    return _thresholds
