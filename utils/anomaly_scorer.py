"""
Anomaly Scorer & Debouncer

The score is a bounded accumulator: classified events add their configured
weight, a fixed-rate decay drains it, and it is clamped to [0, ANOMALY_LIMIT].

The debouncer implements the two-tier cooldown: one gate decides whether an
event may add score, a related but distinct gate decides whether it may
repaint the visual state and be logged. System alerts and NORMAL bypass the
repaint cooldown; other kinds inside the cooldown only accrue score.
How much they accrue is IDLE.COOLDOWN_SCORE_FACTOR x weight (1.0: every
accepted contribution counts in full; 0: cooldown blocks score as well).
"""

import threading
from dataclasses import dataclass
from typing import Optional

from utils.thresholds import ANOMALY_LIMIT, DECAY_RATE, ThresholdConfig
from utils.visual_presets import EventKind


class AnomalyScorer:
    """Thread-safe bounded score."""

    def __init__(self, limit: float = ANOMALY_LIMIT, decay_rate: float = DECAY_RATE):
        self.limit = float(limit)
        self.decay_rate = float(decay_rate)
        self._score = 0.0
        self._lock = threading.Lock()

    @property
    def score(self) -> float:
        with self._lock:
            return self._score

    def add(self, weight: float) -> float:
        with self._lock:
            self._score = min(self.limit, max(0.0, self._score + float(weight)))
            return self._score

    def decay(self, seconds: float = 1.0) -> float:
        with self._lock:
            self._score = max(0.0, self._score - self.decay_rate * float(seconds))
            return self._score

    def reset(self) -> None:
        with self._lock:
            self._score = 0.0

    def at_limit(self) -> bool:
        with self._lock:
            return self._score >= self.limit


@dataclass
class GateDecision:
    accrue_score: bool
    apply_effects: bool
    weight: float = 0.0


class EventDebouncer:
    """
    Tracks the time of the last applied event and answers, per event, whether
    it may add score and whether it may repaint/log.
    """

    def __init__(self, thresholds: ThresholdConfig):
        self.thresholds = thresholds
        self.last_event_ms: Optional[float] = None

    def evaluate(self, kind: EventKind, now_ms: float) -> GateDecision:
        cooldown = self.thresholds.get("IDLE", "EVENT_COOLDOWN_MS")
        is_system_alert = kind.is_system_alert
        is_debounced = self.last_event_ms is not None and (now_ms - self.last_event_ms) < cooldown
        is_normal = kind is EventKind.NORMAL
        weight = self.thresholds.weight_for(kind.value)
        apply_effects = is_system_alert or not is_debounced or is_normal
        if not apply_effects:
            # Inside the repaint cooldown: flat weight scaled by the tunable factor
            weight *= float(self.thresholds.get("IDLE", "COOLDOWN_SCORE_FACTOR"))
        accrue = weight > 0
        return GateDecision(accrue_score=accrue, apply_effects=apply_effects, weight=weight)

    def mark(self, now_ms: float) -> None:
        self.last_event_ms = now_ms

    def reset(self) -> None:
        self.last_event_ms = None
