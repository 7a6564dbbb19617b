"""
Event Classifier

Rule-based classification of feature frames and screen samples into event
kinds. Thresholds are read from the live ThresholdConfig on every call.

Per face frame (in order, each rule yields at most one event):
  1. EXPRESSION  - expression deviation above EXPRESSION.SPIKE_THRESHOLD while
                   the head is positionally still (position deviation < 0.1)
  2. LEAN_IN/OUT - position deviation above MOVEMENT.SPIKE_THRESHOLD and the
                   Z delta to the oldest buffered position beyond LEAN_Z_DISTANCE
  3. NOD / SHAKE - once the pitch/yaw window is full; NOD wins over SHAKE

Presence is debounced over a 1 s window and reported on edges only.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from utils.ring_buffer import RollingBuffer
from utils.signal_adapter import FeatureFrame, color_histogram, histogram_distance
from utils.thresholds import ThresholdConfig
from utils.visual_presets import EventKind

DEVIATION_WINDOW = 20
PRESENCE_DEBOUNCE_MS = 1000.0
EXPRESSION_STILLNESS_CEILING = 0.1
SCREEN_ACTIVITY_THRESHOLD = 0.05


@dataclass
class ClassifierReadings:
    """Raw deviation magnitudes for optional debug display."""
    expression: float = 0.0
    rotation: float = 0.0
    position: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0
    roll: float = 0.0
    screen: float = 0.0


@dataclass
class Classification:
    """Result of one classification call."""
    events: List[EventKind] = field(default_factory=list)
    active: bool = False  # qualifying activity for the idle monitor
    distance: float = 0.0  # screen samples only


class EventClassifier:
    """
    Stateful classifier holding the deviation windows, the gesture window,
    the presence debounce timestamp and the previous screen histogram.
    Not thread-safe on its own; the session serializes calls.
    """

    def __init__(self, thresholds: ThresholdConfig):
        self.thresholds = thresholds
        self._expression = RollingBuffer(DEVIATION_WINDOW, 11)
        self._rotation = RollingBuffer(DEVIATION_WINDOW, 9)
        self._position = RollingBuffer(DEVIATION_WINDOW, 3)
        self._gesture = RollingBuffer(self._gesture_size(), 2)  # (pitch, yaw)
        self._last_face_ms: Optional[float] = None
        self.face_present = False
        self._prev_histogram: Optional[np.ndarray] = None
        self.readings = ClassifierReadings()

    def _gesture_size(self) -> int:
        return max(1, int(self.thresholds.get("GESTURE", "BUFFER_SIZE")))

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------
    def update_presence(self, face_detected: bool, now_ms: float) -> Optional[EventKind]:
        """
        Record a detector result and return PRESENCE_FOUND / PRESENCE_LOST on
        an edge of the debounced presence, else None.
        """
        if face_detected:
            self._last_face_ms = now_ms
        present = self._last_face_ms is not None and (now_ms - self._last_face_ms) < PRESENCE_DEBOUNCE_MS
        if present == self.face_present:
            return None
        self.face_present = present
        return EventKind.PRESENCE_FOUND if present else EventKind.PRESENCE_LOST

    # ------------------------------------------------------------------
    # Face frames
    # ------------------------------------------------------------------
    def classify_face(self, frame: Optional[FeatureFrame]) -> Classification:
        """Classify one detector frame. None means no face: buffers are cleared."""
        if frame is None:
            self.clear_buffers()
            self.readings = ClassifierReadings()
            return Classification()

        t = self.thresholds
        e_rate = self._expression.deviation_and_push(frame.blendshapes)
        r_rate = self._rotation.deviation_and_push(frame.rotation)
        p_rate = self._position.deviation_and_push(frame.position)
        self.readings = ClassifierReadings(
            expression=e_rate,
            rotation=r_rate,
            position=p_rate,
            pitch=frame.euler.pitch,
            yaw=frame.euler.yaw,
            roll=frame.euler.roll,
        )

        result = Classification()
        result.active = (
            e_rate > t.get("EXPRESSION", "RESET_THRESHOLD")
            or r_rate > t.get("ROTATION", "RESET_THRESHOLD")
            or p_rate > t.get("MOVEMENT", "RESET_THRESHOLD")
        )

        if e_rate > t.get("EXPRESSION", "SPIKE_THRESHOLD") and p_rate < EXPRESSION_STILLNESS_CEILING:
            result.events.append(EventKind.EXPRESSION)

        if p_rate > t.get("MOVEMENT", "SPIKE_THRESHOLD"):
            oldest = self._position.oldest()
            z_delta = float(frame.position[2] - oldest[2])
            if abs(z_delta) > t.get("MOVEMENT", "LEAN_Z_DISTANCE"):
                result.events.append(EventKind.LEAN_IN if z_delta > 0 else EventKind.LEAN_OUT)

        gesture = self._classify_gesture(frame.euler.pitch, frame.euler.yaw)
        if gesture is not None:
            result.events.append(gesture)
        return result

    def _classify_gesture(self, pitch: float, yaw: float) -> Optional[EventKind]:
        size = self._gesture_size()
        if size != self._gesture.capacity:
            kept = self._gesture.values()[-size:]
            self._gesture = RollingBuffer(size, 2)
            for sample in kept:
                self._gesture.push(sample)
        self._gesture.push((pitch, yaw))
        if not self._gesture.is_full():
            return None
        window = self._gesture.values()
        pitch_range = float(window[:, 0].max() - window[:, 0].min())
        yaw_range = float(window[:, 1].max() - window[:, 1].min())
        if pitch_range > self.thresholds.get("GESTURE", "NOD", "PITCH_RANGE_MIN"):
            return EventKind.NOD
        if yaw_range > self.thresholds.get("GESTURE", "SHAKE", "YAW_RANGE_MIN"):
            return EventKind.SHAKE
        return None

    # ------------------------------------------------------------------
    # Screen samples
    # ------------------------------------------------------------------
    def classify_screen(self, image: np.ndarray) -> Classification:
        """
        Compare the frame's histogram with the previous sample. The first
        sample only seeds the comparison. Raises ValueError on unreadable frames.
        """
        hist = color_histogram(image)
        prev = self._prev_histogram
        self._prev_histogram = hist
        if prev is None:
            return Classification()
        distance = histogram_distance(hist, prev)
        self.readings.screen = distance
        result = Classification(distance=distance, active=distance > SCREEN_ACTIVITY_THRESHOLD)
        if distance > self.thresholds.get("SCREEN", "CHANGE_THRESHOLD"):
            result.events.append(EventKind.VISUAL_SURGE)
        return result

    def clear_buffers(self) -> None:
        self._expression.clear()
        self._rotation.clear()
        self._position.clear()
        self._gesture.clear()

    def reset(self) -> None:
        """Back to session-start state."""
        self.clear_buffers()
        self._last_face_ms = None
        self.face_present = False
        self._prev_histogram = None
        self.readings = ClassifierReadings()
