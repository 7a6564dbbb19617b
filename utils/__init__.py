"""
Utilities package for Focus Sentinel.

This package contains the monitoring core (thresholds, visual presets, signal
adapter, event classifier, anomaly scorer, idle monitor, event log) and the
device wrappers (capture sources, face landmarker, audio, input hooks).

Device wrappers import their heavy libraries lazily; import them from their
own modules.
"""

from .thresholds import ThresholdConfig, get_thresholds
from .visual_presets import EventKind, VisualPreset, PRESETS, preset_for
from .event_classifier import EventClassifier, Classification
from .anomaly_scorer import AnomalyScorer, EventDebouncer
from .idle_monitor import IdleMonitor
from .event_log import EventLog, LogEntry
from .face_detection_interface import FaceDetectorInterface, FaceLandmarkResult

__all__ = [
    'ThresholdConfig',
    'get_thresholds',
    'EventKind',
    'VisualPreset',
    'PRESETS',
    'preset_for',
    'EventClassifier',
    'Classification',
    'AnomalyScorer',
    'EventDebouncer',
    'IdleMonitor',
    'EventLog',
    'LogEntry',
    'FaceDetectorInterface',
    'FaceLandmarkResult',
]
