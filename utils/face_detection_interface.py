"""
Face Landmark Detection Interface Module

This module defines an abstract interface for face landmark detectors, so the
monitoring session can consume blendshape scores and the facial transformation
matrix without depending on a specific backend (MediaPipe tasks, a fake for
tests, etc.).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np


@dataclass
class FaceLandmarkResult:
    """
    Standardized detector output for one frame.

    An empty result (face_present False) means no face was found.
    """
    face_present: bool = False
    blendshapes: Dict[str, float] = field(default_factory=dict)  # categoryName -> score
    transformation_matrix: Optional[List[float]] = None  # 16 floats, translation at 12..14
    timestamp_ms: Optional[float] = None

    @classmethod
    def empty(cls, timestamp_ms: Optional[float] = None) -> "FaceLandmarkResult":
        return cls(face_present=False, timestamp_ms=timestamp_ms)


class FaceDetectorInterface(ABC):
    """
    Abstract interface for face landmark detectors.

    Implementations must return blendshape scores and a facial transformation
    matrix for the first face in the frame.
    """

    @abstractmethod
    def load(self) -> None:
        """
        Load the model. Raises on failure; the session treats that as terminal.
        """
        pass

    @abstractmethod
    def detect(self, image: np.ndarray, timestamp_ms: int) -> FaceLandmarkResult:
        """
        Detect the first face in a BGR frame.

        Args:
            image: BGR image array (OpenCV format)
            timestamp_ms: Monotonic frame timestamp (video-mode detectors require it)
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass

    def close(self) -> None:
        """
        Clean up resources. Override if needed.

        Default implementation does nothing.
        """
        pass
