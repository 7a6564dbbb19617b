"""
Signal Adapter

Turns raw collaborator output into the fixed-shape vectors the classifier
works on:
  - detector result -> FeatureFrame (11 blendshapes, 9 rotation terms,
    3 position terms, Euler angles in degrees)
  - screen frame -> 24-bucket normalized color histogram

Matrix layout: flat 16 elements, translation at 12..14 (column-major 4x4 as
MediaPipe's web API returns it). A 4x4 numpy matrix with translation in the
last column is transposed before flattening.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import cv2
import numpy as np

from utils.face_detection_interface import FaceLandmarkResult

TARGET_BLENDSHAPES = (
    "browDownLeft",
    "browDownRight",
    "browInnerUp",
    "eyeWideLeft",
    "eyeWideRight",
    "jawOpen",
    "mouthSmileLeft",
    "mouthSmileRight",
    "mouthPucker",
    "mouthFrownLeft",
    "mouthFrownRight",
)

ROTATION_INDICES = (0, 1, 2, 4, 5, 6, 8, 9, 10)
POSITION_SCALE = 10.0

HISTOGRAM_SIZE = 64
HISTOGRAM_BUCKETS_PER_CHANNEL = 8  # floor(v / 32)
HISTOGRAM_LENGTH = HISTOGRAM_BUCKETS_PER_CHANNEL * 3


@dataclass
class EulerAngles:
    pitch: float
    yaw: float
    roll: float


@dataclass
class FeatureFrame:
    blendshapes: np.ndarray  # (11,)
    rotation: np.ndarray  # (9,)
    position: np.ndarray  # (3,)
    euler: EulerAngles


def flatten_matrix(matrix) -> np.ndarray:
    """Normalize a transformation matrix to the flat 16-element layout."""
    m = np.asarray(matrix, dtype=np.float64)
    if m.shape == (4, 4):
        return m.T.reshape(-1)
    m = m.reshape(-1)
    if m.size != 16:
        raise ValueError(f"transformation matrix must have 16 elements, got {m.size}")
    return m


def euler_from_matrix(m: Sequence[float]) -> EulerAngles:
    """Pitch / yaw / roll in degrees from a flat 16-element matrix."""
    pitch = math.atan2(m[9], m[10])
    yaw = math.atan2(-m[8], math.sqrt(m[9] * m[9] + m[10] * m[10]))
    roll = math.atan2(m[4], m[0])
    return EulerAngles(math.degrees(pitch), math.degrees(yaw), math.degrees(roll))


def feature_frame_from_detection(result: FaceLandmarkResult) -> Optional[FeatureFrame]:
    """None when the detector found no face or gave no matrix."""
    if not result.face_present or result.transformation_matrix is None:
        return None
    m = flatten_matrix(result.transformation_matrix)
    scores = result.blendshapes or {}
    blend = np.array([float(scores.get(name, 0.0)) for name in TARGET_BLENDSHAPES], dtype=np.float64)
    rotation = m[list(ROTATION_INDICES)].copy()
    position = m[12:15] / POSITION_SCALE
    return FeatureFrame(blendshapes=blend, rotation=rotation, position=position, euler=euler_from_matrix(m))


def color_histogram(image: np.ndarray) -> np.ndarray:
    """
    Downsample to 64x64 and bucket each channel into 8 bins (value // 32),
    normalized by pixel count. Works on any 3-channel uint8 image; channel
    order does not matter because the comparison is per-position.
    """
    if image is None or image.size == 0:
        raise ValueError("empty frame")
    if image.ndim != 3 or image.shape[2] < 3:
        raise ValueError("expected a 3-channel image")
    small = cv2.resize(image[:, :, :3], (HISTOGRAM_SIZE, HISTOGRAM_SIZE), interpolation=cv2.INTER_AREA)
    buckets = (small.astype(np.int32) // 32).reshape(-1, 3)
    hist = np.zeros(HISTOGRAM_LENGTH, dtype=np.float64)
    for channel in range(3):
        counts = np.bincount(buckets[:, channel], minlength=HISTOGRAM_BUCKETS_PER_CHANNEL)
        hist[channel * HISTOGRAM_BUCKETS_PER_CHANNEL:(channel + 1) * HISTOGRAM_BUCKETS_PER_CHANNEL] = counts
    return hist / float(HISTOGRAM_SIZE * HISTOGRAM_SIZE)


def histogram_distance(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(np.asarray(a) - np.asarray(b)))
