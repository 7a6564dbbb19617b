"""
MediaPipe Face Landmarker Implementation

This module provides a MediaPipe Tasks FaceLandmarker implementation of the
FaceDetectorInterface. Runs in VIDEO mode with blendshapes and facial
transformation matrices enabled; only the first face is reported.

mediapipe is imported in load() so importing this module stays cheap.
"""

import os
from typing import Optional

import cv2
import numpy as np

from utils.face_detection_interface import FaceDetectorInterface, FaceLandmarkResult


class MediaPipeFaceLandmarker(FaceDetectorInterface):
    """
    MediaPipe Tasks face landmarker.

    Args:
        model_path: Path to face_landmarker.task
        min_detection_confidence: Minimum confidence for face detection (0-1)
    """

    def __init__(self, model_path: str, min_detection_confidence: float = 0.5):
        self.model_path = model_path
        self._det_conf = max(0.01, min(0.99, float(min_detection_confidence)))
        self._landmarker = None
        self._mp = None
        self._last_timestamp_ms = -1

    def load(self) -> None:
        if self._landmarker is not None:
            return
        if not os.path.isfile(self.model_path):
            raise FileNotFoundError(f"Face landmarker model not found: {self.model_path}")
        import mediapipe as mp

        BaseOptions = mp.tasks.BaseOptions
        FaceLandmarker = mp.tasks.vision.FaceLandmarker
        FaceLandmarkerOptions = mp.tasks.vision.FaceLandmarkerOptions
        VisionRunningMode = mp.tasks.vision.RunningMode

        options = FaceLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=os.path.abspath(self.model_path)),
            running_mode=VisionRunningMode.VIDEO,
            num_faces=1,
            min_face_detection_confidence=self._det_conf,
            output_face_blendshapes=True,
            output_facial_transformation_matrixes=True,
        )
        self._landmarker = FaceLandmarker.create_from_options(options)
        self._mp = mp

    def detect(self, image: np.ndarray, timestamp_ms: int) -> FaceLandmarkResult:
        if self._landmarker is None:
            raise RuntimeError("Face landmarker is not loaded")
        if image is None or image.size == 0:
            return FaceLandmarkResult.empty(timestamp_ms)

        # VIDEO mode requires strictly increasing timestamps
        ts = int(timestamp_ms)
        if ts <= self._last_timestamp_ms:
            ts = self._last_timestamp_ms + 1
        self._last_timestamp_ms = ts

        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        mp_image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb)
        result = self._landmarker.detect_for_video(mp_image, ts)

        if not result.face_landmarks:
            return FaceLandmarkResult.empty(timestamp_ms)

        blendshapes = {}
        if result.face_blendshapes:
            for category in result.face_blendshapes[0]:
                blendshapes[category.category_name] = float(category.score)

        matrix: Optional[list] = None
        if result.facial_transformation_matrixes:
            # 4x4 row-major with translation in the last column
            m = np.asarray(result.facial_transformation_matrixes[0], dtype=np.float64)
            matrix = m.T.reshape(-1).tolist()

        return FaceLandmarkResult(
            face_present=True,
            blendshapes=blendshapes,
            transformation_matrix=matrix,
            timestamp_ms=timestamp_ms,
        )

    def get_name(self) -> str:
        return "mediapipe"

    def close(self) -> None:
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
