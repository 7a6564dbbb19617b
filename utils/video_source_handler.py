"""
Video Source Handler Module

This module provides a unified interface for the two capture sources the
monitor reads from:
- Webcam (OpenCV VideoCapture) - fed to the face landmarker every frame
- Screen (Pillow ImageGrab)    - sampled for the color histogram

Both return BGR numpy frames. The handler also keeps the most recent frame so
the escalation pipeline can attach a JPEG snapshot.
"""

import base64
import sys
import threading
from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np


class VideoSourceType(Enum):
    """Enumeration of supported video source types."""
    WEBCAM = "webcam"
    SCREEN = "screen"


def encode_jpeg_b64(frame: np.ndarray, quality: int = 80) -> Optional[str]:
    """BGR frame -> base64 JPEG, or None if encoding fails."""
    ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        return None
    return base64.b64encode(buf.tobytes()).decode("ascii")


class VideoSourceHandler:
    """
    Handler for one capture source.

    Usage:
        handler = VideoSourceHandler()
        handler.initialize_source(VideoSourceType.WEBCAM)

        ret, frame = handler.read_frame()
    """

    def __init__(self):
        """Initialize the video source handler."""
        self.cap: Optional[cv2.VideoCapture] = None
        self.source_type: Optional[VideoSourceType] = None
        self._grab = None
        self._last_frame: Optional[np.ndarray] = None
        self._last_frame_lock = threading.Lock()

    def initialize_source(self, source_type: VideoSourceType, index: int = 0) -> bool:
        """
        Initialize a capture source.

        Args:
            source_type: WEBCAM or SCREEN
            index: Camera index (webcam only)

        Returns:
            True if the source can deliver frames
        """
        self.release()
        self.source_type = source_type

        try:
            if source_type == VideoSourceType.WEBCAM:
                api = cv2.CAP_DSHOW if sys.platform == "win32" else cv2.CAP_ANY
                self.cap = cv2.VideoCapture(index, api)
                if not self.cap.isOpened():
                    self.cap = cv2.VideoCapture(index)
                if not self.cap.isOpened():
                    self.release()
                    return False
                self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, 640)
                self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, 480)
                self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
                return True

            if source_type == VideoSourceType.SCREEN:
                from PIL import ImageGrab
                self._grab = ImageGrab.grab
                return True

            raise ValueError(f"Unsupported source type: {source_type}")

        except (ImportError, OSError, ValueError) as e:
            print(f"Error initializing video source: {e}")
            self.release()
            return False

    def read_frame(self) -> Tuple[bool, Optional[np.ndarray]]:
        """
        Read a frame from the source.

        Returns:
            Tuple of (success, frame):
            - success: True if frame was read successfully, False otherwise
            - frame: BGR image array if successful, None otherwise
        """
        frame = None
        if self.source_type == VideoSourceType.WEBCAM:
            if not self.cap or not self.cap.isOpened():
                return False, None
            ret, frame = self.cap.read()
            if not ret:
                return False, None
        elif self.source_type == VideoSourceType.SCREEN and self._grab is not None:
            try:
                shot = self._grab()
            except OSError:
                return False, None
            frame = cv2.cvtColor(np.asarray(shot.convert("RGB")), cv2.COLOR_RGB2BGR)
        if frame is None:
            return False, None
        with self._last_frame_lock:
            self._last_frame = frame
        return True, frame

    def snapshot_b64(self, quality: int = 80) -> Optional[str]:
        """JPEG of the most recent frame (copy-on-read), or None if none yet."""
        with self._last_frame_lock:
            if self._last_frame is None:
                return None
            frame = self._last_frame.copy()
        return encode_jpeg_b64(frame, quality)

    def is_open(self) -> bool:
        if self.source_type == VideoSourceType.WEBCAM:
            return self.cap is not None and self.cap.isOpened()
        return self.source_type == VideoSourceType.SCREEN and self._grab is not None

    def release(self) -> None:
        """Release the current source and free resources."""
        if self.cap:
            self.cap.release()
            self.cap = None
        self._grab = None
        self.source_type = None
        with self._last_frame_lock:
            self._last_frame = None

    def __del__(self):
        """Cleanup on deletion."""
        self.release()
