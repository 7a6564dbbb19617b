"""
Audio devices and PCM helpers.

PCM16 <-> float32 conversion and resampling for the speech bridge, plus thin
sounddevice wrappers: a queued playback stream for synthesized speech and a
microphone capture stream. sounddevice is imported when a stream is opened so
importing this module does not require an audio backend.
"""

import base64
import logging
import threading
from collections import deque
from typing import Callable, Optional

import numpy as np

logger = logging.getLogger(__name__)


def decode_pcm16(b64_data: str) -> np.ndarray:
    """Base64 little-endian PCM16 -> float32 in [-1, 1)."""
    raw = base64.b64decode(b64_data)
    if len(raw) % 2:
        raw = raw[:-1]
    return np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0


def encode_pcm16(samples: np.ndarray) -> str:
    """float32 samples -> base64 little-endian PCM16 (clipped)."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32).reshape(-1), -1.0, 1.0)
    return base64.b64encode((clipped * 32767.0).astype("<i2").tobytes()).decode("ascii")


def resample(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Linear resample of a mono block."""
    x = np.asarray(samples, dtype=np.float32).reshape(-1)
    if src_rate == dst_rate or x.size == 0:
        return x
    n_out = max(1, int(round(x.size * dst_rate / float(src_rate))))
    src_t = np.arange(x.size, dtype=np.float64) / src_rate
    dst_t = np.arange(n_out, dtype=np.float64) / dst_rate
    return np.interp(dst_t, src_t, x).astype(np.float32)


class PlaybackStream:
    """
    Queued mono float32 output. Chunks written from any thread play back to
    back in arrival order; the sounddevice callback drains the queue and pads
    with silence.
    """

    def __init__(self, samplerate: int, blocksize: int = 1024):
        self.samplerate = samplerate
        self.blocksize = blocksize
        self._queue = deque()
        self._lock = threading.Lock()
        self._stream = None

    def open(self) -> None:
        if self._stream is not None:
            return
        import sounddevice as sd
        self._stream = sd.OutputStream(
            samplerate=self.samplerate,
            channels=1,
            dtype="float32",
            blocksize=self.blocksize,
            callback=self._callback,
        )
        self._stream.start()

    def write(self, samples: np.ndarray) -> None:
        if self._stream is None:
            self.open()
        with self._lock:
            self._queue.append(np.asarray(samples, dtype=np.float32).reshape(-1))

    def _callback(self, outdata, frames, _time, status):
        if status:
            logger.debug("Playback status: %s", status)
        pos = 0
        with self._lock:
            while pos < frames and self._queue:
                chunk = self._queue[0]
                take = min(frames - pos, chunk.size)
                outdata[pos:pos + take, 0] = chunk[:take]
                pos += take
                if take < chunk.size:
                    self._queue[0] = chunk[take:]
                else:
                    self._queue.popleft()
        if pos < frames:
            outdata[pos:, 0] = 0.0

    def clear(self) -> None:
        with self._lock:
            self._queue.clear()

    def close(self) -> None:
        self.clear()
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()


class MicrophoneStream:
    """Mono float32 capture delivering fixed-size blocks to `on_block`."""

    def __init__(self, on_block: Callable[[np.ndarray], None], samplerate: int, blocksize: int):
        self.on_block = on_block
        self.samplerate = samplerate
        self.blocksize = blocksize
        self._stream = None

    def start(self) -> None:
        if self._stream is not None:
            return
        import sounddevice as sd
        self._stream = sd.InputStream(
            samplerate=self.samplerate,
            channels=1,
            dtype="float32",
            blocksize=self.blocksize,
            callback=self._callback,
        )
        self._stream.start()

    def _callback(self, indata, frames, _time, status):
        if status:
            logger.debug("Microphone status: %s", status)
        try:
            self.on_block(indata[:, 0].copy())
        except Exception as e:
            logger.warning("Microphone block handler failed: %s", e)

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()


def open_microphone(on_block: Callable[[np.ndarray], None], samplerate: int, blocksize: int) -> Optional[MicrophoneStream]:
    """Start a microphone stream; None (logged) when no input device is usable."""
    mic = MicrophoneStream(on_block, samplerate, blocksize)
    try:
        mic.start()
    except Exception as e:
        logger.warning("Microphone unavailable: %s", e)
        return None
    return mic
