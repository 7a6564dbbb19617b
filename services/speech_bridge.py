"""
Speech Bridge

Persistent bidirectional session with the Azure OpenAI realtime endpoint:
  - text turns in two modes: verbatim ("say exactly") and instruction
    (improvised, e.g. the session-start greeting)
  - microphone audio in (16 kHz capture, resampled to the service's 24 kHz PCM16)
  - synthesized audio out (24 kHz PCM16 deltas) played back to back

The session is opened lazily on first use and torn down when the credential
changes. Any error clears the cached handle so the next send reconnects.
A "speaking" flag is raised on the first audio chunk and lowered by a timer
sized to the audio still scheduled, plus 100 ms.
"""

import logging
import threading
import time
from typing import Callable, Optional

import numpy as np

import config
from utils.audio_devices import PlaybackStream, decode_pcm16, encode_pcm16, resample

logger = logging.getLogger(__name__)

VERBATIM_TEMPLATE = "Say this exactly as written in a natural tone: {text}"
SPEAKING_SLACK_SEC = 0.1
AUDIO_DELTA_EVENTS = ("response.audio.delta", "response.output_audio.delta")


class PlaybackTimeline:
    """
    Shared cursor for back-to-back scheduling. A chunk starts at
    max(cursor, now) and advances the cursor by its duration.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.cursor = 0.0

    def schedule(self, duration_sec: float) -> float:
        """Schedule a chunk; returns the seconds of audio remaining after it."""
        now = self._clock()
        start = max(self.cursor, now)
        self.cursor = start + duration_sec
        return self.cursor - now

    def remaining(self) -> float:
        return max(0.0, self.cursor - self._clock())

    def reset(self) -> None:
        self.cursor = 0.0


def _default_connector():
    """Open a realtime connection with the active credential."""
    from openai import AzureOpenAI

    client = AzureOpenAI(
        azure_endpoint=config.AZURE_OPENAI_ENDPOINT,
        api_key=config.get_api_key(),
        api_version=config.REALTIME_API_VERSION,
    )
    connection = client.beta.realtime.connect(model=config.REALTIME_DEPLOYMENT_NAME).enter()
    connection.session.update(session={
        "modalities": ["audio", "text"],
        "instructions": config.REALTIME_SYSTEM_INSTRUCTION,
        "voice": config.REALTIME_VOICE,
        "input_audio_format": "pcm16",
        "output_audio_format": "pcm16",
        "turn_detection": {"type": "server_vad"},
    })
    return connection


class SpeechBridge:
    """
    Thread-safe wrapper around one realtime connection.

    `connector` returns an open connection (see _default_connector); `sink`
    receives decoded float32 chunks. Both are injectable for tests.
    """

    def __init__(
        self,
        connector: Callable = _default_connector,
        sink=None,
        clock: Callable[[], float] = time.monotonic,
        start_reader: bool = True,
    ):
        self._connector = connector
        self._sink = sink if sink is not None else PlaybackStream(config.SPEECH_OUTPUT_SAMPLE_RATE)
        self._start_reader = start_reader
        # Connect I/O runs outside _lock; the speaking flag has its own lock
        self._lock = threading.RLock()
        self._connect_lock = threading.Lock()
        self._connection = None
        self._credential_version: Optional[int] = None
        self._generation = 0
        self._reader: Optional[threading.Thread] = None
        self.timeline = PlaybackTimeline(clock)
        self._speaking_lock = threading.Lock()
        self._speaking = False
        self._speaking_timer: Optional[threading.Timer] = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    def is_connected(self) -> bool:
        with self._lock:
            return self._connection is not None

    def _current(self):
        """Cached connection if it matches the active credential, else None."""
        with self._lock:
            if self._connection is not None and self._credential_version != config.credential_version():
                logger.info("Credential changed; closing speech session")
                self._close_locked()
            return self._connection

    def ensure_connected(self):
        """Return the live connection, opening it if needed. Raises on failure."""
        connection = self._current()
        if connection is not None:
            return connection
        # One connect at a time; concurrent callers reuse the winner's session
        with self._connect_lock:
            connection = self._current()
            if connection is not None:
                return connection
            if not config.is_ai_configured():
                raise RuntimeError("Speech service is not configured")
            with self._lock:
                generation = self._generation
            version = config.credential_version()
            connection = self._connector()
            with self._lock:
                if self._generation == generation:
                    self._connection = connection
                    self._credential_version = version
                    installed = True
                else:
                    installed = False
            if not installed:
                self._close_connection(connection)
                raise RuntimeError("Speech session closed while connecting")
        logger.info("Speech session connected")
        if self._start_reader:
            self._reader = threading.Thread(target=self._read_loop, args=(connection,), daemon=True)
            self._reader.start()
        return connection

    def close(self) -> None:
        """Close the session (if any), stop playback and release the output device."""
        with self._lock:
            self._close_locked()
        self._set_speaking(False)
        self.timeline.reset()
        self._sink.close()

    def _close_locked(self) -> None:
        connection, self._connection = self._connection, None
        self._credential_version = None
        self._generation += 1
        self._close_connection(connection)

    @staticmethod
    def _close_connection(connection) -> None:
        if connection is not None:
            try:
                connection.close()
            except Exception as e:
                logger.debug("Speech session close failed: %s", e)

    def _drop(self, connection, error: Exception) -> None:
        """Clear the cached handle after an error so the next send reconnects."""
        logger.warning("Speech session error: %s", error)
        with self._lock:
            if self._connection is connection:
                self._close_locked()
        self._set_speaking(False)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------
    def speak(self, text: str) -> bool:
        """Repeat `text` verbatim. Returns False (logged) on failure."""
        return self._send_text(VERBATIM_TEMPLATE.format(text=text))

    def instruct(self, instruction: str) -> bool:
        """Send `instruction` as a generation prompt."""
        return self._send_text(instruction)

    def _send_text(self, text: str) -> bool:
        if not text or not text.strip():
            return False
        connection = None
        try:
            connection = self.ensure_connected()
            connection.conversation.item.create(item={
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": text}],
            })
            connection.response.create()
            return True
        except Exception as e:
            self._drop(connection, e)
            return False

    def send_audio(self, samples: np.ndarray, samplerate: int = config.MIC_SAMPLE_RATE) -> bool:
        """Stream one microphone block."""
        connection = None
        try:
            connection = self.ensure_connected()
            pcm = resample(samples, samplerate, config.SPEECH_OUTPUT_SAMPLE_RATE)
            connection.input_audio_buffer.append(audio=encode_pcm16(pcm))
            return True
        except Exception as e:
            self._drop(connection, e)
            return False

    # ------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------
    def _read_loop(self, connection) -> None:
        try:
            for event in connection:
                self.handle_event(event)
        except Exception as e:
            self._drop(connection, e)
            return
        with self._lock:
            if self._connection is connection:
                logger.info("Speech session closed by server")
                self._close_locked()

    def handle_event(self, event) -> None:
        event_type = getattr(event, "type", "")
        if event_type in AUDIO_DELTA_EVENTS:
            self.play_chunk(decode_pcm16(event.delta))
        elif event_type == "error":
            logger.warning("Speech service error event: %s", getattr(event, "error", event))

    def play_chunk(self, samples: np.ndarray) -> None:
        if samples.size == 0:
            return
        duration = samples.size / float(config.SPEECH_OUTPUT_SAMPLE_RATE)
        remaining = self.timeline.schedule(duration)
        self._sink.write(samples)
        self._set_speaking(True, hold_sec=remaining + SPEAKING_SLACK_SEC)

    # ------------------------------------------------------------------
    # Speaking flag
    # ------------------------------------------------------------------
    def is_speaking(self) -> bool:
        with self._speaking_lock:
            return self._speaking

    def _set_speaking(self, value: bool, hold_sec: float = 0.0) -> None:
        with self._speaking_lock:
            if self._speaking_timer is not None:
                self._speaking_timer.cancel()
                self._speaking_timer = None
            self._speaking = value
            if value:
                self._speaking_timer = threading.Timer(hold_sec, self._set_speaking, args=(False,))
                self._speaking_timer.daemon = True
                self._speaking_timer.start()


# Lazy singleton: initialized on first use so importing routes does not open audio devices
_speech_bridge: Optional[SpeechBridge] = None


def get_speech_bridge() -> SpeechBridge:
    """Return the speech bridge instance, creating it on first call (lazy init)."""
    global _speech_bridge
    if _speech_bridge is None:
        _speech_bridge = SpeechBridge()
    return _speech_bridge
