"""
Speech bridge tests.

The realtime connection and the audio sink are mocks; no network or audio
device is touched.
"""

import base64
import os
import sys
import threading
import time
from types import SimpleNamespace

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest
from unittest.mock import MagicMock, patch

import numpy as np

import config
from services.speech_bridge import PlaybackTimeline, SpeechBridge, VERBATIM_TEMPLATE
from utils.audio_devices import encode_pcm16


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestPlaybackTimeline(unittest.TestCase):
    """Test back-to-back scheduling."""

    def test_chunks_queue_back_to_back(self):
        """A chunk arriving during playback starts when the previous one ends."""
        clock = FakeClock(0.0)
        t = PlaybackTimeline(clock)
        self.assertAlmostEqual(t.schedule(1.0), 1.0)
        clock.now = 0.5
        self.assertAlmostEqual(t.schedule(1.0), 1.5)
        self.assertAlmostEqual(t.cursor, 2.0)

    def test_never_scheduled_in_the_past(self):
        """After a gap the cursor restarts at now."""
        clock = FakeClock(0.0)
        t = PlaybackTimeline(clock)
        t.schedule(1.0)
        clock.now = 5.0
        self.assertEqual(t.remaining(), 0.0)
        self.assertAlmostEqual(t.schedule(1.0), 1.0)
        self.assertAlmostEqual(t.cursor, 6.0)


class TestSpeechBridge(unittest.TestCase):
    """Test the realtime session wrapper."""

    def setUp(self):
        self.connections = []

        def connector():
            conn = MagicMock()
            self.connections.append(conn)
            return conn

        self.sink = MagicMock()
        self.bridge = SpeechBridge(connector=connector, sink=self.sink, start_reader=False)
        patcher = patch("config.is_ai_configured", return_value=True)
        self.configured = patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(self.bridge.close)

    def test_speak_is_verbatim(self):
        """speak() wraps the text in the verbatim template and requests a response."""
        self.assertTrue(self.bridge.speak("Back to work."))
        conn = self.connections[0]
        item = conn.conversation.item.create.call_args[1]["item"]
        self.assertEqual(item["content"][0]["text"], VERBATIM_TEMPLATE.format(text="Back to work."))
        conn.response.create.assert_called_once()

    def test_instruct_sends_text_as_is(self):
        """instruct() sends the instruction unchanged."""
        self.bridge.instruct("Welcome the user.")
        item = self.connections[0].conversation.item.create.call_args[1]["item"]
        self.assertEqual(item["content"][0]["text"], "Welcome the user.")

    def test_session_reused(self):
        """Consecutive sends share one connection."""
        self.bridge.speak("a")
        self.bridge.speak("b")
        self.assertEqual(len(self.connections), 1)

    def test_credential_change_reopens(self):
        """A new credential closes the old session and opens a new one."""
        self.bridge.speak("a")
        config.set_api_key("rotated-key")
        self.addCleanup(config.set_api_key, "")
        self.bridge.speak("b")
        self.assertEqual(len(self.connections), 2)
        self.connections[0].close.assert_called_once()

    def test_send_error_clears_handle(self):
        """An error during send clears the cached session; the next send reconnects."""
        self.bridge.ensure_connected()
        self.connections[0].conversation.item.create.side_effect = ConnectionError("socket closed")
        self.assertFalse(self.bridge.speak("a"))
        self.assertFalse(self.bridge.is_connected())
        self.assertTrue(self.bridge.speak("b"))
        self.assertEqual(len(self.connections), 2)

    def test_not_configured(self):
        """Without a credential nothing is opened."""
        self.configured.return_value = False
        self.assertFalse(self.bridge.speak("a"))
        with self.assertRaises(RuntimeError):
            self.bridge.ensure_connected()
        self.assertEqual(self.connections, [])

    def test_blank_text_ignored(self):
        """Blank text is not sent."""
        self.assertFalse(self.bridge.speak(""))
        self.assertFalse(self.bridge.instruct("   "))
        self.assertEqual(self.connections, [])

    def test_send_audio_resamples(self):
        """A 4096-sample 16 kHz block is sent as 6144 PCM16 samples."""
        self.assertTrue(self.bridge.send_audio(np.zeros(4096, dtype=np.float32), 16000))
        audio = self.connections[0].input_audio_buffer.append.call_args[1]["audio"]
        self.assertEqual(len(base64.b64decode(audio)), 6144 * 2)

    def test_audio_delta_plays_and_raises_speaking(self):
        """Audio deltas go to the sink and raise the speaking flag until close()."""
        event = SimpleNamespace(type="response.audio.delta", delta=encode_pcm16(np.zeros(2400, dtype=np.float32)))
        self.bridge.handle_event(event)
        written = self.sink.write.call_args[0][0]
        self.assertEqual(written.size, 2400)
        self.assertTrue(self.bridge.is_speaking())
        self.bridge.close()
        self.assertFalse(self.bridge.is_speaking())
        self.sink.close.assert_called()

    def test_close_releases_output_device(self):
        """close() closes the playback stream, not just its queue."""
        self.bridge.speak("a")
        self.bridge.close()
        self.sink.close.assert_called_once()
        self.assertFalse(self.bridge.is_connected())

    def _slow_bridge(self):
        entered = threading.Event()
        release = threading.Event()
        opened = []

        def slow_connector():
            entered.set()
            release.wait(2.0)
            conn = MagicMock()
            opened.append(conn)
            return conn

        bridge = SpeechBridge(connector=slow_connector, sink=MagicMock(), start_reader=False)
        self.addCleanup(bridge.close)
        self.addCleanup(release.set)
        return bridge, entered, release, opened

    def test_speaking_flag_readable_during_connect(self):
        """is_speaking() and is_connected() answer while a connect is in progress."""
        bridge, entered, release, _ = self._slow_bridge()
        worker = threading.Thread(target=bridge.instruct, args=("hello",), daemon=True)
        worker.start()
        self.assertTrue(entered.wait(2.0))
        started = time.monotonic()
        self.assertFalse(bridge.is_speaking())
        self.assertFalse(bridge.is_connected())
        self.assertLess(time.monotonic() - started, 0.2)
        release.set()
        worker.join(2.0)
        self.assertTrue(bridge.is_connected())

    def test_close_during_connect_discards_session(self):
        """A session that finishes connecting after close() is closed, not installed."""
        bridge, entered, release, opened = self._slow_bridge()
        results = []
        worker = threading.Thread(target=lambda: results.append(bridge.instruct("hello")), daemon=True)
        worker.start()
        self.assertTrue(entered.wait(2.0))
        bridge.close()
        release.set()
        worker.join(2.0)
        self.assertEqual(results, [False])
        self.assertFalse(bridge.is_connected())
        opened[0].close.assert_called_once()

    def test_other_events_ignored(self):
        """Non-audio events do not touch the sink."""
        self.bridge.handle_event(SimpleNamespace(type="response.done"))
        self.sink.write.assert_not_called()
        self.assertFalse(self.bridge.is_speaking())


if __name__ == "__main__":
    unittest.main()
