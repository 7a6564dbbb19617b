"""
Utility module tests.

Tests threshold configuration, rolling buffer, signal adapter, event log,
visual presets, PCM helpers and periodic tasks.
"""

import json
import math
import os
import sys
import tempfile
import threading

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest

import numpy as np


class TestThresholdConfig(unittest.TestCase):
    """Test the live threshold configuration."""

    def test_defaults(self):
        """Defaults should match the documented knobs."""
        from utils.thresholds import ThresholdConfig
        cfg = ThresholdConfig()
        self.assertEqual(cfg.get("GESTURE", "BUFFER_SIZE"), 15)
        self.assertEqual(cfg.get("GESTURE", "NOD", "PITCH_RANGE_MIN"), 12)
        self.assertEqual(cfg.get("IDLE", "TIMEOUT_MS"), 30000)
        self.assertEqual(cfg.get("IDLE", "EVENT_COOLDOWN_MS"), 1500)
        self.assertEqual(cfg.get("AI", "ANALYSIS_COOLDOWN_MS"), 60000)
        self.assertEqual(cfg.weight_for("STAGNATION"), 100.0)
        self.assertEqual(cfg.weight_for("NORMAL"), 0.0)
        self.assertEqual(cfg.weight_for("UNKNOWN_KIND"), 0.0)

    def test_partial_update_bumps_version(self):
        """A valid partial update should apply and bump the version."""
        from utils.thresholds import ThresholdConfig
        cfg = ThresholdConfig()
        v = cfg.version
        cfg.update({"SCORING": {"SHAKE": 20}, "GESTURE": {"NOD": {"PITCH_RANGE_MIN": 8}}})
        self.assertEqual(cfg.version, v + 1)
        self.assertEqual(cfg.weight_for("SHAKE"), 20.0)
        self.assertEqual(cfg.get("GESTURE", "NOD", "PITCH_RANGE_MIN"), 8)
        self.assertEqual(cfg.get("GESTURE", "SHAKE", "YAW_RANGE_MIN"), 15)

    def test_rejected_update_leaves_config_unchanged(self):
        """Unknown keys, non-numbers and negatives raise ValueError and change nothing."""
        from utils.thresholds import ThresholdConfig
        cfg = ThresholdConfig()
        before = cfg.snapshot()
        for bad in (
            {"SCORING": {"NOPE": 1}},
            {"SCORING": {"SHAKE": "high"}},
            {"SCORING": {"SHAKE": True}},
            {"IDLE": {"TIMEOUT_MS": -1}},
            {"GESTURE": {"BUFFER_SIZE": 2.5}},
            {"SCREEN": {"SAMPLE_INTERVAL_MS": 0}},
            {"GESTURE": {"NOD": 3}},
            {"SCORING": {"SHAKE": 10}, "BOGUS": {}},
        ):
            with self.assertRaises(ValueError):
                cfg.update(bad)
        self.assertEqual(cfg.snapshot(), before)
        self.assertEqual(cfg.version, 0)

    def test_snapshot_is_a_copy(self):
        """Mutating a snapshot should not affect the live configuration."""
        from utils.thresholds import ThresholdConfig
        cfg = ThresholdConfig()
        snap = cfg.snapshot()
        snap["SCORING"]["SHAKE"] = 999
        self.assertEqual(cfg.weight_for("SHAKE"), 50.0)

    def test_reset_restores_defaults(self):
        """reset() should restore defaults."""
        from utils.thresholds import ThresholdConfig, DEFAULT_THRESHOLDS
        cfg = ThresholdConfig({"SCORING": {"NOD": 1}})
        cfg.reset()
        self.assertEqual(cfg.snapshot(), DEFAULT_THRESHOLDS)

    def test_from_file_merges_overrides(self):
        """from_file should merge a JSON override file over the defaults."""
        from utils.thresholds import ThresholdConfig
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "thresholds.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"IDLE": {"TIMEOUT_MS": 5000}}, f)
            cfg = ThresholdConfig.from_file(path)
        self.assertEqual(cfg.get("IDLE", "TIMEOUT_MS"), 5000)
        self.assertEqual(cfg.get("IDLE", "EVENT_COOLDOWN_MS"), 1500)

    def test_from_file_missing_or_invalid_uses_defaults(self):
        """A missing or invalid file should be ignored."""
        from utils.thresholds import ThresholdConfig, DEFAULT_THRESHOLDS
        self.assertEqual(ThresholdConfig.from_file("/nonexistent/thresholds.json").snapshot(), DEFAULT_THRESHOLDS)
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "bad.json")
            with open(path, "w", encoding="utf-8") as f:
                f.write("{not json")
            self.assertEqual(ThresholdConfig.from_file(path).snapshot(), DEFAULT_THRESHOLDS)


class TestRollingBuffer(unittest.TestCase):
    """Test the numpy ring buffer."""

    def test_evicts_oldest(self):
        """Pushing past capacity keeps the newest samples in insertion order."""
        from utils.ring_buffer import RollingBuffer
        buf = RollingBuffer(3, 1)
        for v in (1, 2, 3, 4):
            buf.push([v])
        self.assertTrue(buf.is_full())
        self.assertEqual(len(buf), 3)
        self.assertEqual(buf.values().reshape(-1).tolist(), [2.0, 3.0, 4.0])
        self.assertEqual(buf.oldest().tolist(), [2.0])
        self.assertAlmostEqual(float(buf.mean()[0]), 3.0)

    def test_deviation_against_previous_mean(self):
        """Deviation is measured before the push; an empty buffer gives 0."""
        from utils.ring_buffer import RollingBuffer
        buf = RollingBuffer(20, 2)
        self.assertEqual(buf.deviation_and_push([3.0, 4.0]), 0.0)
        self.assertAlmostEqual(buf.deviation_and_push([0.0, 0.0]), 5.0)
        self.assertEqual(len(buf), 2)

    def test_clear(self):
        """clear() empties the buffer."""
        from utils.ring_buffer import RollingBuffer
        buf = RollingBuffer(2, 1)
        buf.push([1])
        buf.clear()
        self.assertEqual(len(buf), 0)
        self.assertIsNone(buf.mean())
        self.assertIsNone(buf.oldest())

    def test_invalid_capacity(self):
        """Capacity below 1 is rejected."""
        from utils.ring_buffer import RollingBuffer
        with self.assertRaises(ValueError):
            RollingBuffer(0, 1)


class TestSignalAdapter(unittest.TestCase):
    """Test detector result -> feature frame and screen histogram."""

    def test_feature_frame_shapes_and_pose(self):
        """Pose and translation survive the adapter; blendshapes keep target order."""
        from tests.fixtures.synthetic_frames import face_result
        from utils.signal_adapter import feature_frame_from_detection, TARGET_BLENDSHAPES
        result = face_result(pitch=10.0, yaw=-20.0, translation=(1.0, 2.0, -30.0),
                             blendshapes={"jawOpen": 0.7, "notTracked": 0.9})
        frame = feature_frame_from_detection(result)
        self.assertEqual(frame.blendshapes.shape, (11,))
        self.assertEqual(frame.rotation.shape, (9,))
        self.assertEqual(frame.position.shape, (3,))
        self.assertAlmostEqual(frame.blendshapes[TARGET_BLENDSHAPES.index("jawOpen")], 0.7)
        self.assertAlmostEqual(frame.euler.pitch, 10.0, places=6)
        self.assertAlmostEqual(frame.euler.yaw, -20.0, places=6)
        self.assertAlmostEqual(frame.euler.roll, 0.0, places=6)
        np.testing.assert_allclose(frame.position, [0.1, 0.2, -3.0])

    def test_no_face_gives_none(self):
        """No face or no matrix -> None."""
        from utils.face_detection_interface import FaceLandmarkResult
        from utils.signal_adapter import feature_frame_from_detection
        self.assertIsNone(feature_frame_from_detection(FaceLandmarkResult.empty()))
        self.assertIsNone(feature_frame_from_detection(FaceLandmarkResult(face_present=True)))

    def test_flatten_matrix_transposes_4x4(self):
        """A row-major 4x4 (translation in last column) lands translation at 12..14."""
        from utils.signal_adapter import flatten_matrix
        m = np.eye(4)
        m[0, 3], m[1, 3], m[2, 3] = 5.0, 6.0, 7.0
        flat = flatten_matrix(m)
        self.assertEqual(flat[12:15].tolist(), [5.0, 6.0, 7.0])
        with self.assertRaises(ValueError):
            flatten_matrix([1.0] * 9)

    def test_histogram_identical_frames_distance_zero(self):
        """Identical frames have distance 0."""
        from tests.fixtures.synthetic_frames import solid_frame
        from utils.signal_adapter import color_histogram, histogram_distance
        a = color_histogram(solid_frame(90))
        b = color_histogram(solid_frame(90))
        self.assertEqual(a.shape, (24,))
        self.assertAlmostEqual(float(a.sum()), 3.0)
        self.assertEqual(histogram_distance(a, b), 0.0)

    def test_histogram_black_vs_white(self):
        """All-black vs all-white differ in 3 buckets per side: distance sqrt(6)."""
        from tests.fixtures.synthetic_frames import solid_frame
        from utils.signal_adapter import color_histogram, histogram_distance
        d = histogram_distance(color_histogram(solid_frame(0)), color_histogram(solid_frame(255)))
        self.assertAlmostEqual(d, math.sqrt(6), places=6)

    def test_histogram_rejects_bad_frames(self):
        """Empty or single-channel frames raise ValueError."""
        from utils.signal_adapter import color_histogram
        with self.assertRaises(ValueError):
            color_histogram(np.zeros((0, 0, 3), dtype=np.uint8))
        with self.assertRaises(ValueError):
            color_histogram(np.zeros((10, 10), dtype=np.uint8))


class TestEventLog(unittest.TestCase):
    """Test the bounded event log."""

    def test_keeps_last_ten_in_order(self):
        """Pushing 15 entries leaves exactly the last 10, oldest first."""
        from utils.event_log import EventLog
        from utils.visual_presets import EventKind, preset_for
        log = EventLog()
        for i in range(15):
            log.append(preset_for(EventKind.SHAKE).with_overrides(message=f"event {i}"), now_ms=1000.0 * i)
        entries = log.entries()
        self.assertEqual(len(entries), 10)
        self.assertEqual([e.preset.message for e in entries], [f"event {i}" for i in range(5, 15)])

    def test_ids_unique_within_same_millisecond(self):
        """Two entries at the same timestamp get distinct ids."""
        from utils.event_log import EventLog
        from utils.visual_presets import EventKind, preset_for
        log = EventLog()
        a = log.append(preset_for(EventKind.NOD), 5000.0)
        b = log.append(preset_for(EventKind.NOD), 5000.0)
        self.assertNotEqual(a.id, b.id)

    def test_format_for_prompt(self):
        """Each line carries the time until the next entry, the last one says now."""
        from utils.event_log import EventLog
        from utils.visual_presets import EventKind, preset_for
        log = EventLog()
        self.assertEqual(log.format_for_prompt(), "(no events recorded)")
        log.append(preset_for(EventKind.NOD), 1000.0)
        log.append(preset_for(EventKind.SHAKE), 3500.0)
        lines = log.format_for_prompt().split("\n")
        self.assertEqual(len(lines), 2)
        self.assertIn("Duration: [2.50s]", lines[0])
        self.assertIn(f"Event: {preset_for(EventKind.NOD).label}", lines[0])
        self.assertIn("Duration: [now]", lines[1])

    def test_to_list_is_json_ready(self):
        """to_list output serializes to JSON."""
        from utils.event_log import EventLog
        from utils.visual_presets import IDLE_PRESET
        log = EventLog()
        log.append(IDLE_PRESET, 0.0)
        data = json.loads(json.dumps(log.to_list()))
        self.assertEqual(data[0]["preset"]["label"], IDLE_PRESET.label)


class TestVisualPresets(unittest.TestCase):
    """Test event kinds and presets."""

    def test_every_kind_has_a_preset(self):
        """Each event kind maps to a preset."""
        from utils.visual_presets import EventKind, PRESETS
        for kind in EventKind:
            self.assertIn(kind, PRESETS)

    def test_system_alerts(self):
        """Only presence edges are system alerts."""
        from utils.visual_presets import EventKind
        alerts = {k for k in EventKind if k.is_system_alert}
        self.assertEqual(alerts, {EventKind.PRESENCE_FOUND, EventKind.PRESENCE_LOST})

    def test_with_overrides_keeps_wave_parameters(self):
        """Narrative overrides leave the wave parameters alone."""
        from utils.visual_presets import EventKind, preset_for
        base = preset_for(EventKind.NOD)
        p = base.with_overrides(label="SYS.X", message="hello")
        self.assertEqual((p.label, p.message, p.thought), ("SYS.X", "hello", base.thought))
        self.assertEqual((p.speed, p.frequency, p.amplitude), (base.speed, base.frequency, base.amplitude))


class TestPcmHelpers(unittest.TestCase):
    """Test PCM16 conversion and resampling."""

    def test_encode_decode(self):
        """Encoding then decoding stays within one quantization step."""
        from utils.audio_devices import decode_pcm16, encode_pcm16
        x = np.array([0.0, 0.5, -0.5, 0.999], dtype=np.float32)
        y = decode_pcm16(encode_pcm16(x))
        np.testing.assert_allclose(y, x, atol=1.0 / 16384)

    def test_encode_clips(self):
        """Out-of-range samples are clipped."""
        from utils.audio_devices import decode_pcm16, encode_pcm16
        y = decode_pcm16(encode_pcm16(np.array([2.0, -2.0], dtype=np.float32)))
        self.assertLessEqual(float(y.max()), 1.0)
        self.assertGreaterEqual(float(y.min()), -1.0)

    def test_resample_length(self):
        """16 kHz -> 24 kHz scales the length by 1.5."""
        from utils.audio_devices import resample
        self.assertEqual(resample(np.zeros(4096, dtype=np.float32), 16000, 24000).size, 6144)
        self.assertEqual(resample(np.zeros(10, dtype=np.float32), 24000, 24000).size, 10)


class TestPeriodicTask(unittest.TestCase):
    """Test the cancellable periodic task."""

    def test_runs_and_stops(self):
        """Task runs repeatedly, survives exceptions and stops on request."""
        from utils.periodic_task import TaskGroup
        calls = []
        ran_twice = threading.Event()

        def tick():
            calls.append(1)
            if len(calls) >= 2:
                ran_twice.set()
            raise RuntimeError("boom")

        group = TaskGroup()
        task = group.add("tick", tick, lambda: 0.01)
        group.start_all()
        self.assertTrue(ran_twice.wait(2.0))
        group.stop_all()
        self.assertFalse(task.is_running())
        self.assertEqual(len(group), 0)


if __name__ == "__main__":
    unittest.main()
