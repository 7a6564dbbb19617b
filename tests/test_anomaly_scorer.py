"""
Anomaly scorer, debouncer and idle monitor tests.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest

from utils.anomaly_scorer import AnomalyScorer, EventDebouncer
from utils.idle_monitor import IdleMonitor
from utils.thresholds import ThresholdConfig
from utils.visual_presets import EventKind


class TestAnomalyScorer(unittest.TestCase):
    """Test the bounded score."""

    def test_clamped_to_limit(self):
        """Score never exceeds the limit."""
        s = AnomalyScorer()
        s.add(70)
        s.add(70)
        self.assertEqual(s.score, 100.0)
        self.assertTrue(s.at_limit())

    def test_decay_never_negative(self):
        """Decay drains 5 points per second and stops at 0."""
        s = AnomalyScorer()
        s.add(12)
        self.assertEqual(s.decay(), 7.0)
        self.assertEqual(s.decay(), 2.0)
        self.assertEqual(s.decay(), 0.0)
        self.assertFalse(s.at_limit())

    def test_reset(self):
        """reset() zeroes the score."""
        s = AnomalyScorer()
        s.add(40)
        s.reset()
        self.assertEqual(s.score, 0.0)


class TestEventDebouncer(unittest.TestCase):
    """Test the two-tier cooldown."""

    def setUp(self):
        self.thresholds = ThresholdConfig()
        self.debouncer = EventDebouncer(self.thresholds)

    def test_first_event_is_never_debounced(self):
        """No previous event -> effects applied."""
        d = self.debouncer.evaluate(EventKind.SHAKE, 0)
        self.assertTrue(d.apply_effects)
        self.assertTrue(d.accrue_score)
        self.assertEqual(d.weight, 50.0)

    def test_second_shake_inside_cooldown_scores_but_does_not_repaint(self):
        """Two SHAKEs 500 ms apart: the second only accrues score."""
        self.debouncer.evaluate(EventKind.SHAKE, 0)
        self.debouncer.mark(0)
        d = self.debouncer.evaluate(EventKind.SHAKE, 500)
        self.assertFalse(d.apply_effects)
        self.assertTrue(d.accrue_score)
        self.assertEqual(d.weight, 50.0)

    def test_cooldown_score_factor(self):
        """COOLDOWN_SCORE_FACTOR 0 blocks score inside the cooldown as well."""
        self.thresholds.update({"IDLE": {"COOLDOWN_SCORE_FACTOR": 0}})
        self.debouncer.mark(0)
        d = self.debouncer.evaluate(EventKind.SHAKE, 500)
        self.assertFalse(d.apply_effects)
        self.assertFalse(d.accrue_score)

    def test_system_alerts_and_normal_bypass_cooldown(self):
        """Presence edges and NORMAL always apply; NORMAL never scores."""
        self.debouncer.mark(0)
        self.assertTrue(self.debouncer.evaluate(EventKind.PRESENCE_LOST, 100).apply_effects)
        normal = self.debouncer.evaluate(EventKind.NORMAL, 100)
        self.assertTrue(normal.apply_effects)
        self.assertFalse(normal.accrue_score)

    def test_cooldown_elapses(self):
        """At EVENT_COOLDOWN_MS the window re-opens."""
        self.debouncer.mark(0)
        self.assertTrue(self.debouncer.evaluate(EventKind.NOD, 1500).apply_effects)

    def test_cooldown_read_live(self):
        """A shorter EVENT_COOLDOWN_MS applies to the next evaluation."""
        self.debouncer.mark(0)
        self.thresholds.update({"IDLE": {"EVENT_COOLDOWN_MS": 200}})
        self.assertTrue(self.debouncer.evaluate(EventKind.NOD, 500).apply_effects)


class TestIdleMonitor(unittest.TestCase):
    """Test the idle crossing."""

    def test_crossing_reported_once(self):
        """check() is True only on the tick that crosses into idle."""
        m = IdleMonitor(0)
        self.assertFalse(m.check(30000, 30000))
        self.assertTrue(m.check(30001, 30000))
        self.assertTrue(m.is_idle)
        self.assertFalse(m.check(90000, 30000))

    def test_activity_clears_idle(self):
        """mark_active() reports whether we were idle and re-arms the timeout."""
        m = IdleMonitor(0)
        self.assertFalse(m.mark_active(1000))
        m.check(40000, 30000)
        self.assertTrue(m.mark_active(41000))
        self.assertFalse(m.is_idle)
        self.assertEqual(m.last_active_ms, 41000)
        self.assertFalse(m.check(71000, 30000))
        self.assertTrue(m.check(71001, 30000))


if __name__ == "__main__":
    unittest.main()
