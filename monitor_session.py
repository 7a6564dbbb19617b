"""
Monitor Session.

Orchestrates one focus-monitoring session: webcam frames -> face landmarker ->
feature frames -> event classifier; screen samples -> histogram classifier;
classified events -> gate (score / visual preset / event log / idle baseline)
-> AI escalation at score 100 -> speech bridge.

Every tick (frame, screen sample, decay, idle check, user input, verdict
application) runs under one session lock, so its updates are atomic. The
session mode replaces scattered suppression flags:

  INACTIVE       no session; nothing is classified, score is 0
  AWAITING_GOAL  capture running, waiting for the user's goal; only NORMAL passes
  MONITORING     full classification, scoring and escalation
  CONVERSING     microphone open; only NORMAL passes, score held at 0

Pipeline: start() -> submit_goal() -> (ticks) -> toggle_mic()* -> stop()
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, List, Optional

import config
from services.escalation_pipeline import EscalationContext, EscalationHooks, EscalationPipeline, GateOutcome
from services.reasoning_service import get_reasoning_service
from utils.anomaly_scorer import AnomalyScorer, EventDebouncer
from utils.audio_devices import open_microphone
from utils.event_classifier import EventClassifier
from utils.event_log import EventLog
from utils.face_detection_interface import FaceDetectorInterface, FaceLandmarkResult
from utils.idle_monitor import IdleMonitor
from utils.input_activity import InputActivityMonitor
from utils.periodic_task import TaskGroup
from utils.signal_adapter import feature_frame_from_detection
from utils.thresholds import ThresholdConfig, get_thresholds
from utils.video_source_handler import VideoSourceHandler, VideoSourceType
from utils.visual_presets import IDLE_PRESET, LOCKED_PRESET, EventKind, VisualPreset, preset_for

logger = logging.getLogger(__name__)

UPLINK_MESSAGE = "Visual Uplink Established."
ACTIVITY_RESUMED_MESSAGE = "Input detected. System active."
GREETING_TEMPLATE = (
    'The user has just set their session goal: "{goal}". Act as their high-tech, intelligent '
    "biometric monitoring system. Warmly welcome them, acknowledge their specific goal, and inform "
    "them that they have a one-minute calibration phase to prepare before strict monitoring begins. "
    "Be concise, professional, and encouraging."
)


class SessionMode(Enum):
    INACTIVE = "INACTIVE"
    AWAITING_GOAL = "AWAITING_GOAL"
    MONITORING = "MONITORING"
    CONVERSING = "CONVERSING"


class SessionStateError(Exception):
    """Operation not valid in the current session mode."""


@dataclass
class AiHudState:
    """Latest AI verdict shown on the HUD."""
    label: str = "AI.WAITING"
    thought: str = "Initializing neural connection..."
    message: str = "Awaiting sufficient telemetry data for analysis."
    direct_message: Optional[str] = None
    timestamp: Optional[str] = None
    color_primary: str = "#475569"


def _now_ms() -> float:
    return time.time() * 1000.0


def _text(value) -> Optional[str]:
    return value.strip() if isinstance(value, str) and value.strip() else None


class MonitorSession:
    """
    Main session orchestrator.

    Collaborators are injectable so the core can be driven deterministically:
    the tick entry points (process_face_result, process_screen_frame,
    record_user_input, decay_tick, idle_tick) are public.

    Usage:
        session = get_monitor_session()
        session.start()
        session.submit_goal("Write the quarterly report")
        state = session.get_state()
        session.stop()
    """

    def __init__(
        self,
        thresholds: Optional[ThresholdConfig] = None,
        detector: Optional[FaceDetectorInterface] = None,
        webcam: Optional[VideoSourceHandler] = None,
        screen: Optional[VideoSourceHandler] = None,
        speech=None,
        reasoning_provider: Callable = get_reasoning_service,
        clock: Callable[[], float] = _now_ms,
        run_async: bool = True,
        autostart_tasks: bool = True,
        input_hooks: bool = config.INPUT_ACTIVITY_HOOKS,
        mic_factory: Callable = open_microphone,
    ):
        self.thresholds = thresholds if thresholds is not None else get_thresholds()
        self._clock = clock
        self._lock = threading.RLock()
        self.run_async = run_async
        self.autostart_tasks = autostart_tasks

        self._detector = detector
        self.webcam = webcam if webcam is not None else VideoSourceHandler()
        self.screen = screen if screen is not None else VideoSourceHandler()
        self._speech = speech
        self._mic_factory = mic_factory
        self._mic = None
        self._input_monitor = InputActivityMonitor(self.record_user_input) if input_hooks else None
        self._tasks = TaskGroup()

        self.mode = SessionMode.INACTIVE
        self.classifier = EventClassifier(self.thresholds)
        self.scorer = AnomalyScorer()
        self.debouncer = EventDebouncer(self.thresholds)
        self.idle = IdleMonitor(self._clock())
        self.log = EventLog()
        self.preset: VisualPreset = LOCKED_PRESET
        self.hud = AiHudState()
        self.goal: Optional[str] = None
        self.escalation = EscalationPipeline(
            self.thresholds,
            EscalationHooks(
                is_blocked=self._is_blocked,
                capture_snapshots=self._capture_snapshots,
                apply_verdict=self._apply_verdict,
            ),
            reasoning_provider=reasoning_provider,
            run_async=run_async,
        )

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------
    @property
    def detector(self) -> FaceDetectorInterface:
        if self._detector is None:
            from utils.mediapipe_detector import MediaPipeFaceLandmarker
            self._detector = MediaPipeFaceLandmarker(config.FACE_LANDMARKER_MODEL_PATH)
        return self._detector

    @property
    def speech(self):
        if self._speech is None:
            from services.speech_bridge import get_speech_bridge
            self._speech = get_speech_bridge()
        return self._speech

    def _is_speaking(self) -> bool:
        return bool(self._speech is not None and self._speech.is_speaking())

    def _in_background(self, fn: Callable, *args) -> None:
        if self.run_async:
            threading.Thread(target=fn, args=args, daemon=True).start()
        else:
            fn(*args)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def start(self) -> bool:
        """
        Load the detector, open capture sources and wait for the goal.
        Returns False (logged, no retry) if the detector or screen capture fails.
        """
        if self.mode is not SessionMode.INACTIVE:
            self.stop()
        try:
            self.detector.load()
        except Exception as e:
            logger.error("Face landmarker failed to load: %s", e)
            return False
        if not self.screen.initialize_source(VideoSourceType.SCREEN):
            logger.error("Screen capture unavailable; session not started")
            return False
        if not self.webcam.initialize_source(VideoSourceType.WEBCAM, config.WEBCAM_INDEX):
            logger.warning("Webcam unavailable; face signals disabled for this session")

        with self._lock:
            now = self._clock()
            self.classifier.reset()
            self.scorer.reset()
            self.debouncer.reset()
            self.idle.reset(now)
            self.escalation.cancel()
            self.goal = None
            self.hud = AiHudState()
            self.mode = SessionMode.AWAITING_GOAL
            self.trigger_event(EventKind.NORMAL, UPLINK_MESSAGE)

        if self.autostart_tasks:
            self._tasks.add("decay", self.decay_tick, 1.0)
            self._tasks.add("idle-check", self.idle_tick, 1.0)
            self._tasks.add(
                "screen-sample", self._screen_step,
                lambda: self.thresholds.get("SCREEN", "SAMPLE_INTERVAL_MS") / 1000.0,
            )
            self._tasks.add("frame-loop", self._frame_step, 1.0 / max(1.0, config.TARGET_FPS))
            self._tasks.start_all()
        if self._input_monitor is not None:
            self._input_monitor.start()
        logger.info("Monitoring session started")
        return True

    def submit_goal(self, goal: Optional[str]) -> str:
        """Confirm the session goal, arm the warmup window and greet the user."""
        with self._lock:
            if self.mode is not SessionMode.AWAITING_GOAL:
                raise SessionStateError("No session is waiting for a goal")
            goal = (goal or "").strip() or config.DEFAULT_GOAL
            self.goal = goal
            self.mode = SessionMode.MONITORING
            self.trigger_event(EventKind.NORMAL, f"Directive Confirmed: {goal}")
            self.escalation.arm_warmup(self._clock())
        self._in_background(self.speech.instruct, GREETING_TEMPLATE.format(goal=goal))
        return goal

    def toggle_mic(self) -> bool:
        """Open or close the microphone conversation. Returns whether the mic is now open."""
        with self._lock:
            mode = self.mode
        if mode is SessionMode.CONVERSING:
            with self._lock:
                self._close_mic()
                if self.mode is SessionMode.CONVERSING:
                    self.mode = SessionMode.MONITORING
            return False
        if mode is not SessionMode.MONITORING:
            raise SessionStateError("Microphone is only available while monitoring")

        try:
            self.speech.ensure_connected()
        except Exception as e:
            logger.warning("Microphone not opened, speech session unavailable: %s", e)
            return False
        mic = self._mic_factory(self._on_mic_block, config.MIC_SAMPLE_RATE, config.MIC_BLOCK_SIZE)
        if mic is None:
            return False
        with self._lock:
            if self.mode is not SessionMode.MONITORING:
                mic.stop()
                return False
            self._mic = mic
            self.mode = SessionMode.CONVERSING
            self._check_escalation()
        return True

    def _on_mic_block(self, block) -> None:
        if self.mode is SessionMode.CONVERSING:
            self.speech.send_audio(block, config.MIC_SAMPLE_RATE)

    def _close_mic(self) -> None:
        mic, self._mic = self._mic, None
        if mic is not None:
            mic.stop()

    def stop(self) -> None:
        """
        Synchronously cancel everything: timers, capture, mic, speech session,
        in-flight escalation. The event log is kept.
        """
        with self._lock:
            if self.mode is SessionMode.INACTIVE:
                return
            self.mode = SessionMode.INACTIVE
            tasks, self._tasks = self._tasks, TaskGroup()
            self.escalation.cancel()
            self.scorer.reset()
            self.debouncer.reset()
            self.classifier.reset()
            self.idle.reset(self._clock())
            self.preset = LOCKED_PRESET
            self.goal = None
            self._close_mic()

        tasks.stop_all()
        if self._input_monitor is not None:
            self._input_monitor.stop()
        self.webcam.release()
        self.screen.release()
        if self._detector is not None:
            self._detector.close()
        if self._speech is not None:
            self._speech.close()
        logger.info("Monitoring session stopped")

    def credential_changed(self) -> None:
        """Tear down the speech session (and the conversation riding on it)."""
        with self._lock:
            if self.mode is SessionMode.CONVERSING:
                self._close_mic()
                self.mode = SessionMode.MONITORING
        if self._speech is not None:
            self._speech.close()

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------
    def _is_blocked(self) -> bool:
        return self.mode is not SessionMode.MONITORING or self._is_speaking()

    def trigger_event(self, kind: EventKind, message: Optional[str] = None) -> bool:
        """
        Pass one event through the gate. Returns True if it was applied to the
        visual state (and logged, unless NORMAL).
        """
        with self._lock:
            if self.mode is SessionMode.INACTIVE:
                return False
            if self.mode is not SessionMode.MONITORING and kind is not EventKind.NORMAL:
                return False

            now = self._clock()
            decision = self.debouncer.evaluate(kind, now)
            if decision.accrue_score and self.mode is SessionMode.MONITORING:
                self.scorer.add(decision.weight)

            applied = False
            if decision.apply_effects:
                preset = preset_for(kind)
                if message:
                    preset = preset.with_overrides(message=message)
                self.debouncer.mark(now)
                # STAGNATION comes from the idle monitor itself and must not re-arm it
                if not kind.is_system_alert and kind is not EventKind.STAGNATION:
                    self.idle.mark_active(now)
                self.preset = preset
                if kind is not EventKind.NORMAL:
                    self.log.append(preset, now)
                applied = True

            self._check_escalation()
            return applied

    def _check_escalation(self) -> Optional[GateOutcome]:
        if self._is_blocked():
            self.scorer.reset()
            return None
        if not self.scorer.at_limit():
            return None
        ctx = EscalationContext(
            log_text=self.log.format_for_prompt(),
            label=self.preset.label,
            thought=self.preset.thought,
            message=self.preset.message,
            color_primary=self.preset.color_primary,
            goal=self.goal,
        )
        outcome = self.escalation.trigger(self._clock(), ctx)
        self.scorer.reset()
        return outcome

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------
    def process_face_result(self, result: FaceLandmarkResult) -> List[EventKind]:
        """Handle one detector result; returns the events classified from it."""
        with self._lock:
            if self.mode is SessionMode.INACTIVE:
                return []
            now = self._clock()
            edge = self.classifier.update_presence(result.face_present, now)
            classification = self.classifier.classify_face(feature_frame_from_detection(result))
            events = ([edge] if edge is not None else []) + classification.events
            for kind in events:
                self.trigger_event(kind)
            # After the events, so a resume NORMAL cannot debounce this frame's event
            if classification.active:
                self._note_activity(now)
            return events

    def process_screen_frame(self, image) -> List[EventKind]:
        with self._lock:
            if self.mode is SessionMode.INACTIVE:
                return []
            try:
                classification = self.classifier.classify_screen(image)
            except ValueError as e:
                logger.debug("Screen sample skipped: %s", e)
                return []
            for kind in classification.events:
                self.trigger_event(kind)
            if classification.active:
                self._note_activity(self._clock())
            return classification.events

    def record_user_input(self) -> None:
        """OS-level mouse/keyboard activity."""
        with self._lock:
            if self.mode is SessionMode.INACTIVE:
                return
            self._note_activity(self._clock())

    def _note_activity(self, now: float) -> None:
        if self.idle.mark_active(now):
            self.trigger_event(EventKind.NORMAL, ACTIVITY_RESUMED_MESSAGE)

    def decay_tick(self) -> float:
        with self._lock:
            if self.mode is SessionMode.INACTIVE:
                self.scorer.reset()
            else:
                self.scorer.decay(1.0)
                self._check_escalation()
            return self.scorer.score

    def idle_tick(self) -> None:
        with self._lock:
            if self.mode is SessionMode.INACTIVE:
                return
            now = self._clock()
            if not self.idle.check(now, self.thresholds.get("IDLE", "TIMEOUT_MS")):
                return
            if self.classifier.face_present:
                self.trigger_event(EventKind.STAGNATION)
            else:
                # Absence alone is not penalized: no score, no gate
                self.preset = IDLE_PRESET
                self.log.append(IDLE_PRESET, now)

    def _frame_step(self) -> None:
        ok, frame = self.webcam.read_frame()
        if not ok:
            return
        result = self.detector.detect(frame, int(time.monotonic() * 1000))
        self.process_face_result(result)

    def _screen_step(self) -> None:
        ok, frame = self.screen.read_frame()
        if ok:
            self.process_screen_frame(frame)

    # ------------------------------------------------------------------
    # Escalation hooks
    # ------------------------------------------------------------------
    def _capture_snapshots(self) -> List[str]:
        shots = []
        for source in (self.webcam, self.screen):
            image = source.snapshot_b64(config.SNAPSHOT_JPEG_QUALITY)
            if image:
                shots.append(image)
        return shots

    def _apply_verdict(self, token: int, status: dict, direct_message: Optional[str]) -> None:
        with self._lock:
            if self.mode is SessionMode.INACTIVE or not self.escalation.is_current(token):
                return
            label = _text(status.get("label"))
            thought = _text(status.get("thought"))
            message = _text(status.get("message"))
            color = _text(status.get("color"))
            self.preset = self.preset.with_overrides(
                label=label, thought=thought, message=message, color_primary=color,
            )
            self.hud = AiHudState(
                label=label or self.hud.label,
                thought=thought or self.hud.thought,
                message=message or self.hud.message,
                direct_message=direct_message,
                timestamp=time.strftime("%H:%M:%S"),
                color_primary=color or self.hud.color_primary,
            )
        if direct_message:
            self.speech.speak(direct_message)

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------
    def get_state(self) -> dict:
        with self._lock:
            return {
                "mode": self.mode.value,
                "screenSharing": self.mode is not SessionMode.INACTIVE,
                "goal": self.goal,
                "preset": self.preset.to_dict(),
                "score": self.scorer.score,
                "scoreLimit": self.scorer.limit,
                "log": self.log.to_list(),
                "hud": asdict(self.hud),
                "personPresent": self.classifier.face_present,
                "idle": self.idle.is_idle,
                "speaking": self._is_speaking(),
                "micOn": self.mode is SessionMode.CONVERSING,
                "readings": asdict(self.classifier.readings),
                "escalation": self.escalation.state.value,
                "thresholdsVersion": self.thresholds.version,
            }


# Lazy singleton: created on first use so importing routes does not touch devices
_monitor_session: Optional[MonitorSession] = None


def get_monitor_session() -> MonitorSession:
    """Return the process-wide monitor session, creating it on first call (lazy init)."""
    global _monitor_session
    if _monitor_session is None:
        _monitor_session = MonitorSession()
    return _monitor_session
