"""
AI Escalation Pipeline

When the anomaly score reaches the limit, the session asks the pipeline to
escalate. The pipeline gates the request (blocked session mode, warmup window,
analysis cooldown, one escalation in flight), then runs two stages against the
reasoning service on a worker thread:

  Stage 1 (text): recent event log + current visual state + stated goal ->
                  {further_analysis_needed, system_status}
  Stage 2 (visual, optional): same context + stage-1 hypothesis + webcam /
                  screen snapshots -> {system_status, direct_message}

Results are applied through the session's callback, which re-checks that the
escalation is still current (stop() discards in-flight work).
Failures are logged and the stage is abandoned; the visual state is untouched.

Flow: IDLE_BELOW_THRESHOLD -> ESCALATION_GATING -> STAGE1_INFLIGHT
      -> (STAGE2_INFLIGHT) -> APPLIED
"""

import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

import config
from services.reasoning_service import get_reasoning_service
from utils.thresholds import ThresholdConfig

logger = logging.getLogger(__name__)


class EscalationState(Enum):
    IDLE_BELOW_THRESHOLD = "IDLE_BELOW_THRESHOLD"
    ESCALATION_GATING = "ESCALATION_GATING"
    STAGE1_INFLIGHT = "STAGE1_INFLIGHT"
    STAGE2_INFLIGHT = "STAGE2_INFLIGHT"
    APPLIED = "APPLIED"


class GateOutcome(Enum):
    LAUNCHED = "launched"
    BLOCKED = "blocked"  # modal open, mic open, or speech playing
    WARMUP = "warmup"
    COOLDOWN = "cooldown"
    IN_FLIGHT = "in_flight"


@dataclass
class EscalationContext:
    """Everything stage 1 needs, captured at trigger time."""
    log_text: str
    label: str
    thought: str
    message: str
    color_primary: str
    goal: Optional[str]

    @property
    def goal_text(self) -> str:
        return self.goal or config.DEFAULT_GOAL_PLACEHOLDER

    def current_params_json(self) -> str:
        return json.dumps({
            "label": self.label,
            "thought": self.thought,
            "message": self.message,
            "colorPrimary": self.color_primary,
        }, indent=2)


@dataclass
class EscalationHooks:
    """Session-side callbacks the pipeline needs."""
    is_blocked: Callable[[], bool]
    capture_snapshots: Callable[[], List[str]]  # base64 JPEGs, may be empty
    apply_verdict: Callable[[int, Dict, Optional[str]], None]  # (token, system_status, direct_message)


STAGE1_PROMPT = """
You are the central AI core of a futuristic biometric monitoring interface.
The "Anomaly Score" for the user has reached 100% (Critical).
Analyze the recent event log to determine the user's status and intent.

CONTEXT DATA:
1. Recent Event Log (Last 10 detected events):
{history}

2. Current System State (Visuals):
{params}

3. USER STATED OBJECTIVE: "{goal}"

TASK:
1. Analyze the sequence of events.
2. Determine if the user is actively working towards their stated objective: "{goal}".
3. Determine if the system needs visual confirmation (screen/webcam images) for a deeper diagnosis.
   Set "further_analysis_needed" to true if the logs are ambiguous, suggest distraction, or if you need to verify screen content matches the goal (e.g. "I want to learn Chinese" but screen shows high visual surge from entertainment).
4. Formulate a hypothesis on what the user is doing.
5. Define the SYSTEM STATUS (Label, Thought, Message) and COLOR CODE to represent this state on the HUD.

RESPONSE FORMAT (JSON ONLY):
{{
  "further_analysis_needed": boolean,
  "system_status": {{
    "label": "Short System Label (e.g. SYS.ALERT)",
    "thought": "System thought log. Compare observed behavior vs stated goal.",
    "message": "System result. Brief status update for the user.",
    "color": "hex string (Theme color for HUD UI only)"
  }}
}}
"""

STAGE2_PROMPT = """
VISUAL EVIDENCE ACQUIRED.
I have attached the current view from the user's webcam (Face) and/or screen (Work).
USER STATED OBJECTIVE: "{goal}"

CONTEXT DATA (Recent Event Log):
{history}

TASK:
1. Re-evaluate the situation based on the visual evidence.
2. Check if the screen content aligns with the user's objective: "{goal}".
3. Refine the system status.
4. If the user is distracted from their goal ("{goal}"), provide a gentle, human-like direct message to guide them back. If the user encounters difficulties, you can provide them with some hints. If they are focused, do not disturb (direct_message: null).

RESPONSE FORMAT (JSON ONLY):
{{
  "system_status": {{
    "label": "Short System Label",
    "thought": "System thought log. Compare visual evidence with goal.",
    "message": "System result.",
    "color": "hex string"
  }},
  "direct_message": "Sentences spoken to the user in a kind, human tone. (or null)"
}}
"""


def build_stage1_prompt(ctx: EscalationContext) -> str:
    return STAGE1_PROMPT.format(history=ctx.log_text, params=ctx.current_params_json(), goal=ctx.goal_text)


def build_stage2_prompt(ctx: EscalationContext) -> str:
    return STAGE2_PROMPT.format(history=ctx.log_text, goal=ctx.goal_text)


def _system_status(data: Dict) -> Optional[Dict]:
    status = data.get("system_status")
    return status if isinstance(status, dict) else None


class EscalationPipeline:
    """
    Gate + two-stage runner. One instance per session.

    Times are epoch milliseconds. `run_async=False` runs the stages inline,
    which the tests use for determinism.
    """

    def __init__(
        self,
        thresholds: ThresholdConfig,
        hooks: EscalationHooks,
        reasoning_provider: Callable = get_reasoning_service,
        run_async: bool = True,
    ):
        self.thresholds = thresholds
        self.hooks = hooks
        self._reasoning_provider = reasoning_provider
        self.run_async = run_async
        self._lock = threading.Lock()
        self.state = EscalationState.IDLE_BELOW_THRESHOLD
        self.warmup_end_ms = 0.0
        self.last_analysis_ms: Optional[float] = None
        self._next_token = 0
        self._inflight: Optional[int] = None
        self._worker: Optional[threading.Thread] = None

    def arm_warmup(self, now_ms: float, duration_ms: float = config.WARMUP_MS) -> None:
        with self._lock:
            self.warmup_end_ms = now_ms + duration_ms

    def is_current(self, token: int) -> bool:
        with self._lock:
            return self._inflight == token

    def is_in_flight(self) -> bool:
        with self._lock:
            return self._inflight is not None

    def trigger(self, now_ms: float, ctx: EscalationContext) -> GateOutcome:
        """
        Gate an escalation at score == limit. The caller resets the score
        whatever the outcome. lastAnalysis is stamped at trigger time.
        """
        with self._lock:
            # A running escalation owns the state; a rejected trigger must not overwrite it
            idle = self._inflight is None
            if idle:
                self.state = EscalationState.ESCALATION_GATING
            outcome = self._gate(now_ms)
            if outcome is not GateOutcome.LAUNCHED:
                if idle:
                    self.state = EscalationState.IDLE_BELOW_THRESHOLD
                logger.debug("Escalation aborted: %s", outcome.value)
                return outcome
            self.last_analysis_ms = now_ms
            self._next_token += 1
            token = self._next_token
            self._inflight = token
            self.state = EscalationState.STAGE1_INFLIGHT

        if self.run_async:
            self._worker = threading.Thread(target=self._run, args=(token, ctx), daemon=True)
            self._worker.start()
        else:
            self._run(token, ctx)
        return GateOutcome.LAUNCHED

    def _gate(self, now_ms: float) -> GateOutcome:
        if self.hooks.is_blocked():
            return GateOutcome.BLOCKED
        if now_ms < self.warmup_end_ms:
            return GateOutcome.WARMUP
        cooldown = self.thresholds.get("AI", "ANALYSIS_COOLDOWN_MS")
        if self.last_analysis_ms is not None and now_ms - self.last_analysis_ms < cooldown:
            return GateOutcome.COOLDOWN
        if self._inflight is not None:
            return GateOutcome.IN_FLIGHT
        return GateOutcome.LAUNCHED

    def _run(self, token: int, ctx: EscalationContext) -> None:
        try:
            self._run_stages(token, ctx)
        except Exception as e:
            logger.warning("Escalation failed: %s", e)
            self._finish(token, EscalationState.IDLE_BELOW_THRESHOLD)

    def _run_stages(self, token: int, ctx: EscalationContext) -> None:
        if not config.is_ai_configured():
            logger.info("Escalation skipped: reasoning service is not configured")
            self._finish(token, EscalationState.IDLE_BELOW_THRESHOLD)
            return
        # Session may have changed between trigger and execution
        if self.hooks.is_blocked():
            logger.debug("Escalation dropped before stage 1: session blocked")
            self._finish(token, EscalationState.IDLE_BELOW_THRESHOLD)
            return

        service = self._reasoning_provider()
        stage1 = service.generate_json(build_stage1_prompt(ctx))
        if not self.is_current(token):
            return
        status = _system_status(stage1)
        if status is not None:
            self.hooks.apply_verdict(token, status, None)

        if stage1.get("further_analysis_needed") is True:
            snapshots = self.hooks.capture_snapshots()
            if snapshots:
                with self._lock:
                    if self._inflight != token:
                        return
                    self.state = EscalationState.STAGE2_INFLIGHT
                hypothesis = f"PREVIOUS HYPOTHESIS: {json.dumps(status)}"
                stage2 = service.generate_json(
                    build_stage2_prompt(ctx),
                    extra_texts=[hypothesis],
                    images_b64=snapshots,
                )
                if not self.is_current(token):
                    return
                status2 = _system_status(stage2)
                if status2 is not None:
                    direct = stage2.get("direct_message")
                    direct = direct.strip() if isinstance(direct, str) and direct.strip() else None
                    self.hooks.apply_verdict(token, status2, direct)
            else:
                logger.debug("Stage 2 skipped: no snapshot available")

        self._finish(token, EscalationState.APPLIED)

    def _finish(self, token: int, state: EscalationState) -> None:
        with self._lock:
            if self._inflight == token:
                self._inflight = None
                self.state = state

    def cancel(self) -> None:
        """Discard any in-flight escalation and return to the initial state."""
        with self._lock:
            self._inflight = None
            self.state = EscalationState.IDLE_BELOW_THRESHOLD
            self.warmup_end_ms = 0.0
            self.last_analysis_ms = None
