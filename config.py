"""
=============================================================================
CONFIGURATION FOR FOCUS SENTINEL (config.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This file holds the environment-driven settings for the project in one place.
Nothing secret is stored in the code; we read from the environment (e.g. your
.env file or system variables), which app.py loads before importing us.

MAIN GROUPS OF SETTINGS:
------------------------
  1. Azure OpenAI (reasoning) - the model that interprets the event log and
                                snapshots when the anomaly score hits 100.
  2. Azure OpenAI (realtime)  - the speech model used for spoken messages and
                                the microphone conversation.
  3. Detection / capture      - face landmarker model path, webcam index.
  4. Monitoring               - optional threshold override file, OS input hooks.
  5. Server                   - host, port, and debug mode for the web server.

The live detection thresholds (cooldowns, spike levels, score weights) are not
environment settings: they are edited at runtime through PUT /config/thresholds
(see utils/thresholds.py).
=============================================================================
"""

import os
import threading
from typing import Optional


def _strip_quotes(s: str) -> str:
    if not s:
        return s
    s = s.strip()
    if (s.startswith('"') and s.endswith('"')) or (s.startswith("'") and s.endswith("'")):
        return s[1:-1].strip()
    return s


# ============================================================================
# AZURE OPENAI (reasoning service for the escalation pipeline)
# ============================================================================
AZURE_OPENAI_KEY: str = _strip_quotes(os.getenv("AZURE_OPENAI_KEY") or "")
AZURE_OPENAI_ENDPOINT: str = (os.getenv("AZURE_OPENAI_ENDPOINT") or "").strip().rstrip("/")
DEPLOYMENT_NAME: str = (os.getenv("DEPLOYMENT_NAME") or "gpt-4o").strip()
AZURE_OPENAI_API_VERSION: str = (os.getenv("AZURE_OPENAI_API_VERSION") or "2024-10-21").strip()

# Max tokens per reasoning request; verdicts are short JSON objects.
REASONING_MAX_TOKENS: int = int(os.getenv("REASONING_MAX_TOKENS", "600"))
REASONING_TIMEOUT_SEC: float = float(os.getenv("REASONING_TIMEOUT_SEC", "30"))

# ============================================================================
# AZURE OPENAI REALTIME (speech bridge)
# ============================================================================
# Same resource and key as above; a separate realtime-capable deployment.
REALTIME_DEPLOYMENT_NAME: str = (os.getenv("REALTIME_DEPLOYMENT_NAME") or "gpt-4o-realtime-preview").strip()
REALTIME_API_VERSION: str = (os.getenv("REALTIME_API_VERSION") or "2024-10-01-preview").strip()
REALTIME_VOICE: str = (os.getenv("REALTIME_VOICE") or "alloy").strip()
REALTIME_SYSTEM_INSTRUCTION: str = "You are a helpful assistant."

# Audio formats: the service speaks 24 kHz mono PCM16; the mic is captured at 16 kHz.
SPEECH_OUTPUT_SAMPLE_RATE: int = 24000
MIC_SAMPLE_RATE: int = 16000
MIC_BLOCK_SIZE: int = 4096

# ============================================================================
# DETECTION AND CAPTURE
# ============================================================================
FACE_LANDMARKER_MODEL_PATH: str = _strip_quotes(
    os.getenv("FACE_LANDMARKER_MODEL_PATH") or os.path.join("models", "face_landmarker.task")
)
WEBCAM_INDEX: int = int(os.getenv("WEBCAM_INDEX", "0"))
# Upper bound for the frame loop; detection runs once per available frame.
TARGET_FPS: float = float(os.getenv("TARGET_FPS", "30"))
SNAPSHOT_JPEG_QUALITY: int = int(os.getenv("SNAPSHOT_JPEG_QUALITY", "80"))

# ============================================================================
# MONITORING
# ============================================================================
# Optional JSON file merged over the default thresholds at startup.
THRESHOLDS_PATH: Optional[str] = _strip_quotes(os.getenv("THRESHOLDS_PATH") or "") or None
# When True, global mouse/keyboard hooks (pynput) refresh the idle baseline.
INPUT_ACTIVITY_HOOKS: bool = os.getenv("INPUT_ACTIVITY_HOOKS", "true").lower() == "true"
# Grace window after the session goal is confirmed, before escalation may fire.
WARMUP_MS: float = float(os.getenv("WARMUP_MS", "60000"))
DEFAULT_GOAL_PLACEHOLDER: str = "No specific goal set"
DEFAULT_GOAL: str = "General Task"

# ============================================================================
# Application Configuration
# ============================================================================
FLASK_PORT: int = int(os.getenv("FLASK_PORT", "5000"))
FLASK_DEBUG: bool = os.getenv("FLASK_DEBUG", "true").lower() == "true"
FLASK_HOST: str = os.getenv("FLASK_HOST", "0.0.0.0")

# ============================================================================
# Helper Functions
# ============================================================================

def warn_missing_config() -> None:
    """
    Log warnings when required configuration is missing (no secrets in code; set env vars).
    Call from app startup (e.g. app.py) to help operators. Does not raise.
    """
    import sys
    missing = []
    if not AZURE_OPENAI_KEY:
        missing.append("AZURE_OPENAI_KEY")
    if not AZURE_OPENAI_ENDPOINT:
        missing.append("AZURE_OPENAI_ENDPOINT")
    if missing:
        print("Config warning: the following env vars are not set. AI analysis and speech will be disabled:", ", ".join(missing), file=sys.stderr)
    if not os.path.isfile(FACE_LANDMARKER_MODEL_PATH):
        print(f"Config warning: face landmarker model not found at {FACE_LANDMARKER_MODEL_PATH}", file=sys.stderr)


# -----------------------------------------------------------------------------
# Credential (runtime override; used by PUT /config/credential)
# -----------------------------------------------------------------------------
# Services compare credential_version() with the version they were built with
# and rebuild (or, for the speech session, tear down) when it changes.
_api_key_override: Optional[str] = None
_credential_version: int = 0
_credential_lock = threading.Lock()


def get_api_key() -> str:
    """Return the active API key (runtime override or env)."""
    with _credential_lock:
        return _api_key_override if _api_key_override is not None else AZURE_OPENAI_KEY


def set_api_key(key: str) -> int:
    """
    Replace the API key at runtime. Returns the new credential version.
    An empty key clears the override (falls back to AZURE_OPENAI_KEY).
    """
    global _api_key_override, _credential_version
    k = _strip_quotes(key or "")
    with _credential_lock:
        _api_key_override = k or None
        _credential_version += 1
        return _credential_version


def credential_version() -> int:
    with _credential_lock:
        return _credential_version


def is_ai_configured() -> bool:
    return bool(get_api_key() and AZURE_OPENAI_ENDPOINT)


def build_config_response() -> dict:
    """
    Build the complete configuration response for GET /config/all.
    Secrets are never included; only whether a key is set.
    """
    return {
        "reasoning": {
            "endpoint": AZURE_OPENAI_ENDPOINT,
            "deploymentName": DEPLOYMENT_NAME,
            "apiVersion": AZURE_OPENAI_API_VERSION,
            "apiKeySet": bool(get_api_key()),
        },
        "realtime": {
            "deploymentName": REALTIME_DEPLOYMENT_NAME,
            "apiVersion": REALTIME_API_VERSION,
            "voice": REALTIME_VOICE,
            "outputSampleRate": SPEECH_OUTPUT_SAMPLE_RATE,
            "micSampleRate": MIC_SAMPLE_RATE,
        },
        "detection": {
            "modelPath": FACE_LANDMARKER_MODEL_PATH,
            "webcamIndex": WEBCAM_INDEX,
            "targetFps": TARGET_FPS,
        },
        "monitoring": {
            "thresholdsPath": THRESHOLDS_PATH,
            "inputActivityHooks": INPUT_ACTIVITY_HOOKS,
            "warmupMs": WARMUP_MS,
        },
    }
