"""
Flask routes for Focus Sentinel.

Handles the service banner, session control (start / goal / mic / stop),
OS-independent activity reports, the live session state polled by the
presentation layer, and the settings surface (thresholds, credential, config).
"""

from flask import Blueprint, jsonify, request

import config
from monitor_session import SessionStateError, get_monitor_session
from utils.thresholds import get_thresholds


# Create a blueprint for better organization
api = Blueprint('api', __name__)


def register_routes(app) -> None:
    """Attach all routes to the Flask app."""
    app.register_blueprint(api)


# ============================================================================
# Static Routes
# ============================================================================

@api.route("/")
def index():
    """
    Service banner.

    Returns:
        JSON: {"service": "focus-sentinel", "mode": current session mode}
    """
    return jsonify({
        "service": "focus-sentinel",
        "mode": get_monitor_session().mode.value,
    })


@api.route("/favicon.ico")
def favicon():
    """
    Handle favicon requests.

    Returns:
        Response: Empty 204 response
    """
    return "", 204


# ============================================================================
# Session Routes
# ============================================================================

@api.route("/monitor/start", methods=["POST"])
def start_monitoring():
    """
    Start a monitoring session: load the face landmarker, open the webcam and
    screen capture, and wait for the goal.

    Returns:
        JSON: {"success": true, "mode": "AWAITING_GOAL"}
    """
    session = get_monitor_session()
    try:
        if not session.start():
            return jsonify({
                "error": "Failed to start monitoring. Check the face landmarker model and screen capture."
            }), 500
        return jsonify({"success": True, "mode": session.mode.value})
    except Exception as e:
        return jsonify({
            "error": "Failed to start monitoring",
            "details": str(e)
        }), 500


@api.route("/monitor/goal", methods=["POST"])
def submit_goal():
    """
    Confirm the session goal.

    Request Body:
        {"goal": "optional task description"}   (blank -> "General Task")

    Returns:
        JSON: {"success": true, "goal": str, "mode": "MONITORING"}
    """
    if not request.is_json:
        return jsonify({"error": "Request must be JSON"}), 400
    data = request.get_json(silent=True) or {}
    goal = data.get("goal")
    if goal is not None and not isinstance(goal, str):
        return jsonify({"error": "'goal' must be a string"}), 400

    session = get_monitor_session()
    try:
        confirmed = session.submit_goal(goal)
        return jsonify({"success": True, "goal": confirmed, "mode": session.mode.value})
    except SessionStateError as e:
        return jsonify({"error": str(e)}), 409


@api.route("/monitor/mic", methods=["POST"])
def toggle_mic():
    """
    Toggle the microphone conversation.

    Returns:
        JSON: {"micOn": bool, "mode": str}
    """
    session = get_monitor_session()
    try:
        mic_on = session.toggle_mic()
        return jsonify({"micOn": mic_on, "mode": session.mode.value})
    except SessionStateError as e:
        return jsonify({"error": str(e)}), 409
    except Exception as e:
        return jsonify({
            "error": "Failed to toggle microphone",
            "details": str(e)
        }), 500


@api.route("/monitor/activity", methods=["POST"])
def report_activity():
    """Report user input (mouse/keyboard) seen by the presentation layer."""
    get_monitor_session().record_user_input()
    return jsonify({"ok": True})


@api.route("/monitor/stop", methods=["POST"])
def stop_monitoring():
    """
    Stop the monitoring session. The event log is kept.

    Returns:
        JSON: {"success": true, "mode": "INACTIVE"}
    """
    session = get_monitor_session()
    try:
        session.stop()
        return jsonify({"success": True, "mode": session.mode.value})
    except Exception as e:
        return jsonify({
            "error": "Failed to stop monitoring",
            "details": str(e)
        }), 500


@api.route("/monitor/state", methods=["GET"])
def get_monitor_state():
    """
    Current session state: visual preset, score, event log, AI HUD, presence,
    idle/speaking flags and live readings.
    """
    try:
        return jsonify(get_monitor_session().get_state())
    except Exception as e:
        return jsonify({
            "error": "Failed to read monitoring state",
            "details": str(e)
        }), 500


# ============================================================================
# Settings Routes
# ============================================================================

@api.route("/config/thresholds", methods=["GET", "PUT"])
def thresholds_route():
    """
    GET: Current threshold configuration plus its version.
    PUT: Partial update, e.g. {"GESTURE": {"NOD": {"PITCH_RANGE_MIN": 12}}}. Unknown keys
         or invalid values are rejected (400) and nothing is applied.
         {"reset": true} restores the defaults.
    """
    thresholds = get_thresholds()
    if request.method == "GET":
        return jsonify({"thresholds": thresholds.snapshot(), "version": thresholds.version})

    if not request.is_json:
        return jsonify({"error": "Request must be JSON"}), 400
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Body must be a JSON object"}), 400
    try:
        if data.get("reset") is True:
            values = thresholds.reset()
        else:
            values = thresholds.update(data)
        return jsonify({"thresholds": values, "version": thresholds.version})
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@api.route("/config/credential", methods=["PUT"])
def credential_route():
    """
    Replace the AI credential at runtime. Body: {"apiKey": str}. An empty key
    falls back to AZURE_OPENAI_KEY. The live speech session is torn down.
    """
    if not request.is_json:
        return jsonify({"error": "Request must be JSON"}), 400
    data = request.get_json(silent=True) or {}
    key = data.get("apiKey")
    if key is not None and not isinstance(key, str):
        return jsonify({"error": "'apiKey' must be a string"}), 400

    version = config.set_api_key(key or "")
    get_monitor_session().credential_changed()
    return jsonify({"apiKeySet": bool(config.get_api_key()), "credentialVersion": version})


@api.route("/config/all", methods=["GET"])
def get_all_config():
    """
    Get all configuration in one endpoint. Secrets are never returned.

    Returns:
        JSON: Configuration dictionary plus the current thresholds
    """
    out = config.build_config_response()
    out["thresholds"] = get_thresholds().snapshot()
    return jsonify(out)
