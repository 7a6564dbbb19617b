"""
=============================================================================
FOCUS SENTINEL: APPLICATION ENTRY POINT (app.py)
=============================================================================

WHAT THIS FILE DOES:
--------------------
Starts the HTTP server the presentation layer talks to. Through it the UI:

  1. Starts a monitoring session (webcam + screen capture, face landmarks,
     anomaly scoring), confirms the goal, toggles the microphone and stops.
  2. Polls the live session state (visual preset, score, event log, AI
     verdict) to render it.
  3. Tunes the detection thresholds and replaces the AI credential at runtime.

Handlers live in routes.py; the session itself lives in monitor_session.py.

HOW TO RUN:
-----------
  - From project root:  python app.py
  - Default address:    http://localhost:5000

CONFIGURATION:
--------------
  - Read from .env and the environment by config.py (API key, endpoint,
    landmarker model path, webcam index, thresholds file, host/port).
=============================================================================
"""

import logging
from pathlib import Path
from dotenv import load_dotenv

# .env must be loaded before config is imported
load_dotenv(Path(__file__).resolve().parent / ".env")

from flask import Flask
from flask_cors import CORS
from flask_compress import Compress

from routes import register_routes
import config

# AI analysis and speech stay disabled until AZURE_OPENAI_KEY / endpoint are set.
config.warn_missing_config()


def create_app() -> Flask:
    """
    Build the Flask application: CORS for a UI served from another origin,
    compression for the polled /monitor/state payload, and the API blueprint.
    """
    app = Flask(__name__)
    CORS(app, resources={r"/*": {"origins": "*"}})
    Compress(app)
    register_routes(app)
    return app


app = create_app()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.DEBUG if config.FLASK_DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if config.FLASK_DEBUG:
        # No reloader: a second process would compete for the webcam.
        app.run(
            host=config.FLASK_HOST,
            port=config.FLASK_PORT,
            debug=True,
            use_reloader=False,
        )
    else:
        import waitress
        waitress.serve(app, host=config.FLASK_HOST, port=config.FLASK_PORT, threads=6)
