"""
=============================================================================
IMIT8 EMOTION GAME — APPLICATION ENTRY POINT (app.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This is the "front door" of the game server. When you run "python app.py", it
starts a web server that the game UI talks to. The server:

  1. Tells the UI which emoji to mimic and how many attempts a wallet has left.
  2. Runs a short round: samples the player's face, scores every frame against
     the emoji, and picks the best capture.
  3. Saves the capture (image + metadata upload) and pays the reward.

The actual URLs are defined in routes.py; the round itself lives in
game_session.py.

HOW TO RUN:
-----------
  - From project root:  python app.py
  - By default the app is at:  http://localhost:5000

CONFIGURATION:
--------------
  - Settings (upload/reward endpoints, ports, etc.) come from the .env file
    and config.py. Never put real keys in the code.
=============================================================================
"""

# ---------------------------------------------------------------------------
# Step 1: Load environment variables from .env (before anything else)
# ---------------------------------------------------------------------------
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

# ---------------------------------------------------------------------------
# Step 2: Import the web framework and our own modules
# ---------------------------------------------------------------------------
import logging

from flask import Flask
from flask_cors import CORS
from flask_compress import Compress

from routes import register_routes
import config

# ---------------------------------------------------------------------------
# Step 3: Warn if settings needed to run a round are missing
# ---------------------------------------------------------------------------
config.warn_missing_config()


def create_app() -> Flask:
    """
    Create and configure the Flask application.

      - CORS so the game UI can call the API from another origin.
      - Compression for JSON responses when the client supports it.
      - All URL rules from routes.py.
    """
    app = Flask(__name__)

    # In production you would restrict this to the game's domain.
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
        # No reloader: it would start a second process with its own game session
        app.run(
            host=config.FLASK_HOST,
            port=config.FLASK_PORT,
            debug=True,
            use_reloader=False,
        )
    else:
        import waitress
        waitress.serve(app, host=config.FLASK_HOST, port=config.FLASK_PORT, threads=6)
