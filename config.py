"""
=============================================================================
CONFIGURATION FOR IMIT8 EMOTION GAME (config.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This file holds ALL configurable settings for the game backend in one place.
Other files read from it. Nothing secret is stored in the code; we read from
the environment (e.g. your .env file or system variables), so you can point at
different upload/reward services in development and production without
changing code.

MAIN GROUPS OF SETTINGS:
------------------------
  1. Round timing     — Sampling window, tick interval, capture window, timeouts.
  2. Attempts         — How many rounds a wallet may play per cooldown window.
  3. Rewards          — Reward units paid per score point and the payout relay.
  4. Content storage  — Where captured images and metadata are uploaded.
  5. Expression model — Azure Face API (cloud) or MediaPipe (local) classifier.
  6. Storage          — Where attempt state and the recent-captures wall live.
  7. Server           — Host, port, and debug mode for the web server.

HOW VALUES ARE CHOSEN:
---------------------
  - Environment variables (e.g. REWARD_SERVICE_URL) override everything.
  - If an env var is not set, we use a default where it's safe (e.g. port 5000).
  - We never put real API keys or secrets as defaults in code.
=============================================================================
"""

import os
import sys
from typing import List, Optional


def _strip_quotes(s: str) -> str:
    if not s:
        return s
    s = s.strip()
    if (s.startswith('"') and s.endswith('"')) or (s.startswith("'") and s.endswith("'")):
        return s[1:-1].strip()
    return s


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


# ============================================================================
# ROUND TIMING
# ============================================================================
# One round samples the player's face for SAMPLING_WINDOW_MS, one tick every
# TICK_INTERVAL_MS. Frames are only captured as JPEG during the final
# CAPTURE_WINDOW_MS of the window (the representative frame comes from there).
# ----------------------------------------------------------------------------
SAMPLING_WINDOW_MS: int = max(1, int(os.getenv("SAMPLING_WINDOW_MS", "3000")))
TICK_INTERVAL_MS: int = max(1, int(os.getenv("TICK_INTERVAL_MS", "100")))
CAPTURE_WINDOW_MS: int = max(0, int(os.getenv("CAPTURE_WINDOW_MS", "1000")))

# Upper bound for any single external call (classifier inference, upload,
# reward transfer). A timeout counts as a failure of that tick/operation.
EXTERNAL_CALL_TIMEOUT_SEC: float = float(os.getenv("EXTERNAL_CALL_TIMEOUT_SEC", "10"))

# Camera warm-up: first frames from a webcam are often black or delayed.
CAMERA_WARMUP_FRAMES: int = max(0, int(os.getenv("CAMERA_WARMUP_FRAMES", "12")))

# ============================================================================
# ATTEMPTS (per wallet rate limit)
# ============================================================================
# Fixed window: the cooldown starts on the first round after a reset and all
# attempts come back together once it has elapsed.
# ----------------------------------------------------------------------------
ATTEMPT_LIMIT: int = max(1, int(os.getenv("ATTEMPT_LIMIT", "5")))
ATTEMPT_COOLDOWN_SEC: float = float(os.getenv("ATTEMPT_COOLDOWN_SEC", "60"))

# Exposes DELETE /game/attempts/<wallet> so developers can clear attempts.
DEV_TOOLS_ENABLED: bool = _env_bool("DEV_TOOLS_ENABLED", "false")

# ============================================================================
# REWARDS
# ============================================================================
# reward = final score (0-5) * REWARD_UNITS_PER_POINT. The transfer itself is
# done by a payout relay that holds the signing key; we only call it over HTTP.
# ----------------------------------------------------------------------------
REWARD_UNITS_PER_POINT: int = int(os.getenv("REWARD_UNITS_PER_POINT", "100"))
REWARD_SERVICE_URL: str = (os.getenv("REWARD_SERVICE_URL") or "").strip().rstrip("/")
REWARD_SERVICE_TOKEN: str = _strip_quotes(os.getenv("REWARD_SERVICE_TOKEN") or "")

# ============================================================================
# CONTENT STORAGE (captured image + metadata upload)
# ============================================================================
# IPFS-style pinning endpoint. CONTENT_GATEWAY_URL turns "ipfs://<cid>" into a
# browsable URL; "{client_id}" is substituted when present.
# ----------------------------------------------------------------------------
CONTENT_UPLOAD_URL: str = (os.getenv("CONTENT_UPLOAD_URL") or "").strip().rstrip("/")
CONTENT_CLIENT_ID: str = _strip_quotes(os.getenv("CONTENT_CLIENT_ID") or "")
CONTENT_GATEWAY_URL: str = (
    os.getenv("CONTENT_GATEWAY_URL") or "https://{client_id}.ipfscdn.io/ipfs/"
).strip()
CAPTURE_NAME: str = os.getenv("CAPTURE_NAME", "Imit8 Capture")

# ============================================================================
# EXPRESSION CLASSIFIER
# ============================================================================
#   "mediapipe"     : Local only (no cloud). Landmark-based expression estimate.
#   "azure_face_api": Cloud. Uses Azure Face emotion attributes.
#   "auto"          : Azure when it is configured, MediaPipe otherwise.
# ----------------------------------------------------------------------------
EXPRESSION_CLASSIFIER_METHOD: str = os.getenv("EXPRESSION_CLASSIFIER_METHOD", "auto").strip().lower()
MIN_FACE_CONFIDENCE: float = float(os.getenv("MIN_FACE_CONFIDENCE", "0.2"))

AZURE_FACE_API_KEY: str = (os.getenv("AZURE_FACE_API_KEY") or "").strip()
AZURE_FACE_API_ENDPOINT: str = (os.getenv("AZURE_FACE_API_ENDPOINT") or "").strip().rstrip("/")
AZURE_FACE_API_REGION: str = os.getenv("AZURE_FACE_API_REGION", "eastus")

# ============================================================================
# STORAGE (attempt state + recent captures wall)
# ============================================================================
# Empty path keeps everything in memory (lost on restart).
# ----------------------------------------------------------------------------
IDENTITY_STORE_PATH: str = os.getenv("IDENTITY_STORE_PATH", "data/identity_store.json").strip()
RECENT_CAPTURES_MAX: int = max(1, int(os.getenv("RECENT_CAPTURES_MAX", "50")))

# ============================================================================
# Application Configuration
# ============================================================================
FLASK_PORT: int = int(os.getenv("FLASK_PORT", "5000"))
FLASK_DEBUG: bool = _env_bool("FLASK_DEBUG", "true")
FLASK_HOST: str = os.getenv("FLASK_HOST", "0.0.0.0")

# ============================================================================
# Helper Functions
# ============================================================================

def get_missing_game_config() -> List[str]:
    """
    Names of settings a round cannot run without (upload + reward).
    Empty list means rounds may start.
    """
    missing = []
    if not CONTENT_UPLOAD_URL:
        missing.append("CONTENT_UPLOAD_URL")
    if not CONTENT_CLIENT_ID:
        missing.append("CONTENT_CLIENT_ID")
    if not REWARD_SERVICE_URL:
        missing.append("REWARD_SERVICE_URL")
    return missing


def warn_missing_config() -> None:
    """
    Print a warning when required configuration is missing. Called once from
    app startup. Does not raise.
    """
    missing = get_missing_game_config()
    if missing:
        print(
            "Config warning: the following env vars are not set; rounds cannot start:",
            ", ".join(missing),
            file=sys.stderr,
        )


# Warn once per process for missing Face API config (avoid log spam when checked repeatedly)
_face_api_warned: bool = False


def is_azure_face_api_enabled() -> bool:
    """True if both AZURE_FACE_API_KEY and AZURE_FACE_API_ENDPOINT are set."""
    global _face_api_warned
    key_valid = bool(AZURE_FACE_API_KEY and AZURE_FACE_API_KEY.strip())
    endpoint_valid = bool(AZURE_FACE_API_ENDPOINT and AZURE_FACE_API_ENDPOINT.strip())

    if not _face_api_warned and EXPRESSION_CLASSIFIER_METHOD == "azure_face_api":
        if not key_valid:
            print("Warning: AZURE_FACE_API_KEY is not set or empty")
        if not endpoint_valid:
            print("Warning: AZURE_FACE_API_ENDPOINT is not set or empty")
        _face_api_warned = True

    return key_valid and endpoint_valid


def get_azure_face_api_config() -> dict:
    """
    Get Azure Face API configuration dictionary (no key).

    Returns:
        dict: Configuration dictionary with enabled status and endpoint
    """
    if is_azure_face_api_enabled():
        return {
            "endpoint": AZURE_FACE_API_ENDPOINT,
            "region": AZURE_FACE_API_REGION,
            "enabled": True,
        }
    return {"enabled": False}


def resolve_gateway_url(uri: str) -> str:
    """Turn an ipfs:// URI into a gateway URL; other URIs are returned unchanged."""
    if not uri or not uri.startswith("ipfs://"):
        return uri
    gateway = CONTENT_GATEWAY_URL.replace("{client_id}", CONTENT_CLIENT_ID or "gateway")
    if not gateway.endswith("/"):
        gateway += "/"
    return gateway + uri[len("ipfs://"):]


def build_config_response(classifier_method: Optional[str] = None) -> dict:
    """
    Build the configuration response for GET /config/all. Never includes secrets.
    """
    return {
        "round": {
            "samplingWindowMs": SAMPLING_WINDOW_MS,
            "tickIntervalMs": TICK_INTERVAL_MS,
            "captureWindowMs": CAPTURE_WINDOW_MS,
            "externalCallTimeoutSec": EXTERNAL_CALL_TIMEOUT_SEC,
        },
        "attempts": {
            "limit": ATTEMPT_LIMIT,
            "cooldownSec": ATTEMPT_COOLDOWN_SEC,
            "devToolsEnabled": DEV_TOOLS_ENABLED,
        },
        "rewards": {
            "unitsPerPoint": REWARD_UNITS_PER_POINT,
            "enabled": bool(REWARD_SERVICE_URL),
        },
        "contentStorage": {
            "enabled": bool(CONTENT_UPLOAD_URL and CONTENT_CLIENT_ID),
            "gatewayUrl": CONTENT_GATEWAY_URL,
        },
        "expressionClassifier": {
            "method": classifier_method or EXPRESSION_CLASSIFIER_METHOD,
            "mediapipeAvailable": True,
            "azureFaceApiAvailable": is_azure_face_api_enabled(),
        },
        "azureFaceApi": get_azure_face_api_config(),
        "missingConfig": get_missing_game_config(),
    }
