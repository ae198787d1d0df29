"""
Flask routes for the Imit8 emotion game.

Handles config, expression classifier selection, targets, per-wallet attempts,
round start/state/stop/reset, browser-pushed camera frames, the MJPEG preview,
the representative image of the last round and the recent captures wall.
"""

import threading
import time
from typing import Optional

from flask import Blueprint, Response, jsonify, request

import config
from game_session import (
    CameraUnavailableError,
    ConfigurationError,
    GameSession,
    InvalidPhaseError,
)
from services.attempt_limiter import AttemptLimiter
from services.identity_store import get_identity_store, get_recent_captures
from utils.classifier_preference import get_classifier_method, set_classifier_method
from utils.emotion_targets import EmotionTargetCatalog
from utils.video_source_handler import VideoSourceType, set_browser_frame_from_bytes


# Create a blueprint for better organization
api = Blueprint('api', __name__)

# Global game session (one round at a time per app instance)
game_session: Optional[GameSession] = None
_session_lock = threading.Lock()

_attempt_limiter: Optional[AttemptLimiter] = None
_catalog: Optional[EmotionTargetCatalog] = None

SOURCE_TYPE_MAP = {
    "webcam": VideoSourceType.WEBCAM,
    "file": VideoSourceType.FILE,
    "stream": VideoSourceType.STREAM,
    "browser": VideoSourceType.BROWSER,
}


def _get_attempt_limiter() -> AttemptLimiter:
    """Return the attempt limiter, creating it on first call (lazy init)."""
    global _attempt_limiter
    if _attempt_limiter is None:
        _attempt_limiter = AttemptLimiter(get_identity_store())
    return _attempt_limiter


def _get_catalog() -> EmotionTargetCatalog:
    global _catalog
    if _catalog is None:
        _catalog = EmotionTargetCatalog()
    return _catalog


def _wallet_or_none(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def register_routes(app) -> None:
    """Attach the api blueprint to the Flask app."""
    app.register_blueprint(api)


# ============================================================================
# Configuration Routes
# ============================================================================

@api.route("/config/all", methods=["GET"])
def get_all_config():
    """
    Get all configuration in one endpoint (no secrets).

    Returns:
        JSON: round timing, attempts, rewards, content storage, classifier,
        and the list of missing settings that block rounds
    """
    return jsonify(config.build_config_response(get_classifier_method()))


@api.route("/config/expression-classifier", methods=["GET", "PUT"])
def expression_classifier_config():
    """
    GET: Active expression classifier method.
    PUT: Set method. Body: {"method": "mediapipe" | "azure_face_api" | "auto"}.
    """
    if request.method == "GET":
        return jsonify({
            "method": get_classifier_method(),
            "azureFaceApiAvailable": config.is_azure_face_api_enabled(),
        })
    if not request.is_json:
        return jsonify({"error": "Request must be JSON"}), 400
    data = request.get_json(silent=True) or {}
    method = data.get("method")
    if not method:
        return jsonify({"error": "Missing 'method'"}), 400
    try:
        set_classifier_method(method)
        return jsonify({"method": get_classifier_method()})
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


# ============================================================================
# Targets & Attempts
# ============================================================================

@api.route("/game/targets", methods=["GET"])
def list_targets():
    """All emoji targets a round may ask for."""
    return jsonify({"targets": [t.to_dict() for t in _get_catalog().list_targets()]})


@api.route("/game/attempts/<wallet>", methods=["GET", "DELETE"])
def wallet_attempts(wallet):
    """
    GET: Attempts left for a wallet (resets an elapsed cooldown window).
    DELETE: Clear the wallet's attempt record. Only when DEV_TOOLS_ENABLED.
    """
    wallet = _wallet_or_none(wallet)
    if not wallet:
        return jsonify({"error": "Missing wallet"}), 400
    limiter = _get_attempt_limiter()

    if request.method == "DELETE":
        if not config.DEV_TOOLS_ENABLED:
            return jsonify({"error": "Developer tools are disabled"}), 404
        limiter.clear(wallet)
        return jsonify({"success": True, "wallet": wallet, "attemptsRemaining": limiter.limit})

    try:
        state = limiter.check_and_maybe_reset(wallet)
        return jsonify({
            "wallet": wallet,
            "attemptsRemaining": state.attempts_remaining,
            "windowStartedAt": state.window_started_at,
            "limit": limiter.limit,
            "retryAfterMs": limiter.retry_after_ms(state),
        })
    except Exception as e:
        return jsonify({"error": "Failed to read attempts", "details": str(e)}), 500


# ============================================================================
# Round Routes
# ============================================================================

@api.route("/game/start", methods=["POST"])
def start_round():
    """
    Start a round for a wallet.

    Request Body:
        {
            "wallet": "0x...",
            "sourceType": "webcam" | "file" | "stream" | "browser",
            "sourcePath": "optional path for file/stream sources"
        }

    Returns:
        200 {"success": true, "target": {...}, "attemptsRemaining": n, "windowMs": ms}
        400 bad input, 409 round already running, 429 no attempts left
        (with retryAfterMs), 503 game not configured or camera unavailable
    """
    global game_session

    if not request.is_json:
        return jsonify({"error": "Request must be JSON"}), 400
    data = request.get_json(silent=True) or {}
    wallet = _wallet_or_none(data.get("wallet"))
    if not wallet:
        return jsonify({"error": "Missing wallet"}), 400

    source_type_str = str(data.get("sourceType") or "webcam").lower()
    source_type = SOURCE_TYPE_MAP.get(source_type_str)
    if not source_type:
        return jsonify({
            "error": f"Invalid sourceType: {source_type_str}. Must be 'webcam', 'file', 'stream', or 'browser'"
        }), 400
    source_path = data.get("sourcePath") if source_type in (VideoSourceType.FILE, VideoSourceType.STREAM) else None

    with _session_lock:
        if game_session is not None and game_session.is_active:
            return jsonify({"error": "A round is already in progress", "state": game_session.get_state()}), 409

        try:
            session = GameSession(
                wallet,
                limiter=_get_attempt_limiter(),
                store=get_identity_store(),
                catalog=_get_catalog(),
                source_type=source_type,
                source_path=source_path,
            )
            decision = session.start_round()
        except ConfigurationError as e:
            return jsonify({"error": e.user_message, "details": str(e)}), 503
        except CameraUnavailableError as e:
            game_session = session
            return jsonify({"error": e.user_message, "details": str(e), "state": session.get_state()}), 503
        except InvalidPhaseError as e:
            return jsonify({"error": e.user_message, "details": str(e)}), 409
        except Exception as e:
            return jsonify({"error": "Failed to start round", "details": str(e)}), 500

        if not decision.allowed:
            return jsonify({
                "error": "No attempts remaining",
                "attemptsRemaining": 0,
                "retryAfterMs": decision.retry_after_ms,
            }), 429

        game_session = session

    return jsonify({
        "success": True,
        "target": session.target.to_dict(),
        "attemptsRemaining": decision.remaining,
        "windowMs": session.window_ms,
    })


@api.route("/game/state", methods=["GET"])
def get_round_state():
    """Phase, target, progress and (when finished) the result of the current round."""
    if game_session is None:
        return jsonify({"error": "No round started"}), 404
    return jsonify(game_session.get_state())


@api.route("/game/stop", methods=["POST"])
def stop_round():
    """Cancel the running round; no result is produced."""
    if game_session is None:
        return jsonify({"error": "No round started"}), 404
    try:
        game_session.cancel()
        return jsonify({"success": True, "state": game_session.get_state()})
    except Exception as e:
        return jsonify({"error": "Failed to stop round", "details": str(e)}), 500


@api.route("/game/reset", methods=["POST"])
def reset_round():
    """Return a finished round to idle."""
    if game_session is None:
        return jsonify({"error": "No round started"}), 404
    try:
        game_session.reset()
    except InvalidPhaseError as e:
        return jsonify({"error": e.user_message, "details": str(e)}), 409
    return jsonify({"success": True, "state": game_session.get_state()})


@api.route("/game/result/image", methods=["GET"])
def result_image():
    """JPEG of the last round's representative frame (also after a failed save)."""
    session = game_session
    if session is None or session.result is None:
        return jsonify({"error": "No result available"}), 404
    return Response(
        session.result.representative_image,
        mimetype="image/jpeg",
        headers={"Cache-Control": "no-cache"},
    )


# ============================================================================
# Camera Routes
# ============================================================================

@api.route("/game/frame", methods=["POST"])
def browser_frame():
    """
    Receive a single camera frame from the player's browser.
    Expects raw JPEG body or multipart/form-data with an image file.
    Used when sourceType is 'browser'; the round reads it via get_browser_frame().
    """
    try:
        data = request.get_data()
        if not data and request.files:
            f = request.files.get("frame") or request.files.get("image") or next(iter(request.files.values()), None)
            if f:
                data = f.read()
        if not data:
            return jsonify({"error": "No image data"}), 400
        if not set_browser_frame_from_bytes(data):
            return jsonify({"error": "Invalid or unsupported image"}), 400
        return "", 204
    except Exception as e:
        return jsonify({"error": "Failed to process frame", "details": str(e)}), 500


@api.route("/game/video-feed", methods=["GET"])
def game_video_feed():
    """
    Stream the round's camera as MJPEG.

    Returns:
        Response: multipart/x-mixed-replace stream of JPEG frames while a
        round is sampling; 404 when not.
    """
    session = game_session
    if session is None or not session.is_active:
        return jsonify({"error": "No round in progress"}), 404

    boundary = b"frame"
    interval = max(0.02, config.TICK_INTERVAL_MS / 1000.0)

    def generate():
        while session.is_active:
            jpeg = session.get_last_frame_jpeg()
            if jpeg:
                yield (
                    b"--" + boundary + b"\r\n"
                    b"Content-Type: image/jpeg\r\n"
                    b"Content-Length: " + str(len(jpeg)).encode() + b"\r\n\r\n"
                    + jpeg + b"\r\n"
                )
            time.sleep(interval)

    return Response(
        generate(),
        mimetype="multipart/x-mixed-replace; boundary=frame",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ============================================================================
# Recent Captures
# ============================================================================

@api.route("/game/captures", methods=["GET"])
def recent_captures():
    """
    Recent captures wall, most recent first.

    Query: ?limit=N (optional)
    """
    limit = request.args.get("limit", type=int)
    if limit is not None and limit < 1:
        return jsonify({"error": "limit must be >= 1"}), 400
    try:
        return jsonify({"captures": get_recent_captures(get_identity_store(), limit)})
    except Exception as e:
        return jsonify({"error": "Failed to load captures", "details": str(e)}), 500
