"""
Game Session.

Orchestrates one "mimic the emoji" round for one wallet:

    IDLE -> SAMPLING -> FINALIZING -> COMPLETE
              |            |
              +-> ABORTED <+

start_round(): configuration check -> attempt consumed -> random target ->
camera acquired -> tick loop on a daemon thread. Each tick reads a frame,
classifies it (single worker, bounded by EXTERNAL_CALL_TIMEOUT_SEC), scores it
against the target and, during the last CAPTURE_WINDOW_MS, keeps a JPEG of the
frame. Ticks never overlap; an overrunning tick makes the loop skip the slots
it ran over.

When the window ends the aggregator picks the final score and representative
image; the image and metadata are uploaded, the capture goes on the recent
captures wall and the reward (score * REWARD_UNITS_PER_POINT) is paid. Upload
or reward failures abort with save_error set, but the score and image stay
available. The attempt is never refunded.

_cleanup() is the only place the camera and classifier are released and is
reached from every terminal transition (complete, abort, cancel).
"""

import logging
import math
import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeoutError, wait as futures_wait
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import cv2
import numpy as np
import requests

import config
from services.attempt_limiter import AttemptDecision, AttemptLimiter
from services.content_upload import build_capture_metadata, get_content_upload_service
from services.identity_store import IdentityKeyValueStore, append_recent_capture
from services.reward_transfer import get_reward_transfer_service
from utils.classifier_preference import create_expression_classifier
from utils.emotion_targets import EmotionTarget, EmotionTargetCatalog
from utils.expression_classifier import ExpressionClassifier
from utils.frame_scorer import score_frame
from utils.session_aggregator import FrameSample, SessionAggregator
from utils.video_source_handler import VideoSourceHandler, VideoSourceType

logger = logging.getLogger(__name__)

# How long cleanup waits for an in-flight classify call before deferring close()
CLASSIFIER_CLOSE_WAIT_SEC = 1.0


# ============================================================================
# Errors
# ============================================================================

class GameSessionError(RuntimeError):
    """Base error for a round; user_message is safe to show to the player."""

    user_message = "Something went wrong with this round."

    def __init__(self, message: str = "", user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message:
            self.user_message = user_message


class ConfigurationError(GameSessionError):
    user_message = "The game is not configured yet. Please try again later."


class InvalidPhaseError(GameSessionError):
    user_message = "A round is already in progress."


class CameraUnavailableError(GameSessionError):
    user_message = "camera unavailable"


class NoUsableCaptureError(GameSessionError):
    user_message = "no usable capture"


class SaveFailedError(GameSessionError):
    user_message = "Your score is ready but it could not be saved."


# ============================================================================
# State
# ============================================================================

class SessionPhase(Enum):
    IDLE = "idle"
    SAMPLING = "sampling"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionPhase.COMPLETE, SessionPhase.ABORTED)


@dataclass
class SessionResult:
    target: str
    final_score: int
    representative_image: bytes
    timestamp: int
    wallet: str = ""
    reward_amount: int = 0

    def to_dict(self) -> dict:
        """JSON-friendly view (image bytes are served separately)."""
        return {
            "target": self.target,
            "finalScore": self.final_score,
            "timestamp": self.timestamp,
            "wallet": self.wallet,
            "rewardAmount": self.reward_amount,
            "imageBytes": len(self.representative_image),
        }


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class GameSession:
    """
    One round for one wallet. All collaborators can be injected; anything left
    as None is resolved from the global services when the round starts.

    Usage:
        session = GameSession(wallet, limiter=AttemptLimiter(store), store=store)
        decision = session.start_round()
        ...
        session.get_state()
    """

    def __init__(
        self,
        wallet: str,
        limiter: AttemptLimiter,
        store: IdentityKeyValueStore,
        catalog: Optional[EmotionTargetCatalog] = None,
        video_handler: Optional[VideoSourceHandler] = None,
        classifier_factory: Optional[Callable[[], ExpressionClassifier]] = None,
        uploader=None,
        rewarder=None,
        source_type: VideoSourceType = VideoSourceType.WEBCAM,
        source_path: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        wall_clock_ms: Callable[[], int] = _wall_clock_ms,
        rng: Optional[random.Random] = None,
    ):
        if not wallet or not str(wallet).strip():
            raise ValueError("wallet is required")
        self.wallet = str(wallet).strip()
        self.limiter = limiter
        self.store = store
        self.catalog = catalog or EmotionTargetCatalog()
        self.video_handler = video_handler or VideoSourceHandler()
        self.classifier_factory = classifier_factory or create_expression_classifier
        self.uploader = uploader
        self.rewarder = rewarder
        self.source_type = source_type
        self.source_path = source_path
        self._clock = clock
        self._sleep = sleep
        self._wall_clock_ms = wall_clock_ms
        self._rng = rng

        self.window_ms = config.SAMPLING_WINDOW_MS
        self.tick_ms = config.TICK_INTERVAL_MS
        self.capture_window_ms = min(config.CAPTURE_WINDOW_MS, self.window_ms)

        self.lock = threading.Lock()
        self.phase = SessionPhase.IDLE
        self.target: Optional[EmotionTarget] = None
        self.decision: Optional[AttemptDecision] = None
        self.result: Optional[SessionResult] = None
        self.error: Optional[str] = None
        self.save_error: Optional[str] = None
        self.image_url: Optional[str] = None
        self.metadata_uri: Optional[str] = None
        self.reward_receipt: Optional[Dict[str, Any]] = None

        self.classifier: Optional[ExpressionClassifier] = None
        self.aggregator: Optional[SessionAggregator] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Optional[Future] = None
        self._thread: Optional[threading.Thread] = None
        self._cancel = threading.Event()
        self._cleaned_up = True
        self._cleanup_lock = threading.Lock()

        self._last_frame: Optional[np.ndarray] = None
        self._last_frame_lock = threading.Lock()
        self._last_score = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.phase in (SessionPhase.SAMPLING, SessionPhase.FINALIZING)

    def start_round(self) -> AttemptDecision:
        """
        Start a round on a background thread.

        Returns the attempt decision; when it is not allowed the session stays
        IDLE and decision.retry_after_ms says when to come back.

        Raises:
            InvalidPhaseError: session is not IDLE
            ConfigurationError: upload/reward/classifier not available (no attempt consumed)
            CameraUnavailableError: camera could not be opened (session ABORTED, attempt consumed)
        """
        decision = self._begin()
        if decision.allowed:
            self._thread = threading.Thread(target=self._run_loop, daemon=True)
            self._thread.start()
        return decision

    def run_round(self) -> AttemptDecision:
        """Same as start_round but runs the whole round on the calling thread."""
        decision = self._begin()
        if decision.allowed:
            self._run_loop()
        return decision

    def cancel(self) -> None:
        """
        Stop the tick loop. No result is produced.

        The loop thread releases the camera and classifier itself once the
        current tick returns, so nothing is closed while it is still in use.
        """
        with self.lock:
            if self.phase != SessionPhase.SAMPLING:
                # Nothing to stop; a round already finalizing is left to finish
                return
            self._cancel.set()
            self.phase = SessionPhase.ABORTED
            self.error = "cancelled"
            self.result = None
        logger.info("Round cancelled for %s", self.wallet)
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=self.tick_ms / 1000.0 + config.EXTERNAL_CALL_TIMEOUT_SEC + 1.0)
            if thread.is_alive():
                logger.warning("Round thread for %s still busy; it will clean up when the tick returns", self.wallet)

    def reset(self) -> None:
        """Return a finished session to IDLE so another round can be played."""
        with self.lock:
            if self.is_active or (self._thread is not None and self._thread.is_alive()):
                raise InvalidPhaseError("cannot reset while a round is running")
            self.phase = SessionPhase.IDLE
            self.target = None
            self.decision = None
            self.result = None
            self.error = None
            self.save_error = None
            self.image_url = None
            self.metadata_uri = None
            self.reward_receipt = None
            self.aggregator = None
            self._last_score = 0
        self._cancel.clear()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the background round finishes. True if it did."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def get_last_frame_jpeg(self) -> Optional[bytes]:
        """Most recent camera frame as JPEG (preview feed)."""
        with self._last_frame_lock:
            if self._last_frame is None:
                return None
            frame = self._last_frame.copy()
        ok, buf = cv2.imencode(".jpg", frame)
        return buf.tobytes() if ok else None

    def get_state(self) -> dict:
        with self.lock:
            elapsed = 0
            if self.aggregator is not None and len(self.aggregator):
                elapsed = int(self.aggregator.samples[-1].timestamp_offset_ms)
            return {
                "wallet": self.wallet,
                "phase": self.phase.value,
                "target": self.target.to_dict() if self.target else None,
                "attemptsRemaining": self.decision.remaining if self.decision else None,
                "samples": len(self.aggregator) if self.aggregator is not None else 0,
                "lastScore": self._last_score,
                "elapsedMs": elapsed,
                "windowMs": self.window_ms,
                "result": self.result.to_dict() if self.result else None,
                "imageUrl": self.image_url,
                "metadataUri": self.metadata_uri,
                "reward": self.reward_receipt,
                "error": self.error,
                "saveError": self.save_error,
            }

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def _begin(self) -> AttemptDecision:
        with self.lock:
            if self.phase != SessionPhase.IDLE:
                raise InvalidPhaseError(f"cannot start a round from {self.phase.value}")

        self._check_configuration()

        decision = self.limiter.try_consume(self.wallet)
        with self.lock:
            self.decision = decision
        if not decision.allowed:
            self._release_classifier()
            return decision

        target = self.catalog.pick_random(self._rng)
        with self.lock:
            self.target = target
            self.aggregator = SessionAggregator(self.window_ms)
        self._cancel.clear()
        self._cleaned_up = False

        if not self._acquire_camera():
            self._abort("camera unavailable")
            self._cleanup()
            raise CameraUnavailableError(f"could not open video source {self.source_type.value}")

        with self.lock:
            self.phase = SessionPhase.SAMPLING
        logger.info(
            "Round started: wallet=%s target=%s remaining=%d",
            self.wallet, target.symbol, decision.remaining,
        )
        return decision

    def _check_configuration(self) -> None:
        """Resolve uploader, rewarder and classifier; refuse to start without them."""
        if self.uploader is None:
            self.uploader = get_content_upload_service()
        if self.rewarder is None:
            self.rewarder = get_reward_transfer_service()
        if self.uploader is None or self.rewarder is None:
            missing = config.get_missing_game_config() or ["content upload / reward service"]
            raise ConfigurationError("missing configuration: " + ", ".join(missing))
        try:
            self.classifier = self.classifier_factory()
        except (ImportError, RuntimeError, ValueError) as e:
            raise ConfigurationError(f"expression classifier unavailable: {e}")
        if self.classifier is None or not self.classifier.is_available():
            self._release_classifier()
            raise ConfigurationError("expression classifier unavailable")

    def _acquire_camera(self) -> bool:
        if not self.video_handler.initialize_source(self.source_type, self.source_path):
            logger.warning("Failed to initialize video source %s", self.source_type.value)
            return False
        if self.source_type == VideoSourceType.BROWSER:
            return True
        # First webcam frames are often black or delayed
        for _ in range(config.CAMERA_WARMUP_FRAMES):
            ok, _ = self.video_handler.read_frame()
            if not ok:
                self._sleep(0.04)
        ok, frame = self.video_handler.read_frame()
        if not ok or frame is None:
            logger.warning("Video source opened but returned no frames")
            return False
        return True

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def _run_loop(self) -> None:
        try:
            completed = self._sample()
            if completed:
                self._finalize()
        except Exception as e:
            logger.exception("Unexpected error in round for %s", self.wallet)
            self._abort(f"internal error: {e}")
        finally:
            self._cleanup()

    def _sample(self) -> bool:
        """Run the tick loop. False if cancelled."""
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="classifier")
        total_ticks = max(1, math.ceil(self.window_ms / self.tick_ms))
        start = self._clock()
        slot = 0
        tick_index = 0
        while slot < total_ticks:
            if self._cancel.is_set():
                return False
            offset_ms = self._elapsed_ms(start)
            if offset_ms >= self.window_ms:
                break
            self._tick(tick_index, offset_ms)
            tick_index += 1

            elapsed_ms = self._elapsed_ms(start)
            next_slot = max(slot + 1, math.ceil(elapsed_ms / self.tick_ms))
            if next_slot > slot + 1:
                logger.debug("Tick %d overran (%.0f ms); skipping %d slot(s)", tick_index - 1, elapsed_ms - slot * self.tick_ms, next_slot - slot - 1)
            slot = next_slot
            delay_ms = slot * self.tick_ms - elapsed_ms
            if delay_ms > 0 and slot < total_ticks:
                self._sleep(delay_ms / 1000.0)
        return not self._cancel.is_set()

    def _elapsed_ms(self, start: float) -> float:
        # microsecond rounding keeps slot arithmetic stable under float drift
        return round((self._clock() - start) * 1000.0, 3)

    def _tick(self, tick_index: int, offset_ms: float) -> None:
        score = 0
        image = None
        try:
            ok, frame = self.video_handler.read_frame()
            if not ok or frame is None:
                logger.debug("Tick %d: no frame available", tick_index)
            else:
                with self._last_frame_lock:
                    self._last_frame = frame
                score = score_frame(self._classify(frame), self.target)
                if offset_ms >= self.window_ms - self.capture_window_ms:
                    image = self.video_handler.capture_current_frame()
        except FuturesTimeoutError:
            logger.warning("Tick %d: classifier timed out after %ss", tick_index, config.EXTERNAL_CALL_TIMEOUT_SEC)
            score, image = 0, None
        except Exception as e:
            logger.warning("Tick %d failed: %s", tick_index, e)
            score, image = 0, None

        with self.lock:
            self.aggregator.append(
                FrameSample(tick_index=tick_index, score=score, captured_image=image, timestamp_offset_ms=offset_ms)
            )
            self._last_score = score

    def _classify(self, frame: np.ndarray):
        future = self._executor.submit(self.classifier.classify, frame)
        self._pending = future
        try:
            return future.result(timeout=config.EXTERNAL_CALL_TIMEOUT_SEC)
        except FuturesTimeoutError:
            future.cancel()
            raise

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    def _finalize(self) -> None:
        with self.lock:
            if self._cancel.is_set() or self.phase != SessionPhase.SAMPLING:
                return
            self.phase = SessionPhase.FINALIZING
            aggregate = self.aggregator.finalize()
        if not aggregate.representative_image:
            self._abort(NoUsableCaptureError.user_message)
            return

        score = aggregate.final_score
        result = SessionResult(
            target=self.target.symbol,
            final_score=score,
            representative_image=aggregate.representative_image,
            timestamp=self._wall_clock_ms(),
            wallet=self.wallet,
            reward_amount=score * config.REWARD_UNITS_PER_POINT,
        )
        with self.lock:
            self.result = result
        logger.info("Round finished: wallet=%s target=%s score=%d", self.wallet, result.target, score)

        try:
            self._save(result)
        except SaveFailedError as e:
            logger.warning("Save failed for %s: %s", self.wallet, e)
            self._abort(e.user_message, save_error=str(e))
            return

        with self.lock:
            self.phase = SessionPhase.COMPLETE

    def _save(self, result: SessionResult) -> None:
        """Upload, record on the wall, pay out. Raises SaveFailedError."""
        try:
            ref = self.uploader.upload(result.representative_image)
            metadata = build_capture_metadata(
                ref.uri, result.final_score, result.target, result.wallet, result.timestamp,
                name=config.CAPTURE_NAME,
                description=self._describe(result),
            )
            metadata_uri = self.uploader.upload_metadata(ref.uri, metadata)
        except (requests.RequestException, ValueError) as e:
            raise SaveFailedError(f"upload failed: {e}")
        with self.lock:
            self.image_url = ref.url
            self.metadata_uri = metadata_uri

        entry = {
            "wallet": result.wallet,
            "emoji": result.target,
            "score": result.final_score,
            "timestamp": result.timestamp,
            "imageUrl": ref.url,
            "imageUri": ref.uri,
            "metadataUri": metadata_uri,
        }
        wall_error = None
        try:
            append_recent_capture(self.store, entry, config.RECENT_CAPTURES_MAX)
        except (OSError, ValueError) as e:
            # Reward is still paid; the wall error is reported afterwards
            logger.warning("Could not record capture for %s: %s", result.wallet, e)
            wall_error = f"recording capture failed: {e}"

        if result.reward_amount > 0:
            try:
                receipt = self.rewarder.transfer(result.wallet, result.reward_amount)
            except (requests.RequestException, ValueError) as e:
                errors = [m for m in (wall_error, f"reward transfer failed: {e}") if m]
                raise SaveFailedError("; ".join(errors))
            with self.lock:
                self.reward_receipt = receipt
        else:
            logger.info("Score 0 for %s; no reward to transfer", result.wallet)

        if wall_error:
            raise SaveFailedError(wall_error)

    def _describe(self, result: SessionResult) -> str:
        try:
            name = self.catalog.get(result.target).name
        except KeyError:
            name = result.target
        return f"{name} {result.target} mimicked with a score of {result.final_score}/5"

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _abort(self, error: str, save_error: Optional[str] = None) -> None:
        with self.lock:
            self.phase = SessionPhase.ABORTED
            self.error = error
            self.save_error = save_error
            # Result stays only when it exists and the failure was downstream
            if save_error is None:
                self.result = None
        logger.info("Round aborted for %s: %s", self.wallet, save_error or error)

    def _release_classifier(self) -> None:
        if self.classifier is not None:
            try:
                self.classifier.close()
            finally:
                self.classifier = None

    def _cleanup(self) -> None:
        """Release camera, classifier and executor. Safe to call more than once."""
        with self._cleanup_lock:
            if self._cleaned_up:
                return
            self._cleaned_up = True
        executor, pending = self._executor, self._pending
        self._executor = None
        self._pending = None
        if executor is not None:
            executor.shutdown(wait=False)
        try:
            self.video_handler.release()
        finally:
            if pending is not None and not pending.done():
                self._release_classifier_after(pending)
            else:
                self._release_classifier()

    def _release_classifier_after(self, pending: Future) -> None:
        """Close the classifier only once the timed-out call still running on it returns."""
        classifier, self.classifier = self.classifier, None
        if classifier is None:
            return
        futures_wait([pending], timeout=CLASSIFIER_CLOSE_WAIT_SEC)
        if pending.done():
            classifier.close()
            return
        logger.warning("Classifier call still running for %s; closing it when the call returns", self.wallet)
        pending.add_done_callback(lambda _f: classifier.close())
