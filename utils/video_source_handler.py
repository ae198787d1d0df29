"""
Video Source Handler Module

This module provides a unified interface for the camera used during a round:
- Webcam (default camera on the server machine)
- Local video files (demos, tests)
- Video streams (RTSP, HTTP streams, etc.)
- Browser (frames captured by the player's browser and POSTed to /game/frame)

It also turns the latest frame into the JPEG bytes stored as a round capture,
refusing frames that are blank or degenerate.
"""

import sys
import threading
from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np

# Shared state for the browser source: latest frame from the frontend
_browser_frame: Optional[np.ndarray] = None
_browser_frame_lock = threading.Lock()

# Resize larger browser frames to reduce memory and classification latency
BROWSER_FRAME_MAX_WIDTH = 1280
# Frames darker/flatter than this are treated as "camera not ready yet"
BLANK_MEAN_THRESHOLD = 4.0
BLANK_STD_THRESHOLD = 2.0
MIN_FRAME_SIZE = 36


def set_browser_frame(frame_bgr: Optional[np.ndarray]) -> None:
    """Set the latest frame received from the browser."""
    global _browser_frame
    with _browser_frame_lock:
        _browser_frame = frame_bgr.copy() if frame_bgr is not None else None


def get_browser_frame() -> Optional[np.ndarray]:
    """Get a copy of the latest browser frame (does not clear). None if none available."""
    with _browser_frame_lock:
        out = _browser_frame
        return out.copy() if out is not None else None


def set_browser_frame_from_bytes(image_bytes: bytes) -> bool:
    """
    Decode image bytes (e.g. JPEG) to BGR and set as latest browser frame.
    Returns True if decoding and set succeeded, False otherwise.
    """
    if not image_bytes:
        return False
    arr = np.frombuffer(image_bytes, dtype=np.uint8)
    frame = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if frame is None:
        return False
    h, w = frame.shape[:2]
    if w > BROWSER_FRAME_MAX_WIDTH:
        scale = BROWSER_FRAME_MAX_WIDTH / w
        frame = cv2.resize(
            frame, (BROWSER_FRAME_MAX_WIDTH, int(round(h * scale))), interpolation=cv2.INTER_AREA
        )
    set_browser_frame(frame)
    return True


def is_blank_frame(frame: Optional[np.ndarray]) -> bool:
    """True for missing, tiny, all-black or uniform frames."""
    if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0 or frame.ndim < 2:
        return True
    h, w = frame.shape[:2]
    if h < MIN_FRAME_SIZE or w < MIN_FRAME_SIZE:
        return True
    return float(frame.mean()) < BLANK_MEAN_THRESHOLD or float(frame.std()) < BLANK_STD_THRESHOLD


def encode_capture(frame: Optional[np.ndarray], quality: int = 90) -> Optional[bytes]:
    """JPEG bytes for a usable frame, None for a blank one or when encoding fails."""
    if is_blank_frame(frame):
        return None
    ok, buf = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    if not ok or buf is None:
        return None
    return buf.tobytes()


class VideoSourceType(Enum):
    """Enumeration of supported video source types."""
    WEBCAM = "webcam"
    FILE = "file"
    STREAM = "stream"
    BROWSER = "browser"


class VideoSourceHandler:
    """
    Handler for the camera used during one round.

    Usage:
        handler = VideoSourceHandler()
        if handler.initialize_source(VideoSourceType.WEBCAM):
            ret, frame = handler.read_frame()
            jpeg = handler.capture_current_frame()
        handler.release()
    """

    def __init__(self):
        self.cap: Optional[cv2.VideoCapture] = None
        self.source_type: Optional[VideoSourceType] = None
        self.source_path: Optional[str] = None
        self._last_frame: Optional[np.ndarray] = None

    def initialize_source(
        self,
        source_type: VideoSourceType,
        source_path: Optional[str] = None,
    ) -> bool:
        """
        Open a video source. Returns False if it cannot be opened.

        Args:
            source_type: Type of video source
            source_path: Path to video file or stream URL (required for FILE/STREAM)
        """
        self.release()
        self.source_type = source_type
        self.source_path = source_path

        try:
            if source_type == VideoSourceType.WEBCAM:
                apis = [cv2.CAP_DSHOW, cv2.CAP_MSMF, cv2.CAP_ANY] if sys.platform == "win32" else [cv2.CAP_ANY]
                for api in apis:
                    for index in (0, 1, 2):
                        cap = cv2.VideoCapture(index, api)
                        if cap.isOpened() and cap.read()[0]:
                            self.cap = cap
                            break
                        cap.release()
                    if self.cap is not None:
                        break
                if self.cap is None:
                    return False
                self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, 1280)
                self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, 720)
                self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

            elif source_type in (VideoSourceType.FILE, VideoSourceType.STREAM):
                if not source_path:
                    raise ValueError(f"source_path is required for {source_type.value} source type")
                self.cap = cv2.VideoCapture(source_path)
                if source_type == VideoSourceType.STREAM:
                    self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

            elif source_type == VideoSourceType.BROWSER:
                # Frames are pushed by the frontend
                return True

            else:
                raise ValueError(f"Unsupported source type: {source_type}")

            return self.cap is not None and self.cap.isOpened()

        except (cv2.error, ValueError) as e:
            print(f"Error initializing video source: {e}")
            self.release()
            return False

    @property
    def is_open(self) -> bool:
        if self.source_type == VideoSourceType.BROWSER:
            return True
        return self.cap is not None and self.cap.isOpened()

    def read_frame(self) -> Tuple[bool, Optional[np.ndarray]]:
        """
        Read a frame from the video source.

        Returns:
            Tuple of (success, frame); frame is a BGR image array when successful
        """
        if self.source_type == VideoSourceType.BROWSER:
            frame = get_browser_frame()
        elif self.cap is not None and self.cap.isOpened():
            ret, frame = self.cap.read()
            if not ret:
                frame = None
        else:
            frame = None

        if frame is None:
            return False, None
        self._last_frame = frame
        return True, frame

    def capture_current_frame(self) -> Optional[bytes]:
        """JPEG of the most recently read frame; None if there is none or it is blank."""
        return encode_capture(self._last_frame)

    def release(self) -> None:
        """Release the current video source and free resources."""
        if self.cap is not None:
            self.cap.release()
            self.cap = None
        if self.source_type == VideoSourceType.BROWSER:
            set_browser_frame(None)
        self.source_type = None
        self.source_path = None
        self._last_frame = None
