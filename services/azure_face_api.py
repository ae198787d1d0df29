"""
Azure Face API client (emotion attribute only).

Cloud backend for utils/azure_expression_classifier.py. One POST per frame to
/face/v1.0/detect with returnFaceAttributes=emotion; the per-face emotion
dicts come back in the service's order (largest face first).
"""

import logging
from typing import Any, Dict, List, Optional

import cv2
import numpy as np
import requests

import config

logger = logging.getLogger(__name__)

API_VERSION = "v1.0"
# Service limits on the uploaded frame
MIN_SIDE_PX = 36
MAX_SIDE_PX = 4096
MAX_BODY_BYTES = 6 * 1024 * 1024


class FaceApiError(requests.RequestException):
    """Face API call failed (transport, status or payload)."""


def build_detect_url(endpoint: str) -> str:
    """Detect URL for an endpoint given with or without a trailing /face path."""
    base = endpoint.strip().rstrip("/")
    if "/face" in base.lower():
        base = base[: base.lower().index("/face")].rstrip("/")
    return f"{base}/face/{API_VERSION}/detect"


def face_emotions(face: Any) -> Optional[Dict[str, float]]:
    """Emotion scores of one detected face (Azure names), or None."""
    if not isinstance(face, dict):
        return None
    attributes = face.get("faceAttributes")
    emotion = attributes.get("emotion") if isinstance(attributes, dict) else None
    return emotion if isinstance(emotion, dict) else None


def _encode_frame(image: np.ndarray) -> bytes:
    if image is None or image.size == 0:
        raise ValueError("empty frame")
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError(f"expected BGR frame (H, W, 3), got {image.shape}")
    h, w = image.shape[:2]
    if min(h, w) < MIN_SIDE_PX:
        raise ValueError(f"frame {w}x{h} is below {MIN_SIDE_PX}px")
    if max(h, w) > MAX_SIDE_PX:
        scale = MAX_SIDE_PX / float(max(h, w))
        image = cv2.resize(image, (int(w * scale), int(h * scale)))
    ok, buf = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, 90])
    if not ok:
        raise ValueError("could not JPEG-encode frame")
    data = buf.tobytes()
    if len(data) > MAX_BODY_BYTES:
        raise ValueError(f"encoded frame is {len(data)} bytes (max {MAX_BODY_BYTES})")
    return data


def _error_detail(response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        return f"{err.get('message', 'unknown error')} (code: {err.get('code', '?')})"
    return str(body)[:200]


class AzureFaceAPIService:
    """HTTP client for Face API detect with the emotion attribute."""

    def __init__(self, endpoint: Optional[str] = None, api_key: Optional[str] = None):
        endpoint = (endpoint if endpoint is not None else config.AZURE_FACE_API_ENDPOINT).strip()
        api_key = (api_key if api_key is not None else config.AZURE_FACE_API_KEY).strip()
        if not endpoint or not api_key:
            raise ValueError("AZURE_FACE_API_KEY and AZURE_FACE_API_ENDPOINT must be set")
        if not endpoint.startswith(("http://", "https://")):
            raise ValueError(f"Face API endpoint must be http(s): {endpoint}")
        self.endpoint = endpoint.rstrip("/")
        self.detect_url = build_detect_url(self.endpoint)
        self.timeout = config.EXTERNAL_CALL_TIMEOUT_SEC
        self._headers = {
            "Ocp-Apim-Subscription-Key": api_key,
            "Content-Type": "application/octet-stream",
        }

    def detect_faces(self, image: np.ndarray) -> List[Dict[str, Any]]:
        """
        Raw detect call.

        Raises:
            ValueError: frame cannot be sent (too small, wrong shape, too large)
            FaceApiError: request failed, non-200 status or unexpected body
        """
        body = _encode_frame(image)
        try:
            response = requests.post(
                self.detect_url,
                headers=self._headers,
                params={"returnFaceId": "false", "returnFaceAttributes": "emotion"},
                data=body,
                timeout=self.timeout,
            )
        except requests.Timeout:
            raise FaceApiError(f"Face API timed out after {self.timeout}s")
        except requests.RequestException as e:
            raise FaceApiError(f"Face API request failed: {e}")

        if response.status_code != 200:
            raise FaceApiError(f"Face API returned {response.status_code}: {_error_detail(response)}")
        faces = response.json()
        if not isinstance(faces, list):
            raise FaceApiError(f"Face API returned {type(faces).__name__}, expected list")
        return faces

    def detect_emotions(self, image: np.ndarray) -> List[Dict[str, float]]:
        """Emotion dicts for every face that carries one, service order kept."""
        emotions = []
        for face in self.detect_faces(image):
            scores = face_emotions(face)
            if scores is not None:
                emotions.append(scores)
        return emotions


# Global service instance
azure_face_api_service: Optional[AzureFaceAPIService] = None


def get_azure_face_api_service() -> Optional[AzureFaceAPIService]:
    """Global Face API client, or None when not configured."""
    global azure_face_api_service

    if azure_face_api_service is None:
        if not config.is_azure_face_api_enabled():
            return None
        try:
            azure_face_api_service = AzureFaceAPIService()
            logger.info("Azure Face API client ready: %s", azure_face_api_service.detect_url)
        except ValueError as e:
            logger.warning("Azure Face API configuration issue: %s", e)
            return None

    return azure_face_api_service
