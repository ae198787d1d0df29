"""
Content upload service module.

Uploads the representative capture of a round and its metadata document to an
IPFS-style pinning endpoint (CONTENT_UPLOAD_URL, authenticated with
CONTENT_CLIENT_ID). Each upload returns an "ipfs://<cid>" URI which
config.resolve_gateway_url turns into a browsable URL.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

import config

logger = logging.getLogger(__name__)

METADATA_VERSION = "1.1"


class UploadError(requests.RequestException):
    """Raised when the image or metadata could not be stored."""


@dataclass(frozen=True)
class ContentRef:
    uri: str
    url: str

    def to_dict(self) -> dict:
        return {"uri": self.uri, "url": self.url}


def build_capture_metadata(
    image_uri: str,
    score: int,
    emoji: str,
    wallet: str,
    timestamp_ms: Optional[int] = None,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Metadata document for one capture.

    Raises:
        ValueError: if score or emoji is missing
    """
    if score is None or not emoji:
        raise ValueError(f"Invalid capture metadata: score={score!r}, emoji={emoji!r}")
    if timestamp_ms is None:
        ts = datetime.now(timezone.utc)
    else:
        ts = datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)
    return {
        "name": name or config.CAPTURE_NAME,
        "description": description or f"Mimicked {emoji} with a score of {score}/5",
        "image": image_uri,
        "attributes": [
            {"trait_type": "Score", "value": score},
            {"trait_type": "Emoji", "value": emoji},
        ],
        "properties": {
            "score": score,
            "timestamp": ts.isoformat().replace("+00:00", "Z"),
            "wallet": wallet,
            "emoji": emoji,
            "version": METADATA_VERSION,
        },
    }


def _extract_cid(body: Any) -> Optional[str]:
    """Pull the content id out of the pinning response (several provider shapes)."""
    if isinstance(body, str):
        return body.strip() or None
    if not isinstance(body, dict):
        return None
    for key in ("IpfsHash", "cid", "Hash", "hash", "uri"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    for key in ("value", "data"):
        if isinstance(body.get(key), dict):
            return _extract_cid(body[key])
    return None


class ContentUploadService:
    """
    Client for the pinning endpoint.

    Usage:
        uploader = ContentUploadService()
        ref = uploader.upload(jpeg_bytes)
        meta_uri = uploader.upload_metadata(ref.uri, metadata)
    """

    def __init__(self, upload_url: Optional[str] = None, client_id: Optional[str] = None):
        self.upload_url = (upload_url or config.CONTENT_UPLOAD_URL).rstrip("/")
        self.client_id = client_id or config.CONTENT_CLIENT_ID
        if not self.upload_url or not self.client_id:
            raise ValueError(
                "Content upload is not configured. "
                "Please set CONTENT_UPLOAD_URL and CONTENT_CLIENT_ID environment variables."
            )
        if not self.upload_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid CONTENT_UPLOAD_URL: {self.upload_url}. Must start with http:// or https://")
        self.timeout = config.EXTERNAL_CALL_TIMEOUT_SEC
        self.headers = {"x-client-id": self.client_id}

    def _post(self, files: Dict[str, Any]) -> str:
        try:
            response = requests.post(self.upload_url, headers=self.headers, files=files, timeout=self.timeout)
        except requests.Timeout:
            raise UploadError(f"Content upload timed out after {self.timeout} seconds")
        except requests.RequestException as e:
            raise UploadError(f"Content upload failed: {e}")

        if response.status_code not in (200, 201):
            raise UploadError(f"Content upload returned status {response.status_code}: {response.text[:200]}")
        try:
            body = response.json()
        except ValueError:
            body = response.text
        cid = _extract_cid(body)
        if not cid:
            raise UploadError("Content upload response did not contain a content id")
        return cid if cid.startswith("ipfs://") else f"ipfs://{cid}"

    def upload(self, image: bytes) -> ContentRef:
        """
        Store the capture image.

        Raises:
            UploadError: on empty input or any transport/response failure
        """
        if not image:
            raise UploadError("Refusing to upload an empty image")
        uri = self._post({"file": ("capture.jpg", image, "image/jpeg")})
        logger.info("Capture uploaded: %s", uri)
        return ContentRef(uri=uri, url=config.resolve_gateway_url(uri))

    def upload_metadata(self, image_uri: str, metadata: Dict[str, Any]) -> str:
        """Store the metadata document (its "image" field is set to image_uri). Returns its URI."""
        document = dict(metadata)
        document["image"] = image_uri
        payload = json.dumps(document, ensure_ascii=False).encode("utf-8")
        uri = self._post({"file": ("metadata.json", payload, "application/json")})
        logger.info("Capture metadata uploaded: %s", uri)
        return uri


# Global service instance
content_upload_service: Optional[ContentUploadService] = None


def get_content_upload_service() -> Optional[ContentUploadService]:
    """Get or create the global upload service; None when not configured."""
    global content_upload_service

    if content_upload_service is None:
        try:
            content_upload_service = ContentUploadService()
        except ValueError as e:
            logger.warning("Content upload configuration issue: %s", e)
            return None

    return content_upload_service
