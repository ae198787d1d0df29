"""
Runtime expression classifier preference.

Stores the user-selected backend: MediaPipe (local), Azure Face API (cloud),
or auto (Azure when configured, MediaPipe otherwise). Falls back to
config.EXPRESSION_CLASSIFIER_METHOD when unset.
"""

from typing import Optional

import config
from utils.expression_classifier import ExpressionClassifier

_PREFERENCE: Optional[str] = None

VALID_METHODS = ("mediapipe", "azure_face_api", "auto")


def get_classifier_method() -> str:
    """Return the current classifier method (preference or config default)."""
    return (_PREFERENCE or config.EXPRESSION_CLASSIFIER_METHOD or "auto").lower()


def set_classifier_method(method: str) -> str:
    """
    Set the classifier method. Valid: 'mediapipe', 'azure_face_api', 'auto'.
    'azure_face_api' is only allowed when config reports it as available.
    Returns the validated method that was set.
    """
    global _PREFERENCE
    m = (method or "").strip().lower()
    if m not in VALID_METHODS:
        raise ValueError("method must be 'mediapipe', 'azure_face_api', or 'auto'")
    if m == "azure_face_api" and not config.is_azure_face_api_enabled():
        raise ValueError("Azure Face API is not configured or available")
    _PREFERENCE = m
    return _PREFERENCE


def resolve_classifier_method(method: Optional[str] = None) -> str:
    """Resolve 'auto' to a concrete backend name."""
    m = (method or get_classifier_method()).lower()
    if m == "auto":
        return "azure_face_api" if config.is_azure_face_api_enabled() else "mediapipe"
    return m


def create_expression_classifier(method: Optional[str] = None) -> ExpressionClassifier:
    """
    Build the classifier for the given (or current) method. Backends are
    imported here so MediaPipe is only loaded when it is used.
    """
    resolved = resolve_classifier_method(method)
    if resolved == "azure_face_api":
        from utils.azure_expression_classifier import AzureExpressionClassifier
        classifier = AzureExpressionClassifier()
        if classifier.is_available():
            return classifier
        print("Warning: Azure Face API not available, falling back to MediaPipe")
    from utils.mediapipe_expression_classifier import MediaPipeExpressionClassifier
    return MediaPipeExpressionClassifier(min_detection_confidence=config.MIN_FACE_CONFIDENCE)
