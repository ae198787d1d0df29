"""
Expression Classifier Interface Module

This module defines an abstract interface for facial-expression classifiers,
allowing the game to work with different backends (MediaPipe, Azure Face API,
etc.) interchangeably. Every backend reports the same thing: a probability per
canonical emotion name for the first face in the frame, or NO_FACE.
"""

from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional, Union

import numpy as np


# Canonical emotion names used by targets and scoring.
EMOTIONS = (
    "neutral", "happy", "sad", "angry", "fearful", "disgusted", "surprised",
)


class _NoFace:
    """Sentinel type: the classifier found no face in the frame."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_FACE"

    def __bool__(self) -> bool:
        return False


NO_FACE = _NoFace()

ExpressionReading = Mapping[str, float]
ClassifierOutput = Union[ExpressionReading, _NoFace]


def normalize_reading(raw: Optional[Mapping[str, float]], aliases: Optional[Mapping[str, str]] = None) -> Dict[str, float]:
    """
    Map backend emotion names onto EMOTIONS. Values are clipped to [0, 1];
    aliases that land on the same name are summed (then clipped). Unknown
    names and non-numeric values are dropped.
    """
    out = {k: 0.0 for k in EMOTIONS}
    if not raw:
        return out
    aliases = aliases or {}
    for key, value in raw.items():
        name = aliases.get(str(key).lower(), str(key).lower())
        if name not in out:
            continue
        try:
            v = float(value)
        except (TypeError, ValueError):
            continue
        if not np.isfinite(v):
            continue
        out[name] = float(np.clip(out[name] + v, 0.0, 1.0))
    return out


class ExpressionClassifier(ABC):
    """
    Abstract interface for expression classifier implementations.

    classify() may raise on backend errors (network, model); the game treats
    a raised error as a failed tick, not a failed round.
    """

    @abstractmethod
    def classify(self, image: np.ndarray) -> ClassifierOutput:
        """
        Classify the expression of the first face in an image.

        Args:
            image: BGR image array (OpenCV format)

        Returns:
            Mapping of emotion name -> probability in [0, 1], or NO_FACE
        """

    @abstractmethod
    def is_available(self) -> bool:
        """True if the classifier can be used (model loaded / service configured)."""

    @abstractmethod
    def get_name(self) -> str:
        """Backend name (e.g. "mediapipe", "azure_face_api")."""

    def close(self) -> None:
        """
        Clean up resources. Override if needed.

        Default implementation does nothing.
        """
