"""
Azure Face API Expression Classifier

This module provides an Azure Face API-based implementation of the
ExpressionClassifier interface.
"""

from typing import Optional

import numpy as np

from utils.expression_classifier import (
    NO_FACE,
    ClassifierOutput,
    ExpressionClassifier,
    normalize_reading,
)
from services.azure_face_api import AzureFaceAPIService, get_azure_face_api_service


# Azure emotion names -> canonical names. Contempt folds into disgusted.
AZURE_EMOTION_ALIASES = {
    "anger": "angry",
    "contempt": "disgusted",
    "disgust": "disgusted",
    "fear": "fearful",
    "happiness": "happy",
    "neutral": "neutral",
    "sadness": "sad",
    "surprise": "surprised",
}


class AzureExpressionClassifier(ExpressionClassifier):
    """
    Azure Face API-based expression classifier.

    Only the first face returned by the service is scored. Service errors
    (requests.RequestException, ValueError) propagate to the caller.
    """

    def __init__(self, service: Optional[AzureFaceAPIService] = None):
        """Initialize with an explicit service or the global one from config."""
        self.service = service if service is not None else get_azure_face_api_service()
        self._available = self.service is not None
        if not self._available:
            print("Warning: Azure expression classifier initialized but service is not available")

    def classify(self, image: np.ndarray) -> ClassifierOutput:
        """
        Classify the expression of the first face using Azure Face API.

        Args:
            image: BGR image array

        Returns:
            Canonical emotion probabilities, or NO_FACE
        """
        if not self.service:
            return NO_FACE

        emotions = self.service.detect_emotions(image)
        if not emotions:
            return NO_FACE
        return normalize_reading(emotions[0], AZURE_EMOTION_ALIASES)

    def is_available(self) -> bool:
        """Check if Azure Face API is available and configured."""
        return self._available

    def get_name(self) -> str:
        """Get classifier name."""
        return "azure_face_api"
