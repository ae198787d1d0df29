"""
Utilities package for the Imit8 emotion game.

This package contains the expression classifiers (MediaPipe, Azure Face API),
the emoji target catalog, per-frame scoring, session aggregation and video
source handling.
"""

from .video_source_handler import VideoSourceHandler, VideoSourceType
from .expression_classifier import ExpressionClassifier, NO_FACE, EMOTIONS
from .emotion_targets import EmotionTarget, EmotionTargetCatalog, TargetWeights
from .frame_scorer import score_frame
from .session_aggregator import FrameSample, SessionAggregator, AggregateResult

__all__ = [
    'VideoSourceHandler',
    'VideoSourceType',
    'ExpressionClassifier',
    'NO_FACE',
    'EMOTIONS',
    'EmotionTarget',
    'EmotionTargetCatalog',
    'TargetWeights',
    'score_frame',
    'FrameSample',
    'SessionAggregator',
    'AggregateResult',
]
