"""
Frame Scorer Module

Turns one classifier reading and one target into a 0-5 score:

    total = 5 * w.primary  * p[primary]
          + 5 * w.related  * sum(p[e] for e in related)
          + 5 * w.opposite * sum(p[e] for e in opposite)

clamped to [0, 5] and rounded half up. With the default primary weight of 1.2 a
fully confident match reaches 6 raw points, so strong but imperfect matches
still hit 5. Opposite emotions subtract, which keeps a confusable expression
(e.g. surprised when angry is asked for) from scoring high.
"""

import math
from collections.abc import Mapping
from typing import Any

from utils.emotion_targets import EmotionTarget
from utils.expression_classifier import NO_FACE

MAX_SCORE = 5


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _probability(reading: Mapping, emotion: str) -> float:
    """Probability for one emotion; missing or unusable values count as 0."""
    try:
        v = float(reading.get(emotion, 0.0))
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(v):
        return 0.0
    return min(1.0, max(0.0, v))


def score_frame(reading: Any, target: Any) -> int:
    """
    Score one reading against a target. Pure and total: returns an int in
    0..5 and never raises. NO_FACE and malformed arguments score 0.
    """
    if reading is NO_FACE or not isinstance(reading, Mapping) or not isinstance(target, EmotionTarget):
        return 0
    w = target.weights
    try:
        total = (
            MAX_SCORE * w.primary * _probability(reading, target.primary_emotion)
            + MAX_SCORE * w.related * sum(_probability(reading, e) for e in target.related_emotions)
            + MAX_SCORE * w.opposite * sum(_probability(reading, e) for e in target.opposite_emotions)
        )
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(total):
        return 0
    return round_half_up(min(float(MAX_SCORE), max(0.0, total)))
