"""
Emotion Target Catalog

Static table of playable targets. Each emoji maps to the emotion the player
must show (primary), emotions that look close enough to earn a small bonus
(related), and emotions that would be confused with it and cost points
(opposite). Weights follow the sign convention primary > 0 > opposite.
"""

import random
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Tuple

from utils.expression_classifier import EMOTIONS


@dataclass(frozen=True)
class TargetWeights:
    primary: float = 1.2
    related: float = 0.3
    opposite: float = -0.6


@dataclass(frozen=True)
class EmotionTarget:
    """One playable challenge. Immutable."""
    symbol: str
    primary_emotion: str
    related_emotions: FrozenSet[str] = field(default_factory=frozenset)
    opposite_emotions: FrozenSet[str] = field(default_factory=frozenset)
    weights: TargetWeights = field(default_factory=TargetWeights)
    name: str = ""

    def __post_init__(self):
        related = frozenset(self.related_emotions)
        opposite = frozenset(self.opposite_emotions)
        object.__setattr__(self, "related_emotions", related)
        object.__setattr__(self, "opposite_emotions", opposite)
        if self.primary_emotion in related | opposite:
            raise ValueError(
                f"{self.symbol}: primary emotion '{self.primary_emotion}' "
                "cannot also be related or opposite"
            )
        unknown = ({self.primary_emotion} | related | opposite) - set(EMOTIONS)
        if unknown:
            raise ValueError(f"{self.symbol}: unknown emotions {sorted(unknown)}")

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "name": self.name or self.primary_emotion,
            "primaryEmotion": self.primary_emotion,
            "relatedEmotions": sorted(self.related_emotions),
            "oppositeEmotions": sorted(self.opposite_emotions),
        }


DEFAULT_TARGETS: Tuple[EmotionTarget, ...] = (
    EmotionTarget("😀", "happy", {"surprised"}, {"sad", "angry"}, name="grinning"),
    EmotionTarget("😢", "sad", {"fearful"}, {"happy", "surprised"}, name="crying"),
    EmotionTarget("😡", "angry", {"disgusted"}, {"happy", "surprised"}, name="pouting"),
    EmotionTarget("😲", "surprised", {"fearful"}, {"neutral", "sad"}, name="astonished"),
    EmotionTarget("😍", "happy", {"surprised"}, {"sad", "disgusted"}, name="heart eyes"),
)


class EmotionTargetCatalog:
    """
    Ordered, non-empty set of targets with a uniform random draw.

    Usage:
        catalog = EmotionTargetCatalog()
        target = catalog.pick_random()
    """

    def __init__(self, targets: Optional[Iterable[EmotionTarget]] = None, rng: Optional[random.Random] = None):
        self._targets = tuple(targets) if targets is not None else DEFAULT_TARGETS
        if not self._targets:
            raise ValueError("catalog must contain at least one target")
        self._rng = rng or random.Random()

    def list_targets(self) -> Tuple[EmotionTarget, ...]:
        return self._targets

    def pick_random(self, rng: Optional[random.Random] = None) -> EmotionTarget:
        return (rng or self._rng).choice(self._targets)

    def get(self, symbol: str) -> EmotionTarget:
        for target in self._targets:
            if target.symbol == symbol:
                return target
        raise KeyError(symbol)

    def __len__(self) -> int:
        return len(self._targets)
