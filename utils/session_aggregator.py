"""
Session Aggregator Module

Collects one FrameSample per tick during a round and reduces them to a final
0-5 score plus the representative captured frame.

Scoring:
  1. The first DROP_LEADING_SAMPLES ticks are dropped (reaction delay after the
     target appears). Fewer than DROP_LEADING_SAMPLES + 1 samples -> score 0.
  2. The remaining samples are sorted by score; the top TOP_FRACTION (at least
     one) are averaged and rounded half up.

Representative frame (independent of the trimming above):
  1. Samples from the last LAST_SECOND_MS of the window that carry an image:
     highest score wins, earliest tick on ties.
  2. Otherwise the most recent sample anywhere that carries an image.
  3. Otherwise None, and the caller must treat the round as failed.
"""

import math
from dataclasses import dataclass
from typing import List, Optional

from utils.frame_scorer import round_half_up

DROP_LEADING_SAMPLES = 3
TOP_FRACTION = 0.4
LAST_SECOND_MS = 1000


@dataclass
class FrameSample:
    """One tick of the sampling window."""
    tick_index: int
    score: int
    captured_image: Optional[bytes] = None
    timestamp_offset_ms: float = 0.0

    @property
    def has_image(self) -> bool:
        return bool(self.captured_image)


@dataclass(frozen=True)
class AggregateResult:
    final_score: int
    representative_image: Optional[bytes]
    representative_tick: Optional[int] = None


class SessionAggregator:
    """
    Append-only sample buffer for one round.

    Usage:
        agg = SessionAggregator(window_ms=3000)
        agg.append(FrameSample(tick_index=0, score=3, timestamp_offset_ms=0))
        ...
        result = agg.finalize()
    """

    def __init__(self, window_ms: float):
        self.window_ms = float(window_ms)
        self._samples: List[FrameSample] = []
        self._result: Optional[AggregateResult] = None

    def append(self, sample: FrameSample) -> None:
        if self._result is not None:
            raise RuntimeError("cannot append to a finalized session")
        self._samples.append(sample)

    @property
    def samples(self) -> List[FrameSample]:
        return list(self._samples)

    @property
    def is_finalized(self) -> bool:
        return self._result is not None

    def __len__(self) -> int:
        return len(self._samples)

    def finalize(self) -> AggregateResult:
        """Compute (once) and return the final score and representative image."""
        if self._result is None:
            best = self._select_representative()
            self._result = AggregateResult(
                final_score=self._final_score(),
                representative_image=best.captured_image if best else None,
                representative_tick=best.tick_index if best else None,
            )
        return self._result

    def _final_score(self) -> int:
        if len(self._samples) <= DROP_LEADING_SAMPLES:
            return 0
        kept = sorted((s.score for s in self._samples[DROP_LEADING_SAMPLES:]), reverse=True)
        top_n = max(1, math.ceil(TOP_FRACTION * len(kept)))
        top = kept[:top_n]
        return round_half_up(sum(top) / len(top))

    def _select_representative(self) -> Optional[FrameSample]:
        cutoff = self.window_ms - LAST_SECOND_MS
        best: Optional[FrameSample] = None
        for s in self._samples:
            if s.timestamp_offset_ms >= cutoff and s.has_image:
                # strict > keeps the earliest tick on ties
                if best is None or s.score > best.score:
                    best = s
        if best is not None:
            return best
        for s in reversed(self._samples):
            if s.has_image:
                return s
        return None
