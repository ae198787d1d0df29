"""
Scoring tests.

Tests per-frame scoring against emoji targets and the session aggregate
(final score + representative frame).
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import math
import unittest

from utils.emotion_targets import DEFAULT_TARGETS, EmotionTarget, TargetWeights
from utils.expression_classifier import NO_FACE
from utils.frame_scorer import round_half_up, score_frame
from utils.session_aggregator import AggregateResult, FrameSample, SessionAggregator


HAPPY = DEFAULT_TARGETS[0]   # 😀
ANGRY = DEFAULT_TARGETS[2]   # 😡


class TestFrameScorer(unittest.TestCase):
    """Test score_frame."""

    def test_no_face_scores_zero(self):
        for target in DEFAULT_TARGETS:
            self.assertEqual(score_frame(NO_FACE, target), 0)

    def test_malformed_arguments_score_zero(self):
        """Non-mapping readings and non-target targets return 0 without raising."""
        self.assertEqual(score_frame(None, HAPPY), 0)
        self.assertEqual(score_frame([0.9], HAPPY), 0)
        self.assertEqual(score_frame("happy", HAPPY), 0)
        self.assertEqual(score_frame({"happy": 1.0}, None), 0)
        self.assertEqual(score_frame({"happy": 1.0}, "😀"), 0)

    def test_full_confidence_match_clamps_to_five(self):
        """1.2 * 5 * 1.0 = 6 raw -> clamped to 5."""
        self.assertEqual(score_frame({"happy": 1.0}, HAPPY), 5)

    def test_partial_match(self):
        """5 * 1.2 * 0.5 = 3.0."""
        self.assertEqual(score_frame({"happy": 0.5}, HAPPY), 3)

    def test_rounds_half_up(self):
        """5 * 1.2 * 0.375 = 2.25 -> 2; 5 * 1.0 * 0.5 = 2.5 -> 3."""
        self.assertEqual(score_frame({"happy": 0.375}, EmotionTarget("X", "happy")), 2)
        unit = EmotionTarget("Y", "happy", weights=TargetWeights(primary=1.0, related=0.0, opposite=0.0))
        self.assertEqual(score_frame({"happy": 0.5}, unit), 3)
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(3.5), 4)
        self.assertEqual(round_half_up(0.49), 0)

    def test_related_emotion_adds_bonus(self):
        """happy 0.5 (3.0) + surprised 0.4 (5*0.3*0.4 = 0.6) = 3.6 -> 4."""
        self.assertEqual(score_frame({"happy": 0.5}, HAPPY), 3)
        self.assertEqual(score_frame({"happy": 0.5, "surprised": 0.4}, HAPPY), 4)

    def test_opposite_emotion_penalizes(self):
        """Surprised reading should not score high for the angry target."""
        self.assertEqual(score_frame({"surprised": 0.9, "angry": 0.1}, ANGRY), 0)
        # angry 0.7 -> 4.2; surprised 0.3 -> -0.9 => 3.3 -> 3
        self.assertEqual(score_frame({"angry": 0.7, "surprised": 0.3}, ANGRY), 3)

    def test_missing_and_invalid_values_count_as_zero(self):
        self.assertEqual(score_frame({}, HAPPY), 0)
        self.assertEqual(score_frame({"happy": "high"}, HAPPY), 0)
        self.assertEqual(score_frame({"happy": float("nan")}, HAPPY), 0)
        self.assertEqual(score_frame({"happy": float("inf")}, HAPPY), 0)
        self.assertEqual(score_frame({"happy": 0.5, "sad": None}, HAPPY), 3)

    def test_out_of_range_probabilities_are_clipped(self):
        self.assertEqual(score_frame({"happy": 7.0}, HAPPY), 5)
        self.assertEqual(score_frame({"happy": -3.0}, HAPPY), 0)

    def test_output_always_in_range(self):
        """Grid over primary/opposite probabilities stays within 0..5."""
        steps = [i / 10.0 for i in range(11)]
        for target in DEFAULT_TARGETS:
            opposite = sorted(target.opposite_emotions)[0]
            for p in steps:
                for q in steps:
                    s = score_frame({target.primary_emotion: p, opposite: q}, target)
                    self.assertIsInstance(s, int)
                    self.assertIn(s, range(0, 6))

    def test_monotonic_in_primary_probability(self):
        """Raising the primary probability never lowers the score."""
        for target in DEFAULT_TARGETS:
            base = {e: 0.2 for e in target.related_emotions | target.opposite_emotions}
            last = -1
            for i in range(21):
                reading = dict(base)
                reading[target.primary_emotion] = i / 20.0
                s = score_frame(reading, target)
                self.assertGreaterEqual(s, last)
                last = s

    def test_custom_weights(self):
        target = EmotionTarget("T", "sad", weights=TargetWeights(primary=0.5, related=0.0, opposite=0.0))
        self.assertEqual(score_frame({"sad": 1.0}, target), 3)  # 2.5 -> 3


def _samples(scores, images=None, tick_ms=100):
    images = images or {}
    return [
        FrameSample(tick_index=i, score=s, captured_image=images.get(i), timestamp_offset_ms=i * tick_ms)
        for i, s in enumerate(scores)
    ]


class TestSessionAggregator(unittest.TestCase):
    """Test SessionAggregator.finalize."""

    def _finalize(self, scores, images=None, window_ms=3000):
        agg = SessionAggregator(window_ms)
        for s in _samples(scores, images):
            agg.append(s)
        return agg.finalize()

    def test_fewer_than_four_samples_scores_zero(self):
        for scores in ([], [5], [5, 5], [5, 5, 5]):
            self.assertEqual(self._finalize(scores).final_score, 0)

    def test_four_samples_uses_the_fourth(self):
        self.assertEqual(self._finalize([0, 0, 0, 4]).final_score, 4)

    def test_reference_example(self):
        """[1,1,1,1,5,5,5,2,2,2] -> drop 3 -> top ceil(0.4*7)=3 -> [5,5,5] -> 5."""
        self.assertEqual(self._finalize([1, 1, 1, 1, 5, 5, 5, 2, 2, 2]).final_score, 5)

    def test_top_fraction_mean_rounded_half_up(self):
        # kept [4,3,2,1,0,0,0,0,0,0] -> top 4 -> mean 2.5 -> 3
        scores = [5, 5, 5, 4, 3, 2, 1, 0, 0, 0, 0, 0, 0]
        self.assertEqual(math.ceil(0.4 * 10), 4)
        self.assertEqual(self._finalize(scores).final_score, 3)

    def test_leading_samples_ignored_for_score(self):
        self.assertEqual(self._finalize([5, 5, 5, 0, 0, 0, 0]).final_score, 0)

    def test_all_no_face_window(self):
        """Every score 0 -> final 0, but a captured frame is still chosen."""
        scores = [0] * 30
        images = {25: b"late-frame"}
        result = self._finalize(scores, images)
        self.assertEqual(result.final_score, 0)
        self.assertEqual(result.representative_image, b"late-frame")

    def test_representative_highest_in_last_second(self):
        """Last-second samples scoring 3 then 4 -> the score-4 image."""
        scores = [0] * 30
        scores[22], scores[27] = 3, 4
        images = {22: b"three", 27: b"four"}
        result = self._finalize(scores, images)
        self.assertEqual(result.representative_image, b"four")
        self.assertEqual(result.representative_tick, 27)

    def test_representative_tie_keeps_earliest(self):
        scores = [0] * 30
        scores[21], scores[28] = 4, 4
        images = {21: b"first", 28: b"second"}
        self.assertEqual(self._finalize(scores, images).representative_image, b"first")

    def test_representative_ignores_earlier_higher_scores(self):
        """Selection is limited to the last second when it has an image."""
        scores = [0] * 30
        scores[5], scores[25] = 5, 1
        images = {5: b"early", 25: b"late"}
        self.assertEqual(self._finalize(scores, images).representative_image, b"late")

    def test_representative_falls_back_to_latest_image(self):
        """No image in the last second -> most recent image anywhere."""
        scores = [0] * 30
        images = {3: b"older", 12: b"newer"}
        self.assertEqual(self._finalize(scores, images).representative_image, b"newer")

    def test_empty_image_is_not_usable(self):
        scores = [0] * 30
        images = {25: b"", 10: b"ok"}
        self.assertEqual(self._finalize(scores, images).representative_image, b"ok")

    def test_no_images_anywhere(self):
        result = self._finalize([3] * 30)
        self.assertIsNone(result.representative_image)
        self.assertIsNone(result.representative_tick)

    def test_finalize_is_idempotent(self):
        agg = SessionAggregator(3000)
        for s in _samples([1, 1, 1, 1, 5, 5, 5, 2, 2, 2], {8: b"img"}):
            agg.append(s)
        first = agg.finalize()
        second = agg.finalize()
        self.assertIsInstance(first, AggregateResult)
        self.assertEqual(first, second)
        self.assertTrue(agg.is_finalized)
        self.assertEqual(len(agg), 10)

    def test_append_after_finalize_raises(self):
        agg = SessionAggregator(3000)
        agg.finalize()
        with self.assertRaises(RuntimeError):
            agg.append(FrameSample(tick_index=0, score=1))

    def test_samples_returns_copy(self):
        agg = SessionAggregator(3000)
        agg.append(FrameSample(tick_index=0, score=2))
        agg.samples.clear()
        self.assertEqual(len(agg), 1)


if __name__ == "__main__":
    unittest.main()
