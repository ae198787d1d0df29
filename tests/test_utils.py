"""
Utility module tests.

Tests emotion targets, reading normalization, the landmark-based and Azure
expression classifiers, classifier preference and video source helpers.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import random
import unittest
from unittest.mock import patch, MagicMock

import numpy as np


class TestEmotionTargets(unittest.TestCase):
    """Test EmotionTarget and EmotionTargetCatalog."""

    def test_default_catalog(self):
        from utils.emotion_targets import EmotionTargetCatalog
        catalog = EmotionTargetCatalog()
        symbols = [t.symbol for t in catalog.list_targets()]
        self.assertEqual(symbols, ["😀", "😢", "😡", "😲", "😍"])
        self.assertEqual(len(catalog), 5)
        self.assertEqual(catalog.get("😡").primary_emotion, "angry")
        self.assertEqual(catalog.get("😍").primary_emotion, "happy")

    def test_get_unknown_symbol_raises(self):
        from utils.emotion_targets import EmotionTargetCatalog
        with self.assertRaises(KeyError):
            EmotionTargetCatalog().get("🤖")

    def test_pick_random_is_member_and_covers_catalog(self):
        from utils.emotion_targets import EmotionTargetCatalog
        catalog = EmotionTargetCatalog(rng=random.Random(7))
        seen = {catalog.pick_random().symbol for _ in range(200)}
        self.assertEqual(seen, {t.symbol for t in catalog.list_targets()})

    def test_pick_random_with_explicit_rng_is_reproducible(self):
        from utils.emotion_targets import EmotionTargetCatalog
        catalog = EmotionTargetCatalog()
        a = [catalog.pick_random(random.Random(3)).symbol for _ in range(5)]
        b = [catalog.pick_random(random.Random(3)).symbol for _ in range(5)]
        self.assertEqual(a, b)

    def test_empty_catalog_rejected(self):
        from utils.emotion_targets import EmotionTargetCatalog
        with self.assertRaises(ValueError):
            EmotionTargetCatalog(targets=[])

    def test_primary_cannot_be_related_or_opposite(self):
        from utils.emotion_targets import EmotionTarget
        with self.assertRaises(ValueError):
            EmotionTarget("X", "happy", related_emotions={"happy"})
        with self.assertRaises(ValueError):
            EmotionTarget("X", "happy", opposite_emotions={"sad", "happy"})

    def test_unknown_emotion_rejected(self):
        from utils.emotion_targets import EmotionTarget
        with self.assertRaises(ValueError):
            EmotionTarget("X", "joyful")

    def test_target_is_immutable_and_serializable(self):
        from dataclasses import FrozenInstanceError
        from utils.emotion_targets import DEFAULT_TARGETS
        target = DEFAULT_TARGETS[0]
        self.assertIsInstance(target.related_emotions, frozenset)
        with self.assertRaises(FrozenInstanceError):
            target.symbol = "?"
        d = target.to_dict()
        self.assertEqual(d["symbol"], "😀")
        self.assertEqual(d["primaryEmotion"], "happy")
        self.assertEqual(d["oppositeEmotions"], ["angry", "sad"])


class TestNormalizeReading(unittest.TestCase):
    """Test normalize_reading and the NO_FACE sentinel."""

    def test_azure_names_are_mapped(self):
        from utils.expression_classifier import normalize_reading, EMOTIONS
        from utils.azure_expression_classifier import AZURE_EMOTION_ALIASES
        raw = {"happiness": 0.8, "surprise": 0.1, "contempt": 0.05, "disgust": 0.05, "anger": 0.0}
        out = normalize_reading(raw, AZURE_EMOTION_ALIASES)
        self.assertEqual(set(out), set(EMOTIONS))
        self.assertAlmostEqual(out["happy"], 0.8)
        self.assertAlmostEqual(out["surprised"], 0.1)
        self.assertAlmostEqual(out["disgusted"], 0.1)

    def test_unknown_and_invalid_values_dropped(self):
        from utils.expression_classifier import normalize_reading
        out = normalize_reading({"bored": 0.9, "happy": "x", "sad": float("nan"), "angry": 1.7})
        self.assertEqual(out["happy"], 0.0)
        self.assertEqual(out["sad"], 0.0)
        self.assertEqual(out["angry"], 1.0)
        self.assertNotIn("bored", out)

    def test_none_gives_all_zero(self):
        from utils.expression_classifier import normalize_reading
        self.assertTrue(all(v == 0.0 for v in normalize_reading(None).values()))

    def test_no_face_sentinel(self):
        from utils.expression_classifier import NO_FACE, _NoFace
        self.assertIs(NO_FACE, _NoFace())
        self.assertFalse(NO_FACE)
        self.assertEqual(repr(NO_FACE), "NO_FACE")


class TestLandmarkExpression(unittest.TestCase):
    """Test expression_from_landmarks on synthetic Face Mesh geometry."""

    def test_neutral_face_is_mostly_neutral(self):
        from utils.mediapipe_expression_classifier import expression_from_landmarks
        from tests.fixtures.synthetic_landmarks import make_neutral_face
        out = expression_from_landmarks(make_neutral_face())
        self.assertEqual(max(out, key=out.get), "neutral")
        self.assertLess(out["happy"], 0.2)

    def test_smiling_face_is_happy(self):
        from utils.mediapipe_expression_classifier import expression_from_landmarks
        from tests.fixtures.synthetic_landmarks import make_smiling_face
        out = expression_from_landmarks(make_smiling_face())
        self.assertEqual(out["happy"], 1.0)
        self.assertEqual(out["neutral"], 0.0)
        self.assertEqual(out["sad"], 0.0)

    def test_surprised_face(self):
        from utils.mediapipe_expression_classifier import expression_from_landmarks
        from tests.fixtures.synthetic_landmarks import make_surprised_face
        out = expression_from_landmarks(make_surprised_face())
        self.assertEqual(max(out, key=out.get), "surprised")

    def test_smile_scores_high_against_grinning_target(self):
        from utils.mediapipe_expression_classifier import expression_from_landmarks
        from utils.frame_scorer import score_frame
        from utils.emotion_targets import DEFAULT_TARGETS
        from tests.fixtures.synthetic_landmarks import make_neutral_face, make_smiling_face
        self.assertEqual(score_frame(expression_from_landmarks(make_smiling_face()), DEFAULT_TARGETS[0]), 5)
        self.assertEqual(score_frame(expression_from_landmarks(make_neutral_face()), DEFAULT_TARGETS[0]), 0)

    def test_incomplete_mesh_is_no_face(self):
        from utils.mediapipe_expression_classifier import expression_from_landmarks, geometric_features
        from utils.expression_classifier import NO_FACE
        self.assertIsNone(geometric_features(np.zeros((100, 2))))
        self.assertIs(expression_from_landmarks(np.zeros((100, 2))), NO_FACE)
        # Degenerate (zero-width) face
        self.assertIs(expression_from_landmarks(np.zeros((468, 2))), NO_FACE)

    def test_values_rounded_and_bounded(self):
        from utils.mediapipe_expression_classifier import expression_from_landmarks
        from utils.expression_classifier import EMOTIONS
        from tests.fixtures.synthetic_landmarks import make_surprised_face
        out = expression_from_landmarks(make_surprised_face())
        self.assertEqual(set(out), set(EMOTIONS))
        for v in out.values():
            self.assertGreaterEqual(v, 0.0)
            self.assertLessEqual(v, 1.0)
            self.assertEqual(v, round(v, 3))


class TestAzureExpressionClassifier(unittest.TestCase):
    """Test AzureExpressionClassifier with a mocked service."""

    def _frame(self):
        return np.full((64, 64, 3), 128, dtype=np.uint8)

    def test_first_face_emotions_normalized(self):
        from utils.azure_expression_classifier import AzureExpressionClassifier
        service = MagicMock()
        service.detect_emotions.return_value = [
            {"happiness": 0.9, "neutral": 0.1},
            {"sadness": 1.0},
        ]
        clf = AzureExpressionClassifier(service=service)
        out = clf.classify(self._frame())
        self.assertAlmostEqual(out["happy"], 0.9)
        self.assertEqual(out["sad"], 0.0)
        self.assertTrue(clf.is_available())
        self.assertEqual(clf.get_name(), "azure_face_api")

    def test_no_faces_is_no_face(self):
        from utils.azure_expression_classifier import AzureExpressionClassifier
        from utils.expression_classifier import NO_FACE
        service = MagicMock()
        service.detect_emotions.return_value = []
        self.assertIs(AzureExpressionClassifier(service=service).classify(self._frame()), NO_FACE)

    def test_service_errors_propagate(self):
        import requests
        from utils.azure_expression_classifier import AzureExpressionClassifier
        service = MagicMock()
        service.detect_emotions.side_effect = requests.RequestException("boom")
        with self.assertRaises(requests.RequestException):
            AzureExpressionClassifier(service=service).classify(self._frame())

    @patch("utils.azure_expression_classifier.get_azure_face_api_service", return_value=None)
    def test_unconfigured_is_unavailable(self, _mock):
        from utils.azure_expression_classifier import AzureExpressionClassifier
        from utils.expression_classifier import NO_FACE
        clf = AzureExpressionClassifier()
        self.assertFalse(clf.is_available())
        self.assertIs(clf.classify(self._frame()), NO_FACE)


class TestClassifierPreference(unittest.TestCase):
    """Test runtime classifier method selection."""

    def setUp(self):
        import utils.classifier_preference as pref
        self.pref = pref
        pref._PREFERENCE = None

    def tearDown(self):
        self.pref._PREFERENCE = None

    def test_invalid_method_rejected(self):
        with self.assertRaises(ValueError):
            self.pref.set_classifier_method("opencv")

    def test_set_mediapipe(self):
        self.assertEqual(self.pref.set_classifier_method("MediaPipe"), "mediapipe")
        self.assertEqual(self.pref.get_classifier_method(), "mediapipe")

    @patch("config.is_azure_face_api_enabled", return_value=False)
    def test_azure_rejected_when_unconfigured(self, _mock):
        with self.assertRaises(ValueError):
            self.pref.set_classifier_method("azure_face_api")

    @patch("config.is_azure_face_api_enabled", return_value=False)
    def test_auto_resolves_to_mediapipe_without_azure(self, _mock):
        self.assertEqual(self.pref.resolve_classifier_method("auto"), "mediapipe")

    @patch("config.is_azure_face_api_enabled", return_value=True)
    def test_auto_resolves_to_azure_when_configured(self, _mock):
        self.assertEqual(self.pref.resolve_classifier_method("auto"), "azure_face_api")


class TestVideoSourceHelpers(unittest.TestCase):
    """Test blank-frame detection, JPEG capture and the browser frame source."""

    def _textured(self, h=120, w=160):
        rng = np.random.RandomState(0)
        return rng.randint(0, 255, size=(h, w, 3), dtype=np.uint8)

    def test_blank_frames(self):
        from utils.video_source_handler import is_blank_frame
        self.assertTrue(is_blank_frame(None))
        self.assertTrue(is_blank_frame(np.zeros((120, 160, 3), dtype=np.uint8)))
        self.assertTrue(is_blank_frame(np.full((120, 160, 3), 200, dtype=np.uint8)))
        self.assertTrue(is_blank_frame(self._textured(20, 20)))
        self.assertFalse(is_blank_frame(self._textured()))

    def test_encode_capture(self):
        from utils.video_source_handler import encode_capture
        jpeg = encode_capture(self._textured())
        self.assertIsInstance(jpeg, bytes)
        self.assertTrue(jpeg.startswith(b"\xff\xd8"))
        self.assertIsNone(encode_capture(np.zeros((120, 160, 3), dtype=np.uint8)))

    def test_browser_source_reads_pushed_frame(self):
        import cv2
        from utils.video_source_handler import (
            VideoSourceHandler, VideoSourceType, set_browser_frame, set_browser_frame_from_bytes,
        )
        set_browser_frame(None)
        handler = VideoSourceHandler()
        self.assertTrue(handler.initialize_source(VideoSourceType.BROWSER))
        self.assertEqual(handler.read_frame(), (False, None))

        ok, buf = cv2.imencode(".jpg", self._textured())
        self.assertTrue(set_browser_frame_from_bytes(buf.tobytes()))
        ok, frame = handler.read_frame()
        self.assertTrue(ok)
        self.assertEqual(frame.shape, (120, 160, 3))
        self.assertIsNotNone(handler.capture_current_frame())

        handler.release()
        self.assertIsNone(handler.capture_current_frame())

    def test_invalid_browser_bytes_rejected(self):
        from utils.video_source_handler import set_browser_frame_from_bytes
        self.assertFalse(set_browser_frame_from_bytes(b""))
        self.assertFalse(set_browser_frame_from_bytes(b"not an image"))

    def test_file_source_requires_path(self):
        from utils.video_source_handler import VideoSourceHandler, VideoSourceType
        handler = VideoSourceHandler()
        self.assertFalse(handler.initialize_source(VideoSourceType.FILE))
        self.assertFalse(handler.is_open)


if __name__ == "__main__":
    unittest.main()
