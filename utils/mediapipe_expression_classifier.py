"""
MediaPipe Expression Classifier

Local (no cloud) implementation of the ExpressionClassifier interface. MediaPipe
Face Mesh gives 468 landmarks for the first face; a handful of geometric cues
(lip-corner lift, mouth opening, brow height, brow gap, eye opening) are turned
into a coarse probability per emotion:

  happy     — lip corners lifted above the lip centre, wide mouth
  surprised — mouth open, brows raised, eyes wide
  sad       — lip corners pulled down, eyes narrowed
  angry     — brows lowered and drawn together, lips pressed
  fearful   — brows raised with a stretched, unlifted mouth
  disgusted — corners down with squinting eyes
  neutral   — whatever the others leave over

Azure Face API is the more accurate backend; this one keeps the game playable
offline.
"""

from typing import Dict, List, Optional

import cv2
import numpy as np

from utils.expression_classifier import NO_FACE, ClassifierOutput, ExpressionClassifier, EMOTIONS


# Face Mesh indices
MOUTH_LEFT, MOUTH_RIGHT = 61, 291
UPPER_LIP, LOWER_LIP = 13, 14
LEFT_EYE_TOP, LEFT_EYE_BOTTOM, LEFT_EYE_OUTER, LEFT_EYE_INNER = 159, 145, 33, 133
RIGHT_EYE_TOP, RIGHT_EYE_BOTTOM, RIGHT_EYE_OUTER, RIGHT_EYE_INNER = 386, 374, 263, 362
LEFT_BROW_MID, RIGHT_BROW_MID = 105, 334
LEFT_BROW_INNER, RIGHT_BROW_INNER = 107, 336
FACE_LEFT, FACE_RIGHT = 234, 454

_REQUIRED = max(
    MOUTH_LEFT, MOUTH_RIGHT, UPPER_LIP, LOWER_LIP, LEFT_EYE_TOP, LEFT_EYE_BOTTOM,
    LEFT_EYE_OUTER, LEFT_EYE_INNER, RIGHT_EYE_TOP, RIGHT_EYE_BOTTOM, RIGHT_EYE_OUTER,
    RIGHT_EYE_INNER, LEFT_BROW_MID, RIGHT_BROW_MID, LEFT_BROW_INNER, RIGHT_BROW_INNER,
    FACE_LEFT, FACE_RIGHT,
)


def _ramp(x: float, lo: float, hi: float) -> float:
    """0 at lo, 1 at hi, linear in between (works for lo > hi too)."""
    if hi == lo:
        return 0.0
    return float(np.clip((x - lo) / (hi - lo), 0.0, 1.0))


def _dist(lm: np.ndarray, a: int, b: int) -> float:
    return float(np.linalg.norm(lm[a, :2] - lm[b, :2]))


def geometric_features(landmarks: np.ndarray) -> Optional[Dict[str, float]]:
    """
    Scale-free expression cues from Face Mesh landmarks (pixel or normalized
    coordinates; image y grows downward). None if the mesh is incomplete.
    """
    lm = np.asarray(landmarks, dtype=np.float64)
    if lm.ndim != 2 or lm.shape[0] <= _REQUIRED or lm.shape[1] < 2:
        return None
    face_w = _dist(lm, FACE_LEFT, FACE_RIGHT)
    if face_w <= 1e-6:
        return None

    lip_centre_y = (lm[UPPER_LIP, 1] + lm[LOWER_LIP, 1]) / 2.0
    corners_y = (lm[MOUTH_LEFT, 1] + lm[MOUTH_RIGHT, 1]) / 2.0

    def eye_open(top, bottom, outer, inner):
        return _dist(lm, top, bottom) / max(_dist(lm, outer, inner), 1e-6)

    brow_l = lm[LEFT_EYE_TOP, 1] - lm[LEFT_BROW_MID, 1]
    brow_r = lm[RIGHT_EYE_TOP, 1] - lm[RIGHT_BROW_MID, 1]

    return {
        "corner_lift": float((lip_centre_y - corners_y) / face_w),
        "mouth_open": _dist(lm, UPPER_LIP, LOWER_LIP) / face_w,
        "mouth_width": _dist(lm, MOUTH_LEFT, MOUTH_RIGHT) / face_w,
        "brow_raise": float((brow_l + brow_r) / 2.0 / face_w),
        "brow_gap": _dist(lm, LEFT_BROW_INNER, RIGHT_BROW_INNER) / face_w,
        "eye_open": (
            eye_open(LEFT_EYE_TOP, LEFT_EYE_BOTTOM, LEFT_EYE_OUTER, LEFT_EYE_INNER)
            + eye_open(RIGHT_EYE_TOP, RIGHT_EYE_BOTTOM, RIGHT_EYE_OUTER, RIGHT_EYE_INNER)
        ) / 2.0,
    }


def expression_from_landmarks(landmarks: np.ndarray) -> ClassifierOutput:
    """Map Face Mesh landmarks to canonical emotion probabilities (or NO_FACE)."""
    f = geometric_features(landmarks)
    if f is None:
        return NO_FACE

    lift = f["corner_lift"]
    happy = 0.75 * _ramp(lift, 0.004, 0.03) + 0.25 * _ramp(f["mouth_width"], 0.38, 0.48)
    surprised = (
        0.5 * _ramp(f["mouth_open"], 0.04, 0.14)
        + 0.3 * _ramp(f["brow_raise"], 0.09, 0.13)
        + 0.2 * _ramp(f["eye_open"], 0.32, 0.45)
    )
    sad = 0.75 * _ramp(lift, -0.002, -0.02) + 0.25 * _ramp(f["eye_open"], 0.26, 0.18)
    angry = (
        0.45 * _ramp(f["brow_gap"], 0.22, 0.16)
        + 0.35 * _ramp(f["brow_raise"], 0.08, 0.05)
        + 0.20 * _ramp(f["mouth_open"], 0.02, 0.005)
    )
    fearful = 0.5 * _ramp(f["brow_raise"], 0.10, 0.14) * (1.0 - _ramp(lift, 0.0, 0.02)) + 0.5 * _ramp(
        f["mouth_width"], 0.42, 0.50
    ) * (1.0 - _ramp(lift, 0.0, 0.02))
    disgusted = 0.6 * _ramp(lift, 0.0, -0.015) * _ramp(f["eye_open"], 0.26, 0.16) + 0.4 * _ramp(
        f["brow_gap"], 0.22, 0.17
    ) * _ramp(f["eye_open"], 0.26, 0.16)

    out = {
        "happy": happy,
        "surprised": surprised,
        "sad": sad,
        "angry": angry,
        "fearful": fearful,
        "disgusted": disgusted,
    }
    out["neutral"] = max(0.0, 1.0 - max(out.values()))
    return {k: round(float(np.clip(out[k], 0.0, 1.0)), 3) for k in EMOTIONS}


class MediaPipeExpressionClassifier(ExpressionClassifier):
    """
    MediaPipe Face Mesh expression classifier.

    Tracking mode first; static mode as fallback when the tracker loses the face.
    """

    def __init__(self, min_detection_confidence: float = 0.2, min_tracking_confidence: float = 0.2):
        import mediapipe as mp

        self._det_conf = max(0.01, min(0.99, float(min_detection_confidence)))
        self._track_conf = max(0.01, min(0.99, float(min_tracking_confidence)))
        self.mp_face_mesh = mp.solutions.face_mesh
        self.face_mesh = self.mp_face_mesh.FaceMesh(
            static_image_mode=False,
            max_num_faces=1,
            refine_landmarks=False,
            min_detection_confidence=self._det_conf,
            min_tracking_confidence=self._track_conf,
        )
        # Created on first tracking miss
        self._face_mesh_static = None

    def _landmarks(self, results, width: int, height: int) -> Optional[np.ndarray]:
        if not results.multi_face_landmarks:
            return None
        face = results.multi_face_landmarks[0]
        pts: List[List[float]] = [[p.x * width, p.y * height] for p in face.landmark]
        return np.array(pts, dtype=np.float32)

    def classify(self, image: np.ndarray) -> ClassifierOutput:
        if image is None or image.size == 0:
            return NO_FACE
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        height, width = image.shape[:2]

        lm = self._landmarks(self.face_mesh.process(rgb), width, height)
        if lm is None:
            if self._face_mesh_static is None:
                self._face_mesh_static = self.mp_face_mesh.FaceMesh(
                    static_image_mode=True,
                    max_num_faces=1,
                    refine_landmarks=False,
                    min_detection_confidence=0.05,
                )
            lm = self._landmarks(self._face_mesh_static.process(rgb), width, height)
        if lm is None:
            return NO_FACE
        return expression_from_landmarks(lm)

    def is_available(self) -> bool:
        return True

    def get_name(self) -> str:
        return "mediapipe"

    def close(self) -> None:
        """Clean up MediaPipe resources."""
        for mesh in (self.face_mesh, self._face_mesh_static):
            if mesh is not None:
                mesh.close()
        self._face_mesh_static = None
