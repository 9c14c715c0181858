"""
Face-likeness scoring of a box plus five landmarks.

No face-shape prior exists at decode time, so this heuristic is the only
signal available to choose between competing decodes of the same grid cell
and to drop structurally impossible detections before numeric thresholds.
Scores are in [0, 1]; 0 means implausible.
"""
from typing import Sequence, Union

import numpy as np

# Landmarks may sit slightly outside the box; tolerate this much on each side.
LANDMARK_BOX_EXPANSION = 0.25
MIN_LANDMARKS_INSIDE = 3
# Nose must lie between the eye line and the mouth line, give or take this much of box height.
NOSE_SLACK = 0.10
# Vertical eye offset allowed, as a fraction of box width.
MAX_EYE_TILT = 0.30
EYE_DISTANCE_RANGE = (0.15, 0.85)
MOUTH_TO_EYE_RANGE = (0.25, 1.60)
EYE_LINE_RANGE = (0.05, 0.65)
MOUTH_LINE_RANGE = (0.35, 1.05)
# Normalized centroid distance at which the score reaches zero.
CENTROID_FALLOFF = 0.5

ArrayLike = Union[np.ndarray, Sequence[float]]


def _order_left_right(a: np.ndarray, b: np.ndarray):
    swap = (a[:, 0] > b[:, 0])[:, None]
    return np.where(swap, b, a), np.where(swap, a, b)


def geometry_scores(boxes: ArrayLike, landmarks: ArrayLike) -> np.ndarray:
    """Score many candidates at once.

    Args:
        boxes: (N, 4) boxes as x, y, w, h
        landmarks: (N, 10) landmarks as x0, y0, ..., x4, y4

    Returns:
        (N,) float64 scores in [0, 1]
    """
    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    points = np.asarray(landmarks, dtype=np.float64).reshape(-1, 5, 2)
    if len(boxes) == 0:
        return np.zeros(0, dtype=np.float64)

    x, y, w, h = boxes.T
    valid = (
        np.isfinite(boxes).all(axis=1)
        & np.isfinite(points).all(axis=(1, 2))
        & (w > 0)
        & (h > 0)
    )
    # Neutral stand-ins keep the arithmetic below warning-free for invalid rows.
    w = np.where(valid, w, 1.0)
    h = np.where(valid, h, 1.0)
    x = np.where(valid, x, 0.0)
    y = np.where(valid, y, 0.0)
    points = np.where(valid[:, None, None], points, 0.0)

    left_eye, right_eye = _order_left_right(points[:, 0], points[:, 1])
    nose = points[:, 2]
    left_mouth, right_mouth = _order_left_right(points[:, 3], points[:, 4])

    pad_x = (LANDMARK_BOX_EXPANSION * w)[:, None]
    pad_y = (LANDMARK_BOX_EXPANSION * h)[:, None]
    inside = (
        (points[:, :, 0] >= x[:, None] - pad_x)
        & (points[:, :, 0] <= (x + w)[:, None] + pad_x)
        & (points[:, :, 1] >= y[:, None] - pad_y)
        & (points[:, :, 1] <= (y + h)[:, None] + pad_y)
    )
    ok = valid & (inside.sum(axis=1) >= MIN_LANDMARKS_INSIDE)

    eye_line = (left_eye[:, 1] + right_eye[:, 1]) / 2.0
    mouth_line = (left_mouth[:, 1] + right_mouth[:, 1]) / 2.0
    slack = NOSE_SLACK * h
    ok &= mouth_line > eye_line
    ok &= (nose[:, 1] >= eye_line - slack) & (nose[:, 1] <= mouth_line + slack)

    ok &= np.abs(right_eye[:, 1] - left_eye[:, 1]) <= MAX_EYE_TILT * w

    eye_distance = np.hypot(*(right_eye - left_eye).T)
    eye_ratio = eye_distance / w
    ok &= (eye_ratio >= EYE_DISTANCE_RANGE[0]) & (eye_ratio <= EYE_DISTANCE_RANGE[1])

    mouth_width = np.hypot(*(right_mouth - left_mouth).T)
    mouth_ratio = mouth_width / np.where(eye_distance > 1e-6, eye_distance, 1.0)
    ok &= (mouth_ratio >= MOUTH_TO_EYE_RANGE[0]) & (mouth_ratio <= MOUTH_TO_EYE_RANGE[1])

    eye_pos = (eye_line - y) / h
    mouth_pos = (mouth_line - y) / h
    ok &= (eye_pos >= EYE_LINE_RANGE[0]) & (eye_pos <= EYE_LINE_RANGE[1])
    ok &= (mouth_pos >= MOUTH_LINE_RANGE[0]) & (mouth_pos <= MOUTH_LINE_RANGE[1])

    centroid = points.mean(axis=1)
    dx = (centroid[:, 0] - (x + w / 2.0)) / w
    dy = (centroid[:, 1] - (y + h / 2.0)) / h
    score = np.clip(1.0 - np.hypot(dx, dy) / CENTROID_FALLOFF, 0.0, 1.0)

    return np.where(ok, score, 0.0)


def score_face_geometry(box: ArrayLike, landmarks: ArrayLike) -> float:
    """Score a single box (x, y, w, h) and its 10 landmark floats."""
    return float(geometry_scores(np.asarray(box)[None, :], np.asarray(landmarks)[None, :])[0])
