"""Tests for the face geometry scorer."""
import numpy as np
import pytest

from facetag.services.detection.geometry import geometry_scores, score_face_geometry

BOX = (0.0, 0.0, 100.0, 120.0)
LANDMARKS = [30, 45, 70, 45, 50, 65, 35, 90, 65, 90]


class TestGeometryScorer:
    """Plausibility rules of the geometry scorer."""

    def test_frontal_face_scores_high(self):
        score = score_face_geometry(BOX, LANDMARKS)
        assert 0.8 < score <= 1.0

    def test_swapped_eyes_and_mouth_score_the_same(self):
        swapped = [70, 45, 30, 45, 50, 65, 65, 90, 35, 90]
        assert score_face_geometry(BOX, swapped) == pytest.approx(score_face_geometry(BOX, LANDMARKS))

    def test_upside_down_face_is_rejected(self):
        flipped = [30, 90, 70, 90, 50, 65, 35, 45, 65, 45]
        assert score_face_geometry(BOX, flipped) == 0.0

    def test_landmarks_outside_box_are_rejected(self):
        outside = [v + 400 for v in LANDMARKS]
        assert score_face_geometry(BOX, outside) == 0.0

    def test_tilted_eye_line_is_rejected(self):
        tilted = [30, 20, 70, 60, 50, 65, 35, 90, 65, 90]
        assert score_face_geometry(BOX, tilted) == 0.0

    def test_eyes_too_close_are_rejected(self):
        close = [49, 45, 51, 45, 50, 65, 49, 90, 51, 90]
        assert score_face_geometry(BOX, close) == 0.0

    def test_non_finite_values_score_zero(self):
        broken = list(LANDMARKS)
        broken[0] = float("nan")
        assert score_face_geometry(BOX, broken) == 0.0
        assert score_face_geometry((0.0, 0.0, 0.0, 120.0), LANDMARKS) == 0.0

    def test_off_center_landmarks_score_lower(self):
        shifted_box = (15.0, 0.0, 100.0, 120.0)
        assert score_face_geometry(shifted_box, LANDMARKS) < score_face_geometry(BOX, LANDMARKS)

    def test_batch_matches_single_scores(self):
        boxes = np.array([BOX, (0.0, 0.0, 100.0, 120.0)])
        landmarks = np.array([LANDMARKS, [30, 90, 70, 90, 50, 65, 35, 45, 65, 45]], dtype=np.float64)
        scores = geometry_scores(boxes, landmarks)
        assert scores.shape == (2,)
        assert scores[0] == pytest.approx(score_face_geometry(BOX, LANDMARKS))
        assert scores[1] == 0.0

    def test_empty_batch(self):
        assert geometry_scores(np.zeros((0, 4)), np.zeros((0, 10))).shape == (0,)
