"""Tests for tuning, filtering, NMS and calibration."""
import numpy as np
import pytest

from facetag.core.exceptions import CalibrationError
from facetag.domain.value_objects.tuning import Tuning
from facetag.services.detection.decoder import CandidateSet
from facetag.services.detection.tuning import (
    auto_tune,
    calibrate,
    calibration_grid,
    default_tuning,
    filter_candidates,
    non_max_suppression,
    select_faces,
)

FACE_LANDMARKS = [30, 45, 70, 45, 50, 65, 35, 90, 65, 90]


def candidate_set(boxes, scores, geometry=None):
    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    landmarks = []
    for x, y, w, h in boxes:
        points = np.asarray(FACE_LANDMARKS, dtype=np.float64)
        points[0::2] = x + points[0::2] / 100.0 * w
        points[1::2] = y + points[1::2] / 120.0 * h
        landmarks.append(points)
    n = len(boxes)
    return CandidateSet(
        boxes=boxes,
        landmarks=np.asarray(landmarks).reshape(n, 10),
        scores=np.asarray(scores, dtype=np.float64),
        geometry=np.asarray(geometry if geometry is not None else [0.9] * n, dtype=np.float64),
        strategies=np.zeros(n, dtype=np.int8),
        strides=np.full(n, 16, dtype=np.int32),
    )


def iou(a, b):
    ix = max(0.0, min(a[0] + a[2], b[0] + b[2]) - max(a[0], b[0]))
    iy = max(0.0, min(a[1] + a[3], b[1] + b[3]) - max(a[1], b[1]))
    inter = ix * iy
    return inter / (a[2] * a[3] + b[2] * b[3] - inter)


class TestTuning:
    """Default and size-adaptive tuning."""

    def test_default_tuning_comes_from_settings(self, test_settings):
        tuning = default_tuning(test_settings)
        assert tuning.min_score == 0.6
        assert tuning.geometry_threshold == 0.25
        assert tuning.min_size_fraction == 0.02
        assert tuning.min_area_fraction == 0.0004
        assert (tuning.min_aspect, tuning.max_aspect) == (0.5, 1.6)
        assert tuning.nms_iou == 0.4

    def test_auto_tune_tightens_with_image_size(self, test_settings):
        small = auto_tune(320, 240, test_settings)
        large = auto_tune(4000, 3000, test_settings)

        assert small.min_score < large.min_score
        assert small.min_size_fraction < large.min_size_fraction
        assert small.min_area_fraction < large.min_area_fraction
        assert small.geometry_threshold <= large.geometry_threshold

    def test_auto_tune_is_clamped(self, test_settings):
        assert auto_tune(100, 100, test_settings) == auto_tune(400, 300, test_settings)
        assert auto_tune(5000, 5000, test_settings) == auto_tune(8000, 6000, test_settings)


class TestFilterAndNms:
    """Candidate filtering and greedy suppression."""

    def test_filter_applies_every_threshold(self):
        tuning = Tuning(
            min_score=0.5, geometry_threshold=0.3, min_size_fraction=0.05,
            min_area_fraction=0.0, min_aspect=0.5, max_aspect=1.6, nms_iou=0.4,
        )
        candidates = candidate_set(
            [
                (10, 10, 100, 120),   # kept
                (200, 10, 100, 120),  # low score
                (400, 10, 100, 120),  # low geometry
                (600, 10, 20, 24),    # too small
                (10, 300, 300, 100),  # too wide
            ],
            scores=[0.9, 0.4, 0.9, 0.9, 0.9],
            geometry=[0.9, 0.9, 0.1, 0.9, 0.9],
        )

        kept = filter_candidates(candidates, tuning, width=1000, height=1000)

        assert len(kept) == 1
        assert kept.boxes[0][0] == 10

    def test_absolute_minimum_face_size(self):
        tuning = Tuning(
            min_score=0.0, geometry_threshold=0.0, min_size_fraction=0.0,
            min_area_fraction=0.0, min_aspect=0.1, max_aspect=10.0, nms_iou=0.4,
        )
        candidates = candidate_set([(0, 0, 8, 9)], scores=[0.9])
        assert len(filter_candidates(candidates, tuning, 100, 100, min_face_pixels=10)) == 0
        assert len(filter_candidates(candidates, tuning, 100, 100, min_face_pixels=5)) == 1

    def test_nms_keeps_highest_score_of_overlapping_boxes(self):
        boxes = np.array([[0, 0, 100, 100], [5, 5, 100, 100], [300, 300, 50, 50]], dtype=np.float64)
        scores = np.array([0.7, 0.9, 0.8])

        keep = non_max_suppression(boxes, scores, 0.4)

        assert keep.tolist() == [1, 2]

    def test_nms_output_has_no_pair_above_threshold(self):
        rng = np.random.default_rng(7)
        xy = rng.uniform(0, 400, size=(200, 2))
        wh = rng.uniform(20, 120, size=(200, 2))
        boxes = np.hstack([xy, wh])
        scores = rng.uniform(0, 1, size=200)

        for threshold in (0.3, 0.4, 0.5):
            kept = boxes[non_max_suppression(boxes, scores, threshold)]
            for i in range(len(kept)):
                for j in range(i + 1, len(kept)):
                    assert iou(kept[i], kept[j]) <= threshold + 1e-9

    def test_nms_of_nothing(self):
        assert non_max_suppression(np.zeros((0, 4)), np.zeros(0), 0.4).size == 0

    def test_select_faces_sorts_by_score(self, test_settings):
        candidates = candidate_set(
            [(10, 10, 100, 120), (300, 10, 100, 120), (600, 10, 100, 120)],
            scores=[0.7, 0.95, 0.8],
        )
        selected = select_faces(candidates, default_tuning(test_settings), 1000, 1000)
        assert selected.scores.tolist() == [0.95, 0.8, 0.7]


class TestCalibration:
    """Grid search over filter and NMS thresholds."""

    def test_grid_respects_score_floor(self, test_settings):
        grid = calibration_grid(0.5, test_settings)
        assert min(t.min_score for t in grid) == pytest.approx(0.5)
        assert max(t.min_score for t in grid) == pytest.approx(0.9)

    def test_exact_count_prefers_strictest_tuning(self, test_settings):
        candidates = candidate_set(
            [(10, 10, 100, 120), (300, 10, 100, 120), (600, 10, 100, 120)],
            scores=[0.95, 0.92, 0.35],
        )

        result = calibrate(candidates, 2, 1000, 1000, config=test_settings)

        assert result.exact
        assert result.face_count == 2
        assert result.tuning.min_score == pytest.approx(0.9)
        assert result.tuning.nms_iou == pytest.approx(0.3)
        assert result.candidates_evaluated == len(calibration_grid(0.0, test_settings))

    def test_unreachable_count_returns_closest(self, test_settings):
        candidates = candidate_set([(10, 10, 100, 120)], scores=[0.95])

        result = calibrate(candidates, 3, 1000, 1000, config=test_settings)

        assert not result.exact
        assert result.face_count == 1

    def test_zero_expected_faces(self, test_settings):
        candidates = candidate_set([(10, 10, 100, 120)], scores=[0.5])

        result = calibrate(candidates, 0, 1000, 1000, config=test_settings)

        assert result.exact
        assert result.tuning.min_score > 0.5

    def test_negative_expected_count_is_rejected(self, test_settings):
        with pytest.raises(CalibrationError):
            calibrate(CandidateSet.empty(), -1, 100, 100, config=test_settings)
