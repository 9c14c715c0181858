"""
Tuning selection, candidate filtering, non-max suppression and calibration.

Everything here works on an already decoded :class:`CandidateSet`, so a
calibration search never needs a second network inference.
"""
from typing import List, Optional, Sequence, Tuple

import numpy as np

from facetag.core.config import Settings, settings as default_settings
from facetag.core.exceptions import CalibrationError
from facetag.core.logging import get_logger
from facetag.domain.value_objects.tuning import CalibrationResult, Tuning
from facetag.services.detection.decoder import CandidateSet

logger = get_logger(__name__)

# Short-side range (pixels) over which auto-tuning interpolates.
AUTO_TUNE_SHORT_SIDE = (480.0, 2000.0)
AUTO_TUNE_MIN_SCORE = (0.55, 0.70)
AUTO_TUNE_MIN_SIZE_FRACTION = (0.015, 0.03)
AUTO_TUNE_MIN_AREA_FRACTION = (0.0002, 0.0008)
AUTO_TUNE_GEOMETRY = (0.20, 0.30)

CALIBRATION_MIN_SCORE_STEP = 0.05
CALIBRATION_MAX_SCORE = 0.90
CALIBRATION_GEOMETRY = (0.0, 0.1, 0.2, 0.3, 0.4, 0.5)
CALIBRATION_SIZE_FRACTIONS = (0.005, 0.01, 0.015, 0.02, 0.03, 0.04, 0.05)
CALIBRATION_NMS_IOU = (0.3, 0.4, 0.5)


def default_tuning(config: Optional[Settings] = None) -> Tuning:
    """Fixed tuning taken from settings."""
    config = config or default_settings
    return Tuning(
        min_score=config.DEFAULT_MIN_SCORE,
        geometry_threshold=config.DEFAULT_GEOMETRY_THRESHOLD,
        min_size_fraction=config.DEFAULT_MIN_SIZE_FRACTION,
        min_area_fraction=config.DEFAULT_MIN_AREA_FRACTION,
        min_aspect=config.DEFAULT_MIN_ASPECT,
        max_aspect=config.DEFAULT_MAX_ASPECT,
        nms_iou=config.DEFAULT_NMS_IOU,
    )


def _lerp(bounds: Tuple[float, float], t: float) -> float:
    return bounds[0] + (bounds[1] - bounds[0]) * t


def auto_tune(width: int, height: int, config: Optional[Settings] = None) -> Tuning:
    """Size-adaptive tuning.

    Small images lose pixel detail before they lose framing, so they accept
    lower confidence and smaller relative faces; thresholds tighten linearly
    as the short side grows.

    Args:
        width: Source image width in pixels
        height: Source image height in pixels
        config: Settings supplying the aspect and NMS defaults

    Returns:
        Tuning for an image of this size
    """
    config = config or default_settings
    low, high = AUTO_TUNE_SHORT_SIDE
    short_side = float(min(width, height))
    t = min(1.0, max(0.0, (short_side - low) / (high - low)))
    return Tuning(
        min_score=_lerp(AUTO_TUNE_MIN_SCORE, t),
        geometry_threshold=_lerp(AUTO_TUNE_GEOMETRY, t),
        min_size_fraction=_lerp(AUTO_TUNE_MIN_SIZE_FRACTION, t),
        min_area_fraction=_lerp(AUTO_TUNE_MIN_AREA_FRACTION, t),
        min_aspect=config.DEFAULT_MIN_ASPECT,
        max_aspect=config.DEFAULT_MAX_ASPECT,
        nms_iou=config.DEFAULT_NMS_IOU,
    )


def filter_candidates(
    candidates: CandidateSet,
    tuning: Tuning,
    width: int,
    height: int,
    min_face_pixels: float = 0.0,
) -> CandidateSet:
    """Drop candidates failing the score, geometry, size, area or aspect limits."""
    if len(candidates) == 0:
        return candidates

    w = candidates.boxes[:, 2]
    h = candidates.boxes[:, 3]
    min_side = max(min_face_pixels, tuning.min_size_fraction * min(width, height))
    min_area = tuning.min_area_fraction * width * height
    aspect = w / np.where(h > 0, h, np.inf)

    mask = (
        (candidates.scores >= tuning.min_score)
        & (candidates.geometry >= tuning.geometry_threshold)
        & (np.minimum(w, h) >= min_side)
        & (w * h >= min_area)
        & (aspect >= tuning.min_aspect)
        & (aspect <= tuning.max_aspect)
    )
    return candidates.select(np.flatnonzero(mask))


def non_max_suppression(boxes: np.ndarray, scores: np.ndarray, iou_threshold: float) -> np.ndarray:
    """Greedy NMS, highest score first.

    Args:
        boxes: (N, 4) boxes as x, y, w, h
        scores: (N,) scores
        iou_threshold: Boxes overlapping a kept box by more than this are suppressed

    Returns:
        Indices of kept boxes in descending score order
    """
    if len(boxes) == 0:
        return np.zeros(0, dtype=np.int64)

    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = x1 + boxes[:, 2]
    y2 = y1 + boxes[:, 3]
    areas = np.maximum(0.0, boxes[:, 2]) * np.maximum(0.0, boxes[:, 3])
    # Stable sort keeps equal scores in decode order
    order = np.argsort(-scores, kind="stable")

    keep: List[int] = []
    while order.size > 0:
        i = int(order[0])
        keep.append(i)
        rest = order[1:]

        xx1 = np.maximum(x1[i], x1[rest])
        yy1 = np.maximum(y1[i], y1[rest])
        xx2 = np.minimum(x2[i], x2[rest])
        yy2 = np.minimum(y2[i], y2[rest])

        inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
        union = areas[i] + areas[rest] - inter
        iou = np.where(union > 0, inter / np.where(union > 0, union, 1.0), 0.0)

        order = rest[iou <= iou_threshold]

    return np.asarray(keep, dtype=np.int64)


def select_faces(
    candidates: CandidateSet,
    tuning: Tuning,
    width: int,
    height: int,
    min_face_pixels: float = 0.0,
) -> CandidateSet:
    """Filter then suppress; the result is sorted by descending score."""
    filtered = filter_candidates(candidates, tuning, width, height, min_face_pixels)
    keep = non_max_suppression(filtered.boxes, filtered.scores, tuning.nms_iou)
    return filtered.select(keep)


def calibration_grid(score_floor: float, config: Optional[Settings] = None) -> List[Tuning]:
    """Every tuning the calibration search evaluates.

    The area floor follows the size floor squared so both limits describe the
    same minimum face.
    """
    config = config or default_settings
    start = max(0.3, score_floor)
    steps = int(round((CALIBRATION_MAX_SCORE - start) / CALIBRATION_MIN_SCORE_STEP))
    scores = [round(start + i * CALIBRATION_MIN_SCORE_STEP, 4) for i in range(max(0, steps) + 1)]

    grid = []
    for min_score in scores:
        for geometry in CALIBRATION_GEOMETRY:
            for size_fraction in CALIBRATION_SIZE_FRACTIONS:
                for nms_iou in CALIBRATION_NMS_IOU:
                    grid.append(
                        Tuning(
                            min_score=min_score,
                            geometry_threshold=geometry,
                            min_size_fraction=size_fraction,
                            min_area_fraction=size_fraction ** 2,
                            min_aspect=config.DEFAULT_MIN_ASPECT,
                            max_aspect=config.DEFAULT_MAX_ASPECT,
                            nms_iou=nms_iou,
                        )
                    )
    return grid


def _strictness(tuning: Tuning) -> Tuple[float, float, float, float]:
    return (tuning.min_score, tuning.geometry_threshold, tuning.min_size_fraction, -tuning.nms_iou)


def calibrate(
    candidates: CandidateSet,
    expected_count: int,
    width: int,
    height: int,
    min_face_pixels: float = 0.0,
    score_floor: float = 0.0,
    grid: Optional[Sequence[Tuning]] = None,
    config: Optional[Settings] = None,
) -> CalibrationResult:
    """Search the tuning grid for the setting that yields ``expected_count`` faces.

    Among exact matches the strictest tuning wins (highest score, geometry and
    size floors, then lowest NMS IoU). When no setting is exact, the closest
    face count wins with the same tie-break.

    Raises:
        CalibrationError: If ``expected_count`` is negative
    """
    if expected_count < 0:
        raise CalibrationError(
            "Expected face count must not be negative",
            details={"expected_count": expected_count},
        )

    grid = list(grid) if grid is not None else calibration_grid(score_floor, config)
    if not grid:
        raise CalibrationError("Calibration grid is empty")

    best: Optional[Tuple[int, Tuple[float, ...], Tuning, int]] = None
    for tuning in grid:
        count = len(select_faces(candidates, tuning, width, height, min_face_pixels))
        distance = abs(count - expected_count)
        key = (-distance, _strictness(tuning))
        if best is None or key > (best[0], best[1]):
            best = (-distance, _strictness(tuning), tuning, count)

    _, _, tuning, count = best
    result = CalibrationResult(
        tuning=tuning,
        face_count=count,
        expected_count=expected_count,
        exact=count == expected_count,
        candidates_evaluated=len(grid),
    )
    logger.info(
        "Calibrated detector tuning",
        expected_count=expected_count,
        face_count=count,
        exact=result.exact,
        min_score=tuning.min_score,
        geometry_threshold=tuning.geometry_threshold,
        nms_iou=tuning.nms_iou,
    )
    return result
