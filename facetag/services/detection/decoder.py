"""
Decoder for multi-stride detection heads.

Each stride exposes four tensors (``cls``, ``obj``, ``bbox``, ``kps``). The
layout of the four box-regression values differs between exports of the same
model, so every grid cell is decoded under every :class:`DecodeStrategy`; the
plausible hypothesis with the best geometry score wins the cell and the other
three are discarded. Coordinates leave this module in source-image pixels.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from facetag.core.exceptions import ModelOutputError
from facetag.core.logging import get_logger
from facetag.core.utils.image import LetterboxTransform
from facetag.services.detection.geometry import geometry_scores

logger = get_logger(__name__)

HEADS = ("cls", "obj", "bbox", "kps")
# Boxes larger than this multiple of the input, or centered further than
# this fraction outside it, are treated as garbage hypotheses.
MAX_BOX_SCALE = 2.0
MAX_CENTER_OVERSHOOT = 0.5
EXP_CLIP = 20.0
# Pixel and stride LTRB decodes give the same shape at different scales and
# therefore equal geometry scores. Such ties go to the box closest to the
# stride's nominal face size; the weight is too small to override a real
# geometry difference.
ANCHOR_SCALE = 4.0
SCALE_TIE_BREAK = 1e-3


class DecodeStrategy(str, Enum):
    """Geometric interpretations of the four box-regression values."""
    ABSOLUTE_XYWH = "absolute_xywh"
    CENTER_LTRB_PIXELS = "center_ltrb_pixels"
    CENTER_LTRB_STRIDE = "center_ltrb_stride"
    CENTER_DELTA_EXP = "center_delta_exp"


STRATEGIES: Tuple[DecodeStrategy, ...] = tuple(DecodeStrategy)


@dataclass(frozen=True)
class RawCandidate:
    """A decoded, unfiltered face candidate tagged with the strategy that produced it."""
    box: Tuple[float, float, float, float]
    landmarks: Tuple[float, ...]
    score: float
    geometry: float
    strategy: DecodeStrategy
    stride: int


@dataclass(frozen=True)
class CandidateSet:
    """Column-oriented candidates, cheap to filter repeatedly during calibration."""
    boxes: np.ndarray
    landmarks: np.ndarray
    scores: np.ndarray
    geometry: np.ndarray
    strategies: np.ndarray
    strides: np.ndarray

    @classmethod
    def empty(cls) -> "CandidateSet":
        return cls(
            boxes=np.zeros((0, 4)),
            landmarks=np.zeros((0, 10)),
            scores=np.zeros(0),
            geometry=np.zeros(0),
            strategies=np.zeros(0, dtype=np.int8),
            strides=np.zeros(0, dtype=np.int32),
        )

    @classmethod
    def concat(cls, parts: Sequence["CandidateSet"]) -> "CandidateSet":
        parts = [p for p in parts if len(p)]
        if not parts:
            return cls.empty()
        return cls(
            boxes=np.concatenate([p.boxes for p in parts]),
            landmarks=np.concatenate([p.landmarks for p in parts]),
            scores=np.concatenate([p.scores for p in parts]),
            geometry=np.concatenate([p.geometry for p in parts]),
            strategies=np.concatenate([p.strategies for p in parts]),
            strides=np.concatenate([p.strides for p in parts]),
        )

    def __len__(self) -> int:
        return int(self.scores.shape[0])

    def select(self, index: np.ndarray) -> "CandidateSet":
        return CandidateSet(
            boxes=self.boxes[index],
            landmarks=self.landmarks[index],
            scores=self.scores[index],
            geometry=self.geometry[index],
            strategies=self.strategies[index],
            strides=self.strides[index],
        )

    def candidates(self) -> List[RawCandidate]:
        return [
            RawCandidate(
                box=tuple(float(v) for v in self.boxes[i]),
                landmarks=tuple(float(v) for v in self.landmarks[i]),
                score=float(self.scores[i]),
                geometry=float(self.geometry[i]),
                strategy=STRATEGIES[int(self.strategies[i])],
                stride=int(self.strides[i]),
            )
            for i in range(len(self))
        ]


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(x, -EXP_CLIP * 4, EXP_CLIP * 4)))


def _ltrb(col, row, reg, kps, stride, unit):
    cx = col * stride
    cy = row * stride
    boxes = np.stack(
        [
            cx - reg[:, 0] * unit,
            cy - reg[:, 1] * unit,
            (reg[:, 0] + reg[:, 2]) * unit,
            (reg[:, 1] + reg[:, 3]) * unit,
        ],
        axis=1,
    )
    landmarks = kps * unit
    landmarks[:, 0::2] += cx[:, None]
    landmarks[:, 1::2] += cy[:, None]
    return boxes, landmarks


def _absolute_xywh(col, row, reg, kps, stride):
    return reg.copy(), kps.copy()


def _center_ltrb_pixels(col, row, reg, kps, stride):
    return _ltrb(col, row, reg, kps, stride, 1.0)


def _center_ltrb_stride(col, row, reg, kps, stride):
    return _ltrb(col, row, reg, kps, stride, float(stride))


def _center_delta_exp(col, row, reg, kps, stride):
    cx = (col + reg[:, 0]) * stride
    cy = (row + reg[:, 1]) * stride
    size = np.exp(np.clip(reg[:, 2:4], -EXP_CLIP, EXP_CLIP)) * stride
    boxes = np.stack(
        [cx - size[:, 0] / 2.0, cy - size[:, 1] / 2.0, size[:, 0], size[:, 1]],
        axis=1,
    )
    landmarks = kps.copy()
    landmarks[:, 0::2] = (landmarks[:, 0::2] + col[:, None]) * stride
    landmarks[:, 1::2] = (landmarks[:, 1::2] + row[:, None]) * stride
    return boxes, landmarks


_Hypothesis = Callable[[np.ndarray, np.ndarray, np.ndarray, np.ndarray, int], Tuple[np.ndarray, np.ndarray]]

_HYPOTHESES: Dict[DecodeStrategy, _Hypothesis] = {
    DecodeStrategy.ABSOLUTE_XYWH: _absolute_xywh,
    DecodeStrategy.CENTER_LTRB_PIXELS: _center_ltrb_pixels,
    DecodeStrategy.CENTER_LTRB_STRIDE: _center_ltrb_stride,
    DecodeStrategy.CENTER_DELTA_EXP: _center_delta_exp,
}


def required_output_names(strides: Sequence[int]) -> List[str]:
    """Tensor names the decoder expects, e.g. ``cls_8`` ... ``kps_32``."""
    return [f"{head}_{stride}" for stride in strides for head in HEADS]


def _lookup(outputs: Mapping[str, np.ndarray], name: str) -> Optional[np.ndarray]:
    if name in outputs:
        return outputs[name]
    lowered = {key.lower(): value for key, value in outputs.items()}
    return lowered.get(name.lower())


def _is_plausible(boxes: np.ndarray, landmarks: np.ndarray, input_size: int) -> np.ndarray:
    finite = np.isfinite(boxes).all(axis=1) & np.isfinite(landmarks).all(axis=1)
    safe = np.where(finite[:, None], boxes, 0.0)
    w = safe[:, 2]
    h = safe[:, 3]
    cx = safe[:, 0] + w / 2.0
    cy = safe[:, 1] + h / 2.0
    low = -MAX_CENTER_OVERSHOOT * input_size
    high = (1.0 + MAX_CENTER_OVERSHOOT) * input_size
    return (
        finite
        & (w > 0)
        & (h > 0)
        & (w <= MAX_BOX_SCALE * input_size)
        & (h <= MAX_BOX_SCALE * input_size)
        & (cx >= low) & (cx <= high)
        & (cy >= low) & (cy <= high)
    )


def _to_source(boxes: np.ndarray, landmarks: np.ndarray, transform: LetterboxTransform):
    x, y = transform.to_source(boxes[:, 0], boxes[:, 1])
    mapped_boxes = np.stack([x, y, boxes[:, 2] / transform.scale, boxes[:, 3] / transform.scale], axis=1)
    mapped_landmarks = np.empty_like(landmarks)
    for i in range(0, 10, 2):
        mapped_landmarks[:, i], mapped_landmarks[:, i + 1] = transform.to_source(
            landmarks[:, i], landmarks[:, i + 1]
        )
    return mapped_boxes, mapped_landmarks


def decode_stride(
    outputs: Mapping[str, np.ndarray],
    stride: int,
    input_size: int,
    transform: LetterboxTransform,
    score_floor: float = 0.0,
) -> CandidateSet:
    """Decode the four tensors of one stride into per-cell best candidates.

    Raises:
        ModelOutputError: If a tensor is missing or sized for a different grid
    """
    tensors = {}
    for head in HEADS:
        name = f"{head}_{stride}"
        value = _lookup(outputs, name)
        if value is None:
            raise ModelOutputError(
                f"Missing detector output tensor '{name}'",
                details={"available": sorted(outputs.keys())},
            )
        tensors[head] = np.asarray(value, dtype=np.float64)

    grid = input_size // stride
    cells = grid * grid
    cls = tensors["cls"].reshape(-1)
    obj = tensors["obj"].reshape(-1)
    reg = tensors["bbox"].reshape(-1, 4) if tensors["bbox"].size == cells * 4 else None
    kps = tensors["kps"].reshape(-1, 10) if tensors["kps"].size == cells * 10 else None
    if cls.size != cells or obj.size != cells or reg is None or kps is None:
        raise ModelOutputError(
            f"Detector outputs for stride {stride} do not match a {grid}x{grid} grid",
            details={head: tuple(t.shape) for head, t in tensors.items()},
        )

    scores = _sigmoid(cls) * _sigmoid(obj)
    index = np.flatnonzero(scores >= score_floor)
    if index.size == 0:
        return CandidateSet.empty()

    row = (index // grid).astype(np.float64)
    col = (index % grid).astype(np.float64)
    reg = reg[index]
    kps = kps[index]

    hyp_boxes = []
    hyp_landmarks = []
    hyp_geometry = []
    hyp_keys = []
    for strategy in STRATEGIES:
        boxes, landmarks = _HYPOTHESES[strategy](col, row, reg, kps, stride)
        plausible = _is_plausible(boxes, landmarks, input_size)
        side = np.where(plausible, np.minimum(boxes[:, 2], boxes[:, 3]), ANCHOR_SCALE * stride)
        prior = np.abs(np.log2(np.maximum(side, 1e-6) / (ANCHOR_SCALE * stride)))
        boxes, landmarks = _to_source(boxes, landmarks, transform)
        geometry = np.where(plausible, geometry_scores(boxes, landmarks), -1.0)
        hyp_boxes.append(boxes)
        hyp_landmarks.append(landmarks)
        hyp_geometry.append(geometry)
        hyp_keys.append(np.where(plausible, geometry - SCALE_TIE_BREAK * np.minimum(prior, 8.0) / 8.0, -1.0))

    geometry = np.stack(hyp_geometry, axis=1)
    best = np.argmax(np.stack(hyp_keys, axis=1), axis=1)
    rows = np.arange(index.size)
    keep = geometry[rows, best] >= 0.0
    if not np.any(keep):
        return CandidateSet.empty()

    best = best[keep]
    rows = rows[keep]
    boxes = np.stack(hyp_boxes, axis=1)[rows, best]
    landmarks = np.stack(hyp_landmarks, axis=1)[rows, best]

    return CandidateSet(
        boxes=boxes,
        landmarks=landmarks,
        scores=scores[index][keep],
        geometry=geometry[rows, best],
        strategies=best.astype(np.int8),
        strides=np.full(rows.size, stride, dtype=np.int32),
    )


def decode_outputs(
    outputs: Mapping[str, np.ndarray],
    strides: Sequence[int],
    input_size: int,
    transform: LetterboxTransform,
    score_floor: float = 0.0,
) -> CandidateSet:
    """Decode every stride and merge the candidates.

    Raises:
        ModelOutputError: If any required tensor is missing
    """
    missing = [name for name in required_output_names(strides) if _lookup(outputs, name) is None]
    if missing:
        raise ModelOutputError(
            "Detector is missing required output tensors",
            details={"missing": missing, "available": sorted(outputs.keys())},
        )

    parts = [decode_stride(outputs, stride, input_size, transform, score_floor) for stride in strides]
    merged = CandidateSet.concat(parts)

    if len(merged):
        counts = np.bincount(merged.strategies.astype(np.int64), minlength=len(STRATEGIES))
        logger.debug(
            "Decoded detector candidates",
            candidates=len(merged),
            strategies={s.value: int(c) for s, c in zip(STRATEGIES, counts)},
        )
    return merged
