"""Face and identity quality scores."""
import math
from typing import Iterable, Optional, Sequence

from facetag.domain.entities.face import FaceRecord

FACE_CONFIDENCE_WEIGHT = 0.6
FACE_SIZE_WEIGHT = 0.4
MAX_EVIDENCE_BONUS = 0.1


def _clamp01(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value))


def face_quality(confidence: float, min_side: float, size_reference: float = 112.0) -> float:
    """
    Per-face quality from detector confidence and face size.

    Args:
        confidence: Detector confidence
        min_side: Smaller side of the face box in pixels
        size_reference: Side length at which the size term saturates

    Returns:
        float: Quality in [0, 1]
    """
    size_term = _clamp01(min_side / size_reference) if size_reference > 0 else 0.0
    return FACE_CONFIDENCE_WEIGHT * _clamp01(confidence) + FACE_SIZE_WEIGHT * size_term


def identity_quality(face_qualities: Iterable[float], top_n: int = 5) -> float:
    """Average of the best ``top_n`` face qualities plus a small bonus for more faces."""
    qualities = sorted((float(q) for q in face_qualities), reverse=True)
    if not qualities:
        return 0.0
    top = qualities[:max(1, top_n)]
    bonus = min(MAX_EVIDENCE_BONUS, math.log10(1 + len(qualities)) / 20.0)
    return sum(top) / len(top) + bonus


def primary_face(faces: Sequence[FaceRecord]) -> Optional[FaceRecord]:
    """Highest-quality face; the earliest one wins ties."""
    best: Optional[FaceRecord] = None
    for face in faces:
        if best is None or face.quality > best.quality:
            best = face
    return best
