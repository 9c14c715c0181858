"""Face detection package."""
from .decoder import CandidateSet, DecodeStrategy, RawCandidate, decode_outputs
from .geometry import geometry_scores, score_face_geometry
from .tuning import auto_tune, calibrate, default_tuning, non_max_suppression
from .yunet import YuNetFaceDetector

__all__ = [
    "CandidateSet",
    "DecodeStrategy",
    "RawCandidate",
    "YuNetFaceDetector",
    "auto_tune",
    "calibrate",
    "decode_outputs",
    "default_tuning",
    "geometry_scores",
    "non_max_suppression",
    "score_face_geometry",
]
