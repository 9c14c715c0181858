"""Value objects package."""
from .recognition import FaceMatch, KnownIdentity, MatchDecision, MediaSource, ScanReport
from .tuning import CalibrationResult, Tuning

__all__ = [
    "CalibrationResult",
    "FaceMatch",
    "KnownIdentity",
    "MatchDecision",
    "MediaSource",
    "ScanReport",
    "Tuning",
]
