"""Domain entities package."""
from .face import BoundingBox, DetectedFace, FaceRecord, Landmarks
from .identity import PersonIdentity
from .model import ModelArtifact, ScanJob

__all__ = [
    "BoundingBox",
    "DetectedFace",
    "FaceRecord",
    "Landmarks",
    "PersonIdentity",
    "ModelArtifact",
    "ScanJob",
]
