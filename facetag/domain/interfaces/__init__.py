"""Service interfaces package."""
from .recognition import FaceDetector, FaceEmbedder
from .storage import IdentityStore, ScanQueueStore

__all__ = ["FaceDetector", "FaceEmbedder", "IdentityStore", "ScanQueueStore"]
