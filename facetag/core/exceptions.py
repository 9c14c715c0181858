"""Custom exceptions for the face tagging engine."""
from typing import Optional


class FaceEngineError(Exception):
    """Base exception for face engine operations."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """
        Initialize face engine error.

        Args:
            message: Error description
            details: Additional error context
        """
        super().__init__(message)
        self.details = details or {}


class InvalidImageError(FaceEngineError):
    """Raised when the provided pixel buffer is invalid or cannot be processed."""
    pass


class ModelLoadError(FaceEngineError):
    """Raised when a model file is missing or its session fails to load."""
    pass


class ModelOutputError(FaceEngineError):
    """Raised when a network does not expose the tensors the decoder needs.

    This indicates a model/runtime mismatch and is never retried.
    """
    pass


class TransformError(FaceEngineError):
    """Raised when landmarks are degenerate and no alignment transform exists."""
    pass


class CalibrationError(FaceEngineError):
    """Raised when a calibration request cannot be satisfied."""
    pass


class IdentityStoreError(FaceEngineError):
    """Base exception for identity store operations."""
    pass


class IdentityNotFoundError(IdentityStoreError):
    """Raised when an identity id does not exist in the store."""
    pass


class IdentityResolutionError(IdentityStoreError):
    """Raised when a merge redirect chain loops back on itself."""
    pass
