"""Face detection and embedding interfaces."""
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from ...entities.face import DetectedFace
from ...value_objects.tuning import Tuning


class FaceDetector(ABC):
    """Interface for face detection."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Stable identifier of the detector model."""
        pass

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        """Whether the underlying model session is loaded."""
        pass

    @property
    @abstractmethod
    def last_error(self) -> Optional[str]:
        """Message of the last failed model load, if any."""
        pass

    @abstractmethod
    def load(self) -> bool:
        """Load the model if needed. Returns False instead of raising on failure."""
        pass

    @abstractmethod
    async def detect_faces(
        self,
        image: np.ndarray,
        tuning: Optional[Tuning] = None,
    ) -> List[DetectedFace]:
        """
        Detect faces in an oriented image.

        Args:
            image: RGBA or RGB pixel array (H, W, C)
            tuning: Explicit tuning (None for size-adaptive auto-tuning)

        Returns:
            Detected faces sorted by descending confidence. Empty when nothing
            is found or the model could not be loaded.

        Raises:
            InvalidImageError: If the pixel array is unusable
            ModelOutputError: If the network lacks required output tensors
        """
        pass


class FaceEmbedder(ABC):
    """Interface for face embedding extraction."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Stable identifier of the embedder model."""
        pass

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        """Whether the underlying model session is loaded."""
        pass

    @property
    @abstractmethod
    def last_error(self) -> Optional[str]:
        """Message of the last failed model load, if any."""
        pass

    @abstractmethod
    def load(self) -> bool:
        """Load the model if needed. Returns False instead of raising on failure."""
        pass

    @abstractmethod
    async def extract_embedding(self, image: np.ndarray, face: DetectedFace) -> np.ndarray:
        """
        Align a detected face and extract its L2-normalized embedding.

        Args:
            image: RGBA or RGB pixel array the face was detected in
            face: Detected face with landmarks

        Returns:
            1-D float32 embedding; empty when the model could not be loaded.

        Raises:
            TransformError: If the landmarks are degenerate
        """
        pass
