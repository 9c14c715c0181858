"""
SFace-style face embedder running on ONNX Runtime.

Faces are aligned to the canonical 112x112 template, fed to the network as
raw 0-255 channel-ordered NCHW floats, and the output vector is
L2-normalized so cosine similarity reduces to a dot product.
"""
import asyncio
from typing import Optional

import numpy as np

from facetag.core.config import Settings, settings as default_settings
from facetag.core.exceptions import ModelLoadError
from facetag.core.logging import get_logger
from facetag.core.utils.image import to_nchw_tensor, to_rgb
from facetag.domain.entities.face import DetectedFace
from facetag.domain.interfaces.recognition.face_recognition import FaceEmbedder
from facetag.services.recognition.alignment import align_face
from facetag.services.runtime.registry import EMBEDDER, ModelRegistry
from facetag.services.runtime.session import OnnxModelSession

logger = get_logger(__name__)

NORM_EPSILON = 1e-12


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    """Scale a vector to unit length.

    A near-zero vector is returned unchanged.
    """
    vector = np.asarray(vector, dtype=np.float32).reshape(-1)
    norm = float(np.linalg.norm(vector))
    if norm <= NORM_EPSILON:
        logger.warning("Embedding has near-zero norm; returning it unnormalized", norm=norm)
        return vector
    return (vector / norm).astype(np.float32)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two L2-normalized embeddings."""
    return float(np.dot(np.asarray(a, dtype=np.float32).reshape(-1), np.asarray(b, dtype=np.float32).reshape(-1)))


class SFaceEmbedder(FaceEmbedder):
    """Aligner and embedding extractor.

    Attributes:
        session: Lazily loaded embedder session
        config: Settings supplying the input size and channel order
    """

    def __init__(
        self,
        session: OnnxModelSession,
        config: Optional[Settings] = None,
        registry: Optional[ModelRegistry] = None,
    ) -> None:
        self.session = session
        self.config = config or default_settings
        self._registry = registry

    @property
    def model_id(self) -> str:
        return self.session.model_id

    @property
    def is_loaded(self) -> bool:
        return self.session.is_loaded

    @property
    def last_error(self) -> Optional[str]:
        return self.session.last_error

    def load(self) -> bool:
        """Load the session if needed. Returns False instead of raising on failure."""
        try:
            self.session.ensure_loaded()
        except ModelLoadError as e:
            logger.warning("Face embedder unavailable", model_id=self.model_id, error=str(e))
            if self._registry is not None:
                self._registry.mark_failed(EMBEDDER, str(e))
            return False
        if self._registry is not None:
            self._registry.mark_ready(EMBEDDER)
        return True

    def embed_aligned(self, aligned: np.ndarray) -> np.ndarray:
        """Embed an already aligned RGB crop. Empty when the model is unavailable."""
        if not self.load():
            return np.zeros(0, dtype=np.float32)

        tensor = to_nchw_tensor(aligned, self.config.EMBEDDER_CHANNEL_ORDER)
        outputs = self.session.run({self.session.input_names[0]: tensor})
        raw = next(iter(outputs.values()))
        return l2_normalize(raw)

    def extract(self, image: np.ndarray, face: DetectedFace) -> np.ndarray:
        """Blocking extraction; see :meth:`extract_embedding`."""
        if not self.load():
            return np.zeros(0, dtype=np.float32)

        rgb = to_rgb(image)
        aligned = align_face(rgb, face.landmarks.points(), self.config.EMBEDDER_INPUT_SIZE)
        return self.embed_aligned(aligned)

    async def extract_embedding(self, image: np.ndarray, face: DetectedFace) -> np.ndarray:
        return await asyncio.to_thread(self.extract, image, face)
