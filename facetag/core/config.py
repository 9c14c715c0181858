"""Configuration settings for the face tagging engine."""
from typing import List, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings.

    These settings are loaded from environment variables with the following precedence:
    1. Environment variables (prefixed with ``FACETAG_``)
    2. .env file
    3. Default values

    Attributes:
        MODEL_DIR: Directory holding the resolved ONNX model files
        DETECTOR_INPUT_SIZE: Square network input size of the detector
        MATCH_THRESHOLD: Cosine similarity required to join an identity
        RELAXED_MATCH_THRESHOLD: Looser bar for placeholder identities
    """
    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="FACETAG_",
    )

    # Core Settings
    PROJECT_NAME: str = "Face Tagging Engine"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Model artifacts (provisioning is handled by the host application)
    MODEL_DIR: str = ".model_cache"
    DETECTOR_MODEL_FILE: str = "face_detection_yunet_2023mar.onnx"
    EMBEDDER_MODEL_FILE: str = "face_recognition_sface_2021dec.onnx"
    ONNX_PROVIDERS: str = "CPUExecutionProvider"

    @property
    def onnx_providers(self) -> List[str]:
        """Get list of ONNX Runtime execution providers."""
        return [p.strip() for p in self.ONNX_PROVIDERS.split(",") if p.strip()]

    # Detector Settings
    DETECTOR_INPUT_SIZE: int = 320
    DETECTOR_STRIDES: Tuple[int, ...] = (8, 16, 32)
    DETECTOR_CHANNEL_ORDER: str = "rgb"
    DECODE_SCORE_FLOOR: float = 0.05
    MIN_FACE_PIXELS: float = 10.0

    # Default tuning
    DEFAULT_MIN_SCORE: float = 0.6
    DEFAULT_GEOMETRY_THRESHOLD: float = 0.25
    DEFAULT_MIN_SIZE_FRACTION: float = 0.02
    DEFAULT_MIN_AREA_FRACTION: float = 0.0004
    DEFAULT_MIN_ASPECT: float = 0.5
    DEFAULT_MAX_ASPECT: float = 1.6
    DEFAULT_NMS_IOU: float = 0.4

    # Embedder Settings
    EMBEDDER_INPUT_SIZE: int = 112
    EMBEDDER_CHANNEL_ORDER: str = "rgb"

    # Identity matching settings
    MATCH_THRESHOLD: float = 0.50
    RELAXED_MATCH_THRESHOLD: float = 0.45
    RELAXED_MIN_QUALITY: float = 0.60
    PLACEHOLDER_PREFIX: str = "Unknown "
    QUALITY_SIZE_REFERENCE: float = 112.0
    IDENTITY_TOP_FACES: int = 5

    # Batch scanning
    SCAN_CONCURRENCY: int = 2
    SCAN_QUEUE_BATCH_SIZE: int = 50
    SCAN_QUEUE_MAX_ATTEMPTS: int = 3


settings = Settings()
