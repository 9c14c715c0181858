"""Core face domain entities."""
from datetime import datetime, timezone
from typing import List, Optional, Union
from uuid import uuid4

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator


class BoundingBox(BaseModel):
    """Face bounding box in source-image pixel space."""
    x: float = Field(..., description="Left coordinate of the bounding box")
    y: float = Field(..., description="Top coordinate of the bounding box")
    width: float = Field(..., description="Width of the bounding box")
    height: float = Field(..., description="Height of the bounding box")

    model_config = ConfigDict(frozen=True)

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def min_side(self) -> float:
        return min(self.width, self.height)

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def iou(self, other: "BoundingBox") -> float:
        """Intersection over union with another box."""
        ix = max(0.0, min(self.right, other.right) - max(self.x, other.x))
        iy = max(0.0, min(self.bottom, other.bottom) - max(self.y, other.y))
        inter = ix * iy
        union = self.area + other.area - inter
        return inter / union if union > 0 else 0.0


class Landmarks(BaseModel):
    """Five facial landmarks: left eye, right eye, nose, left mouth, right mouth."""
    values: List[float] = Field(..., min_length=10, max_length=10, description="x0, y0, ..., x4, y4")

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_array(cls, array: Union[np.ndarray, List[float]]) -> "Landmarks":
        return cls(values=[float(v) for v in np.asarray(array, dtype=np.float64).reshape(-1)])

    def points(self) -> np.ndarray:
        """Landmarks as a (5, 2) float64 array."""
        return np.asarray(self.values, dtype=np.float64).reshape(5, 2)


class DetectedFace(BaseModel):
    """A face found by the detector. Immutable once returned."""
    bounding_box: BoundingBox = Field(..., description="Bounding box in source pixels")
    landmarks: Landmarks = Field(..., description="Five landmark points in source pixels")
    confidence: float = Field(..., description="Detector confidence score (0-1)")

    model_config = ConfigDict(frozen=True)


class FaceRecord(BaseModel):
    """Per-face row exchanged with the external identity store.

    Embeddings are only comparable between records that share an
    ``embedder_model_id``.
    """
    face_id: str = Field(default_factory=lambda: uuid4().hex, description="Unique face identifier")
    media_id: str = Field(..., description="Identifier of the media item the face was found in")
    face_index: int = Field(..., description="Position of the face in the detector output")
    bounding_box: BoundingBox = Field(..., description="Bounding box in source pixels")
    landmarks: Landmarks = Field(..., description="Five landmark points in source pixels")
    confidence: float = Field(..., description="Detector confidence score (0-1)")
    quality: float = Field(0.0, description="Per-face quality score (0-1)")
    embedding: np.ndarray = Field(..., description="L2-normalized face embedding")
    person_id: Optional[str] = Field(None, description="Assigned identity, if any")
    detector_model_id: str = Field(..., description="Model identifier of the detector used")
    embedder_model_id: str = Field(..., description="Model identifier of the embedder used")
    image_width: int = Field(0, description="Width of the oriented source image")
    image_height: int = Field(0, description="Height of the oriented source image")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator('embedding', mode='before')
    @classmethod
    def validate_embedding(cls, v: Union[np.ndarray, list]) -> np.ndarray:
        """Validate and convert embedding to a float32 numpy array."""
        return np.asarray(v, dtype=np.float32).reshape(-1)
