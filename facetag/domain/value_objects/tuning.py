"""Detection tuning value objects."""
from pydantic import BaseModel, ConfigDict, Field


class Tuning(BaseModel):
    """Thresholds applied to decoded candidates before and during NMS."""
    min_score: float = Field(..., description="Minimum sigmoid(cls) x sigmoid(obj) score")
    geometry_threshold: float = Field(..., description="Minimum geometry plausibility score")
    min_size_fraction: float = Field(..., description="Minimum box side relative to the image short side")
    min_area_fraction: float = Field(..., description="Minimum box area relative to the image area")
    min_aspect: float = Field(..., description="Minimum width/height ratio")
    max_aspect: float = Field(..., description="Maximum width/height ratio")
    nms_iou: float = Field(..., description="IoU above which the lower-scored box is suppressed")

    model_config = ConfigDict(frozen=True)


class CalibrationResult(BaseModel):
    """Outcome of fitting a tuning to a reference image."""
    tuning: Tuning = Field(..., description="Selected tuning")
    face_count: int = Field(..., description="Faces produced by the selected tuning")
    expected_count: int = Field(..., description="Faces the caller expected")
    exact: bool = Field(..., description="Whether the face count matches the expectation")
    candidates_evaluated: int = Field(..., description="Number of grid settings tried")
