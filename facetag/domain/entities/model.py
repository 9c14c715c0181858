"""Model artifact and scan job entities."""
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class ModelArtifact(BaseModel):
    """A resolved local ONNX model file.

    ``model_id`` is stable for a given file version; a change invalidates any
    face records produced with the previous identifier.
    """
    name: str = Field(..., description="Logical name, e.g. 'detector'")
    path: Path = Field(..., description="Resolved local file path")
    model_id: Optional[str] = Field(None, description="Stable model identifier")

    @property
    def resolved_model_id(self) -> str:
        """Model identifier, defaulting to the file name stem."""
        return self.model_id or self.path.stem


class ScanJob(BaseModel):
    """A pending media item in the persistent scan queue."""
    media_id: str = Field(..., description="Identifier of the media item to scan")
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_attempt_at: Optional[datetime] = Field(None, description="When processing last failed")
    attempt_count: int = Field(0, description="Number of failed processing attempts")
