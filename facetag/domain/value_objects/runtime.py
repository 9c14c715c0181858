"""Model runtime value objects."""
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field


class ModelStatus(str, Enum):
    UNKNOWN = "unknown"
    READY = "ready"
    FAILED = "failed"


class ModelStatusEntry(BaseModel):
    """Status of a single model artifact."""
    status: ModelStatus = Field(ModelStatus.UNKNOWN, description="Availability of the artifact")
    path: str = Field(..., description="Resolved local file path")
    model_id: str = Field(..., description="Stable model identifier")
    error: Optional[str] = Field(None, description="Last load error, if any")


class ModelStatusSnapshot(BaseModel):
    """Point-in-time view of every registered model artifact."""
    models_directory: str = Field(..., description="Directory the artifacts are resolved from")
    models: Dict[str, ModelStatusEntry] = Field(default_factory=dict, description="Status per artifact name")

    @property
    def all_ready(self) -> bool:
        return bool(self.models) and all(
            entry.status == ModelStatus.READY for entry in self.models.values()
        )
