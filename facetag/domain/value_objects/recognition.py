"""Face recognition value objects."""
from typing import Callable, Dict, List, Literal, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field


class FaceMatch(BaseModel):
    """Identity assigned to one face of a media item."""
    identity_id: str = Field(..., description="Resolved identity identifier")
    name: str = Field(..., description="Identity display name")
    similarity: float = Field(..., description="Best cosine similarity to the identity's faces")
    face_index: int = Field(..., description="Index of the face within its media item")


class MatchDecision(BaseModel):
    """Decision taken for a single face embedding."""
    kind: Literal["assign", "assign_relaxed", "create"] = Field(..., description="Decision rule that fired")
    identity_id: Optional[str] = Field(None, description="Matched identity (None when creating)")
    name: Optional[str] = Field(None, description="Matched name, or the new placeholder name")
    similarity: float = Field(..., description="Best similarity found (-inf when nothing is known)")

    @property
    def creates_identity(self) -> bool:
        return self.kind == "create"


class MediaSource(BaseModel):
    """A media item handed to the engine by the host.

    ``loader`` returns the decoded, orientation-corrected RGBA (or RGB) pixels
    and is only invoked when the media has no usable face records yet.
    """
    media_id: str = Field(..., description="Identifier of the media item")
    loader: Callable[[], np.ndarray] = Field(..., description="Returns the oriented pixel array")

    model_config = ConfigDict(arbitrary_types_allowed=True)


class ScanReport(BaseModel):
    """Outcome of a batch scan."""
    total: int = Field(0, description="Media items submitted")
    processed: int = Field(0, description="Media items processed end to end")
    cancelled: bool = Field(False, description="Whether the scan stopped early")
    matches: Dict[str, List[FaceMatch]] = Field(default_factory=dict, description="Matches per media item")
    failures: Dict[str, str] = Field(default_factory=dict, description="Error message per failed media item")


class KnownIdentity(BaseModel):
    """Matching snapshot of one live identity and every embedding it owns."""
    identity_id: str = Field(..., description="Terminal (non-merged) identity identifier")
    name: str = Field(..., description="Identity display name")
    embeddings: np.ndarray = Field(..., description="(M, D) L2-normalized embeddings")

    model_config = ConfigDict(arbitrary_types_allowed=True)
