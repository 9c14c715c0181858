"""Person identity entity."""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class PersonIdentity(BaseModel):
    """A person cluster.

    Identities form a forest through ``merged_into``: a merged identity is a
    redirect to the identity that now owns its faces and is never deleted.
    """
    identity_id: str = Field(default_factory=lambda: uuid4().hex, description="Unique identity identifier")
    name: str = Field("Unknown", description="Display name")
    quality_score: float = Field(0.0, description="Aggregate quality of the identity's faces")
    primary_face_id: Optional[str] = Field(None, description="Highest-quality face of the identity")
    merged_into: Optional[str] = Field(None, description="Identity this one was merged into")
    is_ignored: bool = Field(False, description="Hidden from media tags")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_merged(self) -> bool:
        return self.merged_into is not None
