"""Identity mutations the engine asks the external store to apply.

Each mutation is a tagged variant discriminated by ``kind`` so stores can
dispatch on it without isinstance chains.
"""
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from facetag.domain.entities.identity import PersonIdentity


class CreateIdentity(BaseModel):
    kind: Literal["create_identity"] = "create_identity"
    identity: PersonIdentity


class AssignFace(BaseModel):
    kind: Literal["assign_face"] = "assign_face"
    face_id: str
    identity_id: str


class MergeIdentities(BaseModel):
    """Move every face of ``source_id`` to ``target_id`` and redirect the source."""
    kind: Literal["merge_identities"] = "merge_identities"
    source_id: str
    target_id: str


class RenameIdentity(BaseModel):
    kind: Literal["rename_identity"] = "rename_identity"
    identity_id: str
    name: str


class UpdateIdentityQuality(BaseModel):
    kind: Literal["update_identity_quality"] = "update_identity_quality"
    identity_id: str
    quality_score: float
    primary_face_id: Optional[str] = None


class SetIdentityIgnored(BaseModel):
    kind: Literal["set_identity_ignored"] = "set_identity_ignored"
    identity_id: str
    is_ignored: bool


class TagMedia(BaseModel):
    """Replace the person tags of a media item."""
    kind: Literal["tag_media"] = "tag_media"
    media_id: str
    names: List[str] = Field(default_factory=list)


IdentityMutation = Annotated[
    Union[
        CreateIdentity,
        AssignFace,
        MergeIdentities,
        RenameIdentity,
        UpdateIdentityQuality,
        SetIdentityIgnored,
        TagMedia,
    ],
    Field(discriminator="kind"),
]
