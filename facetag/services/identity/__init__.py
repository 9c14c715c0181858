"""Identity matching and maintenance package."""
from .identity_service import IdentityService, resolve_identity_id
from .matcher import IdentityMatcher, is_placeholder, next_placeholder_name
from .quality import face_quality, identity_quality, primary_face

__all__ = [
    "IdentityMatcher",
    "IdentityService",
    "face_quality",
    "identity_quality",
    "is_placeholder",
    "next_placeholder_name",
    "primary_face",
    "resolve_identity_id",
]
