"""Face alignment and embedding package."""
from .alignment import CANONICAL_LANDMARKS, SimilarityTransform, align_face, solve_similarity_transform, warp_similarity
from .sface import SFaceEmbedder, cosine_similarity, l2_normalize

__all__ = [
    "CANONICAL_LANDMARKS",
    "SFaceEmbedder",
    "SimilarityTransform",
    "align_face",
    "cosine_similarity",
    "l2_normalize",
    "solve_similarity_transform",
    "warp_similarity",
]
