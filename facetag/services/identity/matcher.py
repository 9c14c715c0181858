"""
Identity matching decisions.

The matcher is pure: it receives a snapshot of known identities and returns
a :class:`MatchDecision` without touching storage, so the same inputs always
produce the same decision.
"""
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from facetag.core.config import Settings, settings as default_settings
from facetag.domain.value_objects.recognition import KnownIdentity, MatchDecision


def is_placeholder(name: Optional[str], prefix: str = "Unknown ") -> bool:
    """Whether a name is an auto-generated placeholder such as ``Unknown 3``."""
    if not name:
        return False
    return name.lower().startswith(prefix.lower())


def next_placeholder_name(names: Iterable[Optional[str]], prefix: str = "Unknown ") -> str:
    """Next placeholder name, one past the largest numeric suffix in use."""
    highest = 0
    for name in names:
        if not is_placeholder(name, prefix):
            continue
        suffix = name[len(prefix):].strip()
        if not suffix.isdecimal():
            continue
        try:
            highest = max(highest, int(suffix))
        except ValueError:
            continue
    return f"{prefix}{highest + 1}"


class IdentityMatcher:
    """Decides whether a face joins a known identity or starts a new one.

    Attributes:
        match_threshold: Similarity that always assigns
        relaxed_threshold: Lower bar applied to placeholder identities
        relaxed_min_quality: Face quality required for the lower bar
        placeholder_prefix: Name prefix marking placeholder identities
    """

    def __init__(self, config: Optional[Settings] = None) -> None:
        config = config or default_settings
        self.match_threshold = config.MATCH_THRESHOLD
        self.relaxed_threshold = config.RELAXED_MATCH_THRESHOLD
        self.relaxed_min_quality = config.RELAXED_MIN_QUALITY
        self.placeholder_prefix = config.PLACEHOLDER_PREFIX

    def best_match(
        self,
        embedding: np.ndarray,
        known: Sequence[KnownIdentity],
    ) -> Tuple[Optional[KnownIdentity], float]:
        """Identity with the highest pairwise similarity to ``embedding``.

        Every stored embedding of an identity is compared, not a centroid.
        Identities whose embedding dimension differs are skipped.
        """
        query = np.asarray(embedding, dtype=np.float32).reshape(-1)
        best: Optional[KnownIdentity] = None
        best_similarity = float("-inf")
        for identity in known:
            vectors = np.asarray(identity.embeddings, dtype=np.float32)
            if vectors.ndim == 1:
                vectors = vectors.reshape(1, -1)
            if vectors.size == 0 or vectors.shape[1] != query.shape[0]:
                continue
            similarity = float(np.max(vectors @ query))
            if similarity > best_similarity:
                best = identity
                best_similarity = similarity
        return best, best_similarity

    def decide(
        self,
        embedding: np.ndarray,
        quality: float,
        known: Sequence[KnownIdentity],
        existing_names: Iterable[Optional[str]] = (),
    ) -> MatchDecision:
        """
        Decide the identity of one face.

        Args:
            embedding: L2-normalized face embedding
            quality: Per-face quality of the face
            known: Snapshot of live identities with their embeddings
            existing_names: Every identity name in use, for placeholder numbering

        Returns:
            MatchDecision of kind ``assign``, ``assign_relaxed`` or ``create``
        """
        best, similarity = self.best_match(embedding, known)

        if best is not None and similarity >= self.match_threshold:
            return MatchDecision(
                kind="assign", identity_id=best.identity_id, name=best.name, similarity=similarity
            )

        if (
            best is not None
            and is_placeholder(best.name, self.placeholder_prefix)
            and quality >= self.relaxed_min_quality
            and similarity >= self.relaxed_threshold
        ):
            return MatchDecision(
                kind="assign_relaxed", identity_id=best.identity_id, name=best.name, similarity=similarity
            )

        names = list(existing_names) + [identity.name for identity in known]
        return MatchDecision(
            kind="create",
            identity_id=None,
            name=next_placeholder_name(names, self.placeholder_prefix),
            similarity=similarity,
        )
