"""
Identity service: matching, merging, renaming and quality upkeep against an
:class:`IdentityStore`.

Every operation that reads the identity snapshot and then writes mutations
runs inside one ``asyncio.Lock`` so concurrent scans never decide on a stale
snapshot; two workers cannot both create an identity for the same new face.
"""
import asyncio
from typing import Dict, Iterable, List, Optional, Sequence, Set

import numpy as np

from facetag.core.config import Settings, settings as default_settings
from facetag.core.exceptions import IdentityNotFoundError, IdentityResolutionError
from facetag.core.logging import get_logger
from facetag.domain.entities.face import FaceRecord
from facetag.domain.entities.identity import PersonIdentity
from facetag.domain.interfaces.storage.identity_store import IdentityStore
from facetag.domain.value_objects.mutations import (
    AssignFace,
    CreateIdentity,
    IdentityMutation,
    MergeIdentities,
    RenameIdentity,
    SetIdentityIgnored,
    TagMedia,
    UpdateIdentityQuality,
)
from facetag.domain.value_objects.recognition import FaceMatch, KnownIdentity
from facetag.services.identity.matcher import IdentityMatcher
from facetag.services.identity.quality import identity_quality, primary_face

logger = get_logger(__name__)


def resolve_identity_id(identity_id: str, identities: Dict[str, PersonIdentity]) -> str:
    """
    Follow ``merged_into`` redirects to the terminal identity.

    Args:
        identity_id: Identity to resolve
        identities: Every identity keyed by id

    Returns:
        str: Id of the live identity that owns ``identity_id``'s faces

    Raises:
        IdentityNotFoundError: If an id on the chain does not exist
        IdentityResolutionError: If the chain loops
    """
    seen: List[str] = []
    current = identity_id
    while True:
        identity = identities.get(current)
        if identity is None:
            raise IdentityNotFoundError(
                f"Identity '{current}' does not exist",
                details={"identity_id": identity_id, "chain": seen},
            )
        if identity.merged_into is None:
            return current
        seen.append(current)
        if identity.merged_into in seen:
            raise IdentityResolutionError(
                "Identity merge chain contains a cycle",
                details={"identity_id": identity_id, "chain": seen},
            )
        current = identity.merged_into


class IdentityService:
    """Applies identity decisions to the store.

    Example:
        ```python
        service = IdentityService(InMemoryIdentityStore())
        matches = await service.assign_faces("IMG_0001", records)
        await service.rename(matches[0].identity_id, "Alice")
        ```
    """

    def __init__(
        self,
        store: IdentityStore,
        matcher: Optional[IdentityMatcher] = None,
        config: Optional[Settings] = None,
        lock: Optional[asyncio.Lock] = None,
    ) -> None:
        self.store = store
        self.config = config or default_settings
        self.matcher = matcher or IdentityMatcher(self.config)
        self.lock = lock or asyncio.Lock()

    async def _identities(self) -> Dict[str, PersonIdentity]:
        return {identity.identity_id: identity for identity in await self.store.list_identities()}

    async def resolve(self, identity_id: str) -> PersonIdentity:
        """Resolve an identity through its redirect chain."""
        identities = await self._identities()
        return identities[resolve_identity_id(identity_id, identities)]

    async def known_identities(
        self,
        embedder_model_id: str,
        identities: Optional[Dict[str, PersonIdentity]] = None,
    ) -> List[KnownIdentity]:
        """Snapshot of live identities with the embeddings produced by one embedder."""
        identities = identities if identities is not None else await self._identities()
        grouped: Dict[str, List[np.ndarray]] = {}
        for face in await self.store.list_assigned_faces(embedder_model_id):
            if face.person_id is None or face.embedding.size == 0:
                continue
            try:
                owner = resolve_identity_id(face.person_id, identities)
            except IdentityNotFoundError:
                logger.warning("Face points at a missing identity", face_id=face.face_id, person_id=face.person_id)
                continue
            grouped.setdefault(owner, []).append(face.embedding)

        return [
            KnownIdentity(
                identity_id=identity_id,
                name=identities[identity_id].name,
                embeddings=np.vstack(vectors).astype(np.float32),
            )
            for identity_id, vectors in grouped.items()
        ]

    async def assign_faces(
        self,
        media_id: str,
        faces: Sequence[FaceRecord],
        embedder_model_id: Optional[str] = None,
    ) -> List[FaceMatch]:
        """
        Match every face of a media item and tag the media.

        Faces that already point at an identity keep it (resolved through
        merges); the rest are matched or become new placeholder identities.
        A new identity is visible to the remaining faces of the same call.

        Args:
            media_id: Media item the faces belong to
            faces: Face records already stored for the media item
            embedder_model_id: Only embeddings from this model are compared
                (defaults to the model of the first face)

        Returns:
            FaceMatch per face, in face index order
        """
        ordered = sorted(faces, key=lambda f: f.face_index)
        if embedder_model_id is None and ordered:
            embedder_model_id = ordered[0].embedder_model_id

        async with self.lock:
            identities = await self._identities()
            known = await self.known_identities(embedder_model_id or "", identities)
            by_id = {entry.identity_id: entry for entry in known}
            mutations: List[IdentityMutation] = []
            matches: List[FaceMatch] = []

            for face in ordered:
                if face.embedding.size == 0:
                    continue

                if face.person_id is not None and face.person_id in identities:
                    owner = resolve_identity_id(face.person_id, identities)
                    if owner != face.person_id:
                        mutations.append(AssignFace(face_id=face.face_id, identity_id=owner))
                    entry = by_id.get(owner)
                    similarity = self._similarity_to(entry, face.embedding)
                    matches.append(self._match(identities[owner], similarity, face.face_index))
                    continue

                decision = self.matcher.decide(
                    face.embedding,
                    face.quality,
                    list(by_id.values()),
                    [identity.name for identity in identities.values()],
                )
                if decision.creates_identity:
                    identity = PersonIdentity(name=decision.name)
                    identities[identity.identity_id] = identity
                    mutations.append(CreateIdentity(identity=identity))
                    owner = identity.identity_id
                    by_id[owner] = KnownIdentity(
                        identity_id=owner,
                        name=identity.name,
                        embeddings=face.embedding.reshape(1, -1),
                    )
                    similarity = self._similarity_to(by_id[owner], face.embedding)
                    logger.info("Created identity", identity_id=owner, name=identity.name, media_id=media_id)
                else:
                    owner = decision.identity_id
                    entry = by_id[owner]
                    entry.embeddings = np.vstack([entry.embeddings, face.embedding.reshape(1, -1)])
                    similarity = decision.similarity

                mutations.append(AssignFace(face_id=face.face_id, identity_id=owner))
                matches.append(self._match(identities[owner], similarity, face.face_index))

            if mutations:
                await self.store.apply(mutations)

            touched = {match.identity_id for match in matches}
            follow_up = await self._quality_mutations(touched)
            follow_up.append(await self._tag_mutation(media_id))
            await self.store.apply(follow_up)

        logger.info("Assigned faces", media_id=media_id, faces=len(matches))
        return matches

    @staticmethod
    def _similarity_to(entry: Optional[KnownIdentity], embedding: np.ndarray) -> float:
        if entry is None or entry.embeddings.size == 0:
            return float(np.dot(embedding, embedding))
        vectors = entry.embeddings.reshape(-1, embedding.shape[0])
        return float(np.max(vectors @ embedding))

    @staticmethod
    def _match(identity: PersonIdentity, similarity: float, face_index: int) -> FaceMatch:
        return FaceMatch(
            identity_id=identity.identity_id,
            name=identity.name,
            similarity=similarity,
            face_index=face_index,
        )

    async def _quality_mutations(self, identity_ids: Iterable[str]) -> List[IdentityMutation]:
        mutations: List[IdentityMutation] = []
        for identity_id in sorted(identity_ids):
            faces = await self.store.list_identity_faces(identity_id)
            primary = primary_face(faces)
            mutations.append(
                UpdateIdentityQuality(
                    identity_id=identity_id,
                    quality_score=identity_quality(
                        (face.quality for face in faces), self.config.IDENTITY_TOP_FACES
                    ),
                    primary_face_id=primary.face_id if primary else None,
                )
            )
        return mutations

    async def media_tags(self, media_id: str) -> List[str]:
        """Distinct names of the non-ignored identities present in a media item."""
        identities = await self._identities()
        names: List[str] = []
        seen: Set[str] = set()
        for face in await self.store.list_media_faces(media_id):
            if face.person_id is None or face.person_id not in identities:
                continue
            identity = identities[resolve_identity_id(face.person_id, identities)]
            if identity.is_ignored or not identity.name.strip():
                continue
            if identity.name.lower() not in seen:
                seen.add(identity.name.lower())
                names.append(identity.name)
        return names

    async def _tag_mutation(self, media_id: str) -> TagMedia:
        return TagMedia(media_id=media_id, names=await self.media_tags(media_id))

    async def _media_of(self, identity_id: str) -> Set[str]:
        return {face.media_id for face in await self.store.list_identity_faces(identity_id)}

    async def _retag(self, media_ids: Iterable[str]) -> None:
        mutations = [await self._tag_mutation(media_id) for media_id in sorted(set(media_ids))]
        if mutations:
            await self.store.apply(mutations)

    async def recompute_quality(self, identity_id: str) -> PersonIdentity:
        """Recompute the aggregate quality and primary face of an identity."""
        async with self.lock:
            resolved = await self.resolve(identity_id)
            await self.store.apply(await self._quality_mutations([resolved.identity_id]))
            return await self.resolve(resolved.identity_id)

    async def refresh_identities(self, identity_ids: Iterable[str]) -> None:
        """Recompute quality and primary face for identities that may have lost faces.

        An identity left without faces gets quality 0 and no primary face.
        Ids that no longer exist are skipped.
        """
        async with self.lock:
            identities = await self._identities()
            resolved: Set[str] = set()
            for identity_id in identity_ids:
                try:
                    resolved.add(resolve_identity_id(identity_id, identities))
                except IdentityNotFoundError:
                    logger.warning("Skipping refresh of a missing identity", identity_id=identity_id)
            if resolved:
                await self.store.apply(await self._quality_mutations(resolved))

    async def merge(self, source_id: str, target_id: str) -> PersonIdentity:
        """
        Merge ``source_id`` into ``target_id``.

        Both ids are resolved first; merging an identity into itself is a
        no-op. The source becomes a redirect and is never deleted.

        Returns:
            PersonIdentity: The surviving identity

        Raises:
            IdentityNotFoundError: If either identity does not exist
        """
        async with self.lock:
            return await self._merge_locked(source_id, target_id)

    async def _merge_locked(self, source_id: str, target_id: str) -> PersonIdentity:
        identities = await self._identities()
        source = resolve_identity_id(source_id, identities)
        target = resolve_identity_id(target_id, identities)
        if source == target:
            return identities[target]

        media_ids = await self._media_of(source)
        await self.store.apply([MergeIdentities(source_id=source, target_id=target)])
        await self.store.apply(await self._quality_mutations([target]))
        await self._retag(media_ids | await self._media_of(target))

        logger.info("Merged identities", source_id=source, target_id=target, media=len(media_ids))
        return await self.resolve(target)

    async def rename(self, identity_id: str, name: str) -> PersonIdentity:
        """
        Rename an identity.

        The name is trimmed and a blank name is ignored. Renaming to the name of
        another live identity (case-insensitive) merges into that identity.

        Returns:
            PersonIdentity: The identity now carrying the name

        Raises:
            IdentityNotFoundError: If the identity does not exist
        """
        trimmed = (name or "").strip()
        async with self.lock:
            identities = await self._identities()
            current = identities[resolve_identity_id(identity_id, identities)]
            if not trimmed:
                return current

            existing = next(
                (
                    identity
                    for identity in identities.values()
                    if identity.identity_id != current.identity_id
                    and not identity.is_merged
                    and identity.name.lower() == trimmed.lower()
                ),
                None,
            )
            if existing is not None:
                return await self._merge_locked(current.identity_id, existing.identity_id)

            if current.name.lower() == trimmed.lower():
                return current

            await self.store.apply([RenameIdentity(identity_id=current.identity_id, name=trimmed)])
            await self._retag(await self._media_of(current.identity_id))
            logger.info("Renamed identity", identity_id=current.identity_id, name=trimmed)
            return await self.resolve(current.identity_id)

    async def set_ignored(self, identity_id: str, is_ignored: bool) -> PersonIdentity:
        """Hide or show an identity in media tags. Ignored identities still attract matches."""
        async with self.lock:
            current = await self.resolve(identity_id)
            await self.store.apply([SetIdentityIgnored(identity_id=current.identity_id, is_ignored=is_ignored)])
            await self._retag(await self._media_of(current.identity_id))
            return await self.resolve(current.identity_id)

    async def refresh_media_tags(self, media_ids: Iterable[str]) -> None:
        """Rewrite the person tags of the given media items."""
        async with self.lock:
            await self._retag(media_ids)
