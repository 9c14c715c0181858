"""In-memory identity store and scan queue.

Both are complete implementations of the storage interfaces, useful for
tests and for hosts that keep their own persistence elsewhere.
"""
import asyncio
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from facetag.core.exceptions import IdentityNotFoundError, IdentityStoreError
from facetag.core.logging import get_logger
from facetag.domain.entities.face import FaceRecord
from facetag.domain.entities.identity import PersonIdentity
from facetag.domain.entities.model import ScanJob
from facetag.domain.interfaces.storage.identity_store import IdentityStore
from facetag.domain.interfaces.storage.scan_queue import ScanQueueStore
from facetag.domain.value_objects.mutations import IdentityMutation

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _State:
    """Mutable snapshot the store swaps in after a successful batch."""

    def __init__(
        self,
        identities: Dict[str, PersonIdentity],
        faces: Dict[str, FaceRecord],
        tags: Dict[str, List[str]],
    ) -> None:
        self.identities = identities
        self.faces = faces
        self.tags = tags

    def copy(self) -> "_State":
        # Entities are replaced, never mutated, so shallow dict copies suffice
        return _State(dict(self.identities), dict(self.faces), {k: list(v) for k, v in self.tags.items()})

    def identity(self, identity_id: str) -> PersonIdentity:
        identity = self.identities.get(identity_id)
        if identity is None:
            raise IdentityNotFoundError(
                f"Identity '{identity_id}' does not exist",
                details={"identity_id": identity_id},
            )
        return identity

    def update_identity(self, identity_id: str, **changes) -> None:
        self.identities[identity_id] = self.identity(identity_id).model_copy(
            update={**changes, "updated_at": _now()}
        )


class InMemoryIdentityStore(IdentityStore):
    """Dictionary-backed identity store with all-or-nothing mutation batches."""

    def __init__(self) -> None:
        self._state = _State({}, {}, {})
        self._lock = asyncio.Lock()

    async def list_identities(self) -> List[PersonIdentity]:
        return list(self._state.identities.values())

    async def get_identity(self, identity_id: str) -> Optional[PersonIdentity]:
        return self._state.identities.get(identity_id)

    async def list_media_faces(self, media_id: str) -> List[FaceRecord]:
        faces = [face for face in self._state.faces.values() if face.media_id == media_id]
        return sorted(faces, key=lambda face: face.face_index)

    async def list_assigned_faces(self, embedder_model_id: str) -> List[FaceRecord]:
        return [
            face
            for face in self._state.faces.values()
            if face.person_id is not None and face.embedder_model_id == embedder_model_id
        ]

    async def list_identity_faces(self, identity_id: str) -> List[FaceRecord]:
        return [face for face in self._state.faces.values() if face.person_id == identity_id]

    async def replace_media_faces(self, media_id: str, faces: Sequence[FaceRecord]) -> None:
        async with self._lock:
            state = self._state.copy()
            for face_id in [fid for fid, face in state.faces.items() if face.media_id == media_id]:
                del state.faces[face_id]
            for face in faces:
                if face.media_id != media_id:
                    raise IdentityStoreError(
                        "Face record belongs to a different media item",
                        details={"media_id": media_id, "face_media_id": face.media_id},
                    )
                state.faces[face.face_id] = face
            self._state = state

    async def apply(self, mutations: Sequence[IdentityMutation]) -> None:
        async with self._lock:
            state = self._state.copy()
            for mutation in mutations:
                handler = getattr(self, f"_apply_{mutation.kind}", None)
                if handler is None:
                    raise IdentityStoreError(
                        f"Unsupported mutation '{mutation.kind}'",
                        details={"kind": mutation.kind},
                    )
                handler(state, mutation)
            self._state = state
        logger.debug("Applied identity mutations", count=len(mutations))

    def media_tags(self, media_id: str) -> List[str]:
        """Person tags last written for a media item."""
        return list(self._state.tags.get(media_id, []))

    @staticmethod
    def _apply_create_identity(state: _State, mutation) -> None:
        identity = mutation.identity
        if identity.identity_id in state.identities:
            raise IdentityStoreError(
                "Identity already exists",
                details={"identity_id": identity.identity_id},
            )
        state.identities[identity.identity_id] = identity

    @staticmethod
    def _apply_assign_face(state: _State, mutation) -> None:
        state.identity(mutation.identity_id)
        face = state.faces.get(mutation.face_id)
        if face is None:
            raise IdentityStoreError("Face does not exist", details={"face_id": mutation.face_id})
        state.faces[face.face_id] = face.model_copy(update={"person_id": mutation.identity_id})

    @staticmethod
    def _apply_merge_identities(state: _State, mutation) -> None:
        state.identity(mutation.target_id)
        state.identity(mutation.source_id)
        if mutation.source_id == mutation.target_id:
            return
        for face_id, face in list(state.faces.items()):
            if face.person_id == mutation.source_id:
                state.faces[face_id] = face.model_copy(update={"person_id": mutation.target_id})
        state.update_identity(mutation.source_id, merged_into=mutation.target_id)

    @staticmethod
    def _apply_rename_identity(state: _State, mutation) -> None:
        state.update_identity(mutation.identity_id, name=mutation.name)

    @staticmethod
    def _apply_update_identity_quality(state: _State, mutation) -> None:
        state.update_identity(
            mutation.identity_id,
            quality_score=mutation.quality_score,
            primary_face_id=mutation.primary_face_id,
        )

    @staticmethod
    def _apply_set_identity_ignored(state: _State, mutation) -> None:
        state.update_identity(mutation.identity_id, is_ignored=mutation.is_ignored)

    @staticmethod
    def _apply_tag_media(state: _State, mutation) -> None:
        state.tags[mutation.media_id] = list(mutation.names)


class InMemoryScanQueueStore(ScanQueueStore):
    """Insertion-ordered scan queue."""

    def __init__(self) -> None:
        self._jobs: "OrderedDict[str, ScanJob]" = OrderedDict()
        self._lock = asyncio.Lock()

    async def enqueue(self, media_ids: Sequence[str]) -> int:
        added = 0
        async with self._lock:
            for media_id in media_ids:
                if not media_id or media_id in self._jobs:
                    continue
                self._jobs[media_id] = ScanJob(media_id=media_id)
                added += 1
        return added

    async def next_batch(self, limit: int) -> List[ScanJob]:
        jobs = sorted(self._jobs.values(), key=lambda job: job.enqueued_at)
        return jobs[:max(0, limit)]

    async def remove(self, media_id: str) -> None:
        async with self._lock:
            self._jobs.pop(media_id, None)

    async def record_failure(self, media_id: str) -> ScanJob:
        async with self._lock:
            job = self._jobs.get(media_id) or ScanJob(media_id=media_id)
            job = job.model_copy(update={"attempt_count": job.attempt_count + 1, "last_attempt_at": _now()})
            self._jobs[media_id] = job
            return job

    def __len__(self) -> int:
        return len(self._jobs)
