"""Identity store interface for face records and person identities."""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ...entities.face import FaceRecord
from ...entities.identity import PersonIdentity
from ...value_objects.mutations import IdentityMutation


class IdentityStore(ABC):
    """Narrow interface onto the durable store owned by the host application.

    The engine reads snapshots through the query methods and expresses every
    change as an explicit mutation passed to :meth:`apply`.
    """

    @abstractmethod
    async def list_identities(self) -> List[PersonIdentity]:
        """
        List every identity, merged redirects included.

        Raises:
            IdentityStoreError: If the query fails
        """
        pass

    @abstractmethod
    async def get_identity(self, identity_id: str) -> Optional[PersonIdentity]:
        """Get a single identity by id, or None when it does not exist."""
        pass

    @abstractmethod
    async def list_media_faces(self, media_id: str) -> List[FaceRecord]:
        """List the face records of a media item ordered by face index."""
        pass

    @abstractmethod
    async def list_assigned_faces(self, embedder_model_id: str) -> List[FaceRecord]:
        """
        List every face assigned to an identity that was embedded by the given model.

        Args:
            embedder_model_id: Only records produced by this embedder are comparable
        """
        pass

    @abstractmethod
    async def list_identity_faces(self, identity_id: str) -> List[FaceRecord]:
        """List the faces currently pointing at an identity."""
        pass

    @abstractmethod
    async def replace_media_faces(self, media_id: str, faces: Sequence[FaceRecord]) -> None:
        """
        Replace every face record of a media item.

        Raises:
            IdentityStoreError: If the write fails
        """
        pass

    @abstractmethod
    async def apply(self, mutations: Sequence[IdentityMutation]) -> None:
        """
        Apply a batch of mutations atomically and in order.

        Raises:
            IdentityStoreError: If any mutation cannot be applied; no mutation
                of the batch is applied in that case
            IdentityNotFoundError: If a mutation references an unknown identity
        """
        pass
