"""Persistent scan queue interface."""
from abc import ABC, abstractmethod
from typing import List, Sequence

from ...entities.model import ScanJob


class ScanQueueStore(ABC):
    """Interface for the durable queue of media items awaiting a face scan."""

    @abstractmethod
    async def enqueue(self, media_ids: Sequence[str]) -> int:
        """Add media items that are not queued yet. Returns how many were added."""
        pass

    @abstractmethod
    async def next_batch(self, limit: int) -> List[ScanJob]:
        """Return up to ``limit`` jobs, oldest enqueued first."""
        pass

    @abstractmethod
    async def remove(self, media_id: str) -> None:
        """Remove a job from the queue."""
        pass

    @abstractmethod
    async def record_failure(self, media_id: str) -> ScanJob:
        """Increment a job's attempt count, stamp the attempt time and return it."""
        pass
