"""Persistent-queue driven background face scanning."""
import asyncio
from typing import Awaitable, Callable, Optional, Sequence, Set

from facetag.core.config import Settings, settings as default_settings
from facetag.core.exceptions import ModelOutputError
from facetag.core.logging import get_logger
from facetag.domain.interfaces.storage.scan_queue import ScanQueueStore
from facetag.domain.value_objects.recognition import MediaSource
from facetag.services.people_recognition import PeopleRecognitionService

logger = get_logger(__name__)

MediaResolver = Callable[[str], Awaitable[Optional[MediaSource]]]


class FaceScanQueueService:
    """Drains the scan queue through :class:`PeopleRecognitionService`.

    Jobs are processed oldest first. A job is removed when it succeeds, when
    its media no longer resolves, or once it has failed
    ``SCAN_QUEUE_MAX_ATTEMPTS`` times.
    """

    def __init__(
        self,
        queue: ScanQueueStore,
        people_recognition: PeopleRecognitionService,
        config: Optional[Settings] = None,
    ) -> None:
        self.queue = queue
        self.people_recognition = people_recognition
        self.config = config or default_settings

    async def enqueue(self, media_ids: Sequence[Optional[str]]) -> int:
        """Queue media items for scanning; already queued and blank ids are skipped."""
        added = await self.queue.enqueue([media_id for media_id in media_ids if media_id and media_id.strip()])
        logger.info("Queued media for face scan", added=added)
        return added

    async def process_queue(
        self,
        resolver: MediaResolver,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[Callable[[int], None]] = None,
    ) -> int:
        """
        Process queued jobs until the queue is drained or cancelled.

        Each job is attempted at most once per call, so a failing job waits for
        the next call before it is retried.

        Args:
            resolver: Returns the media source for an id, or None if it is gone
            cancel_event: Set to stop before the next job
            progress: Called with the number of successful jobs after each batch

        Returns:
            int: Number of jobs processed successfully

        Raises:
            ModelOutputError: If the detector lacks required output tensors
        """
        batch_size = max(1, self.config.SCAN_QUEUE_BATCH_SIZE)
        max_attempts = self.config.SCAN_QUEUE_MAX_ATTEMPTS
        attempted: Set[str] = set()
        processed = 0

        while not (cancel_event is not None and cancel_event.is_set()):
            jobs = [
                job
                for job in await self.queue.next_batch(batch_size + len(attempted))
                if job.media_id not in attempted
            ][:batch_size]
            if not jobs:
                break

            for job in jobs:
                if cancel_event is not None and cancel_event.is_set():
                    break
                attempted.add(job.media_id)

                if job.attempt_count >= max_attempts:
                    logger.warning("Dropping scan job after repeated failures", media_id=job.media_id)
                    await self.queue.remove(job.media_id)
                    continue

                source = await resolver(job.media_id)
                if source is None:
                    await self.queue.remove(job.media_id)
                    continue

                try:
                    await self.people_recognition.ensure_people_for_media(source)
                except ModelOutputError:
                    raise
                except Exception as e:
                    failed = await self.queue.record_failure(job.media_id)
                    logger.error(
                        "Queued face scan failed",
                        media_id=job.media_id,
                        attempts=failed.attempt_count,
                        error=str(e),
                        exc_info=True,
                    )
                    if failed.attempt_count >= max_attempts:
                        await self.queue.remove(job.media_id)
                    continue

                await self.queue.remove(job.media_id)
                processed += 1

            if progress is not None:
                progress(processed)

        logger.info("Face scan queue processed", processed=processed)
        return processed
