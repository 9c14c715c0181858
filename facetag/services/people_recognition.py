"""
People recognition service.

Ties detection, embedding and identity matching together per media item:
stored face records are reused when they were produced by the loaded models,
otherwise the media is decoded, detected and embedded again.
"""
import asyncio
from typing import Callable, Dict, List, Optional, Sequence, Set

import numpy as np

from facetag.core.config import Settings, settings as default_settings
from facetag.core.exceptions import ModelOutputError, TransformError
from facetag.core.logging import get_logger
from facetag.domain.entities.face import DetectedFace, FaceRecord
from facetag.domain.entities.identity import PersonIdentity
from facetag.domain.interfaces.recognition.face_recognition import FaceDetector, FaceEmbedder
from facetag.domain.interfaces.storage.identity_store import IdentityStore
from facetag.domain.value_objects.recognition import FaceMatch, MediaSource, ScanReport
from facetag.services.identity.identity_service import IdentityService
from facetag.services.identity.quality import face_quality

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int, str], None]

# Minimum box overlap for a re-detected face to keep its previous identity.
CARRY_OVER_IOU = 0.5


def carry_over_identities(
    previous: Sequence[FaceRecord],
    faces: Sequence[DetectedFace],
    min_iou: float = CARRY_OVER_IOU,
) -> List[Optional[str]]:
    """Identity of the best-overlapping previous record for each new face.

    Pairs are taken greedily by descending IoU and each previous record is
    used at most once, so a model upgrade keeps user-named identities.
    """
    pairs = []
    for i, face in enumerate(faces):
        for j, record in enumerate(previous):
            if record.person_id is None:
                continue
            iou = face.bounding_box.iou(record.bounding_box)
            if iou >= min_iou:
                pairs.append((iou, i, j))

    owners: List[Optional[str]] = [None] * len(faces)
    used: Set[int] = set()
    for _, i, j in sorted(pairs, key=lambda pair: -pair[0]):
        if owners[i] is not None or j in used:
            continue
        owners[i] = previous[j].person_id
        used.add(j)
    return owners


class PeopleRecognitionService:
    """End-to-end face tagging for media items.

    Example:
        ```python
        context = EngineContext(config=settings)
        people = context.people_recognition
        await people.warmup_models()
        matches = await people.ensure_people_for_media(MediaSource(media_id="IMG_1", loader=load_pixels))
        ```
    """

    def __init__(
        self,
        detector: FaceDetector,
        embedder: FaceEmbedder,
        store: IdentityStore,
        identity_service: Optional[IdentityService] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.detector = detector
        self.embedder = embedder
        self.store = store
        self.config = config or default_settings
        self.identity_service = identity_service or IdentityService(store, config=self.config)
        self.last_model_load_error: Optional[str] = None

    @property
    def is_runtime_loaded(self) -> bool:
        return self.detector.is_loaded and self.embedder.is_loaded

    async def warmup_models(self) -> bool:
        """Load both model sessions up front.

        Returns:
            bool: Whether detector and embedder are both loaded
        """
        self.last_model_load_error = None
        for model in (self.detector, self.embedder):
            loaded = await asyncio.to_thread(model.load)
            if not loaded:
                self.last_model_load_error = model.last_error
                break
        logger.info(
            "Model warmup finished",
            loaded=self.is_runtime_loaded,
            error=self.last_model_load_error,
        )
        return self.is_runtime_loaded

    def _is_stale(self, records: Sequence[FaceRecord]) -> bool:
        return any(
            record.embedder_model_id != self.embedder.model_id
            or record.detector_model_id != self.detector.model_id
            for record in records
        )

    async def ensure_people_for_media(self, source: MediaSource) -> List[FaceMatch]:
        """
        Detect, embed and match the faces of one media item and update its tags.

        Args:
            source: Media identifier plus a loader for its oriented pixels

        Returns:
            FaceMatch per face in face index order; empty when no face was found
            or the models are unavailable

        Raises:
            InvalidImageError: If the loaded pixels are unusable
            ModelOutputError: If the detector lacks required output tensors
        """
        records = await self.store.list_media_faces(source.media_id)
        previous: List[FaceRecord] = []
        if not records or self._is_stale(records):
            previous = list(records)
            if previous:
                logger.info("Re-embedding faces from a previous model", media_id=source.media_id)
            records = await self._detect_and_store(source, previous)
            if previous and not records:
                await self.identity_service.refresh_media_tags([source.media_id])

        matches: List[FaceMatch] = []
        if records:
            matches = await self.identity_service.assign_faces(
                source.media_id, records, self.embedder.model_id
            )

        # Owners of replaced records may have lost their primary or only face
        previous_owners = {record.person_id for record in previous if record.person_id}
        if previous_owners:
            await self.identity_service.refresh_identities(previous_owners)
        return matches

    async def _detect_and_store(
        self,
        source: MediaSource,
        previous: Sequence[FaceRecord] = (),
    ) -> List[FaceRecord]:
        image = await asyncio.to_thread(source.loader)
        faces = await self.detector.detect_faces(image)
        if not self.detector.is_loaded:
            self.last_model_load_error = self.detector.last_error
            return []

        height, width = np.asarray(image).shape[:2]
        owners = carry_over_identities(previous, faces)
        records: List[FaceRecord] = []
        for index, face in enumerate(faces):
            try:
                embedding = await self.embedder.extract_embedding(image, face)
            except TransformError as e:
                logger.warning(
                    "Skipping face with degenerate landmarks",
                    media_id=source.media_id,
                    face_index=index,
                    error=str(e),
                )
                continue

            if embedding.size == 0:
                if not self.embedder.is_loaded:
                    self.last_model_load_error = self.embedder.last_error
                    return []
                continue

            records.append(
                FaceRecord(
                    media_id=source.media_id,
                    face_index=index,
                    bounding_box=face.bounding_box,
                    landmarks=face.landmarks,
                    confidence=face.confidence,
                    quality=face_quality(
                        face.confidence,
                        face.bounding_box.min_side,
                        self.config.QUALITY_SIZE_REFERENCE,
                    ),
                    embedding=embedding,
                    person_id=owners[index],
                    detector_model_id=self.detector.model_id,
                    embedder_model_id=self.embedder.model_id,
                    image_width=width,
                    image_height=height,
                )
            )

        await self.store.replace_media_faces(source.media_id, records)
        logger.info(
            "Stored face records",
            media_id=source.media_id,
            detected=len(faces),
            stored=len(records),
            carried_over=sum(1 for record in records if record.person_id),
        )
        return records

    async def rename_person(self, identity_id: str, name: str) -> PersonIdentity:
        return await self.identity_service.rename(identity_id, name)

    async def merge_people(self, source_id: str, target_id: str) -> PersonIdentity:
        return await self.identity_service.merge(source_id, target_id)

    async def set_ignored(self, identity_id: str, is_ignored: bool) -> PersonIdentity:
        return await self.identity_service.set_ignored(identity_id, is_ignored)

    async def rename_people_for_media(self, media_id: str, names: Sequence[Optional[str]]) -> List[str]:
        """
        Rename the people of a media item by position.

        The i-th name applies to the identity of the i-th face. Blank names and
        unassigned faces are skipped; a name shared with another identity
        merges into it.

        Returns:
            List[str]: The media item's tags after renaming
        """
        faces = await self.store.list_media_faces(media_id)
        desired: Dict[str, str] = {}
        for face, name in zip(faces, names):
            trimmed = (name or "").strip()
            if not trimmed or face.person_id is None:
                continue
            desired[face.person_id] = trimmed

        for identity_id, name in desired.items():
            await self.identity_service.rename(identity_id, name)

        await self.identity_service.refresh_media_tags([media_id])
        return await self.identity_service.media_tags(media_id)

    async def scan_and_tag(
        self,
        media: Sequence[MediaSource],
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ScanReport:
        """
        Tag many media items on a bounded pool of workers.

        Each item runs detect, embed and match end to end before its worker
        takes the next one. A failing item is recorded in the report and does
        not affect the others. Cancellation is checked between items.

        Args:
            media: Items to scan
            progress: Called with (completed, total, media_id) after each item
            cancel_event: Set to stop before the next item

        Returns:
            ScanReport with matches and failures per media item

        Raises:
            ModelOutputError: If the detector lacks required output tensors
        """
        report = ScanReport(total=len(media))
        queue: "asyncio.Queue[MediaSource]" = asyncio.Queue()
        for source in media:
            queue.put_nowait(source)

        stop = asyncio.Event()
        fatal: List[BaseException] = []
        completed = 0

        async def worker() -> None:
            nonlocal completed
            while not stop.is_set():
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    return
                try:
                    source = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return

                try:
                    report.matches[source.media_id] = await self.ensure_people_for_media(source)
                    report.processed += 1
                except ModelOutputError as e:
                    fatal.append(e)
                    stop.set()
                    return
                except Exception as e:
                    logger.error(
                        "Media scan failed",
                        media_id=source.media_id,
                        error=str(e),
                        exc_info=True,
                    )
                    report.failures[source.media_id] = str(e)

                completed += 1
                if progress is not None:
                    progress(completed, report.total, source.media_id)

        workers = max(1, min(self.config.SCAN_CONCURRENCY, len(media) or 1))
        await asyncio.gather(*(worker() for _ in range(workers)))

        if fatal:
            raise fatal[0]

        logger.info(
            "Scan finished",
            total=report.total,
            processed=report.processed,
            failed=len(report.failures),
            cancelled=report.cancelled,
        )
        return report
