"""Engine context owning every stateful collaborator of the engine."""
import asyncio
from typing import Optional

from facetag.core.config import Settings, settings as default_settings
from facetag.domain.interfaces.storage.identity_store import IdentityStore
from facetag.domain.interfaces.storage.scan_queue import ScanQueueStore
from facetag.infrastructure.storage.memory import InMemoryIdentityStore, InMemoryScanQueueStore
from facetag.services.detection.yunet import YuNetFaceDetector
from facetag.services.identity.identity_service import IdentityService
from facetag.services.identity.matcher import IdentityMatcher
from facetag.services.people_recognition import PeopleRecognitionService
from facetag.services.recognition.sface import SFaceEmbedder
from facetag.services.runtime.registry import DETECTOR, EMBEDDER, ModelRegistry
from facetag.services.runtime.session import OnnxModelSession, SessionFactory
from facetag.services.scan_queue import FaceScanQueueService


class EngineContext:
    """Container for the engine's sessions, locks and services.

    The caller creates and owns the context; nothing is cached at module
    level, so independent contexts (for example one per test) never share
    model sessions or identity locks.

    Example:
        ```python
        context = EngineContext(store=my_store)
        await context.initialize()

        people = context.people_recognition
        report = await people.scan_and_tag(sources)

        await context.cleanup()
        ```
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        store: Optional[IdentityStore] = None,
        queue: Optional[ScanQueueStore] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self.config = config or default_settings
        self.store = store or InMemoryIdentityStore()
        self.queue = queue or InMemoryScanQueueStore()

        self.registry = ModelRegistry.from_settings(self.config)
        providers = self.config.onnx_providers
        self.detector_session = OnnxModelSession(
            self.registry.artifact(DETECTOR), providers, session_factory
        )
        self.embedder_session = OnnxModelSession(
            self.registry.artifact(EMBEDDER), providers, session_factory
        )
        self.detector = YuNetFaceDetector(self.detector_session, self.config, self.registry)
        self.embedder = SFaceEmbedder(self.embedder_session, self.config, self.registry)

        # Serializes identity reads and writes across concurrent scans
        self.identity_lock = asyncio.Lock()
        self.identity_service = IdentityService(
            self.store, IdentityMatcher(self.config), self.config, self.identity_lock
        )
        self.people_recognition = PeopleRecognitionService(
            self.detector, self.embedder, self.store, self.identity_service, self.config
        )
        self.scan_queue = FaceScanQueueService(self.queue, self.people_recognition, self.config)

    async def initialize(self) -> bool:
        """Warm up both models. Returns whether the runtime is loaded."""
        return await self.people_recognition.warmup_models()

    async def cleanup(self) -> None:
        """Release model sessions."""
        self.detector_session.close()
        self.embedder_session.close()
