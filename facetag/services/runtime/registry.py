"""Registry of resolved local model artifacts and their availability."""
import threading
from pathlib import Path
from typing import Dict, Optional

from facetag.core.config import Settings
from facetag.core.exceptions import ModelLoadError
from facetag.domain.entities.model import ModelArtifact
from facetag.domain.value_objects.runtime import ModelStatus, ModelStatusEntry, ModelStatusSnapshot

DETECTOR = "detector"
EMBEDDER = "embedder"


class ModelRegistry:
    """Tracks the model files the engine needs.

    Provisioning (download, caching, versioning) belongs to the host; the
    registry only resolves names to local paths and reports status based on
    file presence and on load failures reported back by sessions.
    """

    def __init__(self, models_dir: Path) -> None:
        self.models_dir = Path(models_dir)
        self._artifacts: Dict[str, ModelArtifact] = {}
        self._status: Dict[str, ModelStatus] = {}
        self._errors: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, config: Settings) -> "ModelRegistry":
        registry = cls(Path(config.MODEL_DIR))
        registry.register(DETECTOR, config.DETECTOR_MODEL_FILE)
        registry.register(EMBEDDER, config.EMBEDDER_MODEL_FILE)
        return registry

    def register(self, name: str, filename: str, model_id: Optional[str] = None) -> ModelArtifact:
        """Register an artifact by file name relative to the models directory."""
        artifact = ModelArtifact(name=name, path=self.models_dir / filename, model_id=model_id)
        with self._lock:
            self._artifacts[name] = artifact
            self._status[name] = ModelStatus.UNKNOWN
            self._errors[name] = None
        return artifact

    def artifact(self, name: str) -> ModelArtifact:
        """Get a registered artifact.

        Raises:
            ModelLoadError: If no artifact is registered under ``name``
        """
        with self._lock:
            artifact = self._artifacts.get(name)
        if artifact is None:
            raise ModelLoadError(f"No model registered as '{name}'", details={"name": name})
        return artifact

    def mark_ready(self, name: str) -> None:
        with self._lock:
            self._status[name] = ModelStatus.READY
            self._errors[name] = None

    def mark_failed(self, name: str, error: str) -> None:
        with self._lock:
            self._status[name] = ModelStatus.FAILED
            self._errors[name] = error

    def status_snapshot(self) -> ModelStatusSnapshot:
        """Refresh status from local files and return a snapshot."""
        with self._lock:
            models: Dict[str, ModelStatusEntry] = {}
            for name, artifact in self._artifacts.items():
                status = self._status[name]
                if status != ModelStatus.FAILED:
                    # Supports models dropped in manually by the host
                    status = ModelStatus.READY if artifact.path.exists() else ModelStatus.UNKNOWN
                    self._status[name] = status
                models[name] = ModelStatusEntry(
                    status=status,
                    path=str(artifact.path),
                    model_id=artifact.resolved_model_id,
                    error=self._errors[name],
                )
        return ModelStatusSnapshot(models_directory=str(self.models_dir), models=models)

    def all_ready(self) -> bool:
        return self.status_snapshot().all_ready
