"""
ONNX Runtime session wrapper shared by the detector and the embedder.

The session is created lazily, exactly once, under an initialization lock.
ONNX Runtime sessions are not assumed to be safe for concurrent ``run`` calls,
so every inference against one session is serialized through a second lock.
CPU-side decode and alignment math stays outside both locks.
"""
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
import onnxruntime as ort

from facetag.core.exceptions import ModelLoadError
from facetag.core.logging import get_logger
from facetag.domain.entities.model import ModelArtifact

logger = get_logger(__name__)

SessionFactory = Callable[[str, Sequence[str]], Any]


def create_onnx_session(path: str, providers: Sequence[str]) -> ort.InferenceSession:
    """Create an optimized ONNX Runtime inference session."""
    options = ort.SessionOptions()
    options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    options.log_severity_level = 3
    available = set(ort.get_available_providers())
    selected = [p for p in providers if p in available] or ["CPUExecutionProvider"]
    return ort.InferenceSession(path, options, providers=selected)


class OnnxModelSession:
    """Lazily loaded, inference-serialized model session.

    Attributes:
        artifact: Resolved model file and identifier
        last_error: Message of the last failed load attempt, if any
    """

    def __init__(
        self,
        artifact: ModelArtifact,
        providers: Optional[Sequence[str]] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self.artifact = artifact
        self.last_error: Optional[str] = None
        self._providers = list(providers or ["CPUExecutionProvider"])
        self._session_factory = session_factory or create_onnx_session
        self._session: Any = None
        self._input_names: List[str] = []
        self._output_names: List[str] = []
        self._init_lock = threading.Lock()
        self._run_lock = threading.Lock()

    @property
    def model_id(self) -> str:
        return self.artifact.resolved_model_id

    @property
    def is_loaded(self) -> bool:
        return self._session is not None

    @property
    def input_names(self) -> List[str]:
        self.ensure_loaded()
        return list(self._input_names)

    @property
    def output_names(self) -> List[str]:
        self.ensure_loaded()
        return list(self._output_names)

    def ensure_loaded(self) -> None:
        """Load the session once.

        Raises:
            ModelLoadError: If the model file is missing or the session cannot be created
        """
        if self._session is not None:
            return

        with self._init_lock:
            if self._session is not None:
                return

            path = self.artifact.path
            if not path.exists():
                self.last_error = f"Model file not found: {path}"
                raise ModelLoadError(
                    self.last_error,
                    details={"model": self.artifact.name, "path": str(path)},
                )

            try:
                session = self._session_factory(str(path), self._providers)
                input_names = [i.name for i in session.get_inputs()]
                output_names = [o.name for o in session.get_outputs()]
            except Exception as e:
                self.last_error = str(e)
                logger.error(
                    "Model session failed to load",
                    model=self.artifact.name,
                    path=str(path),
                    error=str(e),
                )
                raise ModelLoadError(
                    f"Failed to load model '{self.artifact.name}': {e}",
                    details={"model": self.artifact.name, "path": str(path)},
                ) from e

            self._input_names = input_names
            self._output_names = output_names
            self._session = session
            self.last_error = None
            logger.info(
                "Model session loaded",
                model=self.artifact.name,
                model_id=self.model_id,
                outputs=len(output_names),
            )

    def run(self, feeds: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        """Run inference and return every output keyed by tensor name.

        Raises:
            ModelLoadError: If the session cannot be loaded
        """
        self.ensure_loaded()
        with self._run_lock:
            outputs = self._session.run(self._output_names, feeds)
        return {name: np.asarray(value) for name, value in zip(self._output_names, outputs)}

    def close(self) -> None:
        """Drop the loaded session so it can be garbage collected."""
        with self._init_lock:
            self._session = None
            self._input_names = []
            self._output_names = []
