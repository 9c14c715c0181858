"""
YuNet-style face detector running on ONNX Runtime.

Pipeline per call: letterbox -> inference -> multi-hypothesis decode ->
tuning filter -> greedy NMS. Inference is serialized by the shared
:class:`OnnxModelSession`; everything after it is plain numpy and runs in
the calling worker thread.

Example:
    ```python
    registry = ModelRegistry.from_settings(settings)
    detector = YuNetFaceDetector(OnnxModelSession(registry.artifact(DETECTOR)))
    faces = await detector.detect_faces(rgba_pixels)
    ```
"""
import asyncio
from typing import List, Optional, Tuple

import numpy as np

from facetag.core.config import Settings, settings as default_settings
from facetag.core.exceptions import CalibrationError, ModelLoadError
from facetag.core.logging import get_logger
from facetag.core.utils.image import letterbox, to_nchw_tensor, to_rgb
from facetag.domain.entities.face import BoundingBox, DetectedFace, Landmarks
from facetag.domain.interfaces.recognition.face_recognition import FaceDetector
from facetag.domain.value_objects.tuning import CalibrationResult, Tuning
from facetag.services.detection.decoder import CandidateSet, decode_outputs
from facetag.services.detection.tuning import auto_tune, calibrate, select_faces
from facetag.services.runtime.registry import DETECTOR, ModelRegistry
from facetag.services.runtime.session import OnnxModelSession

logger = get_logger(__name__)


def clip_box(box: np.ndarray, width: int, height: int) -> Optional[BoundingBox]:
    """Clip an (x, y, w, h) box to the image; None when nothing remains inside."""
    x0 = min(max(float(box[0]), 0.0), float(width))
    y0 = min(max(float(box[1]), 0.0), float(height))
    x1 = min(max(float(box[0] + box[2]), 0.0), float(width))
    y1 = min(max(float(box[1] + box[3]), 0.0), float(height))
    if x1 <= x0 or y1 <= y0:
        return None
    return BoundingBox(x=x0, y=y0, width=x1 - x0, height=y1 - y0)


class YuNetFaceDetector(FaceDetector):
    """Multi-stride face detector.

    Attributes:
        session: Lazily loaded detector session
        config: Settings supplying input size, strides and tuning defaults
    """

    def __init__(
        self,
        session: OnnxModelSession,
        config: Optional[Settings] = None,
        registry: Optional[ModelRegistry] = None,
    ) -> None:
        self.session = session
        self.config = config or default_settings
        self._registry = registry

    @property
    def model_id(self) -> str:
        return self.session.model_id

    @property
    def is_loaded(self) -> bool:
        return self.session.is_loaded

    @property
    def last_error(self) -> Optional[str]:
        return self.session.last_error

    def load(self) -> bool:
        """Load the session if needed. Returns False instead of raising on failure."""
        try:
            self.session.ensure_loaded()
        except ModelLoadError as e:
            logger.warning("Face detector unavailable", model_id=self.model_id, error=str(e))
            if self._registry is not None:
                self._registry.mark_failed(DETECTOR, str(e))
            return False
        if self._registry is not None:
            self._registry.mark_ready(DETECTOR)
        return True

    def decode_raw(self, image: np.ndarray) -> Tuple[CandidateSet, int, int]:
        """Run the network once and decode every candidate without filtering.

        Args:
            image: RGBA, RGB or grayscale pixel array

        Returns:
            Tuple of candidates in source pixels, image width and image height.
            Candidates are empty when the model could not be loaded.

        Raises:
            InvalidImageError: If the pixel array is unusable
            ModelOutputError: If the network lacks required output tensors
        """
        rgb = to_rgb(image)
        height, width = rgb.shape[:2]
        if not self.load():
            return CandidateSet.empty(), width, height

        size = self.config.DETECTOR_INPUT_SIZE
        canvas, transform = letterbox(rgb, size)
        tensor = to_nchw_tensor(canvas, self.config.DETECTOR_CHANNEL_ORDER)
        outputs = self.session.run({self.session.input_names[0]: tensor})

        candidates = decode_outputs(
            outputs,
            strides=self.config.DETECTOR_STRIDES,
            input_size=size,
            transform=transform,
            score_floor=self.config.DECODE_SCORE_FLOOR,
        )
        return candidates, width, height

    def detect(self, image: np.ndarray, tuning: Optional[Tuning] = None) -> List[DetectedFace]:
        """Blocking detection; see :meth:`detect_faces`."""
        candidates, width, height = self.decode_raw(image)
        if len(candidates) == 0:
            return []

        tuning = tuning or auto_tune(width, height, self.config)
        selected = select_faces(candidates, tuning, width, height, self.config.MIN_FACE_PIXELS)

        faces = []
        for box, points, score in zip(selected.boxes, selected.landmarks, selected.scores):
            bounding_box = clip_box(box, width, height)
            if bounding_box is None:
                continue
            # Landmarks are left unclipped
            faces.append(
                DetectedFace(
                    bounding_box=bounding_box,
                    landmarks=Landmarks.from_array(points),
                    confidence=float(score),
                )
            )
        logger.debug(
            "Detected faces",
            candidates=len(candidates),
            faces=len(faces),
            width=width,
            height=height,
        )
        return faces

    async def detect_faces(
        self,
        image: np.ndarray,
        tuning: Optional[Tuning] = None,
    ) -> List[DetectedFace]:
        return await asyncio.to_thread(self.detect, image, tuning)

    def calibrate_sync(self, image: np.ndarray, expected_count: int) -> CalibrationResult:
        """Blocking calibration; see :meth:`calibrate`."""
        if expected_count < 0:
            raise CalibrationError(
                "Expected face count must not be negative",
                details={"expected_count": expected_count},
            )
        candidates, width, height = self.decode_raw(image)
        if not self.is_loaded:
            raise CalibrationError(
                "Detector model is not loaded",
                details={"error": self.last_error},
            )
        return calibrate(
            candidates,
            expected_count,
            width,
            height,
            min_face_pixels=self.config.MIN_FACE_PIXELS,
            score_floor=self.config.DECODE_SCORE_FLOOR,
            config=self.config,
        )

    async def calibrate(self, image: np.ndarray, expected_count: int) -> CalibrationResult:
        """
        Fit a tuning to a reference image with a known number of faces.

        The network runs once; only the filter and NMS stages are searched.

        Args:
            image: Reference pixel array
            expected_count: Number of faces the image contains

        Returns:
            CalibrationResult with the selected tuning

        Raises:
            CalibrationError: If the count is negative or the model is not loaded
            ModelOutputError: If the network lacks required output tensors
        """
        return await asyncio.to_thread(self.calibrate_sync, image, expected_count)
