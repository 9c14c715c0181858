"""Tests for the SFace embedder."""
import numpy as np
import pytest

from facetag.core.exceptions import TransformError
from facetag.domain.entities.face import Landmarks
from facetag.services.recognition.sface import SFaceEmbedder, cosine_similarity, l2_normalize
from facetag.services.runtime.registry import EMBEDDER, ModelRegistry
from facetag.services.runtime.session import OnnxModelSession

from fakes import FakeOrtSession, factory_for, make_face


def make_embedder(settings, raw):
    registry = ModelRegistry.from_settings(settings)
    fake = FakeOrtSession({"fc1": raw}, input_name="data")
    session = OnnxModelSession(registry.artifact(EMBEDDER), session_factory=factory_for(fake))
    return SFaceEmbedder(session, settings, registry), fake


def face_image():
    rng = np.random.default_rng(3)
    image = rng.integers(0, 256, size=(480, 640, 4), dtype=np.uint8)
    image[..., 3] = 255
    return image


class TestNormalization:
    """L2 normalization and cosine similarity."""

    def test_normalized_vector_has_unit_norm(self):
        vector = l2_normalize(np.arange(1, 129, dtype=np.float32))
        assert abs(np.linalg.norm(vector) - 1.0) < 1e-3
        assert vector.dtype == np.float32

    def test_near_zero_vector_is_returned_unchanged(self):
        vector = np.zeros(16, dtype=np.float32)
        np.testing.assert_array_equal(l2_normalize(vector), vector)

    def test_self_similarity_is_one(self):
        vector = l2_normalize(np.random.default_rng(0).normal(size=128))
        assert cosine_similarity(vector, vector) == pytest.approx(1.0, abs=1e-5)

    def test_similarity_is_bounded(self):
        rng = np.random.default_rng(1)
        for _ in range(20):
            a = l2_normalize(rng.normal(size=64))
            b = l2_normalize(rng.normal(size=64))
            assert -1.0 - 1e-5 <= cosine_similarity(a, b) <= 1.0 + 1e-5


class TestSFaceEmbedder:
    """Alignment plus inference against a fake network."""

    async def test_embedding_is_normalized(self, test_settings, model_files):
        raw = np.arange(128, dtype=np.float32).reshape(1, 128) - 40.0
        embedder, fake = make_embedder(test_settings, raw)

        embedding = await embedder.extract_embedding(face_image(), make_face())

        assert embedding.shape == (128,)
        assert abs(np.linalg.norm(embedding) - 1.0) < 1e-3
        tensor = fake.feeds[0]["data"]
        assert tensor.shape == (1, 3, 112, 112)
        assert tensor.max() <= 255.0

    async def test_missing_model_returns_empty_embedding(self, test_settings):
        embedder, _ = make_embedder(test_settings, np.ones((1, 128), dtype=np.float32))

        embedding = await embedder.extract_embedding(face_image(), make_face())

        assert embedding.size == 0
        assert not embedder.is_loaded

    async def test_degenerate_landmarks_raise(self, test_settings, model_files):
        embedder, _ = make_embedder(test_settings, np.ones((1, 128), dtype=np.float32))
        face = make_face().model_copy(update={"landmarks": Landmarks.from_array(np.zeros(10))})

        with pytest.raises(TransformError):
            await embedder.extract_embedding(face_image(), face)
