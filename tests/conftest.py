"""Shared fixtures."""
import pytest

from facetag.core.config import Settings
from facetag.infrastructure.storage.memory import InMemoryIdentityStore, InMemoryScanQueueStore


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a temporary models directory."""
    return Settings(MODEL_DIR=str(tmp_path), ENVIRONMENT="test")


@pytest.fixture
def model_files(test_settings, tmp_path):
    """Placeholder model files so sessions pass the file-presence check."""
    detector = tmp_path / test_settings.DETECTOR_MODEL_FILE
    embedder = tmp_path / test_settings.EMBEDDER_MODEL_FILE
    detector.write_bytes(b"onnx")
    embedder.write_bytes(b"onnx")
    return detector, embedder


@pytest.fixture
def identity_store():
    return InMemoryIdentityStore()


@pytest.fixture
def scan_queue_store():
    return InMemoryScanQueueStore()
