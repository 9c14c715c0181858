"""Model runtime package."""
from .registry import DETECTOR, EMBEDDER, ModelRegistry
from .session import OnnxModelSession, create_onnx_session

__all__ = ["DETECTOR", "EMBEDDER", "ModelRegistry", "OnnxModelSession", "create_onnx_session"]
