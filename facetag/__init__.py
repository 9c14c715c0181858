"""On-device face detection, alignment, embedding and identity clustering."""

__version__ = "0.1.0"
