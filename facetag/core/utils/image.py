"""
Image processing utility functions.
"""
from typing import NamedTuple, Tuple

import cv2
import numpy as np

from facetag.core.exceptions import InvalidImageError


class LetterboxTransform(NamedTuple):
    """Mapping between letterboxed network input and source image pixels."""
    scale: float
    pad_x: int
    pad_y: int

    def to_source(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Map letterboxed coordinates back to source-image pixel space."""
        return (x - self.pad_x) / self.scale, (y - self.pad_y) / self.scale


def rgba_from_buffer(buffer: bytes, width: int, height: int) -> np.ndarray:
    """Wrap a raw RGBA pixel buffer as an (H, W, 4) uint8 array.

    Args:
        buffer: Raw RGBA bytes, row-major, 4 bytes per pixel
        width: Image width in pixels
        height: Image height in pixels

    Returns:
        numpy.ndarray: Image as an (H, W, 4) array

    Raises:
        InvalidImageError: If the buffer size does not match the dimensions
    """
    if width <= 0 or height <= 0:
        raise InvalidImageError(
            "Image dimensions must be positive",
            details={"width": width, "height": height},
        )
    expected = width * height * 4
    if len(buffer) != expected:
        raise InvalidImageError(
            "RGBA buffer size does not match dimensions",
            details={"expected": expected, "actual": len(buffer)},
        )
    return np.frombuffer(buffer, dtype=np.uint8).reshape(height, width, 4)


def to_rgb(image: np.ndarray) -> np.ndarray:
    """Convert an RGBA, RGB or grayscale array to contiguous uint8 RGB.

    Raises:
        InvalidImageError: If the array is empty or has an unsupported shape
    """
    arr = np.asarray(image)
    if arr.size == 0:
        raise InvalidImageError("Image is empty")
    if arr.ndim == 2:
        arr = cv2.cvtColor(arr.astype(np.uint8, copy=False), cv2.COLOR_GRAY2RGB)
    elif arr.ndim == 3 and arr.shape[2] == 4:
        arr = cv2.cvtColor(arr.astype(np.uint8, copy=False), cv2.COLOR_RGBA2RGB)
    elif not (arr.ndim == 3 and arr.shape[2] == 3):
        raise InvalidImageError(
            "Unsupported image shape",
            details={"shape": tuple(arr.shape)},
        )
    return np.ascontiguousarray(arr.astype(np.uint8, copy=False))


def letterbox(image: np.ndarray, size: int) -> Tuple[np.ndarray, LetterboxTransform]:
    """Resize with aspect preservation onto a centered, black-padded square canvas.

    Args:
        image: RGB image (H, W, 3)
        size: Side length of the square network input

    Returns:
        Tuple of the (size, size, 3) canvas and the transform back to source pixels
    """
    height, width = image.shape[:2]
    scale = min(size / width, size / height)
    new_width = max(1, int(round(width * scale)))
    new_height = max(1, int(round(height * scale)))

    resized = cv2.resize(image, (new_width, new_height), interpolation=cv2.INTER_CUBIC)

    pad_x = (size - new_width) // 2
    pad_y = (size - new_height) // 2
    canvas = np.zeros((size, size, 3), dtype=np.uint8)
    canvas[pad_y:pad_y + new_height, pad_x:pad_x + new_width] = resized

    return canvas, LetterboxTransform(scale=scale, pad_x=pad_x, pad_y=pad_y)


def to_nchw_tensor(image: np.ndarray, channel_order: str = "rgb") -> np.ndarray:
    """Convert an RGB uint8 image to a float32 (1, 3, H, W) tensor of raw 0-255 values."""
    if channel_order.lower() == "bgr":
        image = image[:, :, ::-1]
    tensor = np.transpose(image.astype(np.float32), (2, 0, 1))[np.newaxis, ...]
    return np.ascontiguousarray(tensor)
