"""Tests for image utilities."""
import numpy as np
import pytest

from facetag.core.exceptions import InvalidImageError
from facetag.core.utils.image import letterbox, rgba_from_buffer, to_nchw_tensor, to_rgb


class TestImageUtils:
    def test_rgba_buffer_round_trip_shape(self):
        image = rgba_from_buffer(bytes(4 * 6 * 3), width=6, height=3)
        assert image.shape == (3, 6, 4)

    def test_rgba_buffer_size_mismatch(self):
        with pytest.raises(InvalidImageError):
            rgba_from_buffer(bytes(10), width=6, height=3)

    def test_to_rgb_drops_alpha(self):
        image = np.zeros((2, 2, 4), dtype=np.uint8)
        image[..., 0] = 200
        image[..., 3] = 17
        rgb = to_rgb(image)
        assert rgb.shape == (2, 2, 3)
        assert rgb[0, 0, 0] == 200

    def test_to_rgb_rejects_unsupported_shapes(self):
        with pytest.raises(InvalidImageError):
            to_rgb(np.zeros((2, 2, 2), dtype=np.uint8))

    def test_letterbox_centers_and_pads(self):
        image = np.full((100, 200, 3), 255, dtype=np.uint8)

        canvas, transform = letterbox(image, 320)

        assert canvas.shape == (320, 320, 3)
        assert transform.scale == pytest.approx(1.6)
        assert (transform.pad_x, transform.pad_y) == (0, 80)
        assert canvas[0, 0].tolist() == [0, 0, 0]
        assert canvas[160, 160].tolist() == [255, 255, 255]
        x, y = transform.to_source(np.array([320.0]), np.array([240.0]))
        assert (x[0], y[0]) == pytest.approx((200.0, 100.0))

    def test_nchw_tensor_keeps_raw_values(self):
        image = np.zeros((4, 4, 3), dtype=np.uint8)
        image[..., 2] = 250
        rgb = to_nchw_tensor(image)
        bgr = to_nchw_tensor(image, "bgr")
        assert rgb.shape == (1, 3, 4, 4)
        assert rgb[0, 2, 0, 0] == 250.0
        assert bgr[0, 0, 0, 0] == 250.0
