"""Tests for the multi-stride tensor decoder."""
import numpy as np
import pytest

from facetag.core.exceptions import ModelOutputError
from facetag.core.utils.image import LetterboxTransform
from facetag.services.detection.decoder import (
    CandidateSet,
    DecodeStrategy,
    decode_outputs,
    required_output_names,
)
from facetag.services.detection.geometry import score_face_geometry

from fakes import (
    FACE_BOX,
    FACE_LANDMARKS,
    INPUT_SIZE,
    STRIDES,
    empty_detector_outputs,
    encode_absolute,
    encode_delta_exp,
    encode_ltrb_pixels,
    encode_ltrb_stride,
    place_face,
    single_face_outputs,
)

IDENTITY = LetterboxTransform(scale=1.0, pad_x=0, pad_y=0)


def decode(outputs, transform=IDENTITY, floor=0.05):
    return decode_outputs(outputs, STRIDES, INPUT_SIZE, transform, floor)


class TestDecodeOutputs:
    """Decoding, hypothesis selection and coordinate mapping."""

    def test_required_names_cover_every_stride(self):
        names = required_output_names((8, 16))
        assert names == ["cls_8", "obj_8", "bbox_8", "kps_8", "cls_16", "obj_16", "bbox_16", "kps_16"]

    def test_stride_scaled_ltrb_face_is_recovered(self):
        candidates = decode(single_face_outputs())

        assert len(candidates) == 1
        raw = candidates.candidates()[0]
        assert raw.strategy == DecodeStrategy.CENTER_LTRB_STRIDE
        assert raw.stride == 16
        np.testing.assert_allclose(raw.box, FACE_BOX, atol=1e-4)
        np.testing.assert_allclose(raw.landmarks, FACE_LANDMARKS, atol=1e-4)
        assert raw.geometry > 0.8

    def test_score_is_product_of_sigmoids(self):
        candidates = decode(single_face_outputs(logit=4.0))
        expected = (1.0 / (1.0 + np.exp(-4.0))) ** 2
        assert candidates.scores[0] == pytest.approx(expected)

    def test_delta_exp_face_is_recovered(self):
        reg, kps = encode_delta_exp(FACE_BOX, FACE_LANDMARKS, 16, row=7, col=8)
        outputs = place_face(empty_detector_outputs(), 16, 7, 8, reg, kps)

        candidates = decode(outputs)

        assert len(candidates) == 1
        raw = candidates.candidates()[0]
        assert raw.strategy == DecodeStrategy.CENTER_DELTA_EXP
        np.testing.assert_allclose(raw.box, FACE_BOX, atol=1e-4)

    def test_absolute_xywh_face_is_recovered(self):
        reg, kps = encode_absolute(FACE_BOX, FACE_LANDMARKS)
        outputs = place_face(empty_detector_outputs(), 16, 7, 8, reg, kps)

        candidates = decode(outputs)

        assert len(candidates) == 1
        raw = candidates.candidates()[0]
        assert raw.strategy == DecodeStrategy.ABSOLUTE_XYWH
        np.testing.assert_allclose(raw.box, FACE_BOX, atol=1e-4)
        np.testing.assert_allclose(raw.landmarks, FACE_LANDMARKS, atol=1e-4)

    def test_pixel_ltrb_face_is_recovered(self):
        reg, kps = encode_ltrb_pixels(FACE_BOX, FACE_LANDMARKS, 16, row=7, col=8)
        outputs = place_face(empty_detector_outputs(), 16, 7, 8, reg, kps)

        candidates = decode(outputs)

        assert len(candidates) == 1
        raw = candidates.candidates()[0]
        assert raw.strategy == DecodeStrategy.CENTER_LTRB_PIXELS
        np.testing.assert_allclose(raw.box, FACE_BOX, atol=1e-4)
        np.testing.assert_allclose(raw.landmarks, FACE_LANDMARKS, atol=1e-4)

    def test_equal_geometry_prefers_box_near_stride_face_size(self):
        # Centered on cell (4, 5) of stride 32, whose center is (160, 128)
        box = (128.0, 88.0, 64.0, 80.0)
        landmarks = np.asarray(FACE_LANDMARKS) + np.tile([32.0, 8.0], 5)
        reg, kps = encode_ltrb_stride(box, landmarks, 32, row=4, col=5)
        outputs = place_face(empty_detector_outputs(), 32, 4, 5, reg, kps)

        candidates = decode(outputs)

        assert len(candidates) == 1
        raw = candidates.candidates()[0]
        assert raw.strategy == DecodeStrategy.CENTER_LTRB_STRIDE
        np.testing.assert_allclose(raw.box, box, atol=1e-4)
        # The pixel reading is the same face shrunk 32x about the cell center
        pixel_box = (160.0 - reg[0], 128.0 - reg[1], reg[0] + reg[2], reg[1] + reg[3])
        pixel_landmarks = kps + np.tile([160.0, 128.0], 5)
        assert score_face_geometry(pixel_box, pixel_landmarks) == pytest.approx(raw.geometry)

    def test_boxes_are_mapped_back_to_source_pixels(self):
        transform = LetterboxTransform(scale=0.5, pad_x=0, pad_y=40)
        candidates = decode(single_face_outputs(), transform=transform)

        x, y, w, h = candidates.boxes[0]
        assert (x, y, w, h) == pytest.approx((192.0, 80.0, 128.0, 160.0))
        assert candidates.landmarks[0][0] == pytest.approx(FACE_LANDMARKS[0] / 0.5)
        assert candidates.landmarks[0][1] == pytest.approx((FACE_LANDMARKS[1] - 40) / 0.5)

    def test_cells_below_score_floor_are_skipped(self):
        assert len(decode(single_face_outputs(logit=-4.0))) == 0

    def test_empty_outputs_decode_to_nothing(self):
        candidates = decode(empty_detector_outputs())
        assert isinstance(candidates, CandidateSet)
        assert len(candidates) == 0

    def test_implausible_regression_is_discarded(self):
        reg = np.array([1e6, 1e6, 1e6, 1e6])
        kps = np.full(10, 1e6)
        outputs = place_face(empty_detector_outputs(), 16, 7, 8, reg, kps)
        assert len(decode(outputs)) == 0

    def test_missing_tensor_fails_fast(self):
        outputs = single_face_outputs()
        del outputs["obj_32"]

        with pytest.raises(ModelOutputError) as exc_info:
            decode(outputs)
        assert "obj_32" in exc_info.value.details["missing"]

    def test_grid_mismatch_fails_fast(self):
        outputs = empty_detector_outputs()
        outputs["cls_8"] = np.zeros((1, 10, 1), dtype=np.float32)

        with pytest.raises(ModelOutputError):
            decode(outputs)

    def test_tensor_names_match_case_insensitively(self):
        outputs = {name.upper(): value for name, value in single_face_outputs().items()}
        assert len(decode(outputs)) == 1

    def test_candidate_set_concat_and_select(self):
        candidates = decode(single_face_outputs())
        merged = CandidateSet.concat([candidates, CandidateSet.empty(), candidates])
        assert len(merged) == 2
        assert len(merged.select(np.array([1]))) == 1
