#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

import numpy as np
import pytest

from ie_wrapper.buffers import BufferView
from ie_wrapper.common import DataType, ImageFormat, PrecisionType, make_tensor_info
from ie_wrapper.marshaler import (
    MEAN_VALUE,
    SCALE_VALUE,
    element_count,
    element_trait,
    image_to_blob,
    non_image_to_blob,
)
from ie_wrapper.status import Status

FP32 = element_trait(PrecisionType.FP32)
U8 = element_trait(PrecisionType.U8)


def image_tensor(channels, height, width, strides=None):
    return make_tensor_info((channels, height, width), data_type=DataType.IMG, strides=strides)


def byte_source(values):
    return BufferView.from_array(np.array(values, dtype=np.uint8))


def test_planar_copy_is_not_normalized():
    blob = np.zeros((1, 1, 2, 2), dtype=np.float32)
    status = image_to_blob(byte_source([1, 2, 3, 4]), image_tensor(1, 2, 2), ImageFormat.GRAY_PLANAR, blob, 0, FP32)

    assert status == Status.OK
    np.testing.assert_array_equal(blob.reshape(-1), [1, 2, 3, 4])


def test_packed_copy_rescales_float_elements():
    blob = np.zeros((1, 3, 1, 1), dtype=np.float32)
    status = image_to_blob(byte_source([127, 127, 127]), image_tensor(3, 1, 1), ImageFormat.BGR_PACKED, blob, 0, FP32)

    assert status == Status.OK
    expected = (127 - MEAN_VALUE) * SCALE_VALUE
    assert expected == pytest.approx(-0.0039, abs=1e-4)
    np.testing.assert_allclose(blob.reshape(-1), [expected] * 3)


def test_packed_copy_keeps_integer_elements():
    blob = np.zeros((1, 3, 1, 1), dtype=np.uint8)
    status = image_to_blob(byte_source([127, 127, 127]), image_tensor(3, 1, 1), ImageFormat.BGR_PACKED, blob, 0, U8)

    assert status == Status.OK
    np.testing.assert_array_equal(blob.reshape(-1), [127, 127, 127])


def test_packed_copy_deinterleaves_channels():
    # 1 row of 2 pixels: (b, g, r) = (1, 2, 3), (4, 5, 6)
    blob = np.zeros((1, 3, 1, 2), dtype=np.uint8)
    status = image_to_blob(byte_source([1, 2, 3, 4, 5, 6]), image_tensor(3, 1, 2), ImageFormat.BGR_PACKED, blob, 0, U8)

    assert status == Status.OK
    np.testing.assert_array_equal(blob[0], [[[1, 4]], [[2, 5]], [[3, 6]]])


@pytest.mark.parametrize("image_format, source", [
    (ImageFormat.RGB_PLANAR, [1, 2, 3, 4, 5, 6]),
    (ImageFormat.RGB_PACKED, [1, 3, 5, 2, 4, 6]),
])
def test_rgb_sources_are_written_as_bgr(image_format, source):
    # red plane [1, 2], green [3, 4], blue [5, 6]
    blob = np.zeros((1, 3, 1, 2), dtype=np.uint8)
    status = image_to_blob(byte_source(source), image_tensor(3, 1, 2), image_format, blob, 0, U8)

    assert status == Status.OK
    np.testing.assert_array_equal(blob[0].reshape(3, 2), [[5, 6], [3, 4], [1, 2]])


def test_planar_copy_skips_row_padding():
    blob = np.zeros((1, 1, 2, 2), dtype=np.float32)
    tensor = image_tensor(1, 2, 2, strides=(1, 2, 3))
    status = image_to_blob(byte_source([1, 2, 99, 3, 4, 99]), tensor, ImageFormat.GRAY_PLANAR, blob, 0, FP32)

    assert status == Status.OK
    np.testing.assert_array_equal(blob.reshape(-1), [1, 2, 3, 4])


def test_planar_copy_skips_plane_padding():
    blob = np.zeros((1, 2, 1, 2), dtype=np.float32)
    tensor = image_tensor(2, 1, 2, strides=(2, 2, 2))
    status = image_to_blob(byte_source([1, 2, 99, 99, 3, 4]), tensor, ImageFormat.BGR_PLANAR, blob, 0, FP32)

    assert status == Status.OK
    np.testing.assert_array_equal(blob.reshape(-1), [1, 2, 3, 4])


def test_image_batch_offset():
    blob = np.zeros((4, 1, 2, 2), dtype=np.float32)
    status = image_to_blob(byte_source([1, 2, 3, 4]), image_tensor(1, 2, 2), ImageFormat.GRAY_PLANAR, blob, 2, FP32)

    assert status == Status.OK
    flat = blob.reshape(-1)
    np.testing.assert_array_equal(flat[8:12], [1, 2, 3, 4])
    assert not flat[:8].any() and not flat[12:].any()


def test_image_batch_overflow_writes_nothing():
    blob = np.zeros((4, 1, 2, 2), dtype=np.float32)
    status = image_to_blob(byte_source([1, 2, 3, 4]), image_tensor(1, 2, 2), ImageFormat.GRAY_PLANAR, blob, 4, FP32)

    assert status == Status.SIZE_MISMATCH
    assert not blob.any()


@pytest.mark.parametrize("image_format", [ImageFormat.GENERIC_1D, ImageFormat.GENERIC_2D, ImageFormat.UNKNOWN, 42])
def test_unsupported_formats_are_rejected(image_format):
    blob = np.zeros((1, 1, 2, 2), dtype=np.float32)
    status = image_to_blob(byte_source([1, 2, 3, 4]), image_tensor(1, 2, 2), image_format, blob, 0, FP32)

    assert status == Status.UNSUPPORTED_FORMAT
    assert not blob.any()


def test_image_size_mismatch_writes_nothing():
    blob = np.zeros((1, 1, 2, 2), dtype=np.float32)
    status = image_to_blob(byte_source(range(6)), image_tensor(1, 2, 3), ImageFormat.GRAY_PLANAR, blob, 0, FP32)

    assert status == Status.DIMENSION_MISMATCH
    assert not blob.any()


def test_short_image_buffer_writes_nothing():
    blob = np.zeros((1, 3, 2, 2), dtype=np.float32)
    status = image_to_blob(byte_source([1, 2, 3]), image_tensor(3, 2, 2), ImageFormat.BGR_PACKED, blob, 0, FP32)

    assert status == Status.SIZE_MISMATCH
    assert not blob.any()


def test_non_image_copy_uses_every_dimension():
    tensor = make_tensor_info((2, 3), PrecisionType.FP32)
    assert element_count(tensor) == 6

    blob = np.zeros((2, 2, 3), dtype=np.float32)
    values = np.arange(1, 7, dtype=np.float32)
    status = non_image_to_blob(BufferView.from_array(values), tensor, blob, 1, FP32)

    assert status == Status.OK
    np.testing.assert_array_equal(blob[0], np.zeros((2, 3)))
    np.testing.assert_array_equal(blob[1].reshape(-1), values)


def test_non_image_copy_casts_to_the_blob_type():
    tensor = make_tensor_info((4,), PrecisionType.U8)
    blob = np.zeros((1, 4), dtype=np.float32)
    status = non_image_to_blob(byte_source([1, 2, 3, 4]), tensor, blob, 0, U8)

    assert status == Status.OK
    np.testing.assert_array_equal(blob, [[1.0, 2.0, 3.0, 4.0]])


def test_non_image_short_buffer_writes_nothing():
    tensor = make_tensor_info((2, 3), PrecisionType.FP32)
    blob = np.zeros((1, 2, 3), dtype=np.float32)
    status = non_image_to_blob(BufferView.from_array(np.ones(5, dtype=np.float32)), tensor, blob, 0, FP32)

    assert status == Status.SIZE_MISMATCH
    assert not blob.any()


def test_non_image_rank_zero_is_rejected():
    tensor = make_tensor_info((), PrecisionType.FP32)
    blob = np.zeros((1, 4), dtype=np.float32)
    status = non_image_to_blob(BufferView.from_array(np.ones(4, dtype=np.float32)), tensor, blob, 0, FP32)

    assert status == Status.DIMENSION_MISMATCH


def test_element_trait_defaults_to_bytes():
    assert element_trait(PrecisionType.FP32).dtype == np.float32
    assert element_trait(PrecisionType.FP32).width == 4
    assert element_trait(PrecisionType.FP16).is_float
    assert element_trait(PrecisionType.Q78).dtype == np.uint8
    assert element_trait(12345).dtype == np.uint8
