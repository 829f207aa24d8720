#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

"""
Conversion of caller buffers into backend blobs.

Images are always read as 8-bit samples and written planar (C, H, W) into
the blob at ``batch_index * H * W * C``. Non-image data is copied flat.
The element type written is chosen once per call from the declared
precision (see ElementTrait).
"""

from dataclasses import dataclass

import numpy as np
from numpy.lib.stride_tricks import as_strided

from ie_wrapper.buffers import BufferView
from ie_wrapper.common import TENSOR_MAX_RANK, ImageFormat, PrecisionType, TensorInfo
from ie_wrapper.logger import Logger
from ie_wrapper.status import Status

logger = Logger()

MEAN_VALUE = 127.5
SCALE_VALUE = 0.0078125

PLANAR_FORMATS = (ImageFormat.BGR_PLANAR, ImageFormat.RGB_PLANAR, ImageFormat.GRAY_PLANAR)
PACKED_FORMATS = (ImageFormat.BGR_PACKED, ImageFormat.RGB_PACKED)
RGB_FORMATS = (ImageFormat.RGB_PLANAR, ImageFormat.RGB_PACKED)


@dataclass(frozen=True)
class ElementTrait:
    precision: PrecisionType
    dtype: type
    is_float: bool

    @property
    def width(self) -> int:
        return np.dtype(self.dtype).itemsize


ELEMENT_TRAITS = {
    PrecisionType.FP32: ElementTrait(PrecisionType.FP32, np.float32, True),
    PrecisionType.FP16: ElementTrait(PrecisionType.FP16, np.float16, True),
    PrecisionType.U8: ElementTrait(PrecisionType.U8, np.uint8, False),
    PrecisionType.I8: ElementTrait(PrecisionType.I8, np.int8, False),
    PrecisionType.I16: ElementTrait(PrecisionType.I16, np.int16, False),
    PrecisionType.U16: ElementTrait(PrecisionType.U16, np.uint16, False),
    PrecisionType.I32: ElementTrait(PrecisionType.I32, np.int32, False),
}


def element_trait(precision) -> ElementTrait:
    """Element trait of a precision tag; anything unknown is treated as bytes."""
    return ELEMENT_TRAITS.get(precision, ELEMENT_TRAITS[PrecisionType.U8])


def element_count(tensor: TensorInfo) -> int:
    """Number of elements of one sample: the product of every declared extent."""
    count = 1
    for i in range(tensor.rank):
        count *= tensor.dim[i]
    return count


def _planar_source(src: np.ndarray, tensor: TensorInfo, channels: int, height: int, width: int):
    stride_w, stride_h = tensor.dimStride[0], tensor.dimStride[1]
    image_size = width * height
    plane_size = stride_w * stride_h
    required = (channels - 1) * plane_size + (height - 1) * stride_w + width
    if src.size < required:
        return None

    if width == stride_w and height == stride_h:
        return src[:image_size * channels].reshape(channels, image_size)
    elif width == stride_w:
        return np.stack([src[ch * plane_size: ch * plane_size + image_size] for ch in range(channels)])
    # padded rows: one run of ``width`` samples per row and channel
    rows = as_strided(src, shape=(channels, height, width), strides=(plane_size, stride_w, 1), writeable=False)
    return rows.reshape(channels, image_size)


def _packed_source(src: np.ndarray, tensor: TensorInfo, channels: int, height: int, width: int):
    pixel_pitch = tensor.dim[2] if tensor.rank >= 3 else channels
    if pixel_pitch < channels:
        return None
    row_stride = pixel_pitch * tensor.dimStride[0]
    required = (height - 1) * row_stride + (width - 1) * pixel_pitch + channels
    if src.size < required:
        return None

    pixels = as_strided(src, shape=(height, width, channels), strides=(row_stride, pixel_pitch, 1), writeable=False)
    return pixels.transpose(2, 0, 1).reshape(channels, height * width)


def image_to_blob(source: BufferView, tensor: TensorInfo, image_format: ImageFormat,
                  blob: np.ndarray, batch_index: int, trait: ElementTrait) -> Status:
    """
    Copies one 8-bit image into the planar blob of a model input.

    Planar sources are copied unchanged (only cast to the element type).
    Packed sources are de-interleaved and, for floating point elements,
    rescaled with ``(x - 127.5) * 0.0078125``. RGB sources are written with
    the channel order reversed so the blob always holds BGR planes.
    """
    if blob.ndim < 3:
        logger.error(f"Image input needs a blob of rank >= 3, got shape {blob.shape}")
        return Status.DIMENSION_MISMATCH

    channels, height, width = blob.shape[-3:]
    if width != tensor.dim[0] or height != tensor.dim[1]:
        logger.error("Input Image size is not matched with model!")
        return Status.DIMENSION_MISMATCH
    if tensor.dimStride[0] < width or (image_format in PLANAR_FORMATS and tensor.dimStride[1] < height):
        logger.error("Input Image stride is smaller than the image size!")
        return Status.DIMENSION_MISMATCH

    image_size = width * height
    batch_offset = batch_index * image_size * channels
    dest = blob.reshape(-1)
    if batch_offset + image_size * channels > dest.size:
        logger.error(f"Batch index {batch_index} does not fit into blob of shape {blob.shape}")
        return Status.SIZE_MISMATCH

    src = source.bytes
    if image_format in PLANAR_FORMATS:
        planes = _planar_source(src, tensor, channels, height, width)
    elif image_format in PACKED_FORMATS:
        planes = _packed_source(src, tensor, channels, height, width)
    else:
        logger.error(f"Image format {int(image_format)} is not supported")
        return Status.UNSUPPORTED_FORMAT

    if planes is None:
        logger.error(f"Input buffer of {source.nbytes} bytes is too small for a "
                     f"{channels}x{height}x{width} image with the given strides")
        return Status.SIZE_MISMATCH

    if image_format in RGB_FORMATS:
        planes = planes[::-1]

    if image_format in PACKED_FORMATS and trait.is_float:
        values = ((planes.astype(np.float32) - MEAN_VALUE) * SCALE_VALUE).astype(trait.dtype)
    else:
        values = planes.astype(trait.dtype)

    dest[batch_offset:batch_offset + image_size * channels] = values.reshape(-1)
    return Status.OK


def non_image_to_blob(source: BufferView, tensor: TensorInfo, blob: np.ndarray,
                      batch_index: int, trait: ElementTrait) -> Status:
    """Copies ``element_count(tensor)`` elements to ``batch_index * count`` of the blob."""
    if tensor.rank == 0 or tensor.rank > TENSOR_MAX_RANK:
        logger.error(f"Invalid tensor rank {tensor.rank}")
        return Status.DIMENSION_MISMATCH

    count = element_count(tensor)
    batch_offset = batch_index * count
    dest = blob.reshape(-1)
    if batch_offset + count > dest.size:
        logger.error(f"{count} elements at batch index {batch_index} do not fit into blob of shape {blob.shape}")
        return Status.SIZE_MISMATCH

    try:
        values = source.as_elements(trait.dtype, count)
    except ValueError as e:
        logger.error(f"Input buffer is too small: {str(e)}")
        return Status.SIZE_MISMATCH

    dest[batch_offset:batch_offset + count] = values
    return Status.OK
