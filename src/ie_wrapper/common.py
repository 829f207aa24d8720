#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

"""
Fixed-layout types shared with callers of the inference wrapper.

Field order and widths mirror the stable C header, so the structures can be
handed across a foreign function boundary unchanged.
"""

import ctypes
from enum import IntEnum, IntFlag
from typing import Optional, Sequence, Tuple

import numpy as np

from ie_wrapper.utils import ensure_contiguous

TENSOR_MAX_RANK = 12


class TargetDevice(IntEnum):
    DEFAULT = 0
    BALANCED = 1
    CPU = 2
    GPU = 3
    FPGA = 4
    MYRIAD = 5
    HETERO = 8


class PrecisionType(IntEnum):
    UNSPECIFIED = 255
    MIXED = 0
    FP32 = 10
    FP16 = 11
    Q78 = 20
    I16 = 30
    U8 = 40
    I8 = 50
    U16 = 60
    I32 = 70
    CUSTOM = 80


class LayoutType(IntEnum):
    ANY = 0
    # I/O data layouts
    NCHW = 1
    NHWC = 2
    # weight layouts
    OIHW = 64
    # bias layouts
    C = 96
    # single image layout
    CHW = 128
    # 2D
    HW = 192
    NC = 193
    CN = 194
    BLOCKED = 200


class MemoryType(IntEnum):
    DEVICE_DEFAULT = 0
    DEVICE_HOST = 1
    DEVICE_GPU = 2
    DEVICE_MYRIAD = 3
    DEVICE_SHARED = 4


class ImageFormat(IntEnum):
    UNKNOWN = -1
    BGR_PACKED = 0
    BGR_PLANAR = 1
    RGB_PACKED = 2
    RGB_PLANAR = 3
    GRAY_PLANAR = 4
    GENERIC_1D = 5
    GENERIC_2D = 6


class InferMode(IntEnum):
    SYNC = 0
    ASYNC = 1


class DataType(IntEnum):
    NON_IMG = 0
    IMG = 1


class LogFlag(IntFlag):
    NONE = 0x0
    ENGINE = 0x1
    LAYER = 0x2


class ExtBuf(ctypes.Structure):
    """Common header of every caller visible buffer: byte size and address."""
    _fields_ = [
        ("bufSize", ctypes.c_uint32),
        ("bufId", ctypes.c_size_t),
    ]


class ImageSize(ctypes.Structure):
    _fields_ = [
        ("width", ctypes.c_uint32),
        ("height", ctypes.c_uint32),
    ]


class TensorInfo(ctypes.Structure):
    """
    Shape, precision and layout of one tensor.

    ``dim[0]`` is the fastest varying extent (width), ``dim[1]`` the next one
    (height), ``dim[2]`` the channels and so on, i.e. the reverse of a numpy
    C-order shape. Entries at or beyond ``rank`` are undefined.
    """
    _fields_ = [
        ("rank", ctypes.c_uint32),
        ("dim", ctypes.c_uint32 * TENSOR_MAX_RANK),
        ("dimStride", ctypes.c_uint32 * TENSOR_MAX_RANK),
        ("precision", ctypes.c_int),
        ("layout", ctypes.c_int),
        ("dataType", ctypes.c_int),
    ]

    @property
    def shape(self) -> Tuple[int, ...]:
        """Numpy ordered shape described by ``rank`` and ``dim``."""
        return dims_to_shape(self.dim, self.rank)


class InputOutputInfo(ctypes.Structure):
    """Counted array of TensorInfo; ``header.bufId`` is the array address."""
    _fields_ = [
        ("header", ExtBuf),
        ("tensor", ctypes.POINTER(TensorInfo)),
        ("batchSize", ctypes.c_uint32),
        ("numbers", ctypes.c_uint32),
    ]


class Data(ctypes.Structure):
    """One input or output payload; ``header.bufId`` is the data address."""
    _fields_ = [
        ("header", ExtBuf),
        ("tensor", TensorInfo),
        ("batchIdx", ctypes.c_uint32),
        ("memType", ctypes.c_int),
        ("imageFormat", ctypes.c_int),
    ]


class Config(ctypes.Structure):
    _fields_ = [
        ("targetId", ctypes.c_int),
        ("inputInfos", InputOutputInfo),
        ("outputInfos", InputOutputInfo),
        ("pluginPath", ctypes.c_char_p),
        ("cpuExtPath", ctypes.c_char_p),      # extension library for CPU
        ("cldnnExtPath", ctypes.c_char_p),    # extension config for GPU
        ("modelFileName", ctypes.c_char_p),
        ("perfCounter", ctypes.c_uint32),
        ("inferReqNum", ctypes.c_uint32),
    ]


def dims_to_shape(dims: Sequence[int], rank: int) -> Tuple[int, ...]:
    if rank > TENSOR_MAX_RANK:
        raise ValueError(f"rank {rank} exceeds the maximum of {TENSOR_MAX_RANK}")
    return tuple(int(dims[i]) for i in reversed(range(rank)))


def shape_to_dims(shape: Sequence[int]) -> list:
    if len(shape) > TENSOR_MAX_RANK:
        raise ValueError(f"rank {len(shape)} exceeds the maximum of {TENSOR_MAX_RANK}")
    return [int(d) for d in reversed(shape)]


def decode_path(value: Optional[bytes]) -> str:
    """Turns a ``c_char_p`` field into ``str`` (``None`` becomes '')."""
    if not value:
        return ""
    return value.decode("utf-8")


def make_tensor_info(
    shape: Sequence[int],
    precision: PrecisionType = PrecisionType.FP32,
    layout: LayoutType = LayoutType.ANY,
    data_type: DataType = DataType.NON_IMG,
    strides: Optional[Sequence[int]] = None,
) -> TensorInfo:
    """
    Builds a TensorInfo from a numpy ordered shape.

    Args:
        shape: Extents, slowest varying first (numpy order).
        strides: Per dimension pitch in elements, numpy order. Defaults to
                 the extents themselves, meaning no padding.
    """
    info = TensorInfo()
    dims = shape_to_dims(shape)
    pitches = shape_to_dims(strides) if strides is not None else dims
    if len(pitches) != len(dims):
        raise ValueError("strides must have the same rank as shape")

    info.rank = len(dims)
    for i, (d, s) in enumerate(zip(dims, pitches)):
        info.dim[i] = d
        info.dimStride[i] = s
    info.precision = int(precision)
    info.layout = int(layout)
    info.dataType = int(data_type)
    return info


def make_data(
    array: np.ndarray,
    tensor: Optional[TensorInfo] = None,
    batch_idx: int = 0,
    image_format: ImageFormat = ImageFormat.UNKNOWN,
    mem_type: MemoryType = MemoryType.DEVICE_HOST,
) -> Data:
    """
    Wraps a numpy array into a Data block.

    The array is kept alive by the returned structure so ``header.bufId``
    stays valid for as long as the structure does.
    """
    if not isinstance(array, np.ndarray):
        raise TypeError("array must be a numpy.ndarray")
    if array.nbytes > 0xFFFFFFFF:
        raise ValueError(f"array of {array.nbytes} bytes does not fit the 32-bit size of a data buffer")
    array = ensure_contiguous(array)

    data = Data()
    data.header.bufSize = array.nbytes
    data.header.bufId = array.ctypes.data
    if tensor is not None:
        data.tensor = tensor
    data.batchIdx = batch_idx
    data.memType = int(mem_type)
    data.imageFormat = int(image_format)
    data._keepalive = array
    return data


def make_config(
    model_path: str,
    target: TargetDevice = TargetDevice.CPU,
    plugin_path: Optional[str] = None,
    cpu_ext_path: Optional[str] = None,
    gpu_ext_path: Optional[str] = None,
    perf_counter: bool = False,
    infer_req_num: int = 1,
) -> Config:
    config = Config()
    config.targetId = int(target)
    config.modelFileName = model_path.encode("utf-8") if model_path is not None else None
    config.pluginPath = plugin_path.encode("utf-8") if plugin_path else None
    config.cpuExtPath = cpu_ext_path.encode("utf-8") if cpu_ext_path else None
    config.cldnnExtPath = gpu_ext_path.encode("utf-8") if gpu_ext_path else None
    config.perfCounter = 1 if perf_counter else 0
    config.inferReqNum = infer_req_num
    return config
