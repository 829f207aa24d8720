#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

"""
Translation between the caller facing enumerations and the backend ones.

Every mapping is total: values outside the tables degrade to a sentinel
(CPU, UNSPECIFIED or ANY) instead of failing.
"""

from typing import Union

from ie_wrapper.backend.base import Device, Layout, Precision
from ie_wrapper.common import LayoutType, PrecisionType, TargetDevice

DEVICE_TABLE = {
    TargetDevice.DEFAULT: Device.DEFAULT,
    TargetDevice.BALANCED: Device.BALANCED,
    TargetDevice.CPU: Device.CPU,
    TargetDevice.GPU: Device.GPU,
    TargetDevice.FPGA: Device.FPGA,
    TargetDevice.MYRIAD: Device.MYRIAD,
    TargetDevice.HETERO: Device.HETERO,
}

PRECISION_TABLE = {
    PrecisionType.MIXED: Precision.MIXED,
    PrecisionType.FP32: Precision.FP32,
    PrecisionType.FP16: Precision.FP16,
    PrecisionType.Q78: Precision.Q78,
    PrecisionType.I16: Precision.I16,
    PrecisionType.U8: Precision.U8,
    PrecisionType.I8: Precision.I8,
    PrecisionType.U16: Precision.U16,
    PrecisionType.I32: Precision.I32,
    PrecisionType.CUSTOM: Precision.CUSTOM,
    PrecisionType.UNSPECIFIED: Precision.UNSPECIFIED,
}

LAYOUT_TABLE = {
    LayoutType.ANY: Layout.ANY,
    LayoutType.NCHW: Layout.NCHW,
    LayoutType.NHWC: Layout.NHWC,
    LayoutType.OIHW: Layout.OIHW,
    LayoutType.C: Layout.C,
    LayoutType.CHW: Layout.CHW,
    LayoutType.HW: Layout.HW,
    LayoutType.NC: Layout.NC,
    LayoutType.CN: Layout.CN,
    LayoutType.BLOCKED: Layout.BLOCKED,
}

_DEVICE_REVERSE = {v: k for k, v in DEVICE_TABLE.items()}
_PRECISION_REVERSE = {v: k for k, v in PRECISION_TABLE.items()}
_LAYOUT_REVERSE = {v: k for k, v in LAYOUT_TABLE.items()}


def device_from_id(device: Union[TargetDevice, int]) -> Device:
    return DEVICE_TABLE.get(device, Device.CPU)


def id_from_device(device: Union[Device, str]) -> TargetDevice:
    return _DEVICE_REVERSE.get(device, TargetDevice.CPU)


def precision_from_enum(precision: Union[PrecisionType, int]) -> Precision:
    return PRECISION_TABLE.get(precision, Precision.UNSPECIFIED)


def enum_from_precision(precision: Union[Precision, str]) -> PrecisionType:
    return _PRECISION_REVERSE.get(precision, PrecisionType.UNSPECIFIED)


def layout_from_enum(layout: Union[LayoutType, int]) -> Layout:
    return LAYOUT_TABLE.get(layout, Layout.ANY)


def enum_from_layout(layout: Union[Layout, str]) -> LayoutType:
    return _LAYOUT_REVERSE.get(layout, LayoutType.ANY)


def estimate_layout(rank: int) -> Layout:
    """Best guess layout from the number of dimensions."""
    if rank == 4:
        return Layout.NCHW
    elif rank == 2:
        return Layout.NC
    elif rank == 3:
        return Layout.CHW
    return Layout.ANY
