#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

"""
Interfaces of the execution backend the inference context drives.

The context never talks to a concrete runtime directly: it resolves a Plugin
for a device, reads a Network with the plugin's NetworkReader, compiles it
into an ExecutableNetwork and runs InferRequests. Blobs are numpy arrays
owned by the request.
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


class Device(StrEnum):
    DEFAULT = "DEFAULT"
    BALANCED = "BALANCED"
    CPU = "CPU"
    GPU = "GPU"
    FPGA = "FPGA"
    MYRIAD = "MYRIAD"
    HETERO = "HETERO"


class Precision(StrEnum):
    UNSPECIFIED = "UNSPECIFIED"
    MIXED = "MIXED"
    FP32 = "FP32"
    FP16 = "FP16"
    Q78 = "Q78"
    I16 = "I16"
    U8 = "U8"
    I8 = "I8"
    U16 = "U16"
    I32 = "I32"
    CUSTOM = "CUSTOM"


class Layout(StrEnum):
    ANY = "ANY"
    NCHW = "NCHW"
    NHWC = "NHWC"
    OIHW = "OIHW"
    C = "C"
    CHW = "CHW"
    HW = "HW"
    NC = "NC"
    CN = "CN"
    BLOCKED = "BLOCKED"


PRECISION_DTYPES = {
    Precision.FP32: np.float32,
    Precision.FP16: np.float16,
    Precision.Q78: np.int16,
    Precision.I16: np.int16,
    Precision.U8: np.uint8,
    Precision.I8: np.int8,
    Precision.U16: np.uint16,
    Precision.I32: np.int32,
}

DTYPE_PRECISIONS = {
    np.dtype(np.float32): Precision.FP32,
    np.dtype(np.float16): Precision.FP16,
    np.dtype(np.int16): Precision.I16,
    np.dtype(np.uint8): Precision.U8,
    np.dtype(np.int8): Precision.I8,
    np.dtype(np.uint16): Precision.U16,
    np.dtype(np.int32): Precision.I32,
}


def dtype_of(precision: Precision) -> Optional[type]:
    """Numpy element type of a precision; None for MIXED/CUSTOM/UNSPECIFIED."""
    return PRECISION_DTYPES.get(precision)


class ProfileStatus(Enum):
    NOT_RUN = 0
    OPTIMIZED_OUT = 1
    EXECUTED = 2


@dataclass
class ProfileInfo:
    """Timing of one layer (or one engine stage) in microseconds."""
    status: ProfileStatus
    layer_type: str
    real_time_us: int
    cpu_us: int
    exec_type: str


class DataInfo:
    """
    Mutable description of one network input or output.

    Precision and layout may be overridden by the user before the network is
    compiled; the shape follows the network's batch size.
    """

    def __init__(self, name: str, shape: Tuple[int, ...], precision: Precision,
                 layout: Layout = Layout.ANY, native_dtype: Optional[np.dtype] = None) -> None:
        self.name = name
        self.shape = tuple(int(d) for d in shape)
        self.precision = precision
        self.layout = layout
        # element type the backend itself computes in
        self.native_dtype = np.dtype(native_dtype) if native_dtype is not None else np.dtype(np.float32)

    def set_precision(self, precision: Precision) -> None:
        self.precision = Precision(precision)

    def set_layout(self, layout: Layout) -> None:
        self.layout = Layout(layout)

    def __repr__(self) -> str:
        return (f"DataInfo(name={self.name!r}, shape={self.shape}, "
                f"precision={self.precision}, layout={self.layout})")


class Network(ABC):
    """A model read from disk, not yet bound to a device."""

    @property
    @abstractmethod
    def inputs_info(self) -> "OrderedDict[str, DataInfo]":
        ...

    @property
    @abstractmethod
    def outputs_info(self) -> "OrderedDict[str, DataInfo]":
        ...

    @abstractmethod
    def set_batch_size(self, size: int) -> None:
        """Rewrites the leading dimension of every input and output."""
        ...

    @abstractmethod
    def get_batch_size(self) -> int:
        ...


class NetworkReader(ABC):
    """Reads a network from a structure file and a weights file."""

    STRUCTURE_SUFFIX = ".xml"
    WEIGHTS_SUFFIX = ".bin"

    @abstractmethod
    def read_network(self, path: str) -> None:
        ...

    @abstractmethod
    def read_weights(self, path: str) -> None:
        ...

    @abstractmethod
    def get_network(self) -> Network:
        ...


class InferRequest(ABC):
    """One in-flight inference; owns the blobs of every input and output."""

    @abstractmethod
    def get_blob(self, name: str) -> np.ndarray:
        """Returns the request's own buffer for ``name`` (no copy)."""
        ...

    @abstractmethod
    def infer(self) -> None:
        ...

    @abstractmethod
    def start_async(self) -> None:
        ...

    @abstractmethod
    def wait(self) -> None:
        """Blocks until the request started by start_async() is done."""
        ...

    @abstractmethod
    def get_performance_counts(self) -> Dict[str, ProfileInfo]:
        ...

    def close(self) -> None:
        """Releases worker resources; the request must not be used afterwards."""


class ExecutableNetwork(ABC):
    """A network compiled for one device."""

    @abstractmethod
    def create_infer_request(self) -> InferRequest:
        ...


class Plugin(ABC):
    """Binding of one device of the execution backend."""

    def __init__(self, device: Device, search_paths: Optional[List[str]] = None) -> None:
        self.device = device
        self.search_paths = list(search_paths or [])
        self.extensions: List["Extension"] = []
        self.config: Dict[str, Any] = {}

    def add_extension(self, extension: "Extension") -> None:
        """Attaches an extension; raises if it cannot be loaded."""
        extension.apply(self)
        self.extensions.append(extension)

    def set_config(self, config: Dict[str, Any]) -> None:
        self.config.update(config)

    @abstractmethod
    def create_network_reader(self) -> NetworkReader:
        ...

    @abstractmethod
    def load_network(self, network: Network, config: Optional[Dict[str, Any]] = None) -> ExecutableNetwork:
        ...

    @abstractmethod
    def get_performance_counts(self) -> Dict[str, ProfileInfo]:
        """Engine level counters of the last compiled network."""
        ...

    @property
    def name(self) -> str:
        """Plugin name for logging."""
        return f"{self.__class__.__name__}({self.device})"


class Extension(ABC):
    """Optional capability attached to a plugin before a network is loaded."""

    @abstractmethod
    def apply(self, plugin: Plugin) -> None:
        ...

    @property
    def name(self) -> str:
        return self.__class__.__name__
