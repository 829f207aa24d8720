#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

"""
Owned, length-checked views over caller and backend memory.

The boundary structures describe memory as ``(bufSize, bufId)`` pairs; these
classes turn such a pair into a numpy view right away so that no code past
the boundary does address arithmetic of its own.
"""

import ctypes
from typing import Optional

import numpy as np

from ie_wrapper.common import ExtBuf


class BufferView:
    """
    Read-only byte view of a caller buffer.

    The view never outlives the owner it was created from: ``owner`` keeps a
    numpy array alive, a raw address is trusted to be valid for the duration
    of the call that received it.
    """

    def __init__(self, data: np.ndarray, owner: Optional[object] = None) -> None:
        if data.dtype != np.uint8 or data.ndim != 1:
            raise ValueError("BufferView expects a flat uint8 array")
        self._data = data
        self._owner = owner

    @classmethod
    def from_array(cls, array: np.ndarray) -> "BufferView":
        array = np.ascontiguousarray(array)
        return cls(array.reshape(-1).view(np.uint8), owner=array)

    @classmethod
    def from_ext_buf(cls, header: ExtBuf) -> Optional["BufferView"]:
        """Returns None for a null address or an empty buffer."""
        if not header.bufId or not header.bufSize:
            return None
        raw = (ctypes.c_uint8 * header.bufSize).from_address(header.bufId)
        return cls(np.ctypeslib.as_array(raw), owner=raw)

    @property
    def nbytes(self) -> int:
        return self._data.nbytes

    @property
    def bytes(self) -> np.ndarray:
        return self._data

    def as_elements(self, dtype, count: Optional[int] = None, offset: int = 0) -> np.ndarray:
        """
        Reinterprets the bytes as ``count`` elements of ``dtype``.

        Raises:
            ValueError: the buffer is shorter than requested.
        """
        itemsize = np.dtype(dtype).itemsize
        available = (self.nbytes - offset * itemsize) // itemsize
        if count is None:
            count = available
        if offset < 0 or count < 0 or count > available:
            raise ValueError(f"buffer of {self.nbytes} bytes cannot hold {count} elements "
                             f"of {np.dtype(dtype)} at offset {offset}")
        start = offset * itemsize
        return self._data[start:start + count * itemsize].view(dtype)


class OutputBuffer:
    """
    View of one result blob of the execution backend.

    No copy is made and ownership stays with the backend: the contents and
    the address are valid only until the next forward call.
    """

    def __init__(self, blob: np.ndarray) -> None:
        self._blob = blob

    @property
    def array(self) -> np.ndarray:
        view = self._blob.view()
        view.flags.writeable = False
        return view

    @property
    def address(self) -> int:
        return self._blob.ctypes.data

    @property
    def nbytes(self) -> int:
        return self._blob.nbytes

    def __repr__(self) -> str:
        return (f"OutputBuffer(shape={self._blob.shape}, dtype={self._blob.dtype}, "
                f"nbytes={self.nbytes}, address={hex(self.address)})")
