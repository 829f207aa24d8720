#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

from enum import IntEnum


class Status(IntEnum):
    """Outcome of an operation that fails softly (logged, no state change)."""
    OK = 0
    NOT_LOADED = 1
    NOT_CREATED = 2
    SIZE_MISMATCH = 3
    INDEX_OUT_OF_RANGE = 4
    NULL_BUFFER = 5
    DIMENSION_MISMATCH = 6
    EMPTY_PATH = 7
    PLUGIN_NOT_FOUND = 8
    EXTENSION_FAILED = 9
    UNSUPPORTED_FORMAT = 10

    def __bool__(self) -> bool:
        return self is Status.OK


class IEError(RuntimeError):
    """Base class of the errors raised by ie_wrapper."""


class IndexOutOfRangeError(IEError, IndexError):
    """An input/output index outside ``[0, count)``; a programming error."""

    def __init__(self, index: int, size: int, what: str = "tensor") -> None:
        super().__init__(f"{what} index {index} out of range [0, {size})")
        self.index = index
        self.size = size


class InvalidHandleError(IEError, KeyError):
    """A context handle that was never allocated or has already been freed."""


class BackendError(IEError):
    """The execution backend failed while compiling or running a model."""


def check_index(index: int, size: int, what: str = "tensor") -> None:
    if index < 0 or index >= size:
        raise IndexOutOfRangeError(index, size, what)
