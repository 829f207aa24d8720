#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

"""
Storage behind the input/output descriptor blocks of a Config.

The TensorInfo arrays are ctypes allocations owned by this module; the
block only carries their address (``header.bufId``) and a typed pointer.
Keeping the owner here means an address handed to a caller never refers to
memory the garbage collector has already reclaimed.
"""

import ctypes
from typing import TYPE_CHECKING, Dict, List

from ie_wrapper.common import Config, InputOutputInfo, TensorInfo
from ie_wrapper.logger import Logger

if TYPE_CHECKING:
    from ie_wrapper.context import InferenceContext

logger = Logger()

# address -> owning ctypes array
_ALLOCATIONS: Dict[int, ctypes.Array] = {}


def _allocate(block: InputOutputInfo, count: int) -> None:
    if count == 0:
        _reset(block)
        return
    storage = (TensorInfo * count)()
    address = ctypes.addressof(storage)
    _ALLOCATIONS[address] = storage
    block.tensor = ctypes.cast(storage, ctypes.POINTER(TensorInfo))
    block.header.bufSize = ctypes.sizeof(storage)
    block.header.bufId = address
    block.numbers = count
    logger.debug(f"Allocated {count} tensor descriptors at {hex(address)}")


def _reset(block: InputOutputInfo) -> None:
    block.tensor = ctypes.POINTER(TensorInfo)()
    block.header.bufSize = 0
    block.header.bufId = 0
    block.numbers = 0


def free_block(block: InputOutputInfo) -> None:
    """Frees the storage of one block; an empty block is left as is."""
    if not block.tensor:
        _reset(block)
        return
    address = block.header.bufId or ctypes.addressof(block.tensor.contents)
    if _ALLOCATIONS.pop(address, None) is None:
        logger.debug(f"Descriptor storage at {hex(address)} is not owned here, detaching only")
    _reset(block)


def ensure_block(block: InputOutputInfo, count: int) -> bool:
    """
    Makes the block hold ``count`` zeroed descriptors.

    Returns True when storage was (re)allocated, False when the existing
    storage already matched.
    """
    if not block.tensor:
        _allocate(block, count)
        return count > 0
    if count != block.numbers:
        free_block(block)
        _allocate(block, count)
        return count > 0
    return False


def ensure(context: "InferenceContext", config: Config) -> None:
    ensure_block(config.inputInfos, context.get_input_count())
    ensure_block(config.outputInfos, context.get_output_count())


def release(config: Config) -> None:
    free_block(config.inputInfos)
    free_block(config.outputInfos)


def block_tensors(block: InputOutputInfo) -> List[TensorInfo]:
    """Descriptors of a block; each element shares memory with the block."""
    if not block.tensor:
        return []
    return [block.tensor[i] for i in range(block.numbers)]


def is_owned(address: int) -> bool:
    return address in _ALLOCATIONS
