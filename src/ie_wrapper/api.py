#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

"""
Handle based entry points.

Every function here mirrors one entry point of the stable C interface: the
context travels as an opaque integer handle and all descriptors are the
fixed-layout structures of ``ie_wrapper.common``. Handles are resolved
through a registry that owns the contexts, so a freed or unknown handle is
reported as InvalidHandleError instead of touching released memory.
"""

import itertools
import sys
import threading
from typing import Dict, Optional, Tuple

from ie_wrapper import descriptor_store
from ie_wrapper.common import Config, Data, ImageSize, InferMode, InputOutputInfo, LogFlag
from ie_wrapper.context import InferenceContext
from ie_wrapper.logger import Logger
from ie_wrapper.status import InvalidHandleError, Status

logger = Logger()


class ContextRegistry:
    """Owns every context reachable through a handle."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._contexts: Dict[int, InferenceContext] = {}
        self._next_handle = itertools.count(1)

    def add(self, context: InferenceContext) -> int:
        with self._lock:
            handle = next(self._next_handle)
            self._contexts[handle] = context
        logger.debug(f"Context handle {handle} allocated")
        return handle

    def get(self, handle: int) -> InferenceContext:
        with self._lock:
            context = self._contexts.get(handle)
        if context is None:
            raise InvalidHandleError(f"Unknown context handle: {handle}")
        return context

    def remove(self, handle: int) -> InferenceContext:
        with self._lock:
            context = self._contexts.pop(handle, None)
        if context is None:
            raise InvalidHandleError(f"Unknown context handle: {handle}")
        logger.debug(f"Context handle {handle} freed")
        return context

    def __contains__(self, handle: int) -> bool:
        with self._lock:
            return handle in self._contexts

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)


registry = ContextRegistry()


def allocate_context() -> int:
    return registry.add(InferenceContext())


def allocate_context_with_config(config: Config) -> int:
    """Allocates a context and loads the model named by ``config``."""
    return registry.add(InferenceContext(config))


def free_context(handle: int, config: Optional[Config] = None) -> None:
    """Disposes the context; the descriptor blocks of ``config`` are released too."""
    context = registry.remove(handle)
    if config is not None:
        descriptor_store.release(config)
    context.dispose()


def allocate_input_output_info(handle: int, config: Config) -> Status:
    """Sizes both descriptor blocks of ``config`` to the model and fills them."""
    context = registry.get(handle)
    if not context.is_loaded:
        logger.error("Please load the model firstly!")
        return Status.NOT_LOADED

    descriptor_store.ensure(context, config)
    status = context.get_input_info_block(config.inputInfos)
    if status != Status.OK:
        return status
    return context.get_output_info_block(config.outputInfos)


def free_input_output_info(handle: int, config: Config) -> None:
    registry.get(handle)
    descriptor_store.release(config)


def load_model(handle: int, config: Config) -> Status:
    return registry.get(handle).load_model(config)


def create_model(handle: int, config: Config) -> Status:
    return registry.get(handle).create_model(config)


def size_of_context() -> int:
    return sys.getsizeof(InferenceContext())


def get_input_image_size(handle: int, size: ImageSize) -> Status:
    return registry.get(handle).get_input_image_size(size)


def get_input_info(handle: int, block: InputOutputInfo) -> Status:
    return registry.get(handle).get_input_info_block(block)


def set_input_info(handle: int, block: InputOutputInfo) -> Status:
    return registry.get(handle).set_input_info_block(block)


def get_output_info(handle: int, block: InputOutputInfo) -> Status:
    return registry.get(handle).get_output_info_block(block)


def set_output_info(handle: int, block: InputOutputInfo) -> Status:
    return registry.get(handle).set_output_info_block(block)


def forward(handle: int, mode: InferMode = InferMode.SYNC) -> Status:
    return registry.get(handle).forward(mode)


def set_input(handle: int, idx: int, data: Data) -> Status:
    return registry.get(handle).add_input(idx, data)


def get_result(handle: int, idx: int, data: Optional[Data] = None) -> Tuple[int, int]:
    """
    Returns ``(address, byte size)`` of output ``idx``; ``(0, 0)`` before the
    model is created. When ``data`` is given its header and tensor are
    filled as well.
    """
    context = registry.get(handle)
    if data is not None:
        size = context.get_output_into(idx, data)
        return (data.header.bufId, size) if size else (0, 0)

    output = context.get_output(idx)
    if output is None:
        return 0, 0
    return output.address, output.nbytes


def print_log(handle: int, flag: int = LogFlag.ENGINE | LogFlag.LAYER) -> str:
    return registry.get(handle).print_log(flag)


def set_batch_size(handle: int, size: int) -> Status:
    return registry.get(handle).set_batch_size(size)
