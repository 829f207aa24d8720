#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

from typing import Callable, Dict, List, Optional

from ie_wrapper.backend.base import Device, Plugin
from ie_wrapper.backend.onnx_backend import OnnxPlugin
from ie_wrapper.logger import Logger

PluginFactory = Callable[[Device, List[str]], Plugin]

logger = Logger()

_REGISTRY: Dict[Device, PluginFactory] = {
    Device.DEFAULT: OnnxPlugin,
    Device.BALANCED: OnnxPlugin,
    Device.CPU: OnnxPlugin,
    Device.GPU: OnnxPlugin,
    Device.MYRIAD: OnnxPlugin,
    Device.HETERO: OnnxPlugin,
}


def register_plugin(device: Device, factory: Optional[PluginFactory]) -> Optional[PluginFactory]:
    """
    Binds a plugin factory to a device and returns the previous one.

    Passing ``None`` unregisters the device.
    """
    previous = _REGISTRY.get(device)
    if factory is None:
        _REGISTRY.pop(device, None)
    else:
        _REGISTRY[device] = factory
    return previous


class PluginDispatcher:
    """Resolves a device to a plugin instance, handing it the search path."""

    def __init__(self, search_paths: Optional[List[str]] = None) -> None:
        self.search_paths = list(search_paths or [])

    def get_plugin_by_device(self, device: Device) -> Optional[Plugin]:
        factory = _REGISTRY.get(Device(device))
        if factory is None:
            logger.debug(f"No plugin registered for device {device}")
            return None
        return factory(Device(device), self.search_paths)
