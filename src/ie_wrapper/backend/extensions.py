#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

import json
import os
from typing import Optional

import yaml

from ie_wrapper.backend.base import Extension, Plugin
from ie_wrapper.configuration import Configuration


class SessionTuningExtension(Extension):
    """Extension set bundled with CPU plugins: graph optimization and threading."""

    def __init__(self, graph_optimization: Optional[str] = None, intra_op_num_threads: Optional[int] = None) -> None:
        cfg = Configuration()
        self.graph_optimization = graph_optimization or cfg.get(Configuration.ITEM.ORT_GRAPH_OPTIMIZATION)
        if intra_op_num_threads is None:
            intra_op_num_threads = cfg.get(Configuration.ITEM.ORT_INTRA_OP_THREADS)
        self.intra_op_num_threads = intra_op_num_threads

    def apply(self, plugin: Plugin) -> None:
        plugin.set_config({
            "graph_optimization": self.graph_optimization,
            "intra_op_num_threads": self.intra_op_num_threads,
        })


class CustomOpLibraryExtension(Extension):
    """
    Shared library with custom layer implementations for the CPU plugin.

    Relative paths are looked up in the plugin search path first, then in
    the current directory.
    """

    def __init__(self, path: str) -> None:
        if not path:
            raise ValueError("extension path must be a non-empty string")
        self.path = path

    def resolve(self, plugin: Plugin) -> str:
        if os.path.isabs(self.path):
            candidates = [self.path]
        else:
            candidates = [os.path.join(d, self.path) for d in plugin.search_paths] + [self.path]
        for candidate in candidates:
            if os.path.isfile(candidate):
                return os.path.abspath(candidate)
        raise FileNotFoundError(f"Extension library not found: {self.path}")

    def apply(self, plugin: Plugin) -> None:
        libraries = list(plugin.config.get("custom_op_libraries", []))
        libraries.append(self.resolve(plugin))
        plugin.set_config({"custom_op_libraries": libraries})


class ProviderConfigExtension(Extension):
    """Key/value options for the GPU plugin, read from a JSON or YAML file."""

    def __init__(self, path: str) -> None:
        if not path:
            raise ValueError("extension path must be a non-empty string")
        self.path = path

    def apply(self, plugin: Plugin) -> None:
        with open(self.path, "r") as f:
            if self.path.endswith((".yaml", ".yml")):
                options = yaml.safe_load(f) or {}
            else:
                options = json.load(f)
        if not isinstance(options, dict):
            raise ValueError(f"Extension config '{self.path}' must contain a mapping")

        provider_options = dict(plugin.config.get("provider_options", {}))
        provider_options.update({str(k): str(v) for k, v in options.items()})
        plugin.set_config({"provider_options": provider_options})
