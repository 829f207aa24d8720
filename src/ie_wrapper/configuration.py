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
from enum import IntEnum
from typing import Any, Dict

import yaml

from ie_wrapper.logger import Logger, LogLevel


class Configuration:
    """
    Process-wide runtime settings.

    Values come from built-in defaults, ``IE_WRAPPER_*`` environment
    variables and, optionally, a JSON or YAML file. They are used as
    fallbacks wherever a Config block leaves a field empty.
    """

    # Class variable to store the singleton instance
    _instance = None

    class ITEM(IntEnum):
        LOG_LEVEL = 1
        PLUGIN_PATH = 2
        PERF_COUNTER = 3
        INFER_REQUEST_NUM = 4
        ORT_INTRA_OP_THREADS = 5
        ORT_GRAPH_OPTIMIZATION = 6

    _DEFAULTS: Dict[ITEM, Any] = {
        ITEM.LOG_LEVEL: "INFO",
        ITEM.PLUGIN_PATH: "",
        ITEM.PERF_COUNTER: False,
        ITEM.INFER_REQUEST_NUM: 1,
        ITEM.ORT_INTRA_OP_THREADS: 0,
        ITEM.ORT_GRAPH_OPTIMIZATION: "basic",
    }

    _CASTS = {
        ITEM.LOG_LEVEL: str,
        ITEM.PLUGIN_PATH: str,
        ITEM.PERF_COUNTER: lambda v: v if isinstance(v, bool) else str(v).lower() in ("1", "true", "yes", "on"),
        ITEM.INFER_REQUEST_NUM: int,
        ITEM.ORT_INTRA_OP_THREADS: int,
        ITEM.ORT_GRAPH_OPTIMIZATION: lambda v: str(v).lower(),
    }

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Configuration, cls).__new__(cls)
            cls._instance._values = {}
            cls._instance.reset()
        return cls._instance

    def reset(self):
        """Drops file values and re-reads defaults and environment."""
        self._values = dict(self._DEFAULTS)
        for item in self.ITEM:
            env_value = os.environ.get(f"IE_WRAPPER_{item.name}")
            if env_value is not None:
                self.set(item, env_value)
        Logger().set_level(LogLevel[self._values[self.ITEM.LOG_LEVEL].upper()])

    def load_config_file(self, file_name: str):
        if not isinstance(file_name, str) or not file_name:
            raise ValueError("file_name must be a non-empty string")

        with open(file_name, "r") as f:
            if file_name.endswith((".yaml", ".yml")):
                content = yaml.safe_load(f) or {}
            else:
                content = json.load(f)

        if not isinstance(content, dict):
            raise ValueError(f"Configuration file '{file_name}' must contain a mapping")

        for key, value in content.items():
            try:
                item = self.ITEM[key.upper()]
            except KeyError:
                raise ValueError(f"Unknown configuration item '{key}' in '{file_name}'") from None
            self.set(item, value)

    def set(self, item: ITEM, value: Any):
        if not isinstance(item, self.ITEM):
            raise TypeError("item must be an instance of Configuration.ITEM.")
        self._values[item] = self._CASTS[item](value)
        if item == self.ITEM.LOG_LEVEL:
            try:
                Logger().set_level(LogLevel[self._values[item].upper()])
            except KeyError:
                raise ValueError(f"Invalid log level '{value}'") from None

    def get(self, item: ITEM) -> Any:
        return self._values[item]
