#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

import logging
import os
from enum import IntEnum

LOGGER_NAME = "ie_wrapper"


class LogLevel(IntEnum):
    NONE = 0
    ERROR = 1
    INFO = 2
    DEBUG = 3


_LEVEL_MAP = {
    LogLevel.NONE: logging.CRITICAL + 10,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
}


def _level_from_env(default: LogLevel) -> LogLevel:
    value = os.environ.get("IE_WRAPPER_LOG_LEVEL")
    if not value:
        return default
    try:
        return LogLevel[value.upper()]
    except KeyError:
        return default


class Logger:
    """
    Process-wide diagnostic stream of the wrapper.

    Thin singleton over the ``ie_wrapper`` logger of the standard logging
    module; the level follows LogLevel so callers do not need to know
    about logging levels.
    """
    _instance = None
    _level = LogLevel.INFO

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Logger, cls).__new__(cls)
            cls._instance._logger = logging.getLogger(LOGGER_NAME)
            if not cls._instance._logger.handlers:
                handler = logging.StreamHandler()
                handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
                cls._instance._logger.addHandler(handler)
            cls._instance.set_level(_level_from_env(cls._level))
        return cls._instance

    def set_level(self, level: LogLevel):
        self._level = LogLevel(level)
        self._logger.setLevel(_LEVEL_MAP[self._level])

    def get_level(self) -> LogLevel:
        return self._level

    def error(self, msg: str):
        self._logger.error(msg)

    def warning(self, msg: str):
        self._logger.warning(msg)

    def info(self, msg: str):
        self._logger.info(msg)

    def debug(self, msg: str):
        self._logger.debug(msg)
