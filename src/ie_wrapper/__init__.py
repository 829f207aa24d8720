#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

from ie_wrapper.status import Status, IEError, IndexOutOfRangeError, InvalidHandleError, BackendError
from ie_wrapper.common import (
    TargetDevice,
    PrecisionType,
    LayoutType,
    MemoryType,
    ImageFormat,
    InferMode,
    DataType,
    LogFlag,
    ExtBuf,
    ImageSize,
    TensorInfo,
    InputOutputInfo,
    Data,
    Config,
    make_config,
    make_data,
    make_tensor_info,
)
from ie_wrapper.context import InferenceContext, ContextState
from ie_wrapper.configuration import Configuration
from ie_wrapper.logger import Logger, LogLevel
