#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

from ie_wrapper.backend.base import (
    DataInfo,
    Device,
    ExecutableNetwork,
    Extension,
    InferRequest,
    Layout,
    Network,
    NetworkReader,
    Plugin,
    Precision,
    ProfileInfo,
    ProfileStatus,
)
