#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

from collections import OrderedDict

import numpy as np
import onnx
import pytest
from onnx import TensorProto, helper

from ie_wrapper.backend.base import (
    DataInfo,
    Device,
    ExecutableNetwork,
    InferRequest,
    Layout,
    Network,
    NetworkReader,
    Plugin,
    Precision,
    ProfileInfo,
    ProfileStatus,
    dtype_of,
)
from ie_wrapper.backend.dispatcher import register_plugin
from ie_wrapper.common import TargetDevice, make_config
from ie_wrapper.configuration import Configuration

# Device routed to the in-memory plugin below; it has no backend of its own
FAKE_DEVICE = Device.FPGA
FAKE_TARGET = TargetDevice.FPGA


class FakeNetwork(Network):
    """One image input, one vector input, one output of 10 scores."""

    def __init__(self):
        self._inputs = OrderedDict([
            ("data", DataInfo("data", (1, 3, 4, 4), Precision.FP32, Layout.NCHW)),
            ("aux", DataInfo("aux", (1, 8), Precision.FP32, Layout.NC)),
        ])
        self._outputs = OrderedDict([
            ("prob", DataInfo("prob", (1, 10), Precision.FP32, Layout.NC)),
        ])

    @property
    def inputs_info(self):
        return self._inputs

    @property
    def outputs_info(self):
        return self._outputs

    def set_batch_size(self, size):
        if size <= 0:
            raise ValueError(f"batch size must be positive, got {size}")
        for info in list(self._inputs.values()) + list(self._outputs.values()):
            info.shape = (size,) + info.shape[1:]

    def get_batch_size(self):
        return self._inputs["data"].shape[0]


class FakeReader(NetworkReader):
    def __init__(self, plugin):
        self.plugin = plugin

    def read_network(self, path):
        self.plugin.read_paths.append(path)

    def read_weights(self, path):
        self.plugin.read_paths.append(path)

    def get_network(self):
        return FakeNetwork()


class FakeInferRequest(InferRequest):
    def __init__(self, network):
        self.infer_count = 0
        self.closed = False
        self._blobs = {
            name: np.zeros(info.shape, dtype=dtype_of(info.precision) or np.float32)
            for name, info in list(network.inputs_info.items()) + list(network.outputs_info.items())
        }

    def get_blob(self, name):
        return self._blobs[name]

    def infer(self):
        self.infer_count += 1
        prob = self._blobs["prob"]
        prob[...] = np.arange(prob.size, dtype=prob.dtype).reshape(prob.shape) + self.infer_count

    def start_async(self):
        self.infer()

    def wait(self):
        pass

    def get_performance_counts(self):
        return {
            "conv1": ProfileInfo(ProfileStatus.EXECUTED, "Convolution", 120, 100, "jit_avx2_FP32"),
            "relu1": ProfileInfo(ProfileStatus.OPTIMIZED_OUT, "ReLU", 0, 0, "undef"),
        }

    def close(self):
        self.closed = True


class FakeExecutable(ExecutableNetwork):
    def __init__(self, network):
        self.network = network
        self.requests = []

    def create_infer_request(self):
        request = FakeInferRequest(self.network)
        self.requests.append(request)
        return request


class FakePlugin(Plugin):
    instances = []

    def __init__(self, device, search_paths=None):
        super().__init__(device, search_paths)
        self.read_paths = []
        self.loaded = []
        FakePlugin.instances.append(self)

    def create_network_reader(self):
        return FakeReader(self)

    def load_network(self, network, config=None):
        executable = FakeExecutable(network)
        self.loaded.append(executable)
        return executable

    def get_performance_counts(self):
        return {"LoadNetwork": ProfileInfo(ProfileStatus.EXECUTED, "Compile", 500, 400, "fake")}


@pytest.fixture(autouse=True)
def reset_configuration():
    np.random.seed(42)
    Configuration().reset()
    yield
    Configuration().reset()


@pytest.fixture
def fake_plugin():
    FakePlugin.instances = []
    previous = register_plugin(FAKE_DEVICE, FakePlugin)
    yield FakePlugin
    register_plugin(FAKE_DEVICE, previous)


@pytest.fixture
def fake_config(fake_plugin):
    return make_config("models/fake_net.onnx", FAKE_TARGET)


def save_model(graph, path):
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    onnx.checker.check_model(model)
    onnx.save(model, str(path))
    return str(path)


@pytest.fixture
def scale_model(tmp_path):
    """``output = input * 2`` over a (N, 3, 2, 2) float input with a symbolic batch."""
    scale = helper.make_tensor("scale", TensorProto.FLOAT, [], [2.0])
    node = helper.make_node("Mul", ["input", "scale"], ["output"], name="scale_mul")
    graph = helper.make_graph(
        [node],
        "scale",
        [helper.make_tensor_value_info("input", TensorProto.FLOAT, ["N", 3, 2, 2])],
        [helper.make_tensor_value_info("output", TensorProto.FLOAT, ["N", 3, 2, 2])],
        initializer=[scale],
    )
    return save_model(graph, tmp_path / "scale.onnx")


@pytest.fixture
def vector_model(tmp_path):
    """``sum = a + b`` over two (1, 4) float inputs."""
    node = helper.make_node("Add", ["a", "b"], ["sum"], name="vector_add")
    graph = helper.make_graph(
        [node],
        "vector",
        [
            helper.make_tensor_value_info("a", TensorProto.FLOAT, [1, 4]),
            helper.make_tensor_value_info("b", TensorProto.FLOAT, [1, 4]),
        ],
        [helper.make_tensor_value_info("sum", TensorProto.FLOAT, [1, 4])],
    )
    return save_model(graph, tmp_path / "vector.onnx")
