#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#
# This file uses ONNX Runtime (MIT License) - Copyright (c) Microsoft Corporation.
#

"""
Execution backend built on ONNX Runtime.

The structure file is an ``.onnx`` graph; the weights file is the optional
``.bin`` holding external tensor data next to it.
"""

import json
import os
import tempfile
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import numpy as np
import onnx
import onnxruntime as ort
from onnx import ModelProto
from onnx.external_data_helper import load_external_data_for_model, uses_external_data

from ie_wrapper.backend.base import (
    DTYPE_PRECISIONS,
    DataInfo,
    Device,
    ExecutableNetwork,
    InferRequest,
    Network,
    NetworkReader,
    Plugin,
    Precision,
    ProfileInfo,
    ProfileStatus,
    dtype_of,
)
from ie_wrapper.enum_tables import estimate_layout
from ie_wrapper.logger import Logger
from ie_wrapper.status import BackendError

logger = Logger()

# Provider priority per device, always ending with the CPU provider
PROVIDER_PRESETS = {
    Device.DEFAULT: ["CPUExecutionProvider"],
    Device.BALANCED: ["CPUExecutionProvider"],
    Device.CPU: ["CPUExecutionProvider"],
    Device.GPU: ["CUDAExecutionProvider", "CPUExecutionProvider"],
    Device.MYRIAD: ["OpenVINOExecutionProvider", "CPUExecutionProvider"],
}

GRAPH_OPTIMIZATION_LEVELS = {
    "disable": ort.GraphOptimizationLevel.ORT_DISABLE_ALL,
    "basic": ort.GraphOptimizationLevel.ORT_ENABLE_BASIC,
    "extended": ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED,
    "all": ort.GraphOptimizationLevel.ORT_ENABLE_ALL,
}


def get_execution_providers(device: Device) -> List[str]:
    """Ordered providers for ``device`` that this onnxruntime build offers.

    HETERO takes every available provider in onnxruntime's own order.
    """
    available = ort.get_available_providers()
    if device == Device.HETERO:
        requested = list(available)
    else:
        requested = PROVIDER_PRESETS.get(device, PROVIDER_PRESETS[Device.CPU])

    providers = [p for p in requested if p in available]
    if "CPUExecutionProvider" not in providers:
        providers.append("CPUExecutionProvider")
    return providers


def _value_info_to_data_info(value_info, batch_size: int = 1) -> DataInfo:
    tensor_type = value_info.type.tensor_type
    shape = []
    for i, dim in enumerate(tensor_type.shape.dim):
        if dim.HasField("dim_value") and dim.dim_value > 0:
            shape.append(dim.dim_value)
        else:
            # symbolic dimension: the batch for the leading axis, 1 elsewhere
            shape.append(batch_size if i == 0 else 1)

    native = np.dtype(onnx.helper.tensor_dtype_to_np_dtype(tensor_type.elem_type))
    precision = DTYPE_PRECISIONS.get(native, Precision.UNSPECIFIED)
    return DataInfo(value_info.name, tuple(shape), precision, estimate_layout(len(shape)), native)


class OnnxNetwork(Network):
    """
    ONNX graph with the per-tensor descriptors the context edits.

    Args:
        model (ModelProto): graph with its weights already resolved.
    """

    def __init__(self, model: ModelProto) -> None:
        self.model = model
        initializers = {init.name for init in model.graph.initializer}
        self._inputs = OrderedDict(
            (vi.name, _value_info_to_data_info(vi))
            for vi in model.graph.input if vi.name not in initializers
        )
        self._outputs = OrderedDict(
            (vi.name, _value_info_to_data_info(vi)) for vi in model.graph.output
        )

    @property
    def inputs_info(self) -> "OrderedDict[str, DataInfo]":
        return self._inputs

    @property
    def outputs_info(self) -> "OrderedDict[str, DataInfo]":
        return self._outputs

    def set_batch_size(self, size: int) -> None:
        if size <= 0:
            raise ValueError(f"batch size must be positive, got {size}")
        for info in list(self._inputs.values()) + list(self._outputs.values()):
            if info.shape:
                info.shape = (size,) + info.shape[1:]

        for value_info in list(self.model.graph.input) + list(self.model.graph.output):
            dims = value_info.type.tensor_type.shape.dim
            if len(dims) > 0 and value_info.name in (self._inputs.keys() | self._outputs.keys()):
                dims[0].dim_value = size

    def get_batch_size(self) -> int:
        for info in self._inputs.values():
            if info.shape:
                return info.shape[0]
        return 1


class OnnxNetworkReader(NetworkReader):
    STRUCTURE_SUFFIX = ".onnx"
    WEIGHTS_SUFFIX = ".bin"

    def __init__(self) -> None:
        self._model: Optional[ModelProto] = None

    def read_network(self, path: str) -> None:
        if not os.path.isfile(path):
            raise FileNotFoundError(path)
        try:
            self._model = onnx.load(path, load_external_data=False)
        except Exception as e:
            raise BackendError(f"Failed to read network '{path}': {str(e)}") from e
        logger.debug(f"Read network structure: {path}")

    def read_weights(self, path: str) -> None:
        if self._model is None:
            raise BackendError("read_network() must be called before read_weights()")

        external = [t for t in self._model.graph.initializer if uses_external_data(t)]
        if not external:
            logger.debug(f"Network keeps its weights inline, '{path}' not needed")
            return
        if not os.path.isfile(path):
            raise FileNotFoundError(path)
        load_external_data_for_model(self._model, os.path.dirname(os.path.abspath(path)))
        logger.debug(f"Read {len(external)} external weight tensors relative to: {path}")

    def get_network(self) -> OnnxNetwork:
        if self._model is None:
            raise BackendError("No network has been read")
        return OnnxNetwork(self._model)


class OnnxExecutableNetwork(ExecutableNetwork):
    """
    One InferenceSession plus a frozen copy of the tensor descriptors.

    Per-layer counters come from the onnxruntime profile, which is closed the
    first time they are requested; later runs are not profiled.
    """

    def __init__(self, session: ort.InferenceSession, network: OnnxNetwork, profiling: bool) -> None:
        self.session = session
        self.inputs = OrderedDict((k, _copy_info(v)) for k, v in network.inputs_info.items())
        self.outputs = OrderedDict((k, _copy_info(v)) for k, v in network.outputs_info.items())
        self.node_types = {node.name: node.op_type for node in network.model.graph.node}
        self.profiling = profiling
        self.run_count = 0
        self._layer_counts: Optional[Dict[str, ProfileInfo]] = None

    def create_infer_request(self) -> "OnnxInferRequest":
        return OnnxInferRequest(self)

    def layer_performance_counts(self) -> Dict[str, ProfileInfo]:
        if self._layer_counts is not None:
            return self._layer_counts
        if not self.profiling:
            return {}

        profile_file = self.session.end_profiling()
        try:
            with open(profile_file, "r") as f:
                events = json.load(f)
        finally:
            os.remove(profile_file)

        counts: Dict[str, ProfileInfo] = OrderedDict()
        for event in events:
            if event.get("cat") != "Node" or not event.get("name", "").endswith("_kernel_time"):
                continue
            layer = event["name"][:-len("_kernel_time")]
            args = event.get("args", {})
            provider = args.get("provider", "")
            duration = int(event.get("dur", 0))
            info = counts.get(layer)
            if info is None:
                info = ProfileInfo(ProfileStatus.EXECUTED, args.get("op_name", self.node_types.get(layer, "")),
                                   0, 0, provider)
                counts[layer] = info
            info.real_time_us += duration
            if provider == "CPUExecutionProvider":
                info.cpu_us += duration

        # graph nodes the optimizer fused away never show up in the profile
        status = ProfileStatus.OPTIMIZED_OUT if self.run_count > 0 else ProfileStatus.NOT_RUN
        for name, op_type in self.node_types.items():
            if name and name not in counts:
                counts[name] = ProfileInfo(status, op_type, 0, 0, "")

        self._layer_counts = counts
        return counts


def _copy_info(info: DataInfo) -> DataInfo:
    return DataInfo(info.name, info.shape, info.precision, info.layout, info.native_dtype)


def _blob_dtype(info: DataInfo) -> np.dtype:
    dtype = dtype_of(info.precision)
    return np.dtype(dtype) if dtype is not None else info.native_dtype


class OnnxInferRequest(InferRequest):
    """
    Blobs are allocated once, in the user selected precision, and cast to the
    graph's own element types on every run.
    """

    def __init__(self, executable: OnnxExecutableNetwork) -> None:
        self.executable = executable
        self._blobs: Dict[str, np.ndarray] = {}
        for name, info in list(executable.inputs.items()) + list(executable.outputs.items()):
            self._blobs[name] = np.zeros(info.shape, dtype=_blob_dtype(info))
        self._executor: Optional[ThreadPoolExecutor] = None
        self._future: Optional[Future] = None

    def get_blob(self, name: str) -> np.ndarray:
        try:
            return self._blobs[name]
        except KeyError:
            raise KeyError(f"No blob named '{name}'") from None

    def infer(self) -> None:
        feeds = {
            name: self._blobs[name].astype(info.native_dtype, copy=False)
            for name, info in self.executable.inputs.items()
        }
        output_names = list(self.executable.outputs.keys())

        try:
            results = self.executable.session.run(output_names, feeds)
        except Exception as e:
            raise BackendError(f"Inference failed: {str(e)}") from e
        self.executable.run_count += 1

        for name, result in zip(output_names, results):
            blob = self._blobs[name]
            if result.size == blob.size:
                np.copyto(blob, result.reshape(blob.shape), casting="unsafe")
            else:
                # dynamic output shape, the previous buffer is no longer valid
                self._blobs[name] = np.ascontiguousarray(result, dtype=blob.dtype)

    def start_async(self) -> None:
        if self._future is not None and not self._future.done():
            raise BackendError("Request is already running")
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1)
        self._future = self._executor.submit(self.infer)

    def wait(self) -> None:
        if self._future is None:
            return
        future, self._future = self._future, None
        future.result()

    def get_performance_counts(self) -> Dict[str, ProfileInfo]:
        return self.executable.layer_performance_counts()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


class OnnxPlugin(Plugin):
    """
    Plugin running networks with onnxruntime on the providers mapped to its
    device. Recognised config keys: ``perf_count``, ``graph_optimization``,
    ``intra_op_num_threads``, ``custom_op_libraries``, ``provider_options``.
    """

    def __init__(self, device: Device, search_paths: Optional[List[str]] = None) -> None:
        super().__init__(device, search_paths)
        self.providers = get_execution_providers(device)
        self._engine_counts: Dict[str, ProfileInfo] = OrderedDict()

    def create_network_reader(self) -> OnnxNetworkReader:
        return OnnxNetworkReader()

    def _session_options(self) -> ort.SessionOptions:
        sess_option = ort.SessionOptions()
        level = str(self.config.get("graph_optimization", "basic")).lower()
        sess_option.graph_optimization_level = GRAPH_OPTIMIZATION_LEVELS.get(
            level, ort.GraphOptimizationLevel.ORT_ENABLE_BASIC)
        threads = int(self.config.get("intra_op_num_threads", 0) or 0)
        if threads > 0:
            sess_option.intra_op_num_threads = threads
        for library in self.config.get("custom_op_libraries", []):
            sess_option.register_custom_ops_library(library)
        if self.config.get("perf_count"):
            sess_option.enable_profiling = True
            sess_option.profile_file_prefix = os.path.join(tempfile.gettempdir(), "ie_wrapper_profile")
        return sess_option

    def _provider_options(self) -> List[Dict[str, Any]]:
        options = self.config.get("provider_options", {})
        return [dict(options) if p != "CPUExecutionProvider" else {} for p in self.providers]

    def load_network(self, network: Network, config: Optional[Dict[str, Any]] = None) -> OnnxExecutableNetwork:
        if not isinstance(network, OnnxNetwork):
            raise TypeError("OnnxPlugin can only load networks read by OnnxNetworkReader.")
        if config:
            self.set_config(config)

        sess_option = self._session_options()
        start, cpu_start = time.perf_counter(), time.process_time()
        try:
            session = ort.InferenceSession(
                network.model.SerializeToString(),
                sess_option,
                providers=self.providers,
                provider_options=self._provider_options(),
            )
        except Exception as e:
            raise BackendError(f"Failed to compile network on {self.name}: {str(e)}") from e

        self._engine_counts["LoadNetwork"] = ProfileInfo(
            ProfileStatus.EXECUTED,
            "Compile",
            int((time.perf_counter() - start) * 1e6),
            int((time.process_time() - cpu_start) * 1e6),
            session.get_providers()[0],
        )
        logger.info(f"Network compiled on {self.name} with providers {session.get_providers()}")
        return OnnxExecutableNetwork(session, network, bool(self.config.get("perf_count")))

    def get_performance_counts(self) -> Dict[str, ProfileInfo]:
        return dict(self._engine_counts)
