#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

import ctypes
import sys
from collections import OrderedDict
from enum import IntEnum
from typing import List, Optional, TextIO, Tuple

import yaml

from ie_wrapper.backend.base import (
    DataInfo,
    Device,
    ExecutableNetwork,
    InferRequest,
    Network,
    Plugin,
)
from ie_wrapper.backend.dispatcher import PluginDispatcher
from ie_wrapper.backend.extensions import (
    CustomOpLibraryExtension,
    ProviderConfigExtension,
    SessionTuningExtension,
)
from ie_wrapper.buffers import BufferView, OutputBuffer
from ie_wrapper.common import (
    Config,
    Data,
    DataType,
    ImageSize,
    InferMode,
    InputOutputInfo,
    LogFlag,
    TargetDevice,
    TensorInfo,
    decode_path,
    shape_to_dims,
)
from ie_wrapper.configuration import Configuration
from ie_wrapper.descriptor_store import block_tensors
from ie_wrapper.enum_tables import (
    device_from_id,
    enum_from_layout,
    enum_from_precision,
    layout_from_enum,
    precision_from_enum,
)
from ie_wrapper.logger import Logger
from ie_wrapper.marshaler import element_trait, image_to_blob, non_image_to_blob
from ie_wrapper.perf_report import format_performance_counts
from ie_wrapper.status import IEError, Status, check_index
from ie_wrapper.utils import model_file_pair, split_search_path

logger = Logger()


class ContextState(IntEnum):
    UNLOADED = 0
    LOADED = 1
    CREATED = 2


class InferenceContext:
    """
    Drives one model through its lifecycle: UNLOADED -> LOADED -> CREATED.

    A context owns at most one model binding, its compiled network and its
    inference requests. It is not thread-safe; callers serialize access.

    Operational failures (wrong state, mismatched sizes, null buffers) are
    logged and reported as a Status with the context left unchanged. An
    input/output index outside ``[0, count)`` raises IndexOutOfRangeError.
    """

    def __init__(self, config: Optional[Config] = None) -> None:
        self.state = ContextState.UNLOADED
        self.target_device: Device = Device.CPU
        self.plugin: Optional[Plugin] = None
        self.network: Optional[Network] = None
        self.inputs_info: "OrderedDict[str, DataInfo]" = OrderedDict()
        self.outputs_info: "OrderedDict[str, DataInfo]" = OrderedDict()
        self.executable: Optional[ExecutableNetwork] = None
        self.infer_requests: List[InferRequest] = []
        self.infer_request: Optional[InferRequest] = None
        self.input_image_size: Tuple[int, int] = (0, 0)  # (width, height)
        self.model_files: Tuple[str, str] = ("", "")
        self._disposed = False

        if config is not None:
            self.load_model(config)

    # ---------------------------------------------------------------- lifecycle

    @property
    def is_loaded(self) -> bool:
        return self.state >= ContextState.LOADED

    @property
    def is_created(self) -> bool:
        return self.state == ContextState.CREATED

    def _check_alive(self) -> None:
        if self._disposed:
            raise IEError("InferenceContext has been disposed")

    def load_model(self, config: Config) -> Status:
        """
        Binds a device plugin and reads the model named by ``config``.

        Does nothing when a model is already loaded. On a soft failure the
        context stays UNLOADED and the call may simply be repeated.

        Raises:
            FileNotFoundError: a required model file is missing.
            BackendError: the model files exist but cannot be read.
        """
        self._check_alive()
        if self.is_loaded:
            return Status.OK

        cfg = Configuration()
        plugin_path = decode_path(config.pluginPath) or cfg.get(Configuration.ITEM.PLUGIN_PATH)
        dispatcher = PluginDispatcher(split_search_path(plugin_path))
        target_device = device_from_id(config.targetId)

        # Loading plugin for device
        plugin = dispatcher.get_plugin_by_device(target_device)
        if plugin is None:
            logger.error(f"Plugin for device {target_device} is not found! Plugin Path = '{plugin_path}'")
            return Status.PLUGIN_NOT_FOUND
        logger.info(f"targetDevice: {target_device}")

        try:
            # CPU plugins get the bundled extension set
            if config.targetId == TargetDevice.CPU:
                plugin.add_extension(SessionTuningExtension())

            cpu_ext_path = decode_path(config.cpuExtPath)
            if cpu_ext_path:
                plugin.add_extension(CustomOpLibraryExtension(cpu_ext_path))
                logger.info(f"CPU Extension loaded: {cpu_ext_path}")

            gpu_ext_path = decode_path(config.cldnnExtPath)
            if gpu_ext_path:
                plugin.add_extension(ProviderConfigExtension(gpu_ext_path))
                logger.info(f"GPU Extension loaded: {gpu_ext_path}")
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Failed to load extension: {str(e)}")
            return Status.EXTENSION_FAILED
        logger.debug(f"{plugin.name} extensions: {[e.name for e in plugin.extensions]}")

        # Setting plugin parameter for collecting per layer metrics
        if config.perfCounter > 0 or cfg.get(Configuration.ITEM.PERF_COUNTER):
            plugin.set_config({"perf_count": True})

        model_path = decode_path(config.modelFileName)
        if not model_path:
            logger.error("Model file name is empty!")
            return Status.EMPTY_PATH

        reader = plugin.create_network_reader()
        structure_file, weights_file = model_file_pair(model_path, reader.STRUCTURE_SUFFIX, reader.WEIGHTS_SUFFIX)
        reader.read_network(structure_file)
        reader.read_weights(weights_file)
        network = reader.get_network()

        self.target_device = target_device
        self.plugin = plugin
        self.network = network
        self.inputs_info = network.inputs_info
        self.outputs_info = network.outputs_info
        self.model_files = (structure_file, weights_file)
        self.state = ContextState.LOADED
        logger.info(f"Model loaded: {structure_file} "
                    f"({len(self.inputs_info)} inputs, {len(self.outputs_info)} outputs)")
        return Status.OK

    def create_model(self, config: Config) -> Status:
        """
        Compiles the loaded model for the bound device.

        Precision and layout chosen in ``config.inputInfos`` and
        ``config.outputInfos`` are applied first; they cannot change once the
        model is created.

        A descriptor block whose count does not match the model is rejected
        with SIZE_MISMATCH before anything is applied or compiled.

        Raises:
            BackendError: the backend fails to compile the model.
        """
        self._check_alive()
        if not self.is_loaded:
            logger.error("Please load the model firstly!")
            return Status.NOT_LOADED
        if self.is_created:
            return Status.OK

        # prepare the input and output blobs before the network goes to the plugin;
        # both blocks are checked first so a rejected one leaves the model untouched
        blocks = [
            (config.inputInfos, self.inputs_info, "input", self.set_input_info_block),
            (config.outputInfos, self.outputs_info, "output", self.set_output_info_block),
        ]
        blocks = [b for b in blocks if b[0].tensor]
        for block, infos, what, _ in blocks:
            status = self._check_set_block(infos, block, what)
            if status != Status.OK:
                logger.error(f"The {what} info block of the config was rejected, model not created")
                return status
        for block, _, _, apply in blocks:
            apply(block)

        request_num = config.inferReqNum or Configuration().get(Configuration.ITEM.INFER_REQUEST_NUM)
        executable = self.plugin.load_network(self.network, {})
        requests = [executable.create_infer_request() for _ in range(max(1, request_num))]

        self.executable = executable
        self.infer_requests = requests
        self.infer_request = requests[0]
        self.state = ContextState.CREATED
        logger.info(f"Model created on {self.target_device} with {len(requests)} infer request(s)")
        return Status.OK

    def set_batch_size(self, size: int) -> Status:
        """Sets the batch of the loaded model; effective on the next create_model()."""
        self._check_alive()
        if not self.is_loaded:
            logger.error("Please load the model firstly!")
            return Status.NOT_LOADED
        if self.is_created:
            logger.warning("Batch size changed after the model was created; "
                           "the compiled model keeps its batch size")
        self.network.set_batch_size(size)
        return Status.OK

    def get_batch_size(self) -> int:
        self._check_alive()
        if not self.is_loaded:
            return 0
        return self.network.get_batch_size()

    def forward(self, mode: InferMode = InferMode.SYNC) -> Status:
        self._check_alive()
        if not self.is_created:
            logger.error("Please create the model firstly!")
            return Status.NOT_CREATED
        if mode == InferMode.SYNC:
            self.forward_sync()
        else:
            self.forward_async()
        return Status.OK

    def forward_sync(self) -> None:
        self._check_alive()
        self.infer_request.infer()

    def forward_async(self) -> None:
        """Starts the request and waits for its result before returning."""
        self._check_alive()
        self.infer_request.start_async()
        self.infer_request.wait()

    def dispose(self) -> None:
        """Releases the compiled model and its requests. The context is unusable afterwards."""
        for request in self.infer_requests:
            request.close()
        self.infer_requests = []
        self.infer_request = None
        self.executable = None
        self.network = None
        self.plugin = None
        self.inputs_info = OrderedDict()
        self.outputs_info = OrderedDict()
        self.state = ContextState.UNLOADED
        self._disposed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()

    # ---------------------------------------------------------- tensor details

    def get_input_count(self) -> int:
        self._check_alive()
        if not self.is_loaded:
            logger.error("Please load the model firstly!")
            return 0
        return len(self.inputs_info)

    def get_output_count(self) -> int:
        self._check_alive()
        if not self.is_loaded:
            logger.error("Please load the model firstly!")
            return 0
        return len(self.outputs_info)

    @property
    def input_names(self) -> List[str]:
        return list(self.inputs_info.keys())

    @property
    def output_names(self) -> List[str]:
        return list(self.outputs_info.keys())

    @staticmethod
    def _item(infos: "OrderedDict[str, DataInfo]", idx: int, what: str) -> DataInfo:
        check_index(idx, len(infos), what)
        return list(infos.values())[idx]

    @staticmethod
    def _fill_dims(shape: Tuple[int, ...], tensor: TensorInfo) -> None:
        dims = shape_to_dims(shape)
        tensor.rank = len(dims)
        for i, d in enumerate(dims):
            tensor.dim[i] = d
            tensor.dimStride[i] = d

    @classmethod
    def _fill_tensor(cls, item: DataInfo, tensor: TensorInfo) -> None:
        cls._fill_dims(item.shape, tensor)
        tensor.precision = int(enum_from_precision(item.precision))
        tensor.layout = int(enum_from_layout(item.layout))

    @staticmethod
    def _apply_tensor(item: DataInfo, tensor: TensorInfo) -> None:
        item.set_precision(precision_from_enum(tensor.precision))
        item.set_layout(layout_from_enum(tensor.layout))

    def _get_info(self, infos, idx: int, tensor: TensorInfo, what: str) -> Status:
        self._check_alive()
        if not self.is_loaded:
            logger.error("Please load the model firstly!")
            return Status.NOT_LOADED
        self._fill_tensor(self._item(infos, idx, what), tensor)
        return Status.OK

    def _set_info(self, infos, idx: int, tensor: TensorInfo, what: str) -> Status:
        self._check_alive()
        if not self.is_loaded:
            logger.error("Please load the model firstly!")
            return Status.NOT_LOADED
        item = self._item(infos, idx, what)
        if self.is_created:
            logger.warning(f"{what} {idx} changed after the model was created; it has no effect")
        self._apply_tensor(item, tensor)
        return Status.OK

    def _get_info_block(self, infos, block: InputOutputInfo, what: str) -> Status:
        self._check_alive()
        if not self.is_loaded:
            logger.error("Please load the model firstly!")
            return Status.NOT_LOADED
        if not block.tensor:
            logger.error(f"Please allocate the {what} info firstly!")
            return Status.NULL_BUFFER
        count = len(infos)
        if block.header.bufSize < count * ctypes.sizeof(TensorInfo):
            logger.error(f"{what.capitalize()} info storage is smaller than the model's {count} tensors!")
            return Status.SIZE_MISMATCH

        for i, item in enumerate(infos.values()):
            self._fill_tensor(item, block.tensor[i])
        block.batchSize = self.get_batch_size()
        block.numbers = count
        return Status.OK

    def get_input_info(self, idx: int, tensor: TensorInfo) -> Status:
        return self._get_info(self.inputs_info, idx, tensor, "input")

    def get_output_info(self, idx: int, tensor: TensorInfo) -> Status:
        return self._get_info(self.outputs_info, idx, tensor, "output")

    def set_input_info(self, idx: int, tensor: TensorInfo) -> Status:
        return self._set_info(self.inputs_info, idx, tensor, "input")

    def set_output_info(self, idx: int, tensor: TensorInfo) -> Status:
        return self._set_info(self.outputs_info, idx, tensor, "output")

    def get_input_info_block(self, block: InputOutputInfo) -> Status:
        return self._get_info_block(self.inputs_info, block, "input")

    def get_output_info_block(self, block: InputOutputInfo) -> Status:
        return self._get_info_block(self.outputs_info, block, "output")

    def set_input_info_block(self, block: InputOutputInfo) -> Status:
        """
        Applies the precision/layout of every descriptor in ``block``.

        Image tagged descriptors also set the input image size from the
        model's own extents (width from dim 0, height from dim 1).
        """
        status = self._check_set_block(self.inputs_info, block, "input")
        if status != Status.OK:
            return status

        for item, tensor in zip(self.inputs_info.values(), block_tensors(block)):
            self._apply_tensor(item, tensor)
            if tensor.dataType == DataType.IMG and len(item.shape) >= 2:
                dims = shape_to_dims(item.shape)
                self.input_image_size = (dims[0], dims[1])
        return Status.OK

    def set_output_info_block(self, block: InputOutputInfo) -> Status:
        status = self._check_set_block(self.outputs_info, block, "output")
        if status != Status.OK:
            return status

        for item, tensor in zip(self.outputs_info.values(), block_tensors(block)):
            self._apply_tensor(item, tensor)
        return Status.OK

    def _check_set_block(self, infos, block: InputOutputInfo, what: str) -> Status:
        self._check_alive()
        if not self.is_loaded:
            logger.error("Please load the model firstly!")
            return Status.NOT_LOADED
        if not block.tensor:
            logger.error(f"Please get the {what} info firstly!")
            return Status.NULL_BUFFER
        if block.numbers != len(infos):
            logger.error(f"{what.capitalize()} size is not matched with model!")
            return Status.SIZE_MISMATCH
        return Status.OK

    def get_input_image_size(self, size: ImageSize) -> Status:
        self._check_alive()
        if not self.is_created:
            logger.error("Please create the model firstly!")
            return Status.NOT_CREATED
        size.width, size.height = self.input_image_size
        return Status.OK

    # ------------------------------------------------------------ data buffers

    def add_input(self, idx: int, data: Optional[Data]) -> Status:
        """
        Copies one caller buffer into the blob of input ``idx``.

        Image data (``tensor.dataType == IMG``) is converted according to
        ``imageFormat``; anything else is copied flat. Nothing is written
        unless the whole copy fits.
        """
        self._check_alive()
        if not self.is_created:
            logger.error("Please create the model firstly!")
            return Status.NOT_CREATED
        check_index(idx, len(self.inputs_info), "input")
        if data is None:
            logger.error("Input data is null pointer!")
            return Status.NULL_BUFFER

        source = BufferView.from_ext_buf(data.header)
        if source is None:
            logger.error("Input data is null pointer!")
            return Status.NULL_BUFFER

        batch_size = self.get_batch_size()
        if data.batchIdx >= batch_size:
            logger.error(f"Too many input, batch index {data.batchIdx} is not smaller than batch size {batch_size}!")
            return Status.INDEX_OUT_OF_RANGE

        name = self.input_names[idx]
        blob = self.infer_request.get_blob(name)
        trait = element_trait(data.tensor.precision)
        logger.debug(f"add_input({idx}, '{name}'): {source.nbytes} bytes, batch {data.batchIdx}, "
                     f"{trait.precision.name}, blob {blob.shape} {blob.dtype}")

        if data.tensor.dataType == DataType.IMG:
            return image_to_blob(source, data.tensor, data.imageFormat, blob, data.batchIdx, trait)
        return non_image_to_blob(source, data.tensor, blob, data.batchIdx, trait)

    def get_output(self, idx: int) -> Optional[OutputBuffer]:
        """
        Returns a view of output ``idx`` owned by the backend.

        The view is valid until the next forward call; None before the model
        is created.
        """
        self._check_alive()
        if not self.is_created:
            logger.error("Please create the model firstly!")
            return None
        check_index(idx, len(self.outputs_info), "output")
        return OutputBuffer(self.infer_request.get_blob(self.output_names[idx]))

    def get_output_into(self, idx: int, data: Optional[Data]) -> int:
        """Writes address and byte size of output ``idx`` into ``data``; returns the size."""
        self._check_alive()
        if not self.is_created:
            logger.error("Please create the model firstly!")
            return 0
        check_index(idx, len(self.outputs_info), "output")
        if data is None:
            logger.error("Output data is null pointer!")
            return 0

        output = self.get_output(idx)
        data.header.bufSize = output.nbytes
        data.header.bufId = output.address
        self._fill_tensor(self.outputs_info[self.output_names[idx]], data.tensor)
        # the blob may have been reshaped by the last run
        self._fill_dims(output.array.shape, data.tensor)
        return data.header.bufSize

    # ------------------------------------------------------------- diagnostics

    def print_log(self, flag: int, stream: Optional[TextIO] = None) -> str:
        """
        Prints performance counters selected by ``flag`` (LogFlag bits) and
        returns the printed text.
        """
        self._check_alive()
        flag = LogFlag(flag & (LogFlag.ENGINE | LogFlag.LAYER))
        if flag == LogFlag.NONE:
            return ""

        report = ""
        if flag & LogFlag.ENGINE:
            if self.is_loaded:
                report += format_performance_counts(self.plugin.get_performance_counts(), True)
            else:
                logger.error("Please load the model firstly!")
        if flag & LogFlag.LAYER:
            if self.is_created:
                report += format_performance_counts(self.infer_request.get_performance_counts(), True)
            else:
                logger.error("Please create the model firstly!")

        if report:
            stream = stream if stream is not None else sys.stdout
            stream.write(report)
            stream.flush()
        return report
