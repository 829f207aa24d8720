#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

import io
import os

import numpy as np
import pytest

from ie_wrapper import descriptor_store
from ie_wrapper.backend.base import Device
from ie_wrapper.backend.dispatcher import register_plugin
from ie_wrapper.common import (
    Data,
    DataType,
    ImageFormat,
    ImageSize,
    InferMode,
    InputOutputInfo,
    LayoutType,
    LogFlag,
    PrecisionType,
    TargetDevice,
    TensorInfo,
    make_config,
    make_data,
    make_tensor_info,
)
from ie_wrapper.context import ContextState, InferenceContext
from ie_wrapper.status import IEError, IndexOutOfRangeError, Status


@pytest.fixture
def loaded(fake_config):
    context = InferenceContext()
    assert context.load_model(fake_config) == Status.OK
    yield context
    descriptor_store.release(fake_config)
    context.dispose()


@pytest.fixture
def created(loaded, fake_config):
    assert loaded.create_model(fake_config) == Status.OK
    return loaded


def vector_data(values, batch_idx=0):
    array = np.asarray(values, dtype=np.float32)
    return make_data(array, make_tensor_info(array.shape), batch_idx)


def test_load_model_reads_structure_and_weights(fake_plugin, fake_config):
    context = InferenceContext(fake_config)

    assert context.state == ContextState.LOADED
    assert fake_plugin.instances[-1].read_paths == ["models/fake_net.xml", "models/fake_net.bin"]
    assert context.model_files == ("models/fake_net.xml", "models/fake_net.bin")
    assert context.get_input_count() == 2
    assert context.get_output_count() == 1
    assert context.input_names == ["data", "aux"]


def test_load_model_is_noop_when_loaded(fake_plugin, loaded, fake_config):
    assert loaded.load_model(fake_config) == Status.OK
    assert len(fake_plugin.instances) == 1


def test_load_model_with_empty_path(fake_plugin):
    context = InferenceContext()
    assert context.load_model(make_config("", TargetDevice.FPGA)) == Status.EMPTY_PATH
    assert context.state == ContextState.UNLOADED
    assert context.load_model(make_config(None, TargetDevice.FPGA)) == Status.EMPTY_PATH


def test_load_model_without_plugin():
    previous = register_plugin(Device.FPGA, None)
    try:
        context = InferenceContext()
        assert context.load_model(make_config("net.onnx", TargetDevice.FPGA)) == Status.PLUGIN_NOT_FOUND
        assert context.state == ContextState.UNLOADED
    finally:
        register_plugin(Device.FPGA, previous)


def test_load_model_with_missing_extension(fake_plugin, tmp_path):
    config = make_config("net.onnx", TargetDevice.FPGA, cpu_ext_path=str(tmp_path / "libmissing.so"))
    context = InferenceContext()
    assert context.load_model(config) == Status.EXTENSION_FAILED
    assert context.state == ContextState.UNLOADED


def test_load_model_with_provider_config(fake_plugin, tmp_path):
    options = tmp_path / "provider.yaml"
    options.write_text("device_id: 0\n")
    config = make_config("net.onnx", TargetDevice.FPGA, gpu_ext_path=str(options), perf_counter=True)

    context = InferenceContext()
    assert context.load_model(config) == Status.OK
    plugin = fake_plugin.instances[-1]
    assert plugin.config["provider_options"] == {"device_id": "0"}
    assert plugin.config["perf_count"] is True


def test_plugin_search_path_is_split(fake_plugin):
    config = make_config("net.onnx", TargetDevice.FPGA, plugin_path=f"/opt/a{os.pathsep}/opt/b")
    InferenceContext(config)
    assert fake_plugin.instances[-1].search_paths == ["/opt/a", "/opt/b"]


def test_create_requires_loaded_model(fake_config):
    context = InferenceContext()
    assert context.create_model(fake_config) == Status.NOT_LOADED
    assert context.state == ContextState.UNLOADED


def test_create_model_binds_requests(fake_plugin, loaded, fake_config):
    fake_config.inferReqNum = 3
    assert loaded.create_model(fake_config) == Status.OK

    assert loaded.state == ContextState.CREATED
    assert len(loaded.infer_requests) == 3
    assert loaded.infer_request is loaded.infer_requests[0]
    assert loaded.create_model(fake_config) == Status.OK
    assert len(fake_plugin.instances[-1].loaded) == 1


def test_create_model_with_zero_requests_makes_one(loaded, fake_config):
    fake_config.inferReqNum = 0
    assert loaded.create_model(fake_config) == Status.OK
    assert len(loaded.infer_requests) == 1


def test_create_model_rejects_mismatched_config_block(fake_plugin, loaded, fake_config):
    descriptor_store.ensure_block(fake_config.inputInfos, 1)
    fake_config.inputInfos.tensor[0].precision = PrecisionType.U8

    assert loaded.create_model(fake_config) == Status.SIZE_MISMATCH
    assert loaded.state == ContextState.LOADED
    assert loaded.infer_request is None
    assert fake_plugin.instances[-1].loaded == []
    assert [info.precision for info in loaded.inputs_info.values()] == ["FP32", "FP32"]


def test_create_model_checks_output_block_before_applying_input_block(fake_plugin, loaded, fake_config):
    descriptor_store.ensure(loaded, fake_config)
    loaded.get_input_info_block(fake_config.inputInfos)
    fake_config.inputInfos.tensor[0].precision = PrecisionType.U8
    descriptor_store.ensure_block(fake_config.outputInfos, 3)

    assert loaded.create_model(fake_config) == Status.SIZE_MISMATCH
    assert [info.precision for info in loaded.inputs_info.values()] == ["FP32", "FP32"]
    assert fake_plugin.instances[-1].loaded == []


def test_operations_before_create(loaded):
    assert loaded.forward() == Status.NOT_CREATED
    assert loaded.add_input(0, vector_data([1.0])) == Status.NOT_CREATED
    assert loaded.get_output(0) is None
    assert loaded.get_input_image_size(ImageSize()) == Status.NOT_CREATED


def test_counts_before_load():
    context = InferenceContext()
    assert context.get_input_count() == 0
    assert context.get_output_count() == 0
    assert context.get_batch_size() == 0
    assert context.get_input_info(0, TensorInfo()) == Status.NOT_LOADED


def test_get_info_reports_model_tensor(loaded):
    tensor = TensorInfo()
    assert loaded.get_input_info(0, tensor) == Status.OK

    assert tensor.rank == 4
    assert list(tensor.dim[:4]) == [4, 4, 3, 1]
    assert tensor.shape == (1, 3, 4, 4)
    assert tensor.precision == PrecisionType.FP32
    assert tensor.layout == LayoutType.NCHW


@pytest.mark.parametrize("precision", [PrecisionType.U8, PrecisionType.FP16, PrecisionType.I32])
@pytest.mark.parametrize("layout", [LayoutType.NHWC, LayoutType.NCHW, LayoutType.ANY])
def test_set_then_get_info(loaded, precision, layout):
    for idx in range(loaded.get_input_count()):
        tensor = make_tensor_info((1,), precision, layout)
        assert loaded.set_input_info(idx, tensor) == Status.OK
        result = TensorInfo()
        loaded.get_input_info(idx, result)
        assert (result.precision, result.layout) == (precision, layout)

    tensor = make_tensor_info((1,), precision, layout)
    assert loaded.set_output_info(0, tensor) == Status.OK
    result = TensorInfo()
    loaded.get_output_info(0, result)
    assert (result.precision, result.layout) == (precision, layout)


@pytest.mark.parametrize("idx", [-1, 2])
def test_input_index_out_of_range(loaded, idx):
    with pytest.raises(IndexOutOfRangeError):
        loaded.get_input_info(idx, TensorInfo())
    with pytest.raises(IndexOutOfRangeError):
        loaded.set_input_info(idx, TensorInfo())


@pytest.mark.parametrize("idx", [-1, 1])
def test_output_index_out_of_range(loaded, idx):
    with pytest.raises(IndexOutOfRangeError):
        loaded.get_output_info(idx, TensorInfo())
    with pytest.raises(IndexOutOfRangeError):
        loaded.set_output_info(idx, TensorInfo())


def test_data_index_out_of_range(created):
    with pytest.raises(IndexOutOfRangeError):
        created.add_input(2, vector_data([1.0]))
    with pytest.raises(IndexOutOfRangeError):
        created.get_output(1)
    with pytest.raises(IndexError):
        created.get_output(-1)


def test_bulk_get_fills_block(loaded, fake_config):
    descriptor_store.ensure(loaded, fake_config)
    assert loaded.get_input_info_block(fake_config.inputInfos) == Status.OK

    block = fake_config.inputInfos
    assert block.numbers == 2
    assert block.batchSize == 1
    assert block.tensor[0].shape == (1, 3, 4, 4)
    assert block.tensor[1].shape == (1, 8)
    assert block.tensor[1].layout == LayoutType.NC


def test_bulk_get_without_storage(loaded, fake_config):
    assert loaded.get_input_info_block(fake_config.inputInfos) == Status.NULL_BUFFER


def test_bulk_set_with_count_mismatch_changes_nothing(loaded, fake_config):
    descriptor_store.ensure_block(fake_config.inputInfos, 1)
    fake_config.inputInfos.tensor[0].precision = PrecisionType.U8

    assert loaded.set_input_info_block(fake_config.inputInfos) == Status.SIZE_MISMATCH
    assert [info.precision for info in loaded.inputs_info.values()] == ["FP32", "FP32"]


def test_bulk_set_caches_image_size(created, fake_config):
    descriptor_store.ensure(created, fake_config)
    created.get_input_info_block(fake_config.inputInfos)
    fake_config.inputInfos.tensor[0].dataType = DataType.IMG
    fake_config.inputInfos.tensor[0].precision = PrecisionType.U8

    assert created.set_input_info_block(fake_config.inputInfos) == Status.OK
    size = ImageSize()
    assert created.get_input_image_size(size) == Status.OK
    assert (size.width, size.height) == (4, 4)
    assert created.inputs_info["data"].precision == "U8"


def test_create_applies_config_blocks(loaded, fake_config):
    descriptor_store.ensure(loaded, fake_config)
    loaded.get_input_info_block(fake_config.inputInfos)
    fake_config.inputInfos.tensor[1].precision = PrecisionType.I32

    assert loaded.create_model(fake_config) == Status.OK
    assert loaded.inputs_info["aux"].precision == "I32"
    assert loaded.infer_request.get_blob("aux").dtype == np.int32


def test_batch_offset_of_numeric_input(loaded, fake_config):
    loaded.set_batch_size(4)
    loaded.create_model(fake_config)
    values = np.arange(8, dtype=np.float32) + 1

    assert loaded.add_input(1, vector_data(values, batch_idx=2)) == Status.OK
    blob = loaded.infer_request.get_blob("aux").reshape(-1)
    np.testing.assert_array_equal(blob[16:24], values)
    assert not blob[:16].any() and not blob[24:].any()


def test_batch_index_beyond_batch_size_is_rejected(loaded, fake_config):
    loaded.set_batch_size(4)
    loaded.create_model(fake_config)

    assert loaded.add_input(1, vector_data(np.ones(8), batch_idx=4)) == Status.INDEX_OUT_OF_RANGE
    assert not loaded.infer_request.get_blob("aux").any()


def test_null_input_buffer(created):
    assert created.add_input(1, None) == Status.NULL_BUFFER
    assert created.add_input(1, Data()) == Status.NULL_BUFFER


def test_image_input(created):
    image = np.full((4, 4, 3), 255, dtype=np.uint8)
    tensor = make_tensor_info((3, 4, 4), data_type=DataType.IMG)
    status = created.add_input(0, make_data(image, tensor, image_format=ImageFormat.BGR_PACKED))

    assert status == Status.OK
    np.testing.assert_allclose(created.infer_request.get_blob("data"), (255 - 127.5) * 0.0078125)


def test_forward_and_outputs(created):
    assert created.forward(InferMode.SYNC) == Status.OK
    output = created.get_output(0)
    np.testing.assert_array_equal(output.array, np.arange(10, dtype=np.float32).reshape(1, 10) + 1)
    assert output.nbytes == 40
    with pytest.raises(ValueError):
        output.array[0, 0] = 5.0

    assert created.forward(InferMode.ASYNC) == Status.OK
    assert created.get_output(0).array[0, 0] == 2


def test_get_output_into(created):
    created.forward_sync()
    data = Data()

    assert created.get_output_into(0, data) == 40
    assert data.header.bufSize == 40
    assert data.header.bufId == created.get_output(0).address
    assert data.tensor.shape == (1, 10)
    assert created.get_output_into(0, None) == 0


def test_print_log(created):
    stream = io.StringIO()
    report = created.print_log(LogFlag.ENGINE | LogFlag.LAYER, stream)

    assert stream.getvalue() == report
    assert "LoadNetwork" in report
    assert "conv1" in report and "OPTIMIZED_OUT" in report
    assert "Total time: 500" in report
    assert "Total time: 120" in report
    assert created.print_log(LogFlag.NONE, stream) == ""


def test_print_log_engine_only(loaded):
    report = loaded.print_log(LogFlag.ENGINE, io.StringIO())
    assert "LoadNetwork" in report
    assert loaded.print_log(LogFlag.LAYER, io.StringIO()) == ""


def test_dispose_closes_requests(fake_config):
    with InferenceContext(fake_config) as context:
        context.create_model(fake_config)
        request = context.infer_request
    assert request.closed
    with pytest.raises(IEError):
        context.forward()


@pytest.mark.parametrize("call", [
    lambda ctx: ctx.load_model(make_config("models/fake_net.onnx", TargetDevice.FPGA)),
    lambda ctx: ctx.create_model(make_config("models/fake_net.onnx", TargetDevice.FPGA)),
    lambda ctx: ctx.set_batch_size(2),
    lambda ctx: ctx.get_batch_size(),
    lambda ctx: ctx.forward(InferMode.ASYNC),
    lambda ctx: ctx.forward_sync(),
    lambda ctx: ctx.forward_async(),
    lambda ctx: ctx.get_input_count(),
    lambda ctx: ctx.get_output_count(),
    lambda ctx: ctx.get_input_info(0, TensorInfo()),
    lambda ctx: ctx.set_input_info(0, TensorInfo()),
    lambda ctx: ctx.get_output_info(0, TensorInfo()),
    lambda ctx: ctx.set_output_info(0, TensorInfo()),
    lambda ctx: ctx.get_input_info_block(InputOutputInfo()),
    lambda ctx: ctx.get_output_info_block(InputOutputInfo()),
    lambda ctx: ctx.set_input_info_block(InputOutputInfo()),
    lambda ctx: ctx.set_output_info_block(InputOutputInfo()),
    lambda ctx: ctx.get_input_image_size(ImageSize()),
    lambda ctx: ctx.add_input(0, Data()),
    lambda ctx: ctx.get_output(0),
    lambda ctx: ctx.get_output_into(0, Data()),
    lambda ctx: ctx.print_log(LogFlag.ENGINE, io.StringIO()),
])
def test_disposed_context_rejects_every_operation(fake_config, call):
    context = InferenceContext(fake_config)
    assert context.create_model(fake_config) == Status.OK
    context.dispose()
    context.dispose()

    assert context.state == ContextState.UNLOADED
    with pytest.raises(IEError, match="disposed"):
        call(context)
