#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

import argparse
import os
import sys
import time
from typing import List, Optional

import cv2
import numpy as np

from ie_wrapper import descriptor_store
from ie_wrapper.backend.base import dtype_of
from ie_wrapper.common import (
    DataType,
    ImageFormat,
    ImageSize,
    InferMode,
    LogFlag,
    PrecisionType,
    TargetDevice,
    make_config,
    make_data,
    make_tensor_info,
)
from ie_wrapper.configuration import Configuration
from ie_wrapper.context import InferenceContext
from ie_wrapper.logger import Logger, LogLevel
from ie_wrapper.status import Status

APP_NAME = "ie_wrapper run_model"

logger = Logger()


def print_inf_result(model_file: str, input_file: str, output_file: str,
                     latency_ms: float, fps_val: float, loops: int, batch: int, mode: InferMode):
    lines = []
    if input_file:
        lines.append(f"* Processing File : {input_file}")
    if output_file:
        lines.append(f"* Output Saved As : {output_file}")
    lines.append(f"* Model : {model_file}")
    lines.append(f"* Benchmark Result ({loops} loops, batch {batch}, {mode.name.lower()})")
    lines.append(f"  - Latency Average : {latency_ms:.3f} ms")
    lines.append(f"  - FPS             : {fps_val:.2f}")

    max_line_len = max(len(line_item) for line_item in lines)
    print(f"\n{('=' * max_line_len)}")
    for line_item in lines:
        print(line_item)
    print(f"{('=' * max_line_len)}")


def parse_arguments(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(prog="ie-run-model", description=APP_NAME, formatter_class=argparse.RawTextHelpFormatter)
    parser.add_argument("-m", "--model", type=str, required=True, help="Model file (.onnx)")
    parser.add_argument("-i", "--input", type=str, default="", help="Input image, fed to the first input (default: zeros)")
    parser.add_argument("-o", "--output", type=str, default="", help="Write the raw bytes of every output to this file")
    parser.add_argument("-d", "--device", type=str, default="CPU", choices=[t.name for t in TargetDevice],
                        help="Target device (default: CPU)")
    parser.add_argument("-b", "--batch", type=int, default=0, help="Batch size (default: the model's own)")
    parser.add_argument("-l", "--loops", type=int, default=30, help="Number of inference loops to perform (default: 30)")
    parser.add_argument("-w", "--warmup-runs", type=int, default=0, help="Number of warmup runs before actual measurement (default: 0)")
    parser.add_argument("-a", "--async", dest="use_async", action="store_true", default=False,
                        help="Run the requests through the async path")
    parser.add_argument("-n", "--infer-requests", type=int, default=1, help="Number of infer requests to create (default: 1)")
    parser.add_argument("-p", "--perf-count", action="store_true", default=False,
                        help="Collect and print engine and per layer performance counters")
    parser.add_argument("--plugin-path", type=str, default="", help="Plugin search path ('%s' separated)" % os.pathsep)
    parser.add_argument("--cpu-ext", type=str, default="", help="Custom operator library for the CPU device")
    parser.add_argument("--gpu-ext", type=str, default="", help="Provider options file (JSON/YAML) for the GPU device")
    parser.add_argument("-c", "--config", type=str, default="", help="Configuration file (JSON/YAML)")
    parser.add_argument("-v", "--verbose", action="store_true", default=False, help="Debug logging")

    args = parser.parse_args(argv)

    if not os.path.exists(args.model):
        parser.error(f"Model path '{args.model}' does not exist.")
    if args.input and not os.path.exists(args.input):
        parser.error(f"Input file '{args.input}' does not exist.")
    if args.config and not os.path.exists(args.config):
        parser.error(f"Config file '{args.config}' does not exist.")
    if args.loops <= 0:
        parser.error("--loops must be positive.")

    return args


def load_image(path: str, channels: int, height: int, width: int):
    """Reads an image as packed BGR (or planar gray) resized to the model input."""
    image = cv2.imread(path, cv2.IMREAD_GRAYSCALE if channels == 1 else cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError(f"Failed to read image '{path}'")
    image = cv2.resize(image, (width, height))
    if channels == 1:
        return image, ImageFormat.GRAY_PLANAR
    return image, ImageFormat.BGR_PACKED


def push_inputs(context: InferenceContext, image_path: str) -> Status:
    batch = context.get_batch_size()
    for idx, info in enumerate(context.inputs_info.values()):
        sample_shape = info.shape[1:]

        if idx == 0 and image_path and len(sample_shape) == 3:
            channels, height, width = sample_shape
            image, image_format = load_image(image_path, channels, height, width)
            # packed images are described as (channels, height, width) extents as well
            tensor = make_tensor_info((channels, height, width), PrecisionType.FP32, data_type=DataType.IMG)
            array = image
        else:
            dtype = dtype_of(info.precision) or np.float32
            precision = PrecisionType.FP32 if dtype == np.float32 else PrecisionType.U8
            array = np.zeros(sample_shape, dtype=np.float32 if precision == PrecisionType.FP32 else np.uint8)
            tensor = make_tensor_info(sample_shape, precision)
            image_format = ImageFormat.UNKNOWN

        for batch_idx in range(batch):
            status = context.add_input(idx, make_data(array, tensor, batch_idx, image_format))
            if status != Status.OK:
                logger.error(f"Failed to set input {idx} ({info.name}) at batch {batch_idx}: {status.name}")
                return status
    return Status.OK


def save_outputs(context: InferenceContext, output_file: str):
    with open(output_file, "wb") as f:
        for idx in range(context.get_output_count()):
            f.write(context.get_output(idx).array.tobytes())


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)

    cfg = Configuration()
    if args.config:
        cfg.load_config_file(args.config)
    if args.verbose:
        cfg.set(Configuration.ITEM.LOG_LEVEL, LogLevel.DEBUG.name)

    print(f"Model file: {args.model}")
    if args.input:
        print(f"Input data file: {args.input}")
    print(f"Loops: {args.loops}")

    config = make_config(args.model, TargetDevice[args.device], args.plugin_path, args.cpu_ext, args.gpu_ext,
                         args.perf_count, args.infer_requests)
    mode = InferMode.ASYNC if args.use_async else InferMode.SYNC

    with InferenceContext() as context:
        status = context.load_model(config)
        if status != Status.OK:
            print(f"[ERR] Failed to load model: {status.name}", file=sys.stderr)
            return -1

        if args.batch > 0:
            context.set_batch_size(args.batch)

        descriptor_store.ensure(context, config)
        context.get_input_info_block(config.inputInfos)
        context.get_output_info_block(config.outputInfos)
        if args.input and config.inputInfos.numbers:
            config.inputInfos.tensor[0].dataType = DataType.IMG

        try:
            status = context.create_model(config)
        finally:
            descriptor_store.release(config)
        if status != Status.OK:
            print(f"[ERR] Failed to create model: {status.name}", file=sys.stderr)
            return -1

        size = ImageSize()
        if context.get_input_image_size(size) == Status.OK and size.width:
            print(f"Input image size: {size.width}x{size.height}")

        if push_inputs(context, args.input) != Status.OK:
            return -1

        for _ in range(args.warmup_runs):
            context.forward(mode)

        start = time.perf_counter()
        for _ in range(args.loops):
            context.forward(mode)
        elapsed = time.perf_counter() - start

        batch = context.get_batch_size()
        latency_ms = elapsed * 1000.0 / args.loops
        fps_val = args.loops * batch / elapsed if elapsed > 0 else 0.0

        if args.output:
            save_outputs(context, args.output)

        print_inf_result(args.model, args.input, args.output, latency_ms, fps_val, args.loops, batch, mode)

        if args.perf_count:
            context.print_log(LogFlag.ENGINE | LogFlag.LAYER)

    return 0


if __name__ == "__main__":
    sys.exit(main())
