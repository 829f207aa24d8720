#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

from typing import Mapping

from ie_wrapper.backend.base import ProfileInfo, ProfileStatus

MAX_LAYER_NAME = 30

STATUS_LABELS = {
    ProfileStatus.EXECUTED: "EXECUTED",
    ProfileStatus.NOT_RUN: "NOT_RUN",
    ProfileStatus.OPTIMIZED_OUT: "OPTIMIZED_OUT",
}


def format_layer_name(name: str) -> str:
    if len(name) >= MAX_LAYER_NAME:
        return name[:MAX_LAYER_NAME - 4] + "..."
    return name


def total_real_time(counts: Mapping[str, ProfileInfo]) -> int:
    """Sum of the positive wall-clock times, in microseconds."""
    return sum(info.real_time_us for info in counts.values() if info.real_time_us > 0)


def format_performance_counts(counts: Mapping[str, ProfileInfo], show_header: bool = True) -> str:
    """
    Renders performance counters as a fixed-width table, one layer per line,
    sorted by layer name, followed by the total wall-clock time.
    """
    lines = []
    if show_header:
        lines.append("")
        lines.append("performance counts:")
        lines.append("")

    for name in sorted(counts):
        info = counts[name]
        line = f"{format_layer_name(name):<{MAX_LAYER_NAME}}"
        line += f"{STATUS_LABELS.get(info.status, ''):<15}"
        line += f"{'layerType: ' + info.layer_type + ' ':<30}"
        line += f"{'realTime: ' + str(info.real_time_us):<20}"
        line += f"{' cpu: ' + str(info.cpu_us):<20}"
        line += f" execType: {info.exec_type}"
        lines.append(line)

    lines.append(f"{'Total time: ' + str(total_real_time(counts)):<20} microseconds")
    return "\n".join(lines) + "\n"
