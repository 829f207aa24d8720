#
# Copyright (C) 2018- DEEPX Ltd.
# All rights reserved.
#
# This software is the property of DEEPX and is provided exclusively to customers
# who are supplied with DEEPX NPU (Neural Processing Unit).
# Unauthorized sharing or usage is strictly prohibited by law.
#

import os
import warnings
from typing import Sequence, Tuple, Union

import numpy as np


def ensure_contiguous(
    data: Union[np.ndarray, Sequence]
) -> Union[np.ndarray, list]:
    if isinstance(data, np.ndarray):
        if not data.flags['C_CONTIGUOUS']:
            warnings.warn(
                f"ndarray(shape={data.shape}, dtype={data.dtype}) is not contiguous; converting.",
                UserWarning
            )
            try:
                return np.ascontiguousarray(data)
            except MemoryError:
                raise MemoryError(
                    f"Unable to allocate contiguous array for shape {data.shape}"
                )
        return data

    if isinstance(data, (list, tuple)):
        converted = [ensure_contiguous(elem) for elem in data]
        return type(data)(converted)

    raise TypeError(f"Unsupported type for ensure_contiguous: {type(data)}")


def get_file_name_no_ext(file_path: str) -> str:
    """Strips the last extension only; a path without one is returned as is."""
    pos = file_path.rfind('.')
    if pos == -1 or pos < file_path.rfind(os.sep):
        return file_path
    return file_path[:pos]


def model_file_pair(base_path: str, structure_suffix: str, weights_suffix: str) -> Tuple[str, str]:
    """Derives the structure and weights file names from one model path."""
    stem = get_file_name_no_ext(base_path)
    return stem + structure_suffix, stem + weights_suffix


def split_search_path(path: str) -> list:
    if not path:
        return []
    return [p for p in path.split(os.pathsep) if p]
