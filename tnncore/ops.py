"""Elementwise kernels over flat float32 buffers."""

from __future__ import annotations

import math
from array import array

import numpy as _np

from ._buffer import Buffer, buffer_backend

__all__ = ["add_buffers", "relu_inplace", "sigmoid_inplace", "sigmoid_scalar"]

# Open-interval bounds of the logistic function in float32.
_SIGMOID_FLOOR = float(_np.nextafter(_np.float32(0.0), _np.float32(1.0)))
_SIGMOID_CEIL = float(_np.nextafter(_np.float32(1.0), _np.float32(0.0)))


def add_buffers(left: Buffer, right: Buffer) -> Buffer:
    """Return the elementwise sum of two equally sized buffers on ``left``'s backend."""

    if len(left) != len(right):
        raise ValueError(f"cannot add buffers of length {len(left)} and {len(right)}")
    if buffer_backend(left) == "numpy":
        return _np.add(left, _np.asarray(right, dtype=_np.float32))
    return array("f", (a + b for a, b in zip(left, right)))


def relu_inplace(buffer: Buffer) -> None:
    if buffer_backend(buffer) == "numpy":
        _np.maximum(buffer, 0.0, out=buffer)
        return
    for index, value in enumerate(buffer):
        if value < 0.0:
            buffer[index] = 0.0


def sigmoid_scalar(x: float) -> float:
    # Split on sign so math.exp never sees a large positive argument.
    if x >= 0.0:
        value = 1.0 / (1.0 + math.exp(-x))
    else:
        z = math.exp(x)
        value = z / (1.0 + z)
    return min(max(value, _SIGMOID_FLOOR), _SIGMOID_CEIL)


def sigmoid_inplace(buffer: Buffer) -> None:
    if buffer_backend(buffer) == "numpy":
        positive = buffer >= 0.0
        z = _np.exp(-_np.abs(buffer))
        result = _np.where(positive, 1.0 / (1.0 + z), z / (1.0 + z))
        _np.clip(result, _SIGMOID_FLOOR, _SIGMOID_CEIL, out=result)
        buffer[:] = result
        return
    for index, value in enumerate(buffer):
        buffer[index] = sigmoid_scalar(value)
