"""Flat float32 storage helpers for the ``python`` and ``numpy`` backends.

A buffer is either an ``array('f')`` (python backend) or a one dimensional
``numpy.float32`` array (numpy backend).  Everything above this module treats
the two interchangeably through these helpers.
"""

from __future__ import annotations

from array import array
from collections.abc import Iterable
from typing import Union

import numpy as _np

Buffer = Union[array, _np.ndarray]

_TYPECODE = "f"
_DTYPE = _np.float32


def buffer_backend(buffer: Buffer) -> str:
    if isinstance(buffer, _np.ndarray):
        return "numpy"
    if isinstance(buffer, array):
        if buffer.typecode != _TYPECODE:
            raise TypeError("python backend tensors must use array('f') storage")
        return "python"
    raise TypeError(f"unsupported tensor buffer type {type(buffer).__name__}")


def allocate(length: int, backend: str) -> Buffer:
    """Return a zero-filled buffer holding ``length`` elements."""

    if length < 0:
        raise ValueError("buffer length must be non-negative")
    if backend == "numpy":
        return _np.zeros(length, dtype=_DTYPE)
    if backend == "python":
        return array(_TYPECODE, [0.0]) * length if length else array(_TYPECODE)
    raise ValueError(f"unknown backend {backend!r}")


def from_values(values: Iterable[float], backend: str) -> Buffer:
    if backend == "numpy":
        if isinstance(values, _np.ndarray):
            return _np.array(values, dtype=_DTYPE).reshape(-1)
        return _np.fromiter((float(value) for value in values), dtype=_DTYPE)
    if backend == "python":
        if isinstance(values, _np.ndarray):
            return array(_TYPECODE, _np.asarray(values, dtype=_DTYPE).reshape(-1).tobytes())
        return array(_TYPECODE, (float(value) for value in values))
    raise ValueError(f"unknown backend {backend!r}")


def convert(buffer: Buffer, backend: str) -> Buffer:
    """Return ``buffer`` on ``backend``; the same object when no conversion is needed."""

    if buffer_backend(buffer) == backend:
        return buffer
    if backend == "numpy":
        return _np.frombuffer(buffer, dtype=_DTYPE).copy()
    return array(_TYPECODE, buffer.tobytes())


def copy(buffer: Buffer) -> Buffer:
    if isinstance(buffer, _np.ndarray):
        return buffer.copy()
    return array(_TYPECODE, buffer)


def compact(
    buffer: Buffer, stride: int, row0: int, rows: int, col0: int, cols: int
) -> Buffer:
    """Copy a ``rows x cols`` block out of a row-major parent with row ``stride``.

    The result is a tightly packed row-major buffer on the parent's backend.
    """

    backend = buffer_backend(buffer)
    if rows == 0 or cols == 0:
        return allocate(0, backend)
    if backend == "numpy":
        matrix = buffer.reshape(-1, stride)
        block = matrix[row0 : row0 + rows, col0 : col0 + cols]
        return _np.ascontiguousarray(block).reshape(-1)
    out = array(_TYPECODE)
    for r in range(row0, row0 + rows):
        base = r * stride + col0
        out.extend(buffer[base : base + cols])
    return out
