"""Two dimensional float32 tensors with a throughput-oriented matmul."""

from __future__ import annotations

import logging
from array import array
from collections.abc import Iterable, Sequence
from typing import Any

import numpy as _np

from . import _buffer
from ._gemm import matmul_columnar, matmul_parallel, matmul_sequential, select_strategy
from .config import BACKENDS, STRATEGIES, get_config
from .errors import ShapeError, check_compatible
from .layout import Layout, coerce_layout, to_column_major, to_contiguous
from .ops import add_buffers, relu_inplace, sigmoid_inplace

__all__ = ["Tensor", "from_data", "zeros"]

logger = logging.getLogger(__name__)

_NO_DATA = object()


def _is_sequence(obj: object) -> bool:
    return isinstance(obj, Sequence) and not isinstance(
        obj, (str, bytes, bytearray, memoryview)
    )


def _coerce_index(value: object, label: str) -> int:
    if isinstance(value, bool):
        raise TypeError(f"Tensor {label} must be an integer, got {value!r}")
    try:
        index = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise TypeError(f"Tensor {label} must be an integer, got {value!r}") from exc
    if index != value:
        raise TypeError(f"Tensor {label} must be an integer, got {value!r}")
    if index < 0:
        raise ValueError(f"Tensor {label} must be non-negative, got {index}")
    return index


def _coerce_shape(value: object, label: str = "shape") -> tuple[int, int]:
    if isinstance(value, _np.ndarray):
        value = value.tolist()
    if not _is_sequence(value):
        raise TypeError(f"Tensor {label} must be a sequence of two integers")
    dims = list(value)  # type: ignore[arg-type]
    if len(dims) != 2:
        raise ValueError(
            f"Tensor {label} must contain exactly two dimensions, got {len(dims)}"
        )
    rows = _coerce_index(dims[0], f"{label}[0]")
    cols = _coerce_index(dims[1], f"{label}[1]")
    return rows, cols


def _flatten_nested(items: list[Any]) -> tuple[int, int, list[float]]:
    cols: int | None = None
    flat: list[float] = []
    for row in items:
        if isinstance(row, _np.ndarray):
            row = row.tolist()
        if not _is_sequence(row):
            raise TypeError("Tensor rows must be sequences of numbers")
        values = [float(value) for value in row]
        if cols is None:
            cols = len(values)
        elif len(values) != cols:
            raise ValueError("Tensor rows must all share the same length")
        flat.extend(values)
    return len(items), (0 if cols is None else cols), flat


def _flatten_data(data: object) -> Iterable[float]:
    if isinstance(data, Tensor):
        return data._row_major()
    if isinstance(data, _np.ndarray):
        return _np.asarray(data, dtype=_np.float32).reshape(-1)
    if isinstance(data, array):
        return data
    if _is_sequence(data):
        items = list(data)  # type: ignore[arg-type]
        if items and (_is_sequence(items[0]) or isinstance(items[0], _np.ndarray)):
            return _flatten_nested(items)[2]
        return items
    if isinstance(data, Iterable):
        return list(data)
    raise TypeError("Tensor data must be an iterable of floats or nested iterables")


def _resolve_backend(label: str | None) -> str:
    if label is None:
        return get_config().backend
    normalized = str(label).lower()
    if normalized == "auto":
        return get_config().backend
    if normalized == "cpu":
        return "python"
    if normalized not in BACKENDS:
        raise ValueError("backend must be one of 'auto', 'numpy', 'python', 'cpu', or None")
    return normalized


def _resolve_strategy(label: str | None) -> str:
    if label is None:
        return get_config().strategy
    normalized = str(label).lower()
    if normalized not in STRATEGIES:
        options = ", ".join(repr(choice) for choice in STRATEGIES)
        raise ValueError(f"strategy must be one of {options}, got {label!r}")
    return normalized


class _ShapeView(tuple):
    def __new__(cls, tensor: "Tensor", getter):
        rows, cols = getter(tensor)
        obj = super().__new__(cls, (rows, cols))
        obj._tensor = tensor
        obj._getter = getter
        return obj

    def __call__(self) -> tuple[int, int]:
        return self._getter(self._tensor)


# Lets ``tensor.shape`` be read both as a tuple and as ``tensor.shape()``.
class _ShapeDescriptor:
    __slots__ = ("_func", "__doc__")

    def __init__(self, func):
        self._func = func
        self.__doc__ = getattr(func, "__doc__", None)

    def __get__(self, instance, owner):
        if instance is None:
            return self._func
        return _ShapeView(instance, self._func)


class Tensor:
    """A ``rows x cols`` matrix of float32 values.

    The values live in one flat buffer whose physical order is recorded by
    :attr:`layout`.  The layout never changes what ``tolist`` or ``matmul``
    see, only how the buffer has to be walked.
    """

    __slots__ = ("_rows", "_cols", "_data", "_layout")

    def __init__(
        self,
        shape: Sequence[int],
        data: object = _NO_DATA,
        *,
        layout: Layout | str = Layout.ROW_MAJOR,
        backend: str | None = None,
    ):
        rows, cols = _coerce_shape(shape)
        target_backend = _resolve_backend(backend)
        total = rows * cols
        if data is _NO_DATA:
            buffer = _buffer.allocate(total, target_backend)
        else:
            buffer = _buffer.from_values(_flatten_data(data), target_backend)
        if len(buffer) != total:
            raise ValueError(
                f"Tensor data of length {len(buffer)} does not match shape ({rows}, {cols})"
            )
        self._rows = rows
        self._cols = cols
        self._data = buffer
        self._layout = coerce_layout(layout)

    @classmethod
    def from_data(
        cls,
        shape: Sequence[int],
        data: object,
        *,
        layout: Layout | str = Layout.ROW_MAJOR,
        backend: str | None = None,
    ) -> "Tensor":
        """Build a tensor from flat ``data`` laid out according to ``layout``.

        Raises ``ValueError`` when ``len(data)`` differs from ``rows * cols``.
        """

        return cls(shape, data, layout=layout, backend=backend)

    @classmethod
    def zeros(cls, shape: Sequence[int], *, backend: str | None = None) -> "Tensor":
        return cls(shape, backend=backend)

    @classmethod
    def from_rows(cls, rows: Iterable[Iterable[float]], *, backend: str | None = None) -> "Tensor":
        items = list(rows)
        n_rows, n_cols, flat = _flatten_nested(items)
        return cls((n_rows, n_cols), flat, backend=backend)

    @classmethod
    def from_numpy(cls, matrix: Any, *, backend: str | None = None) -> "Tensor":
        values = _np.asarray(matrix, dtype=_np.float32)
        if values.ndim != 2:
            raise ValueError("Tensor expects a 2D array")
        return cls(values.shape, values.reshape(-1), backend=backend)

    @classmethod
    def _from_buffer(
        cls,
        rows: int,
        cols: int,
        buffer: _buffer.Buffer,
        *,
        layout: Layout = Layout.ROW_MAJOR,
    ) -> "Tensor":
        _buffer.buffer_backend(buffer)
        if len(buffer) != rows * cols:
            raise ValueError("buffer does not match requested tensor shape")
        instance = cls.__new__(cls)
        instance._rows = int(rows)
        instance._cols = int(cols)
        instance._data = buffer
        instance._layout = layout
        return instance

    @_ShapeDescriptor
    def shape(self) -> tuple[int, int]:
        return (self._rows, self._cols)

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def layout(self) -> Layout:
        return self._layout

    @property
    def backend(self) -> str:
        return _buffer.buffer_backend(self._data)

    def __len__(self) -> int:
        return self._rows * self._cols

    def __repr__(self) -> str:
        return (
            f"Tensor(shape={self.shape()}, layout={self._layout.value!r}, "
            f"backend={self.backend!r}, data={self.tolist()!r})"
        )

    def _row_major(self) -> _buffer.Buffer:
        """Return the data as a row-major buffer, copying only for column-major tensors."""

        return to_contiguous(self._data, self.shape(), self._layout)

    def data(self) -> list[float]:
        """Flat copy of the physical buffer, in :attr:`layout` order."""

        return [float(value) for value in self._data]

    def tolist(self) -> list[list[float]]:
        flat = self._row_major()
        cols = self._cols
        return [
            [float(value) for value in flat[r * cols : (r + 1) * cols]]
            for r in range(self._rows)
        ]

    def numpy(self, *, copy: bool = True) -> _np.ndarray:
        flat = self._row_major()
        if isinstance(flat, _np.ndarray):
            matrix = flat.reshape(self._rows, self._cols)
            return matrix.copy() if copy else matrix
        return _np.frombuffer(flat, dtype=_np.float32).reshape(self._rows, self._cols).copy()

    def reshape(self, shape: Sequence[int]) -> None:
        """Re-partition the row-major element sequence into ``shape`` in place."""

        rows, cols = _coerce_shape(shape)
        total = self._rows * self._cols
        if rows * cols != total:
            raise ValueError(
                f"Tensor data of length {total} cannot be reshaped to ({rows}, {cols})"
            )
        if self._layout is Layout.COLUMN_MAJOR:
            self._data = self._row_major()
            self._layout = Layout.ROW_MAJOR
        self._rows = rows
        self._cols = cols

    def contiguous(self) -> "Tensor":
        """Return a row-major copy of the tensor."""

        buffer = self._row_major()
        if buffer is self._data:
            buffer = _buffer.copy(buffer)
        return Tensor._from_buffer(self._rows, self._cols, buffer)

    def to_column_major(self) -> "Tensor":
        """Return a copy of the tensor stored column by column."""

        buffer = to_column_major(self._data, self.shape(), self._layout)
        if buffer is self._data:
            buffer = _buffer.copy(buffer)
        return Tensor._from_buffer(
            self._rows, self._cols, buffer, layout=Layout.COLUMN_MAJOR
        )

    def to_backend(self, backend: str) -> "Tensor":
        target = _resolve_backend(backend)
        buffer = _buffer.convert(self._data, target)
        if buffer is self._data:
            buffer = _buffer.copy(buffer)
        return Tensor._from_buffer(self._rows, self._cols, buffer, layout=self._layout)

    def matmul(self, other: "Tensor", *, strategy: str | None = None) -> "Tensor":
        """Return ``self @ other`` as a new row-major tensor.

        ``strategy`` selects the kernel (``sequential``, ``parallel``,
        ``columnar``); ``auto`` or ``None`` defers to the configured default.
        Incompatible shapes raise :class:`~tnncore.errors.ShapeError`.
        """

        if not isinstance(other, Tensor):
            raise TypeError("matmul expects another Tensor instance")
        config = get_config()
        try:
            rows, cols = check_compatible(
                self.shape(), other.shape(), mode=config.shape_check
            )
        except ShapeError as exc:
            logger.warning("Could not multiply matrices %s-%s", list(exc.left), list(exc.right))
            raise

        inner = self._cols
        backend = self.backend
        chosen = select_strategy(
            _resolve_strategy(strategy), rows, inner, cols, config.parallel_min_dim
        )
        logger.debug(
            "matmul %dx%d @ %dx%d using %s strategy on %s backend",
            rows,
            inner,
            inner,
            cols,
            chosen,
            backend,
        )

        left = self._row_major()
        right_data = _buffer.convert(other._data, backend)
        if chosen == "columnar":
            right = to_column_major(right_data, other.shape(), other._layout)
            result = matmul_columnar(left, right, rows, inner, cols)
        else:
            right = to_contiguous(right_data, other.shape(), other._layout)
            kernel = matmul_parallel if chosen == "parallel" else matmul_sequential
            result = kernel(
                left,
                right,
                rows,
                inner,
                cols,
                col_tile=config.col_tile,
                inner_tile=config.inner_tile,
            )
        return Tensor._from_buffer(rows, cols, result)

    def __matmul__(self, other: object) -> "Tensor":
        if not isinstance(other, Tensor):
            return NotImplemented
        return self.matmul(other)

    def add(self, other: "Tensor") -> "Tensor":
        """Element-wise addition; both tensors must share a shape."""

        if not isinstance(other, Tensor):
            raise TypeError("add expects another Tensor instance")
        if self.shape() != other.shape():
            raise ValueError(
                f"Tensors with different shapes cannot be added {self.shape()} + {other.shape()}"
            )
        backend = self.backend
        right = _buffer.convert(other._row_major(), backend)
        result = add_buffers(self._row_major(), right)
        return Tensor._from_buffer(self._rows, self._cols, result)

    def __add__(self, other: object) -> "Tensor":
        if not isinstance(other, Tensor):
            return NotImplemented
        return self.add(other)

    def relu(self) -> None:
        """Clamp negative values to zero in place."""

        relu_inplace(self._data)

    def sigmoid(self) -> None:
        """Apply the logistic function in place."""

        sigmoid_inplace(self._data)


def from_data(
    shape: Sequence[int],
    data: object,
    *,
    layout: Layout | str = Layout.ROW_MAJOR,
    backend: str | None = None,
) -> Tensor:
    return Tensor.from_data(shape, data, layout=layout, backend=backend)


def zeros(shape: Sequence[int], *, backend: str | None = None) -> Tensor:
    return Tensor.zeros(shape, backend=backend)
