"""Matrix multiplication kernels over flat float32 buffers.

Three strategies share one accumulate primitive:

* ``sequential`` runs the i-k-j loop over the whole product on the calling
  thread.
* ``parallel`` splits both operands into quadrants, hands the top and bottom
  output row bands to two worker threads and joins them before returning.
  The bands are carved out of the output buffer before the workers start and
  never overlap, so no locking is needed.
* ``columnar`` keeps the older dot-product traversal that walks the right
  operand column by column out of a column-major copy.

All operands passed in here are already row-major (``columnar`` additionally
takes the right operand in column-major order); layout normalization happens
in :mod:`tnncore.layout`.
"""

from __future__ import annotations

import logging
import math
import operator
from concurrent.futures import ThreadPoolExecutor
from typing import Any, NamedTuple

import numpy as _np

from ._buffer import Buffer, allocate, buffer_backend, compact

__all__ = [
    "BlockView",
    "accumulate_blocked",
    "matmul_columnar",
    "matmul_parallel",
    "matmul_sequential",
    "select_strategy",
]

logger = logging.getLogger(__name__)

_FMA = getattr(math, "fma", None)
_PARALLEL_UNITS = 2


class BlockView(NamedTuple):
    """A ``rows x cols`` window into a flat buffer.

    Row ``r`` of the window starts at ``offset + r * stride``.  ``stride`` is
    the row width of the underlying matrix, which is wider than ``cols`` when
    the window covers only some of its columns.
    """

    buffer: Any
    offset: int
    stride: int
    rows: int
    cols: int

    def check_bounds(self, label: str) -> None:
        if self.rows == 0 or self.cols == 0:
            return
        if self.offset < 0 or self.stride < self.cols:
            raise ValueError(
                f"{label} view has offset {self.offset} and stride {self.stride} "
                f"for {self.cols} columns"
            )
        end = self.offset + (self.rows - 1) * self.stride + self.cols
        if end > len(self.buffer):
            raise ValueError(
                f"{label} view ends at {end} but its buffer holds {len(self.buffer)} elements"
            )


def _accumulate_python(
    lhs: BlockView, rhs: BlockView, out: BlockView, col_tile: int, inner_tile: int
) -> None:
    rows, inner, cols = lhs.rows, lhs.cols, rhs.cols
    left, right, dest = lhs.buffer, rhs.buffer, out.buffer
    if col_tile > cols:
        col_tile = cols
    if inner_tile > inner:
        inner_tile = inner
    fma = _FMA

    for i in range(rows):
        lhs_row_base = lhs.offset + i * lhs.stride
        out_row_base = out.offset + i * out.stride
        for col_start in range(0, cols, col_tile):
            col_end = min(col_start + col_tile, cols)
            block_width = col_end - col_start
            full = block_width - (block_width % 4)
            out_base = out_row_base + col_start
            for k_start in range(0, inner, inner_tile):
                k_end = min(k_start + inner_tile, inner)
                for k in range(k_start, k_end):
                    scale = left[lhs_row_base + k]
                    rhs_base = rhs.offset + k * rhs.stride + col_start
                    offset = 0
                    while offset < full:
                        rhs_index = rhs_base + offset
                        out_index = out_base + offset
                        if fma is not None:
                            dest[out_index] = fma(scale, right[rhs_index], dest[out_index])
                            dest[out_index + 1] = fma(scale, right[rhs_index + 1], dest[out_index + 1])
                            dest[out_index + 2] = fma(scale, right[rhs_index + 2], dest[out_index + 2])
                            dest[out_index + 3] = fma(scale, right[rhs_index + 3], dest[out_index + 3])
                        else:
                            dest[out_index] += scale * right[rhs_index]
                            dest[out_index + 1] += scale * right[rhs_index + 1]
                            dest[out_index + 2] += scale * right[rhs_index + 2]
                            dest[out_index + 3] += scale * right[rhs_index + 3]
                        offset += 4
                    for tail in range(full, block_width):
                        idx = out_base + tail
                        rhs_idx = rhs_base + tail
                        if fma is not None:
                            dest[idx] = fma(scale, right[rhs_idx], dest[idx])
                        else:
                            dest[idx] += scale * right[rhs_idx]


def _accumulate_numpy(lhs: BlockView, rhs: BlockView, out: BlockView) -> None:
    rows, inner, cols = lhs.rows, lhs.cols, rhs.cols
    left, right, dest = lhs.buffer, rhs.buffer, out.buffer
    scratch = _np.empty(cols, dtype=_np.float32)

    for i in range(rows):
        lhs_row_base = lhs.offset + i * lhs.stride
        out_row_base = out.offset + i * out.stride
        acc = dest[out_row_base : out_row_base + cols]
        for k in range(inner):
            rhs_base = rhs.offset + k * rhs.stride
            _np.multiply(right[rhs_base : rhs_base + cols], left[lhs_row_base + k], out=scratch)
            acc += scratch


def accumulate_blocked(
    lhs: BlockView,
    rhs: BlockView,
    out: BlockView,
    *,
    col_tile: int = 64,
    inner_tile: int = 64,
) -> None:
    """Accumulate ``lhs @ rhs`` into ``out`` in place using the i-k-j order.

    For each output row ``i`` and reduction index ``k`` the ``k``-th row of
    ``rhs`` is scaled by ``lhs[i, k]`` and added to row ``i`` of ``out``, so
    the innermost loop walks two contiguous rows.  ``out`` is never cleared.
    """

    if lhs.cols != rhs.rows or lhs.rows != out.rows or rhs.cols != out.cols:
        raise ValueError(
            f"cannot accumulate ({lhs.rows}x{lhs.cols}) @ ({rhs.rows}x{rhs.cols}) "
            f"into ({out.rows}x{out.cols})"
        )
    lhs.check_bounds("left")
    rhs.check_bounds("right")
    out.check_bounds("output")
    if lhs.rows == 0 or lhs.cols == 0 or rhs.cols == 0:
        return

    if isinstance(out.buffer, _np.ndarray):
        _accumulate_numpy(lhs, rhs, out)
    else:
        _accumulate_python(lhs, rhs, out, col_tile, inner_tile)


def matmul_sequential(
    left: Buffer,
    right: Buffer,
    m: int,
    k: int,
    n: int,
    *,
    col_tile: int = 64,
    inner_tile: int = 64,
) -> Buffer:
    """Multiply row-major ``left (m x k)`` by ``right (k x n)`` on the calling thread."""

    out = allocate(m * n, buffer_backend(left))
    accumulate_blocked(
        BlockView(left, 0, k, m, k),
        BlockView(right, 0, n, k, n),
        BlockView(out, 0, n, m, n),
        col_tile=col_tile,
        inner_tile=inner_tile,
    )
    return out


def _band_product(
    band: Any,
    a_left: Buffer,
    a_right: Buffer,
    b11: Buffer,
    b12: Buffer,
    b21: Buffer,
    b22: Buffer,
    rows: int,
    k_split: tuple[int, int],
    n_split: tuple[int, int],
    stride: int,
    tiles: tuple[int, int],
) -> None:
    # band holds `rows` full-width output rows; the left and right column
    # halves are disjoint windows of it.
    k1, k2 = k_split
    n1, n2 = n_split
    col_tile, inner_tile = tiles
    lhs1 = BlockView(a_left, 0, k1, rows, k1)
    lhs2 = BlockView(a_right, 0, k2, rows, k2)
    out1 = BlockView(band, 0, stride, rows, n1)
    out2 = BlockView(band, n1, stride, rows, n2)

    accumulate_blocked(lhs1, BlockView(b11, 0, n1, k1, n1), out1, col_tile=col_tile, inner_tile=inner_tile)
    accumulate_blocked(lhs2, BlockView(b21, 0, n1, k2, n1), out1, col_tile=col_tile, inner_tile=inner_tile)
    accumulate_blocked(lhs1, BlockView(b12, 0, n2, k1, n2), out2, col_tile=col_tile, inner_tile=inner_tile)
    accumulate_blocked(lhs2, BlockView(b22, 0, n2, k2, n2), out2, col_tile=col_tile, inner_tile=inner_tile)


def matmul_parallel(
    left: Buffer,
    right: Buffer,
    m: int,
    k: int,
    n: int,
    *,
    col_tile: int = 64,
    inner_tile: int = 64,
) -> Buffer:
    """Multiply by quadrants, computing the two output row bands concurrently.

    Splits happen at ``m // 2``, ``k // 2`` and ``n // 2``, so at odd sizes the
    first half is one smaller than the second.  Both workers are joined before
    the call returns and an exception in either one propagates to the caller.
    """

    backend = buffer_backend(left)
    m1, k1, n1 = m // 2, k // 2, n // 2
    m2, k2, n2 = m - m1, k - k1, n - n1

    a11 = compact(left, k, 0, m1, 0, k1)
    a12 = compact(left, k, 0, m1, k1, k2)
    a21 = compact(left, k, m1, m2, 0, k1)
    a22 = compact(left, k, m1, m2, k1, k2)
    b11 = compact(right, n, 0, k1, 0, n1)
    b12 = compact(right, n, 0, k1, n1, n2)
    b21 = compact(right, n, k1, k2, 0, n1)
    b22 = compact(right, n, k1, k2, n1, n2)

    out = allocate(m * n, backend)
    split = m1 * n
    view = out if backend == "numpy" else memoryview(out)
    top, bottom = view[:split], view[split:]

    logger.debug(
        "Parallel matmul %dx%dx%d split into bands of %d and %d rows",
        m,
        k,
        n,
        m1,
        m2,
    )
    shared = ((k1, k2), (n1, n2), n, (col_tile, inner_tile))
    try:
        with ThreadPoolExecutor(
            max_workers=_PARALLEL_UNITS, thread_name_prefix="tnncore-gemm"
        ) as pool:
            futures = [
                pool.submit(_band_product, top, a11, a12, b11, b12, b21, b22, m1, *shared),
                pool.submit(_band_product, bottom, a21, a22, b11, b12, b21, b22, m2, *shared),
            ]
            for future in futures:
                future.result()
    finally:
        if isinstance(view, memoryview):
            top.release()
            bottom.release()
            view.release()
    return out


def matmul_columnar(
    left: Buffer, right_columns: Buffer, m: int, k: int, n: int
) -> Buffer:
    """Multiply row-major ``left`` by a right operand stored column by column.

    Each output element is the dot product of a left row and a right column,
    both of which are contiguous runs of ``k`` elements.
    """

    backend = buffer_backend(left)
    out = allocate(m * n, backend)
    if m == 0 or n == 0 or k == 0:
        return out

    if backend == "numpy":
        lhs = left.reshape(m, k)
        rhs = right_columns.reshape(n, k)
        for i in range(m):
            row = lhs[i]
            out[i * n : (i + 1) * n] = (rhs * row).sum(axis=1, dtype=_np.float32)
        return out

    for i in range(m):
        lhs_base = i * k
        row = left[lhs_base : lhs_base + k]
        out_base = i * n
        for j in range(n):
            col_base = j * k
            out[out_base + j] = sum(map(operator.mul, row, right_columns[col_base : col_base + k]))
    return out


def select_strategy(requested: str, m: int, k: int, n: int, parallel_min_dim: int) -> str:
    """Resolve ``auto`` to a concrete strategy for an ``m x k`` by ``k x n`` product."""

    if requested != "auto":
        return requested
    if m >= 2 and min(m, k, n) >= parallel_min_dim:
        return "parallel"
    return "sequential"
