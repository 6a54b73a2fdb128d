"""Row-major / column-major normalization for flat tensor buffers."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum

import numpy as _np

from ._buffer import Buffer, allocate, buffer_backend

__all__ = [
    "Layout",
    "coerce_layout",
    "to_column_major",
    "to_contiguous",
]

logger = logging.getLogger(__name__)


class Layout(str, Enum):
    ROW_MAJOR = "row_major"
    COLUMN_MAJOR = "column_major"


def coerce_layout(value: object) -> Layout:
    if isinstance(value, Layout):
        return value
    aliases = {
        "row_major": Layout.ROW_MAJOR,
        "row": Layout.ROW_MAJOR,
        "c": Layout.ROW_MAJOR,
        "column_major": Layout.COLUMN_MAJOR,
        "column": Layout.COLUMN_MAJOR,
        "col": Layout.COLUMN_MAJOR,
        "f": Layout.COLUMN_MAJOR,
    }
    try:
        return aliases[str(value).strip().lower()]
    except KeyError:
        raise ValueError(
            "layout must be 'row_major' or 'column_major', got {!r}".format(value)
        ) from None


def _transpose_flat(buffer: Buffer, outer: int, inner: int) -> Buffer:
    # buffer holds an outer x inner row-major block; return the inner x outer one.
    if buffer_backend(buffer) == "numpy":
        return _np.ascontiguousarray(buffer.reshape(outer, inner).T).reshape(-1)
    total = outer * inner
    transposed = allocate(total, "python")
    for o in range(outer):
        offset = o * inner
        for i in range(inner):
            transposed[i * outer + o] = buffer[offset + i]
    return transposed


def to_contiguous(buffer: Buffer, shape: Sequence[int], layout: Layout) -> Buffer:
    """Return ``buffer`` as one contiguous row-major run.

    Row-major input is returned as-is; column-major input is copied into row
    order.
    """

    layout = coerce_layout(layout)
    if layout is Layout.ROW_MAJOR:
        return buffer
    rows, cols = int(shape[0]), int(shape[1])
    logger.debug("Linearizing %dx%d column-major buffer into row order", rows, cols)
    return _transpose_flat(buffer, cols, rows)


def to_column_major(buffer: Buffer, shape: Sequence[int], layout: Layout) -> Buffer:
    """Return ``buffer`` stored column by column; no copy when it already is."""

    layout = coerce_layout(layout)
    if layout is Layout.COLUMN_MAJOR:
        return buffer
    rows, cols = int(shape[0]), int(shape[1])
    logger.debug("Reordering %dx%d row-major buffer into column order", rows, cols)
    return _transpose_flat(buffer, rows, cols)
