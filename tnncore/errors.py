"""Shape diagnostics shared by the tensor and GEMM layers."""

from __future__ import annotations

from collections.abc import Sequence

__all__ = ["ShapeError", "check_compatible"]


class ShapeError(ValueError):
    """Raised when two matrices cannot be multiplied.

    The offending shapes are kept on ``left`` and ``right`` so callers can
    retry with corrected operands or report them.
    """

    def __init__(self, left: Sequence[int], right: Sequence[int]):
        self.left = tuple(int(dim) for dim in left)
        self.right = tuple(int(dim) for dim in right)
        super().__init__(
            f"Matrices of invalid size {list(self.left)}-{list(self.right)}"
        )

    def __reduce__(self):
        return (type(self), (self.left, self.right))


def check_compatible(
    left: Sequence[int], right: Sequence[int], *, mode: str = "standard"
) -> tuple[int, int]:
    """Validate ``left @ right`` and return the product shape.

    ``standard`` requires ``left.cols == right.rows``.  ``legacy`` keeps that
    check and also requires ``left.rows == right.cols``, so the product is
    always square.
    """

    if len(left) != 2 or len(right) != 2:
        raise ShapeError(left, right)
    rows, inner = int(left[0]), int(left[1])
    right_rows, cols = int(right[0]), int(right[1])
    if inner != right_rows:
        raise ShapeError(left, right)
    if mode == "legacy":
        if rows != cols:
            raise ShapeError(left, right)
    elif mode != "standard":
        raise ValueError(f"unknown shape check mode {mode!r}")
    return rows, cols
