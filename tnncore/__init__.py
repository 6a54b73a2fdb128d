"""Dense two dimensional float32 tensors with blocked and parallel matmul kernels."""

from __future__ import annotations

from .config import (
    KernelConfig,
    configure,
    get_config,
    reload_config,
    set_config,
    temporary_config,
)
from .errors import ShapeError, check_compatible
from .layout import Layout, to_column_major, to_contiguous
from .tensor import Tensor, from_data, zeros

__version__ = "0.3.0"

__all__ = [
    "KernelConfig",
    "Layout",
    "ShapeError",
    "Tensor",
    "check_compatible",
    "configure",
    "from_data",
    "get_config",
    "reload_config",
    "set_config",
    "temporary_config",
    "to_column_major",
    "to_contiguous",
    "zeros",
]
