"""Process-wide kernel settings.

Settings are read from ``TNNCORE_*`` environment variables the first time they
are needed and can be overridden programmatically afterwards.  Integer knobs
that fail to parse fall back to their defaults with a :class:`RuntimeWarning`
so a typo in the environment never prevents the package from importing.
"""

from __future__ import annotations

import os
import warnings
from contextlib import contextmanager
from dataclasses import dataclass, replace
from threading import Lock
from typing import Iterator

__all__ = [
    "BACKENDS",
    "STRATEGIES",
    "SHAPE_CHECKS",
    "KernelConfig",
    "configure",
    "get_config",
    "reload_config",
    "set_config",
    "temporary_config",
]

BACKENDS = ("numpy", "python")
STRATEGIES = ("auto", "sequential", "parallel", "columnar")
SHAPE_CHECKS = ("standard", "legacy")

_ENV_PREFIX = "TNNCORE_"


def _read_int_env(variable: str) -> int | None:
    value = os.environ.get(variable)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        warnings.warn(
            f"Ignoring invalid {variable} value; expected an integer",
            RuntimeWarning,
        )
        return None


def _read_choice_env(variable: str) -> str | None:
    value = os.environ.get(variable, "").strip().lower()
    return value or None


def _normalise_choice(value: object, choices: tuple[str, ...], label: str) -> str:
    normalized = str(value).strip().lower()
    if normalized not in choices:
        options = ", ".join(repr(choice) for choice in choices)
        raise ValueError(f"{label} must be one of {options}, got {value!r}")
    return normalized


@dataclass(frozen=True)
class KernelConfig:
    """Tunables consulted by :class:`~tnncore.tensor.Tensor` and the GEMM kernels."""

    backend: str = "numpy"
    strategy: str = "auto"
    parallel_min_dim: int = 64
    col_tile: int = 64
    inner_tile: int = 64
    shape_check: str = "standard"

    def __post_init__(self) -> None:
        object.__setattr__(self, "backend", _normalise_choice(self.backend, BACKENDS, "backend"))
        object.__setattr__(
            self, "strategy", _normalise_choice(self.strategy, STRATEGIES, "strategy")
        )
        object.__setattr__(
            self,
            "shape_check",
            _normalise_choice(self.shape_check, SHAPE_CHECKS, "shape_check"),
        )
        if self.parallel_min_dim < 1:
            raise ValueError("parallel_min_dim must be a positive integer")
        if self.col_tile < 1 or self.inner_tile < 1:
            raise ValueError("matmul tile sizes must be positive integers")

    @classmethod
    def from_env(cls) -> "KernelConfig":
        """Build a config from ``TNNCORE_*`` variables, keeping defaults for unset ones."""

        overrides: dict[str, object] = {}
        choice_sources = {
            "backend": _ENV_PREFIX + "BACKEND",
            "strategy": _ENV_PREFIX + "MATMUL_STRATEGY",
            "shape_check": _ENV_PREFIX + "SHAPE_CHECK",
        }
        for field_name, variable in choice_sources.items():
            value = _read_choice_env(variable)
            if value is not None:
                overrides[field_name] = value

        int_sources = {
            "parallel_min_dim": "TNNCORE_PARALLEL_MIN_DIM",
            "col_tile": "TNNCORE_MATMUL_COL_TILE",
            "inner_tile": "TNNCORE_MATMUL_INNER_TILE",
        }
        for field_name, variable in int_sources.items():
            value = _read_int_env(variable)
            if value is not None:
                if value <= 0:
                    warnings.warn(
                        f"Ignoring non-positive {variable} value {value}",
                        RuntimeWarning,
                    )
                    continue
                overrides[field_name] = value
        return cls(**overrides)


_LOCK = Lock()
_CONFIG: KernelConfig | None = None


def get_config() -> KernelConfig:
    """Return the active configuration, loading it from the environment on first use."""

    global _CONFIG
    with _LOCK:
        if _CONFIG is None:
            _CONFIG = KernelConfig.from_env()
        return _CONFIG


def set_config(config: KernelConfig) -> KernelConfig:
    """Install ``config`` as the active configuration and return the previous one."""

    global _CONFIG
    if not isinstance(config, KernelConfig):
        raise TypeError("set_config expects a KernelConfig instance")
    with _LOCK:
        previous = _CONFIG if _CONFIG is not None else KernelConfig.from_env()
        _CONFIG = config
    return previous


def _swap_config(overrides: dict[str, object]) -> tuple[KernelConfig, KernelConfig]:
    global _CONFIG
    with _LOCK:
        previous = _CONFIG if _CONFIG is not None else KernelConfig.from_env()
        updated = replace(previous, **overrides)
        _CONFIG = updated
    return previous, updated


def configure(**overrides: object) -> KernelConfig:
    """Replace individual fields of the active configuration."""

    return _swap_config(overrides)[1]


def reload_config() -> KernelConfig:
    """Discard programmatic overrides and re-read the environment."""

    global _CONFIG
    with _LOCK:
        _CONFIG = KernelConfig.from_env()
        return _CONFIG


@contextmanager
def temporary_config(**overrides: object) -> Iterator[KernelConfig]:
    """Apply ``overrides`` for the duration of the managed block."""

    previous, updated = _swap_config(overrides)
    try:
        yield updated
    finally:
        set_config(previous)
