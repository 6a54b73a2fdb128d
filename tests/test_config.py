from __future__ import annotations

import threading

import pytest

import tnncore
from tnncore import KernelConfig, check_compatible, ShapeError
from tnncore.config import configure, get_config, reload_config, set_config, temporary_config


def test_defaults() -> None:
    config = get_config()
    assert config == KernelConfig()
    assert config.backend == "numpy"
    assert config.strategy == "auto"
    assert config.shape_check == "standard"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TNNCORE_BACKEND", "Python")
    monkeypatch.setenv("TNNCORE_MATMUL_STRATEGY", "parallel")
    monkeypatch.setenv("TNNCORE_PARALLEL_MIN_DIM", "8")
    monkeypatch.setenv("TNNCORE_MATMUL_COL_TILE", "16")
    monkeypatch.setenv("TNNCORE_MATMUL_INNER_TILE", "32")
    monkeypatch.setenv("TNNCORE_SHAPE_CHECK", "legacy")

    config = reload_config()

    assert config == KernelConfig(
        backend="python",
        strategy="parallel",
        parallel_min_dim=8,
        col_tile=16,
        inner_tile=32,
        shape_check="legacy",
    )
    assert tnncore.zeros((1, 1)).backend == "python"


def test_invalid_integer_env_warns_and_keeps_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TNNCORE_PARALLEL_MIN_DIM", "lots")
    monkeypatch.setenv("TNNCORE_MATMUL_COL_TILE", "0")

    with pytest.warns(RuntimeWarning):
        config = reload_config()

    assert config.parallel_min_dim == 64
    assert config.col_tile == 64


def test_invalid_choice_env_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TNNCORE_MATMUL_STRATEGY", "strassen")
    with pytest.raises(ValueError, match="strategy"):
        reload_config()


def test_invalid_fields_are_rejected() -> None:
    with pytest.raises(ValueError):
        KernelConfig(parallel_min_dim=0)
    with pytest.raises(ValueError):
        KernelConfig(inner_tile=-4)
    with pytest.raises(ValueError):
        KernelConfig(backend="gpu")


def test_temporary_config_restores_previous_settings() -> None:
    before = get_config()
    with temporary_config(strategy="columnar") as active:
        assert active.strategy == "columnar"
        assert get_config() is active
    assert get_config() is before


def test_configure_and_set_config() -> None:
    updated = configure(parallel_min_dim=2)
    assert get_config().parallel_min_dim == 2

    previous = set_config(KernelConfig())
    assert previous is updated
    with pytest.raises(TypeError):
        set_config({"backend": "numpy"})  # type: ignore[arg-type]


def test_check_compatible_modes() -> None:
    assert check_compatible((2, 3), (3, 4)) == (2, 4)
    assert check_compatible((4, 3), (3, 4), mode="legacy") == (4, 4)
    with pytest.raises(ShapeError):
        check_compatible((2, 3), (3, 4), mode="legacy")
    with pytest.raises(ShapeError):
        check_compatible((2, 3), (2, 3))
    with pytest.raises(ValueError, match="unknown shape check"):
        check_compatible((2, 3), (3, 2), mode="lenient")


def test_shape_error_carries_shapes_without_side_effects() -> None:
    error = ShapeError([2, 3], (4, 5))
    assert error.left == (2, 3)
    assert error.right == (4, 5)
    assert isinstance(error, ValueError)
    assert str(error) == "Matrices of invalid size [2, 3]-[4, 5]"


def test_strategy_is_read_from_matmul_strategy_variable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TNNCORE_STRATEGY", "columnar")
    monkeypatch.setenv("TNNCORE_MATMUL_STRATEGY", "parallel")

    assert reload_config().strategy == "parallel"

    monkeypatch.delenv("TNNCORE_MATMUL_STRATEGY")
    assert reload_config().strategy == "auto"


def test_concurrent_configure_keeps_every_update() -> None:
    targets = {
        "backend": "python",
        "strategy": "sequential",
        "col_tile": 8,
        "inner_tile": 16,
    }
    start = threading.Barrier(len(targets))

    def _worker(field: str, value: object) -> None:
        start.wait()
        for _ in range(200):
            configure(**{field: value})

    threads = [
        threading.Thread(target=_worker, args=item) for item in targets.items()
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    config = get_config()
    for field, value in targets.items():
        assert getattr(config, field) == value


def test_temporary_config_restores_after_error() -> None:
    before = get_config()
    with pytest.raises(RuntimeError):
        with temporary_config(col_tile=4):
            raise RuntimeError("boom")
    assert get_config() is before
