from __future__ import annotations

import os

import pytest

from tnncore import reload_config


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch):
    for name in list(os.environ):
        if name.startswith("TNNCORE_"):
            monkeypatch.delenv(name, raising=False)
    config = reload_config()
    yield config
    for name in list(os.environ):
        if name.startswith("TNNCORE_"):
            monkeypatch.delenv(name, raising=False)
    reload_config()


@pytest.fixture(params=["numpy", "python"])
def backend(request) -> str:
    return request.param

