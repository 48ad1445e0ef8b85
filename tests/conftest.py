from __future__ import annotations

import os

import pytest

from voxmode import config


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Each test gets default settings and no stray .env file."""

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config, "_ENV_PATH", tmp_path / ".env")
    monkeypatch.setattr(config, "_settings", None)
    for key in list(os.environ):
        if key.startswith("VOXMODE_"):
            monkeypatch.delenv(key, raising=False)
    yield
