"""Shared fixtures: isolated config environment and a file-only logger."""

import os
from pathlib import Path

import pytest

from pkgsweep_logger import PkgsweepLogger


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep user config and stray PKGSWEEP_* variables out of every test."""
    for key in list(os.environ):
        if key.startswith("PKGSWEEP_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("PKGSWEEP_LOCK__DIR", str(tmp_path / "lock"))


@pytest.fixture
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "logs" / "pkgsweep.log"


@pytest.fixture
def logger(log_path: Path):
    lg = PkgsweepLogger(log_path, module="test", quiet=True)
    yield lg
    lg.close()
