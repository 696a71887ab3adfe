"""Shared fixtures for the git-sync-backup test suite."""

import logging
import shutil
from collections.abc import Iterator
from pathlib import Path

import pytest

from git_sync_backup.constants import APP_NAME, ENV_DEVICE_ID
from git_sync_backup.git_wrapper import GitRepo

DEVICE_ID = "device-0001"


@pytest.fixture(autouse=True)
def reset_logger() -> Iterator[None]:
    """Drops handlers installed by `setup_logging` so tests stay isolated."""
    yield
    logger = logging.getLogger(APP_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def device_id(monkeypatch: pytest.MonkeyPatch) -> str:
    """Pins the canonical device id through the environment override."""
    monkeypatch.setenv(ENV_DEVICE_ID, DEVICE_ID)
    return DEVICE_ID


@pytest.fixture
def store(tmp_path: Path) -> Path:
    """Creates an initialized store (git repository with a root commit)."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    root = tmp_path / "store"
    GitRepo.init(root, "main")
    return root


@pytest.fixture
def work(tmp_path: Path) -> Path:
    """A directory standing in for the device's own filesystem."""
    path = tmp_path / "work"
    path.mkdir()
    return path
