"""Shared fixtures for bacpac_imagegen tests."""

import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from bacpac_imagegen.config import Settings
from bacpac_imagegen.log import ROOT_LOGGER_NAME


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the environment, with a private temp dir."""
    return Settings(
        _env_file=None,
        tmp_dir=tmp_path / "work",
        artifact_extensions=[".bacpac", ".bin"],
        script_extensions=[".sql"],
    )


@pytest.fixture
def make_file(tmp_path: Path) -> Callable[..., Path]:
    """Factory creating a file with the given size under tmp_path/inputs."""

    def _make(name: str, size: int = 2048, content: bytes | None = None) -> Path:
        path = tmp_path / "inputs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content if content is not None else b"x" * size)
        return path

    return _make


@pytest.fixture(autouse=True)
def reset_package_logging() -> Iterator[None]:
    """Drop handlers installed by configure_logging between tests."""
    yield
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.handlers.clear()
    root.setLevel(logging.NOTSET)
