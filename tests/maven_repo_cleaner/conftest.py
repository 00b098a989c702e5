"""Shared fixtures for the repository cleanup test suite."""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Optional

import fsspec
import pytest

from MavenRepoCleaner.logging_utils import LOGGER_NAME

DAY = 24 * 60 * 60


def make_artifact(
    root: Path,
    relative: str,
    *,
    atime: Optional[float] = None,
    mtime: Optional[float] = None,
    sidecars: bool = False,
    content: bytes = b"artifact",
) -> Path:
    """Create ``root/relative`` (and optional ``.md5``/``.sha1``) with the given times."""

    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    created = [path]
    if sidecars:
        for suffix in (".md5", ".sha1"):
            sidecar = path.with_name(path.name + suffix)
            sidecar.write_text("0" * 32, encoding="utf-8")
            created.append(sidecar)
    if atime is not None or mtime is not None:
        now = time.time()
        for item in created:
            os.utime(item, (atime if atime is not None else now, mtime if mtime is not None else now))
    return path


def set_times(path: Path, when: float) -> None:
    os.utime(path, (when, when))


@pytest.fixture
def now() -> float:
    return time.time()


@pytest.fixture
def repository(tmp_path: Path) -> Path:
    """Empty ``.repository`` inside a job workspace."""

    root = tmp_path / "workspace" / ".repository"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def memory_fs():
    """Clean fsspec in-memory filesystem shared by ``memory://`` URLs."""

    fs = fsspec.filesystem("memory")
    fs.store.clear()
    fs.pseudo_dirs.clear()
    fs.pseudo_dirs.append("")
    yield fs
    fs.store.clear()
    fs.pseudo_dirs.clear()
    fs.pseudo_dirs.append("")


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Undo handlers and propagation changes made by ``setup_logging``."""

    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_m2clean_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def artifact():
    """Factory fixture wrapping :func:`make_artifact`."""

    return make_artifact
