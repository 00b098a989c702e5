"""Sweep a job's repository right after one of its builds finished.

Anything the build did not read since it started is considered unused: the
repository is swept with :func:`~MavenRepoCleaner.staleness.accessed_before`
using the build start as the reference time.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Union

from .filesystem import LocalNodeFilesystem, NodeFilesystem
from .staleness import accessed_before
from .sweeper import SweepResult, sweep

__all__ = ["post_build_sweep"]

logger = logging.getLogger(__name__)

BuildStart = Union[float, int, datetime]


def _epoch(value: BuildStart) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)


def post_build_sweep(
    workspace: str,
    build_started: BuildStart,
    *,
    fs: Optional[NodeFilesystem] = None,
    repository_dir_name: str = ".repository",
    dry_run: bool = False,
) -> SweepResult:
    """Remove artifacts the finished build never accessed.

    Args:
        workspace: Workspace directory of the build.
        build_started: Build start as epoch seconds or a ``datetime``.
        fs: Filesystem of the node that ran the build.
        repository_dir_name: Name of the repository directory inside the workspace.
        dry_run: Report without deleting.

    Returns:
        :class:`SweepResult`; empty when the workspace has no repository.
    """

    fs = fs or LocalNodeFilesystem()
    root = fs.join(str(workspace), repository_dir_name)
    if not fs.exists(root):
        logger.debug("No private repository at %s", root)
        return SweepResult(root=root, dry_run=dry_run)

    result = sweep(root, accessed_before(_epoch(build_started)), fs=fs, dry_run=dry_run)
    if result.removed:
        logger.info("%d unused artifacts removed from private maven repository", len(result))
    return result
