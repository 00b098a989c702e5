# === NAVMAP v1 ===
# {
#   "module": "MavenRepoCleaner.filesystem",
#   "purpose": "Node filesystem access for local and fsspec-backed build nodes",
#   "sections": [
#     {"id": "filestat", "name": "FileStat", "anchor": "class-filestat", "kind": "class"},
#     {"id": "nodefilesystem", "name": "NodeFilesystem", "anchor": "class-nodefilesystem", "kind": "class"},
#     {"id": "localnodefilesystem", "name": "LocalNodeFilesystem", "anchor": "class-localnodefilesystem", "kind": "class"},
#     {"id": "fsspecnodefilesystem", "name": "FsspecNodeFilesystem", "anchor": "class-fsspecnodefilesystem", "kind": "class"},
#     {"id": "filesystem-for", "name": "filesystem_for", "anchor": "function-filesystem-for", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Filesystem access for build nodes.

The sweeper and the node scan only need a handful of operations: list a
directory, stat an entry, touch a marker, and delete files or trees.  The
:class:`NodeFilesystem` protocol captures exactly that so the same walk runs
on the controller's local disk and on worker nodes reached through an fsspec
URL (``sftp://``, ``smb://``, ``memory://`` in tests).

Missing paths are not errors here: listing a vanished directory yields an
empty list and removing a missing file returns ``False``.  Other ``OSError``
subclasses propagate so callers can log them against the entry at hand.
"""

from __future__ import annotations

import logging
import os
import posixpath
import shutil
import stat as stat_module
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional, Protocol, TypeVar

import fsspec
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from .errors import NodeAccessError

__all__ = [
    "FileStat",
    "NodeFilesystem",
    "LocalNodeFilesystem",
    "FsspecNodeFilesystem",
    "create_remote_retry_policy",
    "filesystem_for",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TIMESTAMP_KEYS = ("mtime", "modified", "LastModified", "last_modified", "updated", "created")


@dataclass(frozen=True)
class FileStat:
    """Snapshot of the metadata the sweeper relies on."""

    path: str
    name: str
    is_dir: bool
    is_file: bool
    size: int
    mtime: float
    atime: float


class NodeFilesystem(Protocol):
    """Operations required to sweep repositories on one build node."""

    def join(self, *parts: str) -> str:
        """Join path segments using the node's separator."""

    def relative(self, path: str, root: str) -> str:
        """Return ``path`` relative to ``root`` with ``/`` separators."""

    def list_dir(self, path: str) -> List[FileStat]:
        """Return entries of ``path``; empty when the directory vanished."""

    def list_dirs(self, path: str) -> List[FileStat]:
        """Return only the subdirectories of ``path``."""

    def exists(self, path: str) -> bool:
        """Return ``True`` when ``path`` exists."""

    def stat(self, path: str) -> Optional[FileStat]:
        """Return metadata for ``path`` or ``None`` when missing."""

    def touch(self, path: str, mtime: Optional[float] = None) -> None:
        """Create ``path`` if needed and set its modification time."""

    def remove_file(self, path: str) -> bool:
        """Delete a single file; ``False`` when it was already gone."""

    def remove_dir(self, path: str) -> bool:
        """Delete an empty directory; ``False`` when it was already gone."""

    def remove_tree(self, path: str) -> None:
        """Delete ``path`` and everything below it."""


class LocalNodeFilesystem:
    """Filesystem access for the node the process runs on."""

    def join(self, *parts: str) -> str:
        return os.path.join(*parts)

    def relative(self, path: str, root: str) -> str:
        return os.path.relpath(path, root).replace(os.sep, "/")

    @staticmethod
    def _to_stat(path: str, info: os.stat_result) -> FileStat:
        return FileStat(
            path=path,
            name=os.path.basename(path),
            is_dir=stat_module.S_ISDIR(info.st_mode),
            is_file=stat_module.S_ISREG(info.st_mode),
            size=info.st_size,
            mtime=info.st_mtime,
            atime=info.st_atime,
        )

    def list_dir(self, path: str) -> List[FileStat]:
        entries: List[FileStat] = []
        try:
            with os.scandir(path) as iterator:
                for entry in iterator:
                    try:
                        info = entry.stat(follow_symlinks=False)
                    except FileNotFoundError:
                        continue
                    entries.append(self._to_stat(entry.path, info))
        except (FileNotFoundError, NotADirectoryError):
            return []
        return sorted(entries, key=lambda item: item.name)

    def list_dirs(self, path: str) -> List[FileStat]:
        return [entry for entry in self.list_dir(path) if entry.is_dir]

    def exists(self, path: str) -> bool:
        return os.path.lexists(path)

    def stat(self, path: str) -> Optional[FileStat]:
        try:
            return self._to_stat(path, os.lstat(path))
        except FileNotFoundError:
            return None

    def touch(self, path: str, mtime: Optional[float] = None) -> None:
        with open(path, "a", encoding="utf-8"):
            pass
        if mtime is not None:
            os.utime(path, (mtime, mtime))

    def remove_file(self, path: str) -> bool:
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        return True

    def remove_dir(self, path: str) -> bool:
        try:
            os.rmdir(path)
        except FileNotFoundError:
            return False
        return True

    def remove_tree(self, path: str) -> None:
        if not os.path.lexists(path):
            return
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)


def create_remote_retry_policy(max_attempts: int = 3, max_wait_seconds: float = 10.0) -> Retrying:
    """Create the Tenacity policy wrapped around remote node calls.

    Only transport failures are retried; missing paths and permission errors
    surface immediately so the sweep can log and move on.
    """

    return Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_random_exponential(multiplier=0.5, max=max_wait_seconds),
        retry=retry_if_exception_type((ConnectionError, TimeoutError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def _coerce_timestamp(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return None
    return None


class FsspecNodeFilesystem:
    """Filesystem access for a worker node reachable through an fsspec URL.

    Backends rarely expose access times; when ``atime`` is missing the
    modification time is used instead, which keeps the access-time test
    conservative (a file is never considered older than its last write).
    """

    def __init__(
        self,
        url: str,
        *,
        retry_policy: Optional[Retrying] = None,
        **storage_options: Any,
    ) -> None:
        fs, path = fsspec.core.url_to_fs(url, **storage_options)
        self.fs = fs
        self.url = url
        self.base_path = path
        self._retry = retry_policy or create_remote_retry_policy()

    def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return self._retry(func, *args, **kwargs)
        except (ConnectionError, TimeoutError) as exc:
            raise NodeAccessError(f"{self.url}: {exc}", node=self.url) from exc

    def join(self, *parts: str) -> str:
        return posixpath.join(*parts)

    def relative(self, path: str, root: str) -> str:
        return posixpath.relpath(
            self.fs._strip_protocol(path), self.fs._strip_protocol(root)
        )

    def _to_stat(self, info: dict) -> FileStat:
        name = info.get("name", "")
        kind = info.get("type")
        mtime: Optional[float] = None
        for key in _TIMESTAMP_KEYS:
            mtime = _coerce_timestamp(info.get(key))
            if mtime is not None:
                break
        if mtime is None and kind == "file":
            try:
                mtime = _coerce_timestamp(self.fs.modified(name))
            except (NotImplementedError, FileNotFoundError, AttributeError):
                mtime = None
        mtime = mtime or 0.0
        atime = _coerce_timestamp(info.get("atime")) or mtime
        return FileStat(
            path=name,
            name=posixpath.basename(name.rstrip("/")),
            is_dir=kind == "directory",
            is_file=kind == "file",
            size=int(info.get("size") or 0),
            mtime=mtime,
            atime=atime,
        )

    def list_dir(self, path: str) -> List[FileStat]:
        try:
            entries = self._call(self.fs.ls, path, detail=True)
        except (FileNotFoundError, NotADirectoryError):
            return []
        stripped = self.fs._strip_protocol(path).rstrip("/")
        stats = [self._to_stat(entry) for entry in entries if isinstance(entry, dict)]
        stats = [entry for entry in stats if entry.path.rstrip("/") != stripped]
        return sorted(stats, key=lambda item: item.name)

    def list_dirs(self, path: str) -> List[FileStat]:
        return [entry for entry in self.list_dir(path) if entry.is_dir]

    def exists(self, path: str) -> bool:
        return bool(self._call(self.fs.exists, path))

    def stat(self, path: str) -> Optional[FileStat]:
        try:
            info = self._call(self.fs.info, path)
        except FileNotFoundError:
            return None
        return self._to_stat(info)

    def touch(self, path: str, mtime: Optional[float] = None) -> None:
        if not self.exists(path):
            self._call(self.fs.touch, path, truncate=False)
        if mtime is not None:
            logger.debug(
                "Remote backend %s cannot backdate %s; keeping server time", self.url, path
            )

    def remove_file(self, path: str) -> bool:
        try:
            self._call(self.fs.rm_file, path)
        except FileNotFoundError:
            return False
        return True

    def remove_dir(self, path: str) -> bool:
        try:
            self._call(self.fs.rmdir, path)
        except FileNotFoundError:
            return False
        return True

    def remove_tree(self, path: str) -> None:
        try:
            self._call(self.fs.rm, path, recursive=True)
        except FileNotFoundError:
            return


def filesystem_for(location: str, **storage_options: Any) -> NodeFilesystem:
    """Return the filesystem implementation matching ``location``.

    Plain paths map to :class:`LocalNodeFilesystem`; anything with a URL
    scheme other than ``file`` goes through fsspec.
    """

    if "://" in location and not location.startswith("file://"):
        return FsspecNodeFilesystem(location, **storage_options)
    return LocalNodeFilesystem()
