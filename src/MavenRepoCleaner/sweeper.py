# === NAVMAP v1 ===
# {
#   "module": "MavenRepoCleaner.sweeper",
#   "purpose": "Walk one local Maven repository and delete stale artifacts",
#   "sections": [
#     {"id": "sweepresult", "name": "SweepResult", "anchor": "class-sweepresult", "kind": "class"},
#     {"id": "sweep", "name": "sweep", "anchor": "function-sweep", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Repository sweeper for per-job local Maven repositories.

Responsibilities:
- Walk the repository post-order so children are settled before parents
- Resolve each candidate file to a coordinate and apply the staleness test
- Delete stale artifacts together with their ``.md5``/``.sha1`` sidecars
- Prune directories left holding nothing but repository metadata

Per-entry failures (permission denied, a file removed by a concurrent sweep)
are logged and recorded on the result; they never abort the walk.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Set

from .coordinates import Gav, artifact_file_name, gav_to_path, is_checksum, is_metadata, resolve
from .errors import SweepError
from .filesystem import FileStat, LocalNodeFilesystem, NodeFilesystem
from .staleness import StaleTest

__all__ = ["SweepResult", "sweep"]

logger = logging.getLogger(__name__)


# ============================================================================
# RESULT TYPES (TYP)
# ============================================================================


@dataclass
class SweepResult:
    """Outcome of sweeping one repository root."""

    root: str
    dry_run: bool = False
    removed: List[str] = field(default_factory=list)
    """Canonical coordinates of removed artifacts (``group/artifact/version/file``)."""

    pruned_directories: List[str] = field(default_factory=list)
    """Directories deleted because only metadata remained."""

    errors: List[str] = field(default_factory=list)
    """Per-entry failures that were logged and skipped."""

    bytes_freed: int = 0
    duration_ms: float = 0.0

    def __len__(self) -> int:
        return len(self.removed)

    def __iter__(self) -> Iterator[str]:
        return iter(self.removed)

    def raise_for_errors(self) -> "SweepResult":
        """Raise :class:`SweepError` when any entry could not be processed."""

        if self.errors:
            raise SweepError(
                f"{len(self.errors)} entries under {self.root} could not be swept",
                errors=self.errors,
            )
        return self

    def as_dict(self) -> dict:
        return {
            "root": self.root,
            "dry_run": self.dry_run,
            "removed": list(self.removed),
            "pruned_directories": list(self.pruned_directories),
            "errors": list(self.errors),
            "bytes_freed": self.bytes_freed,
            "duration_ms": round(self.duration_ms, 3),
        }


# ============================================================================
# WALK (WLK)
# ============================================================================


class _Sweep:
    """State for a single walk; discarded once :func:`sweep` returns."""

    def __init__(
        self, root: str, stale_test: StaleTest, fs: NodeFilesystem, dry_run: bool
    ) -> None:
        self.root = root
        self.stale_test = stale_test
        self.fs = fs
        self.result = SweepResult(root=root, dry_run=dry_run)
        self._gone: Set[str] = set()

    def _failed(self, action: str, path: str, exc: BaseException) -> None:
        message = f"{action} {path}: {exc}"
        logger.warning("Failed to %s", message)
        self.result.errors.append(message)

    def _list(self, directory: str) -> Optional[List[FileStat]]:
        try:
            entries = self.fs.list_dir(directory)
        except OSError as exc:
            self._failed("list", directory, exc)
            return None
        return [entry for entry in entries if entry.path not in self._gone]

    def run(self) -> SweepResult:
        root = self.fs.stat(self.root)
        if root is None or not root.is_dir:
            logger.debug("Nothing to sweep at %s", self.root)
            return self.result
        stack: List[tuple[str, bool]] = [(self.root, False)]
        while stack:
            directory, settled = stack.pop()
            if settled:
                self._visit(directory)
                continue
            entries = self._list(directory)
            if entries is None:
                continue
            stack.append((directory, True))
            for entry in reversed(entries):
                if entry.is_dir:
                    stack.append((entry.path, False))
        return self.result

    def _visit(self, directory: str) -> None:
        entries = self._list(directory)
        if entries is None:
            return

        for entry in entries:
            if not entry.is_file or is_checksum(entry.name) or is_metadata(entry.name):
                continue
            gav = resolve(self.fs.relative(entry.path, self.root))
            if gav is None:
                continue
            try:
                stale = self.stale_test(entry)
            except OSError as exc:
                self._failed("check", entry.path, exc)
                continue
            if stale:
                self._remove_artifact(directory, entry, gav)

        remaining = [entry for entry in entries if entry.path not in self._gone]
        if all(entry.is_file and is_metadata(entry.name) for entry in remaining):
            self._prune(directory, remaining)

    def _remove_artifact(self, directory: str, entry: FileStat, gav: Gav) -> None:
        if not self.result.dry_run:
            try:
                self.fs.remove_file(entry.path)
            except OSError as exc:
                self._failed("delete", entry.path, exc)
                return
        self._gone.add(entry.path)

        base = artifact_file_name(gav)
        for suffix in (".md5", ".sha1"):
            sidecar = self.fs.join(directory, base + suffix)
            self._gone.add(sidecar)
            if self.result.dry_run:
                continue
            try:
                self.fs.remove_file(sidecar)
            except OSError as exc:
                self._gone.discard(sidecar)
                self._failed("delete", sidecar, exc)

        coordinate = gav_to_path(gav)
        self.result.removed.append(coordinate)
        self.result.bytes_freed += entry.size
        logger.debug("Removed unused artifact %s", coordinate)

    def _prune(self, directory: str, metadata: List[FileStat]) -> None:
        if not self.result.dry_run:
            for entry in metadata:
                try:
                    self.fs.remove_file(entry.path)
                except OSError as exc:
                    self._failed("delete", entry.path, exc)
                    return
            try:
                if not self.fs.remove_dir(directory):
                    return
            except OSError as exc:
                self._failed("remove directory", directory, exc)
                return
        self._gone.add(directory)
        self.result.pruned_directories.append(directory)


def sweep(
    root: str,
    stale_test: StaleTest,
    *,
    fs: Optional[NodeFilesystem] = None,
    dry_run: bool = False,
) -> SweepResult:
    """Delete stale artifacts below ``root`` and prune emptied directories.

    Args:
        root: Repository root (the ``.repository`` directory of a workspace).
        stale_test: Predicate applied to each artifact file's metadata.
        fs: Filesystem of the node holding ``root``; local disk by default.
        dry_run: When ``True``, report what would be removed without deleting.

    Returns:
        :class:`SweepResult` listing removed coordinates, pruned directories
        and any per-entry failures.  A missing root yields an empty result.
    """

    fs = fs or LocalNodeFilesystem()
    start = time.perf_counter()
    walker = _Sweep(str(root), stale_test, fs, dry_run)
    result = walker.run()
    result.duration_ms = (time.perf_counter() - start) * 1000

    if result.removed or result.errors:
        logger.info(
            "Swept %s: %d artifacts %s, %d directories pruned, %d errors",
            root,
            len(result.removed),
            "would be removed" if dry_run else "removed",
            len(result.pruned_directories),
            len(result.errors),
            extra={
                "extra_fields": {
                    "root": str(root),
                    "removed": len(result.removed),
                    "bytes_freed": result.bytes_freed,
                    "dry_run": dry_run,
                }
            },
        )
    return result
