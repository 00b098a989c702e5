"""Garbage collection for per-job local Maven repositories.

Build jobs that keep a private ``.repository`` in their workspace accumulate
artifacts nobody reads any more.  This package sweeps those repositories:
after each build (anything the build did not touch goes) and on a cron
schedule across every node of a build fleet.

Example:
    >>> from MavenRepoCleaner import sweep, not_accessed_within
    >>> import time
    >>> result = sweep("/tmp/does-not-exist", not_accessed_within(time.time(), 7))
    >>> len(result)
    0
"""

from __future__ import annotations

from .coordinates import Gav, artifact_file_name, gav_to_path, resolve
from .errors import ConfigurationError, NodeAccessError, RepoCleanerError, SweepError
from .filesystem import FileStat, FsspecNodeFilesystem, LocalNodeFilesystem, NodeFilesystem
from .orchestrator import Eligibility, FleetScanReport, NodeScanOrchestrator, ScanOutcome
from .persistence import ConfigStore, InMemoryConfigStore, JsonConfigStore
from .postbuild import post_build_sweep
from .registry import InMemoryJobRegistry, Job, Node, StaticNodeRegistry, load_fleet
from .scheduler import FleetScheduler
from .settings import ClusterConfig, ExpirationStyle, JobCleanupPolicy
from .staleness import accessed_before, is_stale, not_accessed_within, unconditional
from .sweeper import SweepResult, sweep

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "Gav",
    "resolve",
    "artifact_file_name",
    "gav_to_path",
    "RepoCleanerError",
    "ConfigurationError",
    "NodeAccessError",
    "SweepError",
    "FileStat",
    "NodeFilesystem",
    "LocalNodeFilesystem",
    "FsspecNodeFilesystem",
    "Eligibility",
    "ScanOutcome",
    "FleetScanReport",
    "NodeScanOrchestrator",
    "ConfigStore",
    "InMemoryConfigStore",
    "JsonConfigStore",
    "post_build_sweep",
    "Job",
    "Node",
    "InMemoryJobRegistry",
    "StaticNodeRegistry",
    "load_fleet",
    "FleetScheduler",
    "ClusterConfig",
    "ExpirationStyle",
    "JobCleanupPolicy",
    "is_stale",
    "accessed_before",
    "not_accessed_within",
    "unconditional",
    "SweepResult",
    "sweep",
]
