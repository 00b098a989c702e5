# === NAVMAP v1 ===
# {
#   "module": "MavenRepoCleaner.registry",
#   "purpose": "Job and node registries consulted by the node scan",
#   "sections": [
#     {"id": "job", "name": "Job", "anchor": "class-job", "kind": "class"},
#     {"id": "node", "name": "Node", "anchor": "class-node", "kind": "class"},
#     {"id": "jobregistry", "name": "JobRegistry", "anchor": "class-jobregistry", "kind": "class"},
#     {"id": "noderegistry", "name": "NodeRegistry", "anchor": "class-noderegistry", "kind": "class"},
#     {"id": "load-fleet", "name": "load_fleet", "anchor": "function-load-fleet", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Registries describing the build fleet.

The scan needs two capabilities from the build server: looking up a job by
the name of its workspace directory (and asking whether it is building), and
enumerating the nodes whose workspaces hold repositories.  Both are
protocols; :class:`InMemoryJobRegistry` and :class:`StaticNodeRegistry` are
used by the CLI (via :func:`load_fleet`) and by tests.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError
from .filesystem import FsspecNodeFilesystem, LocalNodeFilesystem, NodeFilesystem
from .persistence import ConfigStore
from .settings import JobCleanupPolicy

__all__ = [
    "Job",
    "Node",
    "JobRegistry",
    "NodeRegistry",
    "InMemoryJobRegistry",
    "StaticNodeRegistry",
    "load_fleet",
]

logger = logging.getLogger(__name__)

NodeLayout = Literal["controller", "worker"]


@dataclass
class Job:
    """A build job known to the build server."""

    name: str
    policy: JobCleanupPolicy = field(default_factory=JobCleanupPolicy)
    building: bool = False


@dataclass
class Node:
    """A build node and the directory holding its job workspaces.

    ``controller`` nodes keep workspaces under ``<jobs>/<job>/workspace``;
    ``worker`` nodes keep them directly under ``<workspace_root>/<job>``.
    """

    name: str
    workspace_root: Optional[str]
    fs: NodeFilesystem = field(default_factory=LocalNodeFilesystem)
    layout: NodeLayout = "worker"

    @property
    def is_controller(self) -> bool:
        return self.layout == "controller"

    def workspace_for(self, job_dir: str) -> str:
        if self.is_controller:
            return self.fs.join(job_dir, "workspace")
        return job_dir


class JobRegistry(Protocol):
    """Lookup of build jobs by workspace directory name."""

    def get_job(self, name: str) -> Optional[Job]:
        """Return the job named ``name`` or ``None`` when it no longer exists."""

    def is_building(self, job: Job) -> bool:
        """Return ``True`` while ``job`` has a build in progress."""


class NodeRegistry(Protocol):
    """Enumeration of the controller and its worker nodes."""

    def controller(self) -> Node:
        """Return the controller node."""

    def workers(self) -> List[Node]:
        """Return every registered worker node."""


class InMemoryJobRegistry:
    """Thread-safe job registry held in memory."""

    def __init__(self, jobs: Iterable[Job] = ()) -> None:
        self._lock = threading.Lock()
        self._jobs: Dict[str, Job] = {job.name: job for job in jobs}

    def add(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.name] = job

    def remove(self, name: str) -> None:
        with self._lock:
            self._jobs.pop(name, None)

    def set_building(self, name: str, building: bool) -> None:
        with self._lock:
            self._jobs[name].building = building

    def get_job(self, name: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(name)

    def is_building(self, job: Job) -> bool:
        with self._lock:
            current = self._jobs.get(job.name, job)
            return current.building

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._jobs)


class StaticNodeRegistry:
    """Node registry over a fixed controller and worker list."""

    def __init__(self, controller: Node, workers: Iterable[Node] = ()) -> None:
        self._controller = controller
        self._workers = list(workers)

    def controller(self) -> Node:
        return self._controller

    def workers(self) -> List[Node]:
        return list(self._workers)


# ============================================================================
# FLEET DESCRIPTION (FLT)
# ============================================================================


class _JobEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    building: bool = False
    not_on_this_project: bool = Field(default=False, alias="notOnThisProject")


class _NodeEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    workspace_root: Optional[str] = Field(default=None, alias="workspaceRoot")
    storage_options: Dict[str, Any] = Field(default_factory=dict, alias="storageOptions")


class _ControllerEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = "controller"
    root_dir: str = Field(alias="rootDir")


class _FleetDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    controller: _ControllerEntry
    workers: List[_NodeEntry] = Field(default_factory=list)
    jobs: List[_JobEntry] = Field(default_factory=list)


def _build_worker(entry: _NodeEntry) -> Node:
    root = entry.workspace_root
    if root and "://" in root and not root.startswith("file://"):
        fs = FsspecNodeFilesystem(root, **entry.storage_options)
        return Node(name=entry.name, workspace_root=fs.base_path, fs=fs, layout="worker")
    if root and root.startswith("file://"):
        root = root[len("file://") :]
    return Node(name=entry.name, workspace_root=root, fs=LocalNodeFilesystem(), layout="worker")


def load_fleet(
    path: Path, *, store: Optional[ConfigStore] = None
) -> tuple[InMemoryJobRegistry, StaticNodeRegistry]:
    """Read a fleet description and build the matching registries.

    Args:
        path: JSON document with ``controller``, ``workers`` and ``jobs``.
        store: Optional config store; a job with a saved policy uses it in
            place of the ``notOnThisProject`` flag in the fleet document.

    Returns:
        Tuple of job registry and node registry.
    """

    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        document = _FleetDocument.model_validate(raw)
    except (OSError, json.JSONDecodeError, PydanticValidationError) as exc:
        raise ConfigurationError(f"Cannot read fleet description {path}: {exc}") from exc

    saved = store.load_job_policies() if store is not None else {}
    jobs: List[Job] = []
    for entry in document.jobs:
        if entry.name in saved:
            policy = saved[entry.name]
        else:
            policy = JobCleanupPolicy(not_on_this_project=entry.not_on_this_project)
        jobs.append(Job(name=entry.name, policy=policy, building=entry.building))

    controller_fs = LocalNodeFilesystem()
    controller = Node(
        name=document.controller.name,
        workspace_root=controller_fs.join(document.controller.root_dir, "jobs"),
        fs=controller_fs,
        layout="controller",
    )
    workers = [_build_worker(entry) for entry in document.workers]
    logger.debug("Loaded fleet with %d jobs and %d workers", len(jobs), len(workers))
    return InMemoryJobRegistry(jobs), StaticNodeRegistry(controller, workers)
