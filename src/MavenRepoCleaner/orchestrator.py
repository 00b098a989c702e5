# === NAVMAP v1 ===
# {
#   "module": "MavenRepoCleaner.orchestrator",
#   "purpose": "Scan every node's job workspaces and sweep eligible repositories",
#   "sections": [
#     {"id": "eligibility", "name": "Eligibility", "anchor": "class-eligibility", "kind": "class"},
#     {"id": "repositorytarget", "name": "RepositoryTarget", "anchor": "class-repositorytarget", "kind": "class"},
#     {"id": "scanoutcome", "name": "ScanOutcome", "anchor": "class-scanoutcome", "kind": "class"},
#     {"id": "fleetscanreport", "name": "FleetScanReport", "anchor": "class-fleetscanreport", "kind": "class"},
#     {"id": "nodescanorchestrator", "name": "NodeScanOrchestrator", "anchor": "class-nodescanorchestrator", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Node scan orchestration.

For every node in the fleet the orchestrator lists the job workspace
directories, locates each workspace's local repository, and runs the
eligibility checks below in order.  The first check that applies decides:

1. ``UNOWNED``: no job owns the workspace any more; the repository is
   deleted outright.
2. ``MISSING``: the workspace has no repository; nothing to do.
3. ``OPTED_OUT``: the job disabled cleanup for itself.
4. ``BUILDING``: a build is running and may be reading the cache.
5. ``NOT_EXPIRED``: the repository is younger than the expiration window.
6. ``ELIGIBLE``: every artifact in the repository is removed; the
   repository-level timestamp has already decided staleness.

The cleanup marker is created for every existing repository of a known job
before the remaining checks run, so the ``changed`` style measures age from
the first inspection. Dry runs never write the marker.

**Usage:**

    orchestrator = NodeScanOrchestrator(jobs, nodes, config)
    report = orchestrator.scan_fleet()
    print(report.removed_count)
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from .registry import JobRegistry, Node, NodeRegistry
from .settings import ClusterConfig
from .staleness import repository_expired, unconditional
from .sweeper import SweepResult, sweep

__all__ = [
    "Eligibility",
    "RepositoryTarget",
    "ScanOutcome",
    "FleetScanReport",
    "NodeScanOrchestrator",
]

logger = logging.getLogger(__name__)


class Eligibility(str, Enum):
    """Result of the per-repository eligibility checks."""

    UNOWNED = "unowned"
    MISSING = "missing"
    OPTED_OUT = "opted_out"
    BUILDING = "building"
    NOT_EXPIRED = "not_expired"
    ELIGIBLE = "eligible"


@dataclass(frozen=True)
class RepositoryTarget:
    """A job's local repository on one node."""

    job_name: str
    node: Node
    path: str


@dataclass
class ScanOutcome:
    """What happened to one repository during a scan."""

    target: RepositoryTarget
    eligibility: Eligibility
    sweep: Optional[SweepResult] = None
    deleted_tree: bool = False
    error: Optional[str] = None

    @property
    def removed(self) -> List[str]:
        return list(self.sweep.removed) if self.sweep else []


@dataclass
class FleetScanReport:
    """Aggregate result of one pass over the fleet."""

    started_at: float
    finished_at: float = 0.0
    dry_run: bool = False
    outcomes: List[ScanOutcome] = field(default_factory=list)
    node_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def removed(self) -> List[str]:
        return [coordinate for outcome in self.outcomes for coordinate in outcome.removed]

    @property
    def removed_count(self) -> int:
        return len(self.removed)

    @property
    def deleted_repositories(self) -> List[str]:
        return [outcome.target.path for outcome in self.outcomes if outcome.deleted_tree]

    def counts(self) -> Dict[str, int]:
        tally: Dict[str, int] = {state.value: 0 for state in Eligibility}
        for outcome in self.outcomes:
            tally[outcome.eligibility.value] += 1
        return tally

    def as_dict(self) -> dict:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "dry_run": self.dry_run,
            "counts": self.counts(),
            "removed": self.removed,
            "deleted_repositories": self.deleted_repositories,
            "node_errors": dict(self.node_errors),
            "errors": [
                {"node": o.target.node.name, "job": o.target.job_name, "error": o.error}
                for o in self.outcomes
                if o.error
            ],
        }


class NodeScanOrchestrator:
    """Decide, per repository, whether a scheduled sweep may run and run it.

    Attributes:
        jobs: Registry used to resolve workspace directory names to jobs.
        nodes: Registry enumerating the controller and worker nodes.
        config: Fleet-wide cleanup settings.
    """

    def __init__(
        self,
        jobs: JobRegistry,
        nodes: NodeRegistry,
        config: ClusterConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.jobs = jobs
        self.nodes = nodes
        self.config = config
        self._clock = clock

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------
    def discover(self, node: Node) -> List[RepositoryTarget]:
        """Return one target per job workspace directory on ``node``."""

        if not node.workspace_root:
            logger.debug("Node %s has no workspace root", node.name)
            return []
        targets: List[RepositoryTarget] = []
        for job_dir in node.fs.list_dirs(node.workspace_root):
            workspace = node.workspace_for(job_dir.path)
            path = node.fs.join(workspace, self.config.repository_dir_name)
            targets.append(RepositoryTarget(job_name=job_dir.name, node=node, path=path))
        return targets

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------
    def _ensure_marker(self, target: RepositoryTarget, now: float) -> Optional[float]:
        fs = target.node.fs
        marker = fs.join(target.path, self.config.marker_name)
        try:
            existing = fs.stat(marker)
            if existing is not None:
                return existing.mtime
            if self.config.dry_run:
                return None
            fs.touch(marker, now - self.config.marker_backdate_seconds)
            created = fs.stat(marker)
        except OSError as exc:
            logger.warning("Cannot create cleanup marker %s: %s", marker, exc)
            return None
        return created.mtime if created else None

    def evaluate(self, target: RepositoryTarget) -> Eligibility:
        """Run the eligibility checks for ``target`` and return the first that applies."""

        fs = target.node.fs
        job = self.jobs.get_job(target.job_name)
        if job is None:
            logger.debug("Repository directory %s is not owned by any job", target.path)
            return Eligibility.UNOWNED

        root = fs.stat(target.path)
        if root is None:
            return Eligibility.MISSING

        now = self._clock()
        marker_mtime = self._ensure_marker(target, now)

        if job.policy.not_on_this_project:
            logger.debug("Repository cleaning disabled for job %s", job.name)
            return Eligibility.OPTED_OUT

        if self.jobs.is_building(job):
            logger.debug(
                "Repository directory %s belongs to a currently running build, "
                "so deletion is vetoed",
                target.path,
            )
            return Eligibility.BUILDING

        style = self.config.expiration_style
        expired = repository_expired(
            style,
            now=now,
            expiration_days=self.config.expiration_days,
            root_mtime=root.mtime,
            marker_mtime=marker_mtime,
        )
        if not expired:
            logger.debug(
                "Repository directory %s is younger than %d days (%s), so not sweeping",
                target.path,
                self.config.expiration_days,
                style.value,
            )
            return Eligibility.NOT_EXPIRED

        logger.debug("Going to sweep repository directory %s", target.path)
        return Eligibility.ELIGIBLE

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def scan_target(self, target: RepositoryTarget) -> ScanOutcome:
        """Evaluate ``target`` and act on the decision."""

        dry_run = self.config.dry_run
        try:
            eligibility = self.evaluate(target)
        except Exception as exc:
            logger.warning("Failed to evaluate %s on %s: %s", target.path, target.node.name, exc)
            return ScanOutcome(target=target, eligibility=Eligibility.MISSING, error=str(exc))

        outcome = ScanOutcome(target=target, eligibility=eligibility)
        fs = target.node.fs
        try:
            if eligibility is Eligibility.UNOWNED:
                if fs.exists(target.path):
                    logger.info(
                        "Deleting abandoned repository %s on %s", target.path, target.node.name
                    )
                    if not dry_run:
                        fs.remove_tree(target.path)
                    outcome.deleted_tree = True
            elif eligibility is Eligibility.ELIGIBLE:
                outcome.sweep = sweep(target.path, unconditional(), fs=fs, dry_run=dry_run)
        except Exception as exc:
            logger.warning("Failed to clean %s on %s: %s", target.path, target.node.name, exc)
            outcome.error = str(exc)
        return outcome

    def scan_node(self, node: Node, report: Optional[FleetScanReport] = None) -> List[ScanOutcome]:
        """Scan one node; failures are recorded against the node, not raised."""

        logger.info("Scanning %s", node.name)
        outcomes: List[ScanOutcome] = []
        try:
            for target in self.discover(node):
                outcomes.append(self.scan_target(target))
        except Exception as exc:
            logger.error("Failed on %s: %s", node.name, exc, exc_info=True)
            if report is not None:
                report.node_errors[node.name] = str(exc)
        if report is not None:
            report.outcomes.extend(outcomes)
        return outcomes

    def fleet(self) -> List[Node]:
        """Workers first, then the controller."""

        return [*self.nodes.workers(), self.nodes.controller()]

    def scan_fleet(self, max_workers: Optional[int] = None) -> FleetScanReport:
        """Scan every node once and return the aggregated report.

        Nodes may be scanned concurrently (``max_workers`` > 1); each
        repository lives on exactly one node, so no repository is swept by
        two threads in the same pass.
        """

        report = FleetScanReport(started_at=self._clock(), dry_run=self.config.dry_run)
        nodes = self.fleet()
        workers = max_workers or self.config.scan_workers
        if workers <= 1 or len(nodes) <= 1:
            for node in nodes:
                self.scan_node(node, report)
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="node-scan") as pool:
                results = list(pool.map(self._scan_isolated, nodes))
            for node, (outcomes, error) in zip(nodes, results):
                report.outcomes.extend(outcomes)
                if error is not None:
                    report.node_errors[node.name] = error
        report.finished_at = self._clock()
        logger.info(
            "Fleet scan finished: %d artifacts removed, %d repositories deleted, %d node errors",
            report.removed_count,
            len(report.deleted_repositories),
            len(report.node_errors),
            extra={"extra_fields": {"counts": report.counts(), "dry_run": report.dry_run}},
        )
        return report

    def _scan_isolated(self, node: Node) -> tuple[List[ScanOutcome], Optional[str]]:
        scratch = FleetScanReport(started_at=self._clock())
        outcomes = self.scan_node(node, scratch)
        return outcomes, scratch.node_errors.get(node.name)
