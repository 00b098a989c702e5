# === NAVMAP v1 ===
# {
#   "module": "MavenRepoCleaner.scheduler",
#   "purpose": "Periodic fleet sweeps driven by a cron schedule",
#   "sections": [
#     {"id": "fleetscheduler", "name": "FleetScheduler", "anchor": "class-fleetscheduler", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Fleet scheduler.

A background thread wakes once per tick (hourly by default) and walks its
clock forward one minute at a time up to the present.  Every minute the cron
schedule covers triggers one full fleet pass through
:class:`~MavenRepoCleaner.orchestrator.NodeScanOrchestrator`.

**Architecture:**

    FleetScheduler
      ├─ Tick Loop: waits ``tick_seconds`` between ticks
      ├─ Catch-up: replays elapsed minutes against the cron schedule
      └─ Fleet Pass: one orchestrator scan per matching minute

**Usage:**

    scheduler = FleetScheduler(orchestrator, config, store=store)
    scheduler.start()
    ...
    scheduler.stop()

Only the scheduler advances its clock, and ticks never overlap: a lock
serialises :meth:`FleetScheduler.tick` and :meth:`FleetScheduler.run_now`.
While the kill switch is set ticks are skipped and the clock stays where it
was; when re-enabled, at most ``max_catchup_minutes`` of that backlog are
replayed and older minutes are skipped. A tick that merely arrives late (a
long fleet pass) replays every minute it missed.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .cron import CronMatcher
from .errors import ConfigurationError
from .orchestrator import FleetScanReport, NodeScanOrchestrator
from .persistence import ConfigStore
from .settings import ClusterConfig, apply_env_overrides

__all__ = ["FleetScheduler"]

logger = logging.getLogger(__name__)

MINUTE = 60.0


def _floor_minute(timestamp: float) -> float:
    return timestamp - (timestamp % MINUTE)


class FleetScheduler:
    """Run fleet passes whenever the cron schedule matches.

    Attributes:
        orchestrator: Node scan orchestrator executing each fleet pass.
        config: Active fleet-wide settings.
        last_minute: Epoch seconds of the next minute to check.
        passes: Number of fleet passes executed so far.
        last_report: Report of the most recent fleet pass.
    """

    def __init__(
        self,
        orchestrator: NodeScanOrchestrator,
        config: Optional[ClusterConfig] = None,
        *,
        store: Optional[ConfigStore] = None,
        cron: Optional[CronMatcher] = None,
        clock: Callable[[], float] = time.time,
        start_minute: Optional[float] = None,
        on_pass: Optional[Callable[[FleetScanReport], None]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        if config is None:
            config = store.load() if store is not None else orchestrator.config
        self.config = config
        self.cron = cron or self.config.cron()
        self._cron_override = cron is not None
        self.orchestrator.config = self.config
        self._clock = clock
        self.last_minute = _floor_minute(start_minute if start_minute is not None else clock())
        self.passes = 0
        self.last_report: Optional[FleetScanReport] = None
        self._on_pass = on_pass
        self._overrides = dict(overrides or {})
        self._paused = False

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def reconfigure(self, config: ClusterConfig) -> None:
        """Swap in ``config``; the cron schedule is rebuilt from it."""

        cron = self.cron if self._cron_override else config.cron()
        self.config = config
        self.cron = cron
        self.orchestrator.config = config

    def _reload(self) -> None:
        if self.store is None:
            return
        try:
            config = apply_env_overrides(self.store.load())
        except ConfigurationError as exc:
            logger.error("Keeping previous cleanup configuration: %s", exc)
            return
        if self._overrides:
            config = config.model_copy(update=self._overrides)
        if config != self.config:
            logger.info("Cleanup configuration changed; applying")
            self.reconfigure(config)

    # ------------------------------------------------------------------
    # Execution flow
    # ------------------------------------------------------------------
    def run_now(self) -> FleetScanReport:
        """Execute one fleet pass immediately, independent of the schedule."""

        with self._lock:
            return self._run_pass()

    def _run_pass(self) -> FleetScanReport:
        report = self.orchestrator.scan_fleet()
        self.passes += 1
        self.last_report = report
        if self._on_pass is not None:
            self._on_pass(report)
        return report

    def _check_minute(self, minute: datetime) -> bool:
        if not self.cron.matches(minute):
            return False
        logger.info("Cleanup scheduled at %s; starting fleet pass", minute.isoformat())
        self._run_pass()
        return True

    def _cap_backlog(self, current: float) -> None:
        """Drop minutes that piled up while disabled, keeping the most recent ones."""

        limit = self.config.max_catchup_minutes * MINUTE
        skipped = int((current - self.last_minute - limit) // MINUTE)
        if skipped > 0:
            self.last_minute += skipped * MINUTE
            logger.warning(
                "Skipping %d minutes missed while disabled; replaying the last %d",
                skipped,
                self.config.max_catchup_minutes,
            )

    def tick(self, now: Optional[float] = None) -> int:
        """Replay the minutes elapsed since the last tick.

        Returns:
            Number of fleet passes executed during this tick.
        """

        with self._lock:
            self._reload()
            if self.config.disabled:
                self._paused = True
                logger.warning("Disabled. Skipping execution")
                return 0

            current = self._clock() if now is None else now
            if self._paused:
                self._paused = False
                self._cap_backlog(current)

            runs = 0
            while current - self.last_minute > 1.0:
                minute = datetime.fromtimestamp(self.last_minute)
                try:
                    if self._check_minute(minute):
                        runs += 1
                except Exception:
                    logger.error("Cleanup check for %s failed", minute.isoformat(), exc_info=True)
                self.last_minute += MINUTE
            return runs

    # ------------------------------------------------------------------
    # Background thread
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "FleetScheduler":
        """Start the tick loop on a daemon thread and return ``self``."""

        if self.running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="maven-repo-cleanup")
        self._thread.start()
        logger.info("Fleet scheduler started (tick every %.0fs)", self.config.tick_seconds)
        return self

    def stop(self, timeout: float = 5.0) -> None:
        """Signal stop and wait for the tick loop."""

        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Fleet scheduler stopped")

    def _loop(self) -> None:
        logger.debug("Tick loop started")
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Scheduler tick error: {e}", exc_info=True)
            if self._stop.wait(self.config.tick_seconds):
                break
        logger.debug("Tick loop stopped")

    def __enter__(self) -> "FleetScheduler":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
