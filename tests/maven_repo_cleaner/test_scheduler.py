"""Tests for the fleet scheduler's catch-up loop and background thread."""

from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Optional

import pytest

from MavenRepoCleaner.orchestrator import FleetScanReport
from MavenRepoCleaner.persistence import InMemoryConfigStore, JsonConfigStore
from MavenRepoCleaner.scheduler import FleetScheduler
from MavenRepoCleaner.settings import ClusterConfig

MINUTE = 60.0


def _at(hour: int, minute: int = 0, second: int = 0) -> float:
    return datetime(2024, 5, 1, hour, minute, second).timestamp()


class _RecordingOrchestrator:
    """Stand-in orchestrator counting fleet passes."""

    def __init__(self, config: ClusterConfig, fail_first: int = 0) -> None:
        self.config = config
        self.calls = 0
        self.fail_first = fail_first
        self.called = threading.Event()

    def scan_fleet(self) -> FleetScanReport:
        self.calls += 1
        self.called.set()
        if self.calls <= self.fail_first:
            raise RuntimeError("node listing failed")
        return FleetScanReport(started_at=0.0, finished_at=0.0)


def _scheduler(
    cron: str = "0 3 * * *",
    *,
    start: Optional[float] = None,
    fail_first: int = 0,
    **config,
) -> tuple[FleetScheduler, _RecordingOrchestrator]:
    cluster = ClusterConfig(cron_spec=cron, **config)
    orchestrator = _RecordingOrchestrator(cluster, fail_first=fail_first)
    scheduler = FleetScheduler(
        orchestrator, cluster, start_minute=start if start is not None else _at(2)
    )
    return scheduler, orchestrator


class TestCatchUp:
    def test_matching_minute_runs_once(self):
        scheduler, orchestrator = _scheduler()

        assert scheduler.tick(_at(2, 59, 30)) == 0
        assert scheduler.last_minute == _at(3)
        assert scheduler.tick(_at(3, 0, 30)) == 1
        assert scheduler.tick(_at(4, 0, 30)) == 0
        assert orchestrator.calls == 1
        assert scheduler.passes == 1

    def test_every_minute_schedule(self):
        scheduler, orchestrator = _scheduler("* * * * *")
        assert scheduler.tick(_at(2, 10)) == 10
        assert orchestrator.calls == 10
        assert scheduler.last_minute == _at(2, 10)

    def test_empty_schedule_never_runs(self):
        scheduler, orchestrator = _scheduler("")
        assert scheduler.tick(_at(2, 59)) == 0
        assert orchestrator.calls == 0
        assert scheduler.last_minute == _at(2, 59)

    def test_start_minute_is_floored(self):
        scheduler, _ = _scheduler(start=_at(2, 5, 42))
        assert scheduler.last_minute == _at(2, 5)

    def test_multiple_cron_lines(self):
        scheduler, orchestrator = _scheduler("# nightly\n0 3 * * *\n30 3 * * *")
        assert scheduler.tick(_at(3, 45)) == 2
        assert orchestrator.calls == 2

    def test_late_tick_replays_every_missed_minute(self, caplog):
        scheduler, orchestrator = _scheduler("10 11 * * *", start=_at(10))

        assert scheduler.tick(_at(11)) == 0
        # previous fleet pass overran, so this tick lands 80 minutes later
        with caplog.at_level("WARNING", logger="MavenRepoCleaner"):
            assert scheduler.tick(_at(12, 20)) == 1

        assert orchestrator.calls == 1
        assert scheduler.last_minute == _at(12, 20)
        assert "Skipping" not in caplog.text

    def test_long_gap_without_disable_is_not_capped(self):
        scheduler, orchestrator = _scheduler("0 * * * *", start=_at(0), max_catchup_minutes=60)
        assert scheduler.tick(_at(5)) == 5
        assert orchestrator.calls == 5


class TestFailures:
    def test_failing_minute_is_logged_and_clock_advances(self, caplog):
        scheduler, orchestrator = _scheduler("* * * * *", fail_first=1)

        with caplog.at_level("ERROR", logger="MavenRepoCleaner"):
            runs = scheduler.tick(_at(2, 3))

        assert runs == 2
        assert orchestrator.calls == 3
        assert scheduler.last_minute == _at(2, 3)
        assert "Cleanup check" in caplog.text


class TestDisabled:
    def test_disabled_skips_without_advancing(self, caplog):
        scheduler, orchestrator = _scheduler("* * * * *", disabled=True)

        with caplog.at_level("WARNING", logger="MavenRepoCleaner"):
            assert scheduler.tick(_at(2, 30)) == 0

        assert orchestrator.calls == 0
        assert scheduler.last_minute == _at(2)
        assert "Disabled" in caplog.text

    def test_backlog_after_reenable_is_capped(self, caplog):
        store = InMemoryConfigStore(ClusterConfig(cron_spec="0 * * * *", disabled=True))
        orchestrator = _RecordingOrchestrator(store.load())
        scheduler = FleetScheduler(orchestrator, store=store, start_minute=_at(0))

        assert scheduler.tick(_at(1)) == 0
        store.save(store.load().model_copy(update={"disabled": False}))
        with caplog.at_level("WARNING", logger="MavenRepoCleaner"):
            runs = scheduler.tick(_at(5))

        # only 04:00 falls inside the replayed hour; 00:00 to 03:00 are skipped
        assert runs == 1
        assert scheduler.last_minute == _at(5)
        assert "Skipping 240 minutes missed while disabled" in caplog.text

        # the cap applies once; later late ticks replay everything again
        assert scheduler.tick(_at(7, 30)) == 3

    def test_store_toggle_is_picked_up(self):
        store = InMemoryConfigStore(ClusterConfig(cron_spec="* * * * *"))
        orchestrator = _RecordingOrchestrator(store.load())
        scheduler = FleetScheduler(orchestrator, store=store, start_minute=_at(2))

        assert scheduler.tick(_at(2, 2)) == 2
        store.save(store.load().model_copy(update={"disabled": True}))
        assert scheduler.tick(_at(2, 4)) == 0
        assert scheduler.last_minute == _at(2, 2)
        store.save(store.load().model_copy(update={"disabled": False}))
        assert scheduler.tick(_at(2, 4)) == 2

    def test_environment_kill_switch(self, monkeypatch):
        store = InMemoryConfigStore(ClusterConfig(cron_spec="* * * * *"))
        orchestrator = _RecordingOrchestrator(store.load())
        scheduler = FleetScheduler(orchestrator, store=store, start_minute=_at(2))
        monkeypatch.setenv("M2CLEAN_DISABLED", "true")

        assert scheduler.tick(_at(2, 5)) == 0
        assert orchestrator.calls == 0


class TestReconfigure:
    def test_schedule_change_applies_on_next_tick(self, tmp_path):
        store = JsonConfigStore(tmp_path / "cleanup.json")
        store.save(ClusterConfig(cron_spec="0 3 * * *"))
        orchestrator = _RecordingOrchestrator(store.load())
        scheduler = FleetScheduler(orchestrator, store=store, start_minute=_at(2))

        store.save(ClusterConfig(cron_spec="15 2 * * *"))
        assert scheduler.tick(_at(2, 20)) == 1
        assert scheduler.cron.spec == "15 2 * * *"
        assert orchestrator.config.cron_spec == "15 2 * * *"

    def test_broken_store_keeps_previous_configuration(self, tmp_path, caplog):
        path = tmp_path / "cleanup.json"
        store = JsonConfigStore(path)
        store.save(ClusterConfig(cron_spec="* * * * *"))
        orchestrator = _RecordingOrchestrator(store.load())
        scheduler = FleetScheduler(orchestrator, store=store, start_minute=_at(2))
        path.write_text("{not json", encoding="utf-8")

        with caplog.at_level("ERROR", logger="MavenRepoCleaner"):
            assert scheduler.tick(_at(2, 1)) == 1
        assert "Keeping previous" in caplog.text

    def test_overrides_survive_reload(self):
        store = InMemoryConfigStore(ClusterConfig(cron_spec="* * * * *"))
        orchestrator = _RecordingOrchestrator(store.load())
        scheduler = FleetScheduler(
            orchestrator, store=store, start_minute=_at(2), overrides={"dry_run": True}
        )
        scheduler.tick(_at(2, 1))
        assert orchestrator.config.dry_run is True


class TestExecution:
    def test_run_now_ignores_schedule(self):
        scheduler, orchestrator = _scheduler("")
        report = scheduler.run_now()
        assert orchestrator.calls == 1
        assert scheduler.last_report is report

    def test_on_pass_callback(self):
        seen = []
        cluster = ClusterConfig(cron_spec="* * * * *")
        orchestrator = _RecordingOrchestrator(cluster)
        scheduler = FleetScheduler(
            orchestrator, cluster, start_minute=_at(2), on_pass=seen.append
        )
        scheduler.tick(_at(2, 2))
        assert len(seen) == 2

    def test_background_thread_ticks_and_stops(self):
        cluster = ClusterConfig(cron_spec="* * * * *", tick_seconds=0.05)
        orchestrator = _RecordingOrchestrator(cluster)
        scheduler = FleetScheduler(
            orchestrator, cluster, clock=lambda: _at(2, 2), start_minute=_at(2)
        )

        with scheduler:
            assert orchestrator.called.wait(5.0)
            assert scheduler.running

        assert not scheduler.running
        assert orchestrator.calls == 2

    def test_thread_survives_tick_errors(self):
        cluster = ClusterConfig(cron_spec="* * * * *", tick_seconds=0.05)
        orchestrator = _RecordingOrchestrator(cluster)
        ticks = []

        def clock() -> float:
            ticks.append(1)
            if len(ticks) == 2:
                raise RuntimeError("clock unavailable")
            return _at(2, 0) + MINUTE * len(ticks)

        scheduler = FleetScheduler(orchestrator, cluster, clock=clock)
        scheduler.last_minute = _at(2)
        scheduler.start()
        try:
            for _ in range(100):
                if len(ticks) >= 4:
                    break
                time.sleep(0.05)
        finally:
            scheduler.stop()

        assert len(ticks) >= 4
        assert orchestrator.calls >= 1


@pytest.mark.parametrize("cron", ["61 * * * *", "not a cron"])
def test_invalid_schedule_rejected_on_construction(cron):
    with pytest.raises(ValueError):
        ClusterConfig(cron_spec=cron)
