# === NAVMAP v1 ===
# {
#   "module": "MavenRepoCleaner.cli",
#   "purpose": "Typer CLI (m2clean) for sweeps, fleet scans, scheduling and configuration",
#   "sections": [
#     {"id": "clicontext", "name": "CliContext", "anchor": "class-clicontext", "kind": "class"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"},
#     {"id": "sweep-cmd", "name": "sweep_cmd", "anchor": "function-sweep-cmd", "kind": "function"},
#     {"id": "post-build-cmd", "name": "post_build_cmd", "anchor": "function-post-build-cmd", "kind": "function"},
#     {"id": "scan-cmd", "name": "scan_cmd", "anchor": "function-scan-cmd", "kind": "function"},
#     {"id": "schedule-cmd", "name": "schedule_cmd", "anchor": "function-schedule-cmd", "kind": "function"},
#     {"id": "config-show", "name": "config_show", "anchor": "function-config-show", "kind": "function"},
#     {"id": "config-set", "name": "config_set", "anchor": "function-config-set", "kind": "function"},
#     {"id": "config-job", "name": "config_job", "anchor": "function-config-job", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Command line interface for repository cleanup.

Provides:
- ``m2clean sweep``: sweep one repository directory now
- ``m2clean post-build``: sweep a workspace after a build finished
- ``m2clean scan``: run one fleet pass over every node
- ``m2clean schedule``: run the fleet scheduler in the foreground
- ``m2clean config``: show and change the persisted configuration

Exit codes: 0 on success, 1 on runtime failures, 2 on configuration errors.

Example:
    $ m2clean sweep ~/.m2/repository --older-than-days 30 --dry-run
    $ m2clean --json-logs scan --fleet fleet.json --config cleanup.json
    $ m2clean config set --config cleanup.json --cron "0 3 * * *"
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .errors import ConfigurationError, RepoCleanerError
from .logging_utils import setup_logging
from .orchestrator import FleetScanReport, NodeScanOrchestrator
from .persistence import ConfigStore, InMemoryConfigStore, JsonConfigStore
from .postbuild import post_build_sweep
from .registry import load_fleet
from .scheduler import FleetScheduler
from .settings import (
    ClusterConfig,
    EnvironmentOverrides,
    ExpirationStyle,
    JobCleanupPolicy,
    LoggingSettings,
    apply_env_overrides,
)
from .staleness import accessed_before, not_accessed_within, unconditional
from .sweeper import SweepResult, sweep

logger = logging.getLogger(__name__)

_console = Console()

app = typer.Typer(
    name="m2clean",
    help="Garbage-collect per-job local Maven repositories",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Show or change the persisted cleanup configuration")
app.add_typer(config_app, name="config")


class CliContext:
    """Shared state for one invocation."""

    def __init__(self, logging_settings: LoggingSettings) -> None:
        self.logging = logging_settings
        self.console = _console


def _parse_instant(value: str) -> float:
    """Accept epoch seconds or an ISO-8601 timestamp (naive values are local time)."""

    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).timestamp()
    except ValueError as exc:
        raise typer.BadParameter(f"{value!r} is neither epoch seconds nor ISO-8601") from exc


def _fail(exc: BaseException) -> typer.Exit:
    code = 2 if isinstance(exc, ConfigurationError) else 1
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code)


def _format_time(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _print_sweep(result: SweepResult, format_output: str) -> None:
    if format_output == "json":
        typer.echo(json.dumps(result.as_dict(), indent=2))
        return
    verb = "Would remove" if result.dry_run else "Removed"
    table = Table(title=f"{verb} {len(result)} artifacts from {result.root}")
    table.add_column("Coordinate", style="cyan")
    for coordinate in result.removed:
        table.add_row(coordinate)
    _console.print(table)
    for error in result.errors:
        _console.print(f"[red]✗ {error}[/red]")


def _print_report(report: FleetScanReport, format_output: str) -> None:
    if format_output == "json":
        typer.echo(json.dumps(report.as_dict(), indent=2))
        return
    table = Table(title=f"Fleet scan {_format_time(report.started_at)}")
    table.add_column("Node", style="cyan")
    table.add_column("Job", style="green")
    table.add_column("Decision", style="yellow")
    table.add_column("Removed", justify="right")
    table.add_column("Error", style="red")
    for outcome in report.outcomes:
        decision = outcome.eligibility.value
        if outcome.deleted_tree:
            decision += " (deleted)"
        table.add_row(
            outcome.target.node.name,
            outcome.target.job_name,
            decision,
            str(len(outcome.removed)),
            outcome.error or "",
        )
    _console.print(table)
    for node, error in report.node_errors.items():
        _console.print(f"[red]✗ {node}: {error}[/red]")


def _open_store(config: Optional[Path]) -> ConfigStore:
    if config is None:
        return InMemoryConfigStore()
    return JsonConfigStore(config)


def _build_orchestrator(
    fleet: Path, config: Optional[Path], dry_run: bool, workers: Optional[int]
) -> tuple[NodeScanOrchestrator, ConfigStore]:
    store = _open_store(config)
    cluster = apply_env_overrides(store.load())
    update = {}
    if dry_run:
        update["dry_run"] = True
    if workers is not None:
        update["scan_workers"] = workers
    if update:
        cluster = cluster.model_copy(update=update)
    jobs, nodes = load_fleet(fleet, store=store)
    return NodeScanOrchestrator(jobs, nodes, cluster), store


_format_option = typer.Option("table", "--format", "-f", help="Output format: table or json")
_fleet_option = typer.Option(
    ..., "--fleet", envvar="M2CLEAN_FLEET", help="JSON description of controller, workers and jobs"
)
_config_option = typer.Option(
    None, "--config", "-c", envvar="M2CLEAN_CONFIG", help="Persisted cleanup configuration (JSON)"
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"m2clean {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    ctx: typer.Context,
    log_level: str = typer.Option(
        "INFO", "--log-level", envvar="M2CLEAN_LOG_LEVEL", help="DEBUG, INFO, WARNING or ERROR"
    ),
    log_dir: Optional[Path] = typer.Option(
        None, "--log-dir", envvar="M2CLEAN_LOG_DIR", help="Directory for rotating JSONL logs"
    ),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit console logs as JSON lines"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """m2clean - delete unused artifacts from per-job Maven repositories."""

    try:
        settings = LoggingSettings(level=log_level, log_dir=log_dir, emit_json_logs=json_logs)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--log-level") from exc
    setup_logging(
        level=settings.level,
        log_dir=settings.log_dir,
        max_log_size_mb=settings.max_log_size_mb,
        json_logs=settings.emit_json_logs,
    )
    ctx.obj = CliContext(settings)


@app.command("sweep")
def sweep_cmd(
    root: Path = typer.Argument(..., help="Repository directory to sweep"),
    older_than_days: Optional[int] = typer.Option(
        None, "--older-than-days", min=0, help="Remove artifacts not accessed for N days"
    ),
    accessed_before_: Optional[str] = typer.Option(
        None, "--accessed-before", help="Remove artifacts not accessed since this instant"
    ),
    everything: bool = typer.Option(False, "--all", help="Remove every artifact"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Report without deleting"),
    format_output: str = _format_option,
) -> None:
    """Sweep one repository directory.

    Exactly one of --older-than-days, --accessed-before and --all may be
    given; without any, artifacts not accessed for 7 days are removed.
    """

    chosen = [older_than_days is not None, accessed_before_ is not None, everything]
    if sum(chosen) > 1:
        raise typer.BadParameter("Choose one of --older-than-days, --accessed-before, --all")
    if accessed_before_ is not None:
        test = accessed_before(_parse_instant(accessed_before_))
    elif everything:
        test = unconditional()
    else:
        days = older_than_days if older_than_days is not None else ClusterConfig().expiration_days
        test = not_accessed_within(time.time(), days)

    try:
        result = sweep(str(root), test, dry_run=dry_run)
    except (OSError, RepoCleanerError) as exc:
        raise _fail(exc)
    _print_sweep(result, format_output)
    if result.errors:
        raise typer.Exit(1)


@app.command("post-build")
def post_build_cmd(
    workspace: Path = typer.Argument(..., help="Workspace of the finished build"),
    started: str = typer.Option(..., "--started", help="Build start (ISO-8601 or epoch seconds)"),
    repository_dir_name: str = typer.Option(
        ".repository", "--repository-dir", help="Repository directory name inside the workspace"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Report without deleting"),
    format_output: str = _format_option,
) -> None:
    """Remove artifacts a build did not use since it started."""

    try:
        result = post_build_sweep(
            str(workspace),
            _parse_instant(started),
            repository_dir_name=repository_dir_name,
            dry_run=dry_run,
        )
    except (OSError, RepoCleanerError) as exc:
        raise _fail(exc)
    _print_sweep(result, format_output)
    if result.errors:
        raise typer.Exit(1)


@app.command("scan")
def scan_cmd(
    fleet: Path = _fleet_option,
    config: Optional[Path] = _config_option,
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Nodes scanned at once"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Report without deleting"),
    format_output: str = _format_option,
) -> None:
    """Run one fleet pass now, ignoring the schedule."""

    try:
        orchestrator, _ = _build_orchestrator(fleet, config, dry_run, workers)
        report = orchestrator.scan_fleet()
    except (OSError, RepoCleanerError) as exc:
        raise _fail(exc)
    _print_report(report, format_output)
    if report.node_errors or any(outcome.error for outcome in report.outcomes):
        raise typer.Exit(1)


@app.command("schedule")
def schedule_cmd(
    fleet: Path = _fleet_option,
    config: Optional[Path] = _config_option,
    once: bool = typer.Option(
        False, "--once", help="Check the current minute against the schedule and exit"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Report without deleting"),
) -> None:
    """Run the fleet scheduler until interrupted."""

    try:
        orchestrator, store = _build_orchestrator(fleet, config, dry_run, None)
    except (OSError, RepoCleanerError) as exc:
        raise _fail(exc)
    scheduler = FleetScheduler(
        orchestrator,
        orchestrator.config,
        store=store if config is not None else None,
        overrides={"dry_run": True} if dry_run else None,
    )

    if once:
        runs = scheduler.tick(scheduler.last_minute + 60.0)
        typer.echo(f"{runs} fleet pass(es) executed")
        return

    scheduler.start()
    try:
        while scheduler.running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        typer.echo("Stopping scheduler", err=True)
    finally:
        scheduler.stop()


def _config_rows(cluster: ClusterConfig) -> Iterable[tuple[str, str]]:
    for key, value in cluster.to_persisted().items():
        yield key, json.dumps(value)


@config_app.command("show")
def config_show(
    config: Path = typer.Option(
        ..., "--config", "-c", envvar="M2CLEAN_CONFIG", help="Persisted cleanup configuration"
    ),
    format_output: str = _format_option,
) -> None:
    """Display the persisted configuration with environment overrides applied."""

    store = JsonConfigStore(config)
    try:
        cluster = apply_env_overrides(store.load(), EnvironmentOverrides())
        policies = store.load_job_policies()
    except (OSError, RepoCleanerError) as exc:
        raise _fail(exc)

    if format_output == "json":
        payload = {
            "cluster": cluster.to_persisted(),
            "jobs": {
                name: policy.model_dump(mode="json", by_alias=True)
                for name, policy in sorted(policies.items())
            },
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    table = Table(title=f"Cleanup configuration ({config})")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in _config_rows(cluster):
        table.add_row(key, value)
    opted_out: List[str] = [name for name, p in sorted(policies.items()) if p.not_on_this_project]
    table.add_row("optedOutJobs", ", ".join(opted_out) or "-")
    _console.print(table)


@config_app.command("set")
def config_set(
    config: Path = typer.Option(
        ..., "--config", "-c", envvar="M2CLEAN_CONFIG", help="Persisted cleanup configuration"
    ),
    cron: Optional[str] = typer.Option(None, "--cron", help="Cron schedule; empty disables runs"),
    expiration_days: Optional[str] = typer.Option(
        None, "--expiration-days", help="Days before a repository is eligible"
    ),
    expiration_style: Optional[ExpirationStyle] = typer.Option(
        None, "--expiration-style", case_sensitive=False, help="added, changed or regardless"
    ),
    disabled: Optional[bool] = typer.Option(
        None, "--disabled/--enabled", help="Global kill switch for scheduled runs"
    ),
) -> None:
    """Update the persisted configuration; the cron schedule is validated first."""

    store = JsonConfigStore(config)
    try:
        current = store.load()
        payload = current.to_persisted()
        if cron is not None:
            payload["cronSpec"] = cron
        if expiration_days is not None:
            payload["expirationDays"] = expiration_days
        if expiration_style is not None:
            payload["expirationStyle"] = expiration_style.value
        if disabled is not None:
            payload["disabled"] = disabled
        try:
            updated = ClusterConfig.model_validate(payload)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid cleanup configuration: {exc}") from exc
        store.save(updated)
    except (OSError, RepoCleanerError) as exc:
        raise _fail(exc)
    typer.echo(f"Saved {config}")


@config_app.command("job")
def config_job(
    name: str = typer.Argument(..., help="Job name"),
    config: Path = typer.Option(
        ..., "--config", "-c", envvar="M2CLEAN_CONFIG", help="Persisted cleanup configuration"
    ),
    opt_out: bool = typer.Option(
        ..., "--opt-out/--opt-in", help="Exclude or include the job in scheduled sweeps"
    ),
) -> None:
    """Set a job's opt-out flag."""

    store = JsonConfigStore(config)
    try:
        store.save_job_policy(name, JobCleanupPolicy(not_on_this_project=opt_out))
    except (OSError, RepoCleanerError) as exc:
        raise _fail(exc)
    state = "excluded from" if opt_out else "included in"
    typer.echo(f"Job {name} {state} scheduled sweeps")
