# === NAVMAP v1 ===
# {
#   "module": "MavenRepoCleaner.settings",
#   "purpose": "Pydantic settings models for fleet-wide and per-job cleanup policy",
#   "sections": [
#     {"id": "expirationstyle", "name": "ExpirationStyle", "anchor": "class-expirationstyle", "kind": "class"},
#     {"id": "clusterconfig", "name": "ClusterConfig", "anchor": "class-clusterconfig", "kind": "class"},
#     {"id": "jobcleanuppolicy", "name": "JobCleanupPolicy", "anchor": "class-jobcleanuppolicy", "kind": "class"},
#     {"id": "loggingsettings", "name": "LoggingSettings", "anchor": "class-loggingsettings", "kind": "class"},
#     {"id": "environmentoverrides", "name": "EnvironmentOverrides", "anchor": "class-environmentoverrides", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Settings models for repository cleanup.

Fleet-wide behaviour (schedule, expiration window and style, the global kill
switch) lives on :class:`ClusterConfig`; the only per-job setting is the
opt-out flag on :class:`JobCleanupPolicy`.  Both serialise with the camelCase
field names used by the persisted configuration (``cronSpec``,
``expirationDays``, ``expirationStyle``, ``notOnThisProject``).
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .cron import CronMatcher
from .errors import ConfigurationError

__all__ = [
    "DEFAULT_EXPIRATION_DAYS",
    "ExpirationStyle",
    "ClusterConfig",
    "JobCleanupPolicy",
    "LoggingSettings",
    "EnvironmentOverrides",
    "apply_env_overrides",
]

logger = logging.getLogger(__name__)

DEFAULT_EXPIRATION_DAYS = 7


class ExpirationStyle(str, Enum):
    """Which timestamp decides that a repository is old enough to sweep."""

    ADDED = "added"
    """Compare the repository directory's modification time."""

    CHANGED = "changed"
    """Compare the cleanup marker's modification time."""

    REGARDLESS = "regardless"
    """Sweep on every scheduled run, ignoring timestamps."""

    @classmethod
    def parse(cls, value: Any) -> "ExpirationStyle":
        """Return the style for ``value``, falling back to ``added``.

        Older configurations stored the style as an integer (0 marker,
        1 directory, 2 regardless); those are accepted too.
        """

        if isinstance(value, cls):
            return value
        legacy = {0: cls.CHANGED, 1: cls.ADDED, 2: cls.REGARDLESS}
        if isinstance(value, int) and not isinstance(value, bool):
            if value in legacy:
                return legacy[value]
        elif isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        logger.warning("Unknown expiration style %r; using %s", value, cls.ADDED.value)
        return cls.ADDED


class ClusterConfig(BaseModel):
    """Fleet-wide cleanup settings shared by every job and node."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    cron_spec: str = Field(
        default="",
        alias="cronSpec",
        description="Cron expression(s) selecting the minutes a fleet sweep runs; empty never runs",
    )
    expiration_days: int = Field(
        default=DEFAULT_EXPIRATION_DAYS,
        ge=0,
        alias="expirationDays",
        description="Age in days after which a repository becomes eligible",
    )
    expiration_style: ExpirationStyle = Field(
        default=ExpirationStyle.ADDED,
        alias="expirationStyle",
        description="Timestamp used for the expiration check",
    )
    disabled: bool = Field(
        default=False,
        description="Global kill switch; scheduled ticks are skipped while set",
    )
    repository_dir_name: str = Field(
        default=".repository",
        alias="repositoryDirName",
        description="Name of the per-workspace local repository directory",
    )
    marker_name: str = Field(
        default=".cleanupMarker",
        alias="markerName",
        description="Sentinel file anchoring the 'changed' expiration style",
    )
    marker_backdate_seconds: int = Field(
        default=300,
        ge=0,
        alias="markerBackdateSeconds",
        description="How far a newly created marker is backdated",
    )
    tick_seconds: float = Field(
        default=3600.0,
        gt=0,
        alias="tickSeconds",
        description="Interval between scheduler ticks",
    )
    max_catchup_minutes: int = Field(
        default=60,
        ge=1,
        alias="maxCatchupMinutes",
        description="Minutes replayed by the first tick after re-enabling",
    )
    scan_workers: int = Field(
        default=1,
        ge=1,
        alias="scanWorkers",
        description="Nodes scanned concurrently during a fleet pass",
    )
    dry_run: bool = Field(
        default=False,
        alias="dryRun",
        description="Report what scheduled sweeps would delete without deleting",
    )

    @field_validator("cron_spec", mode="before")
    @classmethod
    def normalize_cron_spec(cls, value: Any) -> str:
        """Strip the schedule and reject malformed cron expressions."""

        if value is None:
            return ""
        spec = str(value).strip()
        try:
            CronMatcher.validate(spec)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc
        return spec

    @field_validator("expiration_days", mode="before")
    @classmethod
    def default_expiration_days(cls, value: Any) -> Any:
        """Blank or unparsable day counts fall back to the default window."""

        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_EXPIRATION_DAYS
        if isinstance(value, str):
            try:
                return int(value.strip().replace(",", ""))
            except ValueError:
                return DEFAULT_EXPIRATION_DAYS
        return value

    @field_validator("expiration_style", mode="before")
    @classmethod
    def coerce_expiration_style(cls, value: Any) -> ExpirationStyle:
        return ExpirationStyle.parse(value)

    def cron(self) -> CronMatcher:
        return CronMatcher(self.cron_spec)

    def to_persisted(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class JobCleanupPolicy(BaseModel):
    """Per-job cleanup configuration."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    not_on_this_project: bool = Field(
        default=False,
        alias="notOnThisProject",
        description="Never sweep this job's repositories during scheduled runs",
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_dir: Optional[Path] = Field(default=None, description="Directory for JSONL log files")
    max_log_size_mb: int = Field(default=20, gt=0, description="Maximum size of rotated log files")
    emit_json_logs: bool = Field(default=False, description="Format console logs as JSON lines")

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Normalize and validate logging level."""
        upper = str(v).upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {sorted(valid_levels)}, got '{v}'")
        return upper


class EnvironmentOverrides(BaseSettings):
    """Environment-derived overrides (``M2CLEAN_*``)."""

    disabled: Optional[bool] = Field(default=None, alias="M2CLEAN_DISABLED")

    model_config = SettingsConfigDict(env_prefix="M2CLEAN_", case_sensitive=False, extra="ignore")


def apply_env_overrides(
    config: ClusterConfig, env: Optional[EnvironmentOverrides] = None
) -> ClusterConfig:
    """Return ``config`` with the kill switch taken from the environment when set."""

    env = env or EnvironmentOverrides()
    if env.disabled is None or env.disabled == config.disabled:
        return config
    logger.info("M2CLEAN_DISABLED=%s overrides persisted setting", env.disabled)
    return config.model_copy(update={"disabled": env.disabled})
