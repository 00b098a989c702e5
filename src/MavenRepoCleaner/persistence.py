"""Load and save cleanup configuration.

The on-disk document holds the fleet-wide settings and every job's opt-out
flag::

    {
      "cluster": {"cronSpec": "0 3 * * *", "expirationDays": 7,
                  "expirationStyle": "added", "disabled": false},
      "jobs": {"api-build": {"notOnThisProject": true}}
    }

Validation happens on both load and save, so a malformed cron expression is
reported when the operator changes it rather than at the next scheduled tick.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Protocol

from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError
from .settings import ClusterConfig, JobCleanupPolicy

__all__ = ["ConfigStore", "InMemoryConfigStore", "JsonConfigStore"]

logger = logging.getLogger(__name__)


class ConfigStore(Protocol):
    """Persistence for fleet settings and per-job policies."""

    def load(self) -> ClusterConfig:
        """Return the persisted fleet-wide configuration."""

    def save(self, config: ClusterConfig) -> None:
        """Persist ``config``."""

    def load_job_policy(self, job_name: str) -> JobCleanupPolicy:
        """Return the policy for ``job_name`` (defaults when never saved)."""

    def load_job_policies(self) -> Dict[str, JobCleanupPolicy]:
        """Return every explicitly saved job policy keyed by job name."""

    def save_job_policy(self, job_name: str, policy: JobCleanupPolicy) -> None:
        """Persist ``policy`` for ``job_name``."""


def _atomic_write_text(path: Path, content: str) -> None:
    """Atomically replace ``path`` with ``content`` to avoid partial writes."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
    ) as handle:
        handle.write(content)
        handle.flush()
        try:
            os.fsync(handle.fileno())
        except OSError:
            pass
        temp_name = handle.name
    Path(temp_name).replace(path)


def _validate_cluster(payload: Dict[str, Any]) -> ClusterConfig:
    try:
        return ClusterConfig.model_validate(payload)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid cleanup configuration: {exc}") from exc


def _validate_policy(job_name: str, payload: Dict[str, Any]) -> JobCleanupPolicy:
    try:
        return JobCleanupPolicy.model_validate(payload)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid cleanup policy for job {job_name!r}: {exc}") from exc


class InMemoryConfigStore:
    """Config store kept in process memory (tests and embedding callers)."""

    def __init__(
        self,
        config: ClusterConfig | None = None,
        policies: Dict[str, JobCleanupPolicy] | None = None,
    ) -> None:
        self._config = config or ClusterConfig()
        self._policies: Dict[str, JobCleanupPolicy] = dict(policies or {})

    def load(self) -> ClusterConfig:
        return self._config

    def save(self, config: ClusterConfig) -> None:
        self._config = _validate_cluster(config.to_persisted())

    def load_job_policy(self, job_name: str) -> JobCleanupPolicy:
        return self._policies.get(job_name, JobCleanupPolicy())

    def load_job_policies(self) -> Dict[str, JobCleanupPolicy]:
        return dict(self._policies)

    def save_job_policy(self, job_name: str, policy: JobCleanupPolicy) -> None:
        self._policies[job_name] = policy


class JsonConfigStore:
    """Config store backed by a single JSON document."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"{self.path} is not valid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise ConfigurationError(f"{self.path} must contain a JSON object")
        return document

    def _write(self, document: Dict[str, Any]) -> None:
        _atomic_write_text(self.path, json.dumps(document, indent=2, sort_keys=True) + "\n")

    def load(self) -> ClusterConfig:
        document = self._read()
        cluster = document.get("cluster") or {}
        if not isinstance(cluster, dict):
            raise ConfigurationError(f"{self.path}: 'cluster' must be an object")
        return _validate_cluster(cluster)

    def save(self, config: ClusterConfig) -> None:
        validated = _validate_cluster(config.to_persisted())
        with self._lock:
            document = self._read()
            document["cluster"] = validated.to_persisted()
            self._write(document)
        logger.info("Saved cleanup configuration to %s", self.path)

    def load_job_policy(self, job_name: str) -> JobCleanupPolicy:
        jobs = self._read().get("jobs") or {}
        return _validate_policy(job_name, jobs.get(job_name) or {})

    def load_job_policies(self) -> Dict[str, JobCleanupPolicy]:
        jobs = self._read().get("jobs") or {}
        return {name: _validate_policy(name, payload or {}) for name, payload in jobs.items()}

    def save_job_policy(self, job_name: str, policy: JobCleanupPolicy) -> None:
        with self._lock:
            document = self._read()
            jobs = document.setdefault("jobs", {})
            jobs[job_name] = policy.model_dump(mode="json", by_alias=True)
            self._write(document)
