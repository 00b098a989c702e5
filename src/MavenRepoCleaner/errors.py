"""Exception hierarchy shared across sweeping, scheduling, and configuration.

Most failures inside a sweep are routine (a file vanished, a permission was
denied) and are logged rather than raised.  The classes below cover the
failures callers are expected to react to: configuration that cannot be
applied and nodes that cannot be reached.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "RepoCleanerError",
    "ConfigurationError",
    "NodeAccessError",
    "SweepError",
]


class RepoCleanerError(RuntimeError):
    """Base exception for repository cleanup failures."""


class ConfigurationError(RepoCleanerError):
    """Raised when persisted settings or a cron expression are invalid."""


class NodeAccessError(RepoCleanerError):
    """Raised when a build node's filesystem cannot be reached or listed."""

    def __init__(self, message: str, *, node: Optional[str] = None) -> None:
        super().__init__(message)
        self.node = node


class SweepError(RepoCleanerError):
    """Raised by strict callers when a sweep reported per-file failures."""

    def __init__(self, message: str, *, errors: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])
