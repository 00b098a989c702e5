"""Staleness decisions for artifacts and whole repositories.

Every test reduces to :func:`is_stale`: a timestamp is stale when it is older
than ``reference - threshold``.  The factories below bind the reference and
threshold used by each kind of sweep.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .filesystem import FileStat
from .settings import ExpirationStyle

__all__ = [
    "SECONDS_PER_DAY",
    "StaleTest",
    "accessed_before",
    "days_to_seconds",
    "is_stale",
    "not_accessed_within",
    "repository_expired",
    "unconditional",
]

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

StaleTest = Callable[[FileStat], bool]


def days_to_seconds(days: int) -> int:
    return int(days) * SECONDS_PER_DAY


def is_stale(timestamp: float, reference: float, threshold_seconds: float = 0) -> bool:
    """Return ``True`` when ``timestamp`` predates ``reference - threshold_seconds``.

    Examples:
        >>> is_stale(100.0, 200.0, 50)
        True
        >>> is_stale(160.0, 200.0, 50)
        False
    """

    return timestamp < reference - threshold_seconds


def accessed_before(reference: float) -> StaleTest:
    """Post-build test: anything not read since ``reference`` is garbage."""

    def _test(entry: FileStat) -> bool:
        return is_stale(entry.atime, reference)

    return _test


def not_accessed_within(now: float, expiration_days: int) -> StaleTest:
    """Scheduled test for files untouched during the expiration window."""

    threshold = days_to_seconds(expiration_days)

    def _test(entry: FileStat) -> bool:
        return is_stale(entry.atime, now, threshold)

    return _test


def unconditional() -> StaleTest:
    """Test used by the ``regardless`` style: every artifact goes."""

    def _test(entry: FileStat) -> bool:
        return True

    return _test


def repository_expired(
    style: ExpirationStyle,
    *,
    now: float,
    expiration_days: int,
    root_mtime: Optional[float] = None,
    marker_mtime: Optional[float] = None,
) -> bool:
    """Decide whether a repository as a whole is old enough to sweep.

    ``added`` compares the repository directory's modification time,
    ``changed`` the cleanup marker's, and ``regardless`` always expires.
    A missing timestamp means there is nothing to compare, so the
    repository is kept.
    """

    if style is ExpirationStyle.REGARDLESS:
        return True
    timestamp = root_mtime if style is ExpirationStyle.ADDED else marker_mtime
    if timestamp is None:
        logger.debug("No %s timestamp available; keeping repository", style.value)
        return False
    return is_stale(timestamp, now, days_to_seconds(expiration_days))
