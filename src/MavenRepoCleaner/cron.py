"""Cron schedule matching backed by :mod:`croniter`.

The schedule is parsed once when configuration is loaded or saved so a
malformed expression is reported to the operator immediately instead of
failing silently inside the scheduler thread.  An empty expression is a valid
"never run" schedule.
"""

from __future__ import annotations

from datetime import datetime
from typing import List

from croniter import croniter

from .errors import ConfigurationError

__all__ = ["CronMatcher"]


class CronMatcher:
    """Answer whether a given minute is covered by one or more cron lines.

    Multiple expressions may be given one per line (blank lines and ``#``
    comments are ignored); a minute matches when any line matches.

    Examples:
        >>> matcher = CronMatcher("0 3 * * *")
        >>> matcher.matches(datetime(2024, 5, 1, 3, 0))
        True
        >>> matcher.matches(datetime(2024, 5, 1, 3, 1))
        False
        >>> CronMatcher("").matches(datetime(2024, 5, 1, 3, 0))
        False
    """

    def __init__(self, spec: str) -> None:
        self.spec = spec or ""
        self.expressions = self.validate(self.spec)

    @staticmethod
    def validate(spec: str) -> List[str]:
        """Return the expressions in ``spec`` or raise :class:`ConfigurationError`."""

        expressions: List[str] = []
        for raw in (spec or "").splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if not croniter.is_valid(line):
                raise ConfigurationError(f"Invalid cron expression: {line!r}")
            expressions.append(line)
        return expressions

    @property
    def empty(self) -> bool:
        return not self.expressions

    def matches(self, when: datetime) -> bool:
        """Return ``True`` when the minute containing ``when`` is scheduled."""

        minute = when.replace(second=0, microsecond=0)
        return any(croniter.match(expression, minute) for expression in self.expressions)

    def __repr__(self) -> str:
        return f"CronMatcher({self.spec!r})"
