"""Structured logging helpers shared by the sweeper, scanner and CLI."""

from __future__ import annotations

import gzip
import json
import logging
import os
import shutil
import sys
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from .staleness import days_to_seconds, is_stale

__all__ = ["JSONFormatter", "setup_logging", "LOGGER_NAME"]

LOGGER_NAME = "MavenRepoCleaner"


class JSONFormatter(logging.Formatter):
    """Render a record as one JSON object.

    Sweep context (``node``, ``job``, ``root``) is included only when the
    record carries it; ``extra_fields`` are merged in last.
    """

    context_fields = ("node", "job", "root")

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": created.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in self.context_fields:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        extra = getattr(record, "extra_fields", None)
        if isinstance(extra, dict):
            payload.update(extra)
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _expire_logs(log_dir: Path, retention_days: int, *, now: Optional[float] = None) -> List[str]:
    """Gzip ``m2clean-*`` logs past retention and delete archives twice as old.

    Archives keep the original modification time so their age keeps counting
    from the last write.
    """

    reference = time.time() if now is None else now
    window = days_to_seconds(retention_days)
    actions: List[str] = []
    for path in sorted(log_dir.glob("m2clean-*")):
        mtime = path.stat().st_mtime
        if path.suffix == ".gz":
            if is_stale(mtime, reference, 2 * window):
                path.unlink(missing_ok=True)
                actions.append(f"Deleted {path.name}")
        elif is_stale(mtime, reference, window):
            archive = path.with_name(path.name + ".gz")
            with path.open("rb") as source, gzip.open(archive, "wb") as target:
                shutil.copyfileobj(source, target)
            os.utime(archive, (mtime, mtime))
            path.unlink()
            actions.append(f"Archived {path.name}")
    return actions


def _drop_managed_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, "_m2clean_managed", False):
            logger.removeHandler(handler)
            stream = getattr(handler, "stream", None)
            if isinstance(handler, logging.StreamHandler) and stream in (sys.stdout, sys.stderr):
                continue
            handler.close()


def setup_logging(
    *,
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    max_log_size_mb: int = 20,
    retention_days: int = 30,
    json_logs: bool = False,
    propagate: bool = False,
) -> logging.Logger:
    """Configure the package logger.

    Console output goes to stderr so command output on stdout stays parseable.
    When ``log_dir`` is given a rotating JSONL file is added next to it.
    Calling this again replaces the handlers installed by a previous call.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    _drop_managed_handlers(logger)

    stream_handler = logging.StreamHandler(sys.stderr)
    if json_logs:
        stream_handler.setFormatter(JSONFormatter())
    else:
        stream_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    stream_handler._m2clean_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        for action in _expire_logs(log_dir, retention_days):
            logger.debug(action)
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        file_handler = RotatingFileHandler(
            log_dir / f"m2clean-{today}.jsonl",
            maxBytes=int(max_log_size_mb * 1024 * 1024),
            backupCount=5,
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler._m2clean_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    logger.propagate = propagate
    return logger
