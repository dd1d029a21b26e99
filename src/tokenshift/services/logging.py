"""Process-wide logging setup for the CLI, the server and the sync agent."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

__all__ = ["setup_logging", "JsonFormatter"]

_CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _json_payload(record: logging.LogRecord, formatter: logging.Formatter) -> str:
    base = {
        "time": formatter.formatTime(record),
        "level": record.levelname,
        "logger": record.name,
        "msg": record.getMessage(),
    }
    extra = getattr(record, "extra", None)
    if isinstance(extra, dict):
        base.update(extra)
    if record.exc_info:
        base["exc"] = formatter.formatException(record.exc_info)
    return json.dumps(base, ensure_ascii=False)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; friendly to log shippers and grep alike."""

    def format(self, record: logging.LogRecord) -> str:
        return _json_payload(record, self)


def setup_logging(
    level: Optional[str] = None,
    *,
    logfile: Path | None = None,
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
) -> logging.Logger:
    """Configure the ``tokenshift`` logger tree; safe to call more than once."""

    resolved_level = (level or "INFO").upper()
    numeric_level = getattr(logging, resolved_level, logging.INFO)
    logger = logging.getLogger("tokenshift")
    logger.setLevel(numeric_level)
    logger.handlers.clear()
    logger.propagate = False

    console = logging.StreamHandler()
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(logfile, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        handler.setLevel(numeric_level)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)

    return logger
