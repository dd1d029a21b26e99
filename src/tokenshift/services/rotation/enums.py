"""Enumerations describing audit events, outcomes and policies."""
from __future__ import annotations

from enum import Enum

__all__ = [
    "AuditEvent",
    "Outcome",
    "SyncOutcome",
    "ConflictPolicy",
    "Role",
]


class _StrEnum(str, Enum):
    """Simple ``str``-backed enum compatible with Python 3.10."""

    def __str__(self) -> str:  # pragma: no cover - convenience for logging only
        return str(self.value)


class AuditEvent(_StrEnum):
    STAGE = "STAGE"
    CANCEL = "CANCEL"
    FINALIZE = "FINALIZE"
    SYNC_ATTEMPT = "SYNC_ATTEMPT"


class Outcome(_StrEnum):
    OK = "ok"
    NOOP = "noop"
    FAILED = "failed"


class SyncOutcome(_StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class ConflictPolicy(_StrEnum):
    REJECT = "reject"
    REPLACE = "replace"


class Role(_StrEnum):
    SERVER = "server"
    CLIENT = "client"
