"""Rotation and backup identifiers.

A rotation id is a UUIDv7 string taken from the staging time, so ids compare
in the order rotations were staged and the audit log, pending record and
``rotation_id`` stamp in ``tokens.yaml`` all sort the same way.  Backup ids are
UTC timestamps that double as backup file names.
"""
from __future__ import annotations

from datetime import datetime, timezone
import secrets
import time
import uuid
from typing import NewType

__all__ = [
    "RotationId",
    "BackupId",
    "generate_rotation_id",
    "backup_id_for",
    "uuid7",
]

RotationId = NewType("RotationId", str)
BackupId = NewType("BackupId", str)

_MS_MAX = (1 << 48) - 1


def uuid7(ts: float | None = None) -> uuid.UUID:
    """UUIDv7 for ``ts`` (epoch seconds, default now): 48-bit milliseconds, then random bits."""
    millis = int((time.time() if ts is None else ts) * 1000)
    if not 0 <= millis <= _MS_MAX:
        raise ValueError("timestamp out of range for UUIDv7")
    # version 7 nibble and RFC 4122 variant around 74 random bits
    value = millis << 80 | 0x7 << 76 | secrets.randbits(12) << 64 | 0b10 << 62 | secrets.randbits(62)
    return uuid.UUID(int=value)


def generate_rotation_id(at: datetime | None = None) -> RotationId:
    """New rotation id stamped with the staging time ``at``."""
    return RotationId(str(uuid7(at.timestamp() if at is not None else None)))


def backup_id_for(moment: datetime) -> BackupId:
    utc = moment.astimezone(timezone.utc)
    return BackupId(utc.strftime("%Y%m%dT%H%M%S") + f"{utc.microsecond:06d}Z")
