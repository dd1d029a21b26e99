"""Append-only audit log stored as JSON lines."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, Mapping
import json
import logging
import os
import threading

from .enums import AuditEvent, Outcome
from .errors import MalformedPayload
from .models import AuditEntry, utcnow

__all__ = ["AuditLog"]

_log = logging.getLogger("tokenshift.audit")


class AuditLog:
    """One line per Stage/Cancel/Finalize/SyncAttempt event.

    Lines are never rewritten, so ``grep FINALIZE audit.log`` or
    ``grep <rotation-id> audit.log`` is enough to reconstruct history.
    """

    def __init__(self, path: Path, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.path = path
        self._clock = clock
        self._lock = threading.Lock()

    def record(
        self,
        event: AuditEvent,
        *,
        rotation_id: str | None,
        outcome: Outcome,
        detail: Mapping[str, object] | None = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            timestamp=self._clock(),
            event=event,
            rotation_id=rotation_id,
            outcome=outcome,
            detail=dict(detail or {}),
        )
        self.append(entry)
        return entry

    def append(self, entry: AuditEntry) -> None:
        line = json.dumps(entry.as_dict(), ensure_ascii=False, sort_keys=False)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
                fh.flush()
                os.fsync(fh.fileno())
        _log.info(
            "audit event=%s rotation=%s outcome=%s",
            entry.event,
            entry.rotation_id,
            entry.outcome,
        )

    def entries(self) -> Iterator[AuditEntry]:
        if not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield AuditEntry.from_mapping(json.loads(line))
                except (ValueError, TypeError, MalformedPayload):
                    _log.warning("skipping unreadable audit line path=%s line=%d", self.path, lineno)

    def for_rotation(self, rotation_id: str) -> list[AuditEntry]:
        return [entry for entry in self.entries() if entry.rotation_id == rotation_id]
