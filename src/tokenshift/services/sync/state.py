"""Persistence helpers for the client-local sync state."""
from __future__ import annotations

from pathlib import Path
import json
import logging

from tokenshift.adapters.fs.atomic import atomic_write_text
from tokenshift.services.rotation.errors import MalformedPayload, WriteFailure
from tokenshift.services.rotation.models import ClientSyncState

__all__ = ["SyncStateStore"]

_log = logging.getLogger("tokenshift.sync.state")


class SyncStateStore:
    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> ClientSyncState:
        if not self.path.exists():
            return ClientSyncState()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            if not isinstance(data, dict):
                raise MalformedPayload("sync state must be an object")
            return ClientSyncState.from_mapping(data)
        except (json.JSONDecodeError, ValueError, MalformedPayload):
            # losing the state only costs one redundant apply
            _log.warning("sync state unreadable, starting fresh path=%s", self.path, exc_info=True)
            return ClientSyncState()

    def save(self, state: ClientSyncState) -> Path:
        payload = json.dumps(state.as_json(), ensure_ascii=False, indent=2)
        try:
            return atomic_write_text(self.path, payload)
        except OSError as exc:
            raise WriteFailure(f"failed to write {self.path}: {exc}") from exc
