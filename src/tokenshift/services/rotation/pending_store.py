"""Persistence helpers for the pending rotation record and the block marker."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any
import json
import logging

from tokenshift.adapters.fs.atomic import atomic_write_text, remove_file

from .errors import MalformedPayload, WriteFailure
from .models import PendingRotation, isoformat, parse_datetime

__all__ = ["PendingStore", "BlockMarker", "BlockState"]

_log = logging.getLogger("tokenshift.pending_store")


class PendingStore:
    """Single-record store: at most one pending rotation exists on disk."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> PendingRotation | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            # deleted between exists() and read_text()
            return None
        except json.JSONDecodeError as exc:
            raise MalformedPayload(f"{self.path} is not valid JSON") from exc
        except (UnicodeDecodeError, OSError) as exc:
            raise MalformedPayload(f"{self.path} could not be read: {exc}") from exc
        return PendingRotation.from_mapping(data)

    def save(self, pending: PendingRotation) -> Path:
        payload = json.dumps(pending.as_dict(), ensure_ascii=False, indent=2)
        try:
            return atomic_write_text(self.path, payload)
        except OSError as exc:
            raise WriteFailure(f"failed to write {self.path}: {exc}") from exc

    def delete(self) -> bool:
        try:
            return remove_file(self.path)
        except OSError as exc:
            raise WriteFailure(f"failed to delete {self.path}: {exc}") from exc


@dataclass(slots=True)
class BlockState:
    reason: str
    rotation_id: str | None
    since: datetime

    def as_json(self) -> dict[str, Any]:
        return {"reason": self.reason, "rotation_id": self.rotation_id, "since": isoformat(self.since)}


class BlockMarker:
    """Persisted flag set after a finalize write failure; survives restarts."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def get(self) -> BlockState | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            if not isinstance(data, dict):
                raise MalformedPayload("block marker must be an object")
            since = data.get("since")
            return BlockState(
                reason=str(data.get("reason") or "unknown"),
                rotation_id=data.get("rotation_id") or None,
                since=parse_datetime(since, field_name="since") if since else datetime.now().astimezone(),
            )
        except FileNotFoundError:
            return None
        except (ValueError, OSError, MalformedPayload):
            # an unreadable marker still blocks
            _log.warning("block marker unreadable path=%s", self.path, exc_info=True)
            return BlockState(reason="block marker is unreadable", rotation_id=None, since=datetime.now().astimezone())

    def set(self, state: BlockState) -> None:
        # plain write: the filesystem may be what failed
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(state.as_json(), ensure_ascii=False, indent=2), encoding="utf-8")

    def clear(self) -> bool:
        return remove_file(self.path)
