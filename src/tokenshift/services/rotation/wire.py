"""JSON shapes exchanged between the pull endpoint and sync agents."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .errors import MalformedPayload
from .models import PendingRotation, TokenSet

__all__ = [
    "ROTATION_KEY_HEADER",
    "PollResult",
    "ActiveSnapshot",
    "encode_poll",
    "decode_poll",
    "encode_active",
    "decode_active",
]

# never carried in the URL, so proxies and access logs do not see it
ROTATION_KEY_HEADER = "X-Rotation-Key"

STATUS_PENDING = "pending"
STATUS_NONE = "none"


@dataclass(frozen=True, slots=True)
class PollResult:
    pending: PendingRotation | None
    active_rotation_id: str | None = None


@dataclass(frozen=True, slots=True)
class ActiveSnapshot:
    rotation_id: str | None
    tokens: TokenSet


def encode_poll(result: PollResult) -> dict[str, Any]:
    if result.pending is not None:
        return {"status": STATUS_PENDING, "rotation": result.pending.as_dict()}
    return {"status": STATUS_NONE, "active_rotation_id": result.active_rotation_id}


def decode_poll(payload: Any) -> PollResult:
    if not isinstance(payload, Mapping):
        raise MalformedPayload("poll response must be an object")
    status = payload.get("status")
    if status == STATUS_NONE:
        active = payload.get("active_rotation_id")
        return PollResult(pending=None, active_rotation_id=active if isinstance(active, str) and active else None)
    if status == STATUS_PENDING:
        return PollResult(pending=PendingRotation.from_mapping(payload.get("rotation")))
    raise MalformedPayload(f"unknown poll status: {status!r}")


def encode_active(snapshot: ActiveSnapshot) -> dict[str, Any]:
    return {"rotation_id": snapshot.rotation_id, "tokens": snapshot.tokens.as_dict()}


def decode_active(payload: Any) -> ActiveSnapshot:
    if not isinstance(payload, Mapping):
        raise MalformedPayload("active token response must be an object")
    rotation_id = payload.get("rotation_id")
    return ActiveSnapshot(
        rotation_id=rotation_id if isinstance(rotation_id, str) and rotation_id else None,
        tokens=TokenSet.from_mapping(payload.get("tokens")),
    )
