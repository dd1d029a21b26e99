"""Dataclasses capturing the persisted schema of the rotation protocol."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

from .enums import AuditEvent, Outcome, Role, SyncOutcome
from .errors import MalformedPayload

__all__ = [
    "TokenSet",
    "PendingRotation",
    "AuditEntry",
    "ConfigBackup",
    "ClientSyncState",
    "utcnow",
    "isoformat",
    "parse_datetime",
]


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def isoformat(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


def parse_datetime(value: Any, *, field_name: str) -> datetime:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value:
        try:
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise MalformedPayload(f"{field_name} is not an ISO timestamp") from exc
    else:
        raise MalformedPayload(f"{field_name} is missing")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


@dataclass(frozen=True, slots=True)
class TokenSet:
    """Service identifier → opaque token."""

    tokens: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Any) -> "TokenSet":
        if not isinstance(data, Mapping):
            raise MalformedPayload("token set must be a mapping of service to token")
        tokens: dict[str, str] = {}
        for service, token in data.items():
            if not isinstance(service, str) or not service.strip():
                raise MalformedPayload("service identifiers must be non-empty strings")
            if not isinstance(token, str) or not token:
                raise MalformedPayload(f"token for service '{service}' must be a non-empty string")
            tokens[service.strip()] = token
        return cls(tokens=tokens)

    def __len__(self) -> int:
        return len(self.tokens)

    def __contains__(self, service: object) -> bool:
        return service in self.tokens

    def get(self, service: str) -> str | None:
        return self.tokens.get(service)

    def services(self) -> frozenset[str]:
        return frozenset(self.tokens)

    def contains_value(self, secret: str) -> bool:
        return any(token == secret for token in self.tokens.values())

    def with_updates(self, updates: Mapping[str, str]) -> "TokenSet":
        merged = dict(self.tokens)
        merged.update(updates)
        return TokenSet(tokens=merged)

    def restricted_to(self, services: Iterable[str]) -> "TokenSet":
        wanted = set(services)
        return TokenSet(tokens={k: v for k, v in self.tokens.items() if k in wanted})

    def as_dict(self) -> dict[str, str]:
        return dict(sorted(self.tokens.items()))


@dataclass(frozen=True, slots=True)
class PendingRotation:
    rotation_id: str
    staged: TokenSet
    created_at: datetime
    finalize_at: datetime

    def is_due(self, at: datetime) -> bool:
        return at >= self.finalize_at

    @classmethod
    def from_mapping(cls, data: Any) -> "PendingRotation":
        if not isinstance(data, Mapping):
            raise MalformedPayload("pending rotation must be an object")
        rotation_id = data.get("rotation_id")
        if not isinstance(rotation_id, str) or not rotation_id:
            raise MalformedPayload("rotation_id is missing")
        staged = TokenSet.from_mapping(data.get("tokens"))
        if not len(staged):
            raise MalformedPayload("staged token set is empty")
        return cls(
            rotation_id=rotation_id,
            staged=staged,
            created_at=parse_datetime(data.get("created_at"), field_name="created_at"),
            finalize_at=parse_datetime(data.get("finalize_at"), field_name="finalize_at"),
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "rotation_id": self.rotation_id,
            "tokens": self.staged.as_dict(),
            "created_at": isoformat(self.created_at),
            "finalize_at": isoformat(self.finalize_at),
        }


@dataclass(frozen=True, slots=True)
class AuditEntry:
    timestamp: datetime
    event: AuditEvent
    rotation_id: str | None
    outcome: Outcome
    detail: dict[str, object] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AuditEntry":
        return cls(
            timestamp=parse_datetime(data.get("timestamp"), field_name="timestamp"),
            event=AuditEvent(str(data.get("event"))),
            rotation_id=data.get("rotation_id") or None,
            outcome=Outcome(str(data.get("outcome"))),
            detail=dict(data.get("detail") or {}),
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "timestamp": isoformat(self.timestamp),
            "event": self.event.value,
            "rotation_id": self.rotation_id,
            "outcome": self.outcome.value,
            "detail": self.detail,
        }


@dataclass(frozen=True, slots=True)
class ConfigBackup:
    backup_id: str
    role: Role
    taken_at: datetime
    tokens: TokenSet
    rotation_id: str | None = None
    path: Path | None = None


@dataclass(slots=True)
class ClientSyncState:
    """Client-local bookkeeping used to skip rotations that were already applied."""

    last_sync_attempt: datetime | None = None
    last_sync_outcome: SyncOutcome | None = None
    last_known_rotation_id: str | None = None
    last_error: str | None = None

    def is_synced(self, rotation_id: str) -> bool:
        return self.last_known_rotation_id == rotation_id

    def record_success(self, at: datetime, rotation_id: str | None = None) -> None:
        self.last_sync_attempt = at
        self.last_sync_outcome = SyncOutcome.SUCCESS
        self.last_error = None
        if rotation_id is not None:
            self.last_known_rotation_id = rotation_id

    def record_failure(self, at: datetime, error: str) -> None:
        self.last_sync_attempt = at
        self.last_sync_outcome = SyncOutcome.FAILURE
        self.last_error = error

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ClientSyncState":
        attempt = data.get("last_sync_attempt")
        outcome = data.get("last_sync_outcome")
        return cls(
            last_sync_attempt=parse_datetime(attempt, field_name="last_sync_attempt") if attempt else None,
            last_sync_outcome=SyncOutcome(outcome) if outcome else None,
            last_known_rotation_id=data.get("last_known_rotation_id") or None,
            last_error=data.get("last_error") or None,
        )

    def as_json(self) -> dict[str, Any]:
        return {
            "last_sync_attempt": isoformat(self.last_sync_attempt) if self.last_sync_attempt else None,
            "last_sync_outcome": self.last_sync_outcome.value if self.last_sync_outcome else None,
            "last_known_rotation_id": self.last_known_rotation_id,
            "last_error": self.last_error,
        }
