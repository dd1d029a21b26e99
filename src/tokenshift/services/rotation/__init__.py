"""Staged, pull-based token rotation for tunnel servers and their clients."""
from .enums import AuditEvent, ConflictPolicy, Outcome, Role, SyncOutcome
from .errors import (
    AlreadyPending,
    AuthenticationFailure,
    CoordinatorBlocked,
    MalformedPayload,
    NoPendingRotation,
    ReloadFailure,
    RotationError,
    TransientNetworkFailure,
    WriteFailure,
)
from .models import AuditEntry, ClientSyncState, ConfigBackup, PendingRotation, TokenSet
from .coordinator import CoordinatorStatus, FinalizeResult, RotationCoordinator

__all__ = [
    "AuditEvent",
    "ConflictPolicy",
    "Outcome",
    "Role",
    "SyncOutcome",
    "RotationError",
    "AlreadyPending",
    "NoPendingRotation",
    "AuthenticationFailure",
    "MalformedPayload",
    "TransientNetworkFailure",
    "ReloadFailure",
    "WriteFailure",
    "CoordinatorBlocked",
    "AuditEntry",
    "ClientSyncState",
    "ConfigBackup",
    "PendingRotation",
    "TokenSet",
    "CoordinatorStatus",
    "FinalizeResult",
    "RotationCoordinator",
]
