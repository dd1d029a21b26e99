"""Error taxonomy shared by the coordinator, the sync agent and the CLI."""

from __future__ import annotations

__all__ = [
    "RotationError",
    "AlreadyPending",
    "NoPendingRotation",
    "AuthenticationFailure",
    "MalformedPayload",
    "TransientNetworkFailure",
    "ReloadFailure",
    "WriteFailure",
    "CoordinatorBlocked",
]


class RotationError(RuntimeError):
    """Base error for rotation flows."""

    default_code = "rotation_error"

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code or self.default_code


class AlreadyPending(RotationError):
    """Raised when staging while another rotation is outstanding."""

    default_code = "already_pending"

    def __init__(self, rotation_id: str) -> None:
        super().__init__(f"rotation {rotation_id} is already pending; cancel it first")
        self.rotation_id = rotation_id


class NoPendingRotation(RotationError):
    default_code = "no_pending_rotation"

    def __init__(self, message: str = "no rotation is pending") -> None:
        super().__init__(message)


class AuthenticationFailure(RotationError):
    default_code = "authentication_failed"


class MalformedPayload(RotationError):
    default_code = "malformed_payload"


class TransientNetworkFailure(RotationError):
    default_code = "network_failure"


class ReloadFailure(RotationError):
    default_code = "reload_failed"


class WriteFailure(RotationError):
    """Raised when an atomic write or rename of a config file failed."""

    default_code = "write_failed"


class CoordinatorBlocked(RotationError):
    """Raised while a previous finalize write failure awaits operator review."""

    default_code = "coordinator_blocked"

    def __init__(self, reason: str) -> None:
        super().__init__(f"coordinator is blocked until an operator confirms on-disk state: {reason}")
        self.reason = reason
