"""Server-side owner of the pending rotation record and the active token set.

Stage, Cancel and Finalize are serialized by an in-process mutex plus an
exclusive lock file, so a running server and an operator CLI invocation never
interleave.  Races are settled by comparing rotation identifiers: a finalize
trigger only acts when it names the live pending record.
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, Iterator, Mapping
import hmac
import logging
import secrets
import threading

from tokenshift.adapters.fs.atomic import exclusive_lock

from .audit import AuditLog
from .commands import Command, FinalizeDue, FinalizeSweep, FinalizeTrigger, StageDue
from .enums import AuditEvent, ConflictPolicy, Outcome
from .errors import (
    AlreadyPending,
    AuthenticationFailure,
    CoordinatorBlocked,
    MalformedPayload,
    NoPendingRotation,
    ReloadFailure,
    WriteFailure,
)
from .ids import generate_rotation_id
from .models import ConfigBackup, PendingRotation, TokenSet, isoformat, utcnow
from .pending_store import BlockMarker, BlockState, PendingStore
from .reload import NullReloader, ServiceReloader
from .token_store import StoreSnapshot, TokenStore

__all__ = ["RotationCoordinator", "FinalizeResult", "CoordinatorStatus", "generate_token_set"]

_log = logging.getLogger("tokenshift.coordinator")


def generate_token_set(services: Iterable[str], *, nbytes: int = 32) -> TokenSet:
    return TokenSet(tokens={service: secrets.token_urlsafe(nbytes) for service in sorted(set(services))})


@dataclass(frozen=True, slots=True)
class FinalizeResult:
    rotation_id: str | None
    outcome: Outcome
    backup: ConfigBackup | None = None
    reload_error: str | None = None
    reason: str | None = None

    @property
    def finalized(self) -> bool:
        return self.outcome is Outcome.OK


@dataclass(frozen=True, slots=True)
class CoordinatorStatus:
    pending: PendingRotation | None
    active: StoreSnapshot
    blocked: BlockState | None
    policy: ConflictPolicy


class RotationCoordinator:
    """Implements staging, cancellation, finalization and the authenticated read."""

    def __init__(
        self,
        *,
        store: TokenStore,
        pending: PendingStore,
        audit: AuditLog,
        block: BlockMarker,
        rotation_key: str,
        lock_path: Path,
        policy: ConflictPolicy = ConflictPolicy.REJECT,
        reloader: ServiceReloader | None = None,
        trigger: FinalizeTrigger | None = None,
        clock: Callable[[], datetime] = utcnow,
        token_bytes: int = 32,
    ) -> None:
        if not rotation_key:
            raise ValueError("rotation key must not be empty")
        self.store = store
        self.pending = pending
        self.audit = audit
        self.block = block
        self.policy = ConflictPolicy(policy)
        self.reloader: ServiceReloader = reloader or NullReloader()
        self.trigger = trigger
        self.token_bytes = token_bytes
        self._rotation_key = rotation_key
        self._lock_path = lock_path
        self._mutex = threading.Lock()
        self._clock = clock

    # ------------------------------------------------------------------ helpers
    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        with self._mutex, exclusive_lock(self._lock_path):
            yield

    def _ensure_unblocked(self) -> None:
        state = self.block.get()
        if state is not None:
            raise CoordinatorBlocked(state.reason)

    def _check_tokens(self, tokens: TokenSet | Mapping[str, str]) -> TokenSet:
        staged = tokens if isinstance(tokens, TokenSet) else TokenSet.from_mapping(tokens)
        if not len(staged):
            raise MalformedPayload("staged token set is empty")
        if staged.contains_value(self._rotation_key):
            raise MalformedPayload("a service token must never equal the rotation key")
        return staged

    def _cancel_locked(self, live: PendingRotation, *, reason: str) -> None:
        self.pending.delete()
        if self.trigger is not None:
            self.trigger.cancel_finalize(live.rotation_id)
        self.audit.record(
            AuditEvent.CANCEL,
            rotation_id=live.rotation_id,
            outcome=Outcome.OK,
            detail={"reason": reason},
        )
        _log.info("rotation cancelled rotation=%s reason=%s", live.rotation_id, reason)

    # ------------------------------------------------------------------ reads
    def authenticate(self, credential: str | None) -> None:
        if not credential or not hmac.compare_digest(credential.encode("utf-8"), self._rotation_key.encode("utf-8")):
            raise AuthenticationFailure("invalid rotation key")

    def get_pending(self, credential: str | None) -> PendingRotation | None:
        """Return the live pending rotation, or ``None`` in the steady state."""
        self.authenticate(credential)
        return self.pending.load()

    def get_active(self, credential: str | None) -> StoreSnapshot:
        self.authenticate(credential)
        return self.store.snapshot()

    def status(self) -> CoordinatorStatus:
        return CoordinatorStatus(
            pending=self.pending.load(),
            active=self.store.snapshot(),
            blocked=self.block.get(),
            policy=self.policy,
        )

    # ------------------------------------------------------------------ mutations
    def stage_rotation(self, new_tokens: TokenSet | Mapping[str, str], grace_minutes: int) -> str:
        if grace_minutes < 0:
            raise ValueError("grace_minutes must be >= 0")
        staged = self._check_tokens(new_tokens)
        with self._exclusive():
            self._ensure_unblocked()
            active = self.store.load().services()
            live = self.pending.load()
            if live is not None:
                if self.policy is ConflictPolicy.REJECT:
                    _log.warning("stage rejected: rotation=%s still pending", live.rotation_id)
                    raise AlreadyPending(live.rotation_id)
                self._cancel_locked(live, reason="replaced")

            now = self._clock()
            record = PendingRotation(
                rotation_id=generate_rotation_id(now),
                staged=staged,
                created_at=now,
                finalize_at=now + timedelta(minutes=grace_minutes),
            )
            try:
                self.pending.save(record)
            except WriteFailure as exc:
                self.audit.record(
                    AuditEvent.STAGE,
                    rotation_id=record.rotation_id,
                    outcome=Outcome.FAILED,
                    detail={"error": exc.error_code},
                )
                raise

            added = sorted(staged.services() - active)
            dropped = sorted(active - staged.services())
            if added or dropped:
                _log.warning(
                    "staged services differ from active set rotation=%s added=%s dropped=%s",
                    record.rotation_id,
                    added,
                    dropped,
                )
            self.audit.record(
                AuditEvent.STAGE,
                rotation_id=record.rotation_id,
                outcome=Outcome.OK,
                detail={
                    "services": sorted(staged.services()),
                    "grace_minutes": grace_minutes,
                    "finalize_at": isoformat(record.finalize_at),
                },
            )
            if self.trigger is not None:
                self.trigger.schedule_finalize(record.rotation_id, record.finalize_at)
        _log.info(
            "rotation staged rotation=%s services=%d finalize_at=%s",
            record.rotation_id,
            len(staged),
            isoformat(record.finalize_at),
        )
        return record.rotation_id

    def stage_generated(self, grace_minutes: int, *, services: Iterable[str] | None = None) -> str:
        """Stage fresh random tokens for ``services`` (default: every active service)."""
        names = list(services) if services is not None else sorted(self.store.load().services())
        if not names:
            raise MalformedPayload("no services to rotate: active token set is empty")
        return self.stage_rotation(generate_token_set(names, nbytes=self.token_bytes), grace_minutes)

    def cancel_pending(self) -> str:
        with self._exclusive():
            live = self.pending.load()
            if live is None:
                _log.info("cancel requested but no rotation is pending")
                raise NoPendingRotation()
            self._cancel_locked(live, reason="operator")
        return live.rotation_id

    def finalize(self, rotation_id: str) -> FinalizeResult:
        """Promote the staged set when ``rotation_id`` still names the live record."""
        with self._exclusive():
            self._ensure_unblocked()
            live = self.pending.load()
            if live is None:
                _log.info("finalize no-op rotation=%s reason=no pending rotation", rotation_id)
                return FinalizeResult(rotation_id=rotation_id, outcome=Outcome.NOOP, reason="no pending rotation")
            if live.rotation_id != rotation_id:
                _log.info(
                    "finalize no-op rotation=%s reason=superseded live=%s",
                    rotation_id,
                    live.rotation_id,
                )
                return FinalizeResult(rotation_id=rotation_id, outcome=Outcome.NOOP, reason="rotation superseded")
            return self._finalize_locked(live)

    def _finalize_locked(self, live: PendingRotation) -> FinalizeResult:
        try:
            backup = self.store.replace(live.staged, rotation_id=live.rotation_id)
            self.pending.delete()
        except WriteFailure as exc:
            try:
                self.block.set(BlockState(reason=str(exc), rotation_id=live.rotation_id, since=self._clock()))
            except OSError:
                _log.critical(
                    "block marker could not be written rotation=%s path=%s",
                    live.rotation_id,
                    self.block.path,
                    exc_info=True,
                )
            try:
                self.audit.record(
                    AuditEvent.FINALIZE,
                    rotation_id=live.rotation_id,
                    outcome=Outcome.FAILED,
                    detail={"error": exc.error_code, "message": str(exc)},
                )
            except OSError:
                _log.critical("finalize failure could not be audited rotation=%s", live.rotation_id, exc_info=True)
            _log.critical(
                "finalize write failure rotation=%s; stage/finalize blocked until `tokenshift rotation unblock`",
                live.rotation_id,
                exc_info=True,
            )
            raise

        reload_error: str | None = None
        try:
            self.reloader.reload()
        except ReloadFailure as exc:
            reload_error = str(exc)
            _log.error("server reload failed after finalize rotation=%s: %s", live.rotation_id, exc)

        self.audit.record(
            AuditEvent.FINALIZE,
            rotation_id=live.rotation_id,
            outcome=Outcome.OK,
            detail={
                "backup": backup.backup_id if backup else None,
                "services": sorted(live.staged.services()),
                "reload": "failed" if reload_error else "ok",
            },
        )
        _log.info("rotation finalized rotation=%s", live.rotation_id)
        return FinalizeResult(
            rotation_id=live.rotation_id,
            outcome=Outcome.OK,
            backup=backup,
            reload_error=reload_error,
        )

    def force_finalize(self) -> FinalizeResult:
        live = self.pending.load()
        if live is None:
            raise NoPendingRotation()
        return self.finalize(live.rotation_id)

    def finalize_if_due(self) -> FinalizeResult | None:
        live = self.pending.load()
        if live is None or not live.is_due(self._clock()):
            return None
        return self.finalize(live.rotation_id)

    def unblock(self) -> BlockState | None:
        with self._exclusive():
            state = self.block.get()
            if state is not None:
                self.block.clear()
                _log.warning("coordinator unblocked by operator; previous reason=%s", state.reason)
            return state

    # ------------------------------------------------------------------ scheduling
    def resume(self) -> PendingRotation | None:
        """Re-arm the finalize trigger for a record that survived a restart."""
        live = self.pending.load()
        if live is not None and self.trigger is not None:
            self.trigger.schedule_finalize(live.rotation_id, live.finalize_at)
            _log.info("re-armed finalize rotation=%s at=%s", live.rotation_id, isoformat(live.finalize_at))
        return live

    def handle(self, command: Command) -> object:
        if isinstance(command, FinalizeDue):
            return self.finalize(command.rotation_id)
        if isinstance(command, FinalizeSweep):
            return self.finalize_if_due()
        if isinstance(command, StageDue):
            try:
                return self.stage_generated(command.grace_minutes)
            except AlreadyPending as exc:
                _log.info("periodic stage skipped: rotation=%s still pending", exc.rotation_id)
                return None
        raise TypeError(f"unsupported command: {command!r}")
