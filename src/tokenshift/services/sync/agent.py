"""Client-side sync agent: pull the pending rotation and apply it locally.

A poll never raises.  Every failure (network, authentication, malformed
payload, write, reload) leaves the live token file as it was, is recorded in
the sync state, and is retried on the next poll.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Protocol
import logging

from tokenshift.services.rotation.audit import AuditLog
from tokenshift.services.rotation.commands import Command, SyncDue
from tokenshift.services.rotation.enums import AuditEvent, Outcome, SyncOutcome
from tokenshift.services.rotation.errors import MalformedPayload, ReloadFailure, RotationError, WriteFailure
from tokenshift.services.rotation.models import ClientSyncState, TokenSet, utcnow
from tokenshift.services.rotation.reload import NullReloader, ServiceReloader
from tokenshift.services.rotation.token_store import TokenStore
from tokenshift.services.rotation.wire import ActiveSnapshot, PollResult

from .state import SyncStateStore

__all__ = ["SyncAgent", "SyncReport", "PendingSource"]

_log = logging.getLogger("tokenshift.sync")


class PendingSource(Protocol):
    def fetch_pending(self) -> PollResult: ...

    def fetch_active(self) -> ActiveSnapshot: ...


@dataclass(frozen=True, slots=True)
class SyncReport:
    outcome: SyncOutcome
    # none | already_applied | applied | reconciled | unchanged | failed
    action: str
    rotation_id: str | None = None
    warnings: tuple[str, ...] = ()
    error_code: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is SyncOutcome.SUCCESS


class SyncAgent:
    def __init__(
        self,
        *,
        client: PendingSource,
        store: TokenStore,
        state: SyncStateStore,
        audit: AuditLog,
        expected_services: Iterable[str] = (),
        reloader: ServiceReloader | None = None,
        reconcile: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.client = client
        self.store = store
        self.state = state
        self.audit = audit
        self.expected_services = frozenset(expected_services)
        self.reloader: ServiceReloader = reloader or NullReloader()
        self.reconcile = reconcile
        self._clock = clock

    def handle(self, command: Command) -> SyncReport:
        if not isinstance(command, SyncDue):
            raise TypeError(f"unsupported command: {command!r}")
        return self.sync_once()

    def sync_once(self) -> SyncReport:
        state = self.state.load()
        now = self._clock()
        rotation_id: str | None = None
        try:
            poll = self.client.fetch_pending()
            if poll.pending is None:
                return self._handle_none(state, poll.active_rotation_id, now)
            rotation_id = poll.pending.rotation_id
            if state.is_synced(rotation_id):
                state.record_success(now)
                self.state.save(state)
                _log.debug("rotation already applied rotation=%s", rotation_id)
                return SyncReport(outcome=SyncOutcome.SUCCESS, action="already_applied", rotation_id=rotation_id)
            return self._apply(state, rotation_id, poll.pending.staged, now, action="applied")
        except RotationError as exc:
            return self._fail(state, exc, now, rotation_id=rotation_id)

    # ------------------------------------------------------------------ steps
    def _handle_none(self, state: ClientSyncState, active_rotation_id: str | None, now: datetime) -> SyncReport:
        if self.reconcile and active_rotation_id and not state.is_synced(active_rotation_id):
            snapshot = self.client.fetch_active()
            if snapshot.rotation_id:
                _log.info(
                    "reconciling with active set rotation=%s last_known=%s",
                    snapshot.rotation_id,
                    state.last_known_rotation_id,
                )
                return self._apply(state, snapshot.rotation_id, snapshot.tokens, now, action="reconciled")
        state.record_success(now)
        self.state.save(state)
        return SyncReport(outcome=SyncOutcome.SUCCESS, action="none")

    def _plan(self, current: TokenSet, staged: TokenSet) -> tuple[TokenSet, list[str]]:
        if not len(staged):
            raise MalformedPayload("staged token set is empty")
        expected = self.expected_services or current.services()
        if not expected:
            return current.with_updates(staged.tokens), []
        warnings: list[str] = []
        unknown = sorted(staged.services() - expected)
        missing = sorted(expected - staged.services())
        if unknown:
            warnings.append(f"ignoring unknown services: {', '.join(unknown)}")
        if missing:
            warnings.append(f"no staged token for: {', '.join(missing)}")
        return current.with_updates(staged.restricted_to(expected).tokens), warnings

    def _apply(
        self,
        state: ClientSyncState,
        rotation_id: str,
        staged: TokenSet,
        now: datetime,
        *,
        action: str,
    ) -> SyncReport:
        current = self.store.snapshot()
        updated, warnings = self._plan(current.tokens, staged)
        for warning in warnings:
            _log.warning("rotation=%s %s", rotation_id, warning)

        if updated == current.tokens:
            action = "unchanged"
        else:
            self.store.replace(updated, rotation_id=rotation_id)
            try:
                self.reloader.reload()
            except ReloadFailure:
                self._restore(current.tokens, current.rotation_id, rotation_id)
                raise

        state.record_success(now, rotation_id)
        self.state.save(state)
        self.audit.record(
            AuditEvent.SYNC_ATTEMPT,
            rotation_id=rotation_id,
            outcome=Outcome.OK if action != "unchanged" else Outcome.NOOP,
            detail={"action": action, "services": sorted(updated.services()), "warnings": warnings},
        )
        _log.info("sync %s rotation=%s services=%d", action, rotation_id, len(updated))
        return SyncReport(
            outcome=SyncOutcome.SUCCESS,
            action=action,
            rotation_id=rotation_id,
            warnings=tuple(warnings),
        )

    def _restore(self, previous: TokenSet, previous_rotation: str | None, rotation_id: str) -> None:
        try:
            self.store.replace(previous, rotation_id=previous_rotation)
        except WriteFailure:
            _log.critical(
                "reload failed and previous tokens could not be restored rotation=%s path=%s",
                rotation_id,
                self.store.path,
                exc_info=True,
            )
            raise
        _log.warning("reload failed; restored previous tokens rotation=%s", rotation_id)

    def _fail(self, state: ClientSyncState, exc: RotationError, now: datetime, *, rotation_id: str | None) -> SyncReport:
        _log.warning("sync failed rotation=%s code=%s: %s", rotation_id, exc.error_code, exc)
        state.record_failure(now, f"{exc.error_code}: {exc}")
        try:
            self.state.save(state)
            self.audit.record(
                AuditEvent.SYNC_ATTEMPT,
                rotation_id=rotation_id,
                outcome=Outcome.FAILED,
                detail={"error": exc.error_code, "message": str(exc)},
            )
        except (WriteFailure, OSError):
            _log.warning("could not persist sync failure", exc_info=True)
        return SyncReport(
            outcome=SyncOutcome.FAILURE,
            action="failed",
            rotation_id=rotation_id,
            error_code=exc.error_code,
            error=str(exc),
        )
