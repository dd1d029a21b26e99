"""Build coordinators, agents and schedulers from a :class:`TokenshiftConfig`."""
from __future__ import annotations

from datetime import datetime
from typing import Callable

from tokenshift.services.config import TokenshiftConfig
from tokenshift.services.rotation.audit import AuditLog
from tokenshift.services.rotation.commands import FinalizeSweep, StageDue, SyncDue
from tokenshift.services.rotation.coordinator import RotationCoordinator
from tokenshift.services.rotation.enums import ConflictPolicy, Role
from tokenshift.services.rotation.models import utcnow
from tokenshift.services.rotation.pending_store import BlockMarker, PendingStore
from tokenshift.services.rotation.reload import reloader_from_command
from tokenshift.services.rotation.token_store import TokenStore
from tokenshift.services.scheduler import Scheduler
from tokenshift.services.sync.agent import PendingSource, SyncAgent
from tokenshift.services.sync.client import RotationClient
from tokenshift.services.sync.state import SyncStateStore

__all__ = ["build_coordinator", "build_server_scheduler", "build_sync_agent", "build_agent_scheduler"]


def build_coordinator(
    conf: TokenshiftConfig,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> RotationCoordinator:
    server = conf.server
    return RotationCoordinator(
        store=TokenStore(
            conf.path(server.tokens_path),
            role=Role.SERVER,
            backups_dir=conf.path(server.backups_dir),
            clock=clock,
        ),
        pending=PendingStore(conf.path(server.pending_path)),
        audit=AuditLog(conf.path(server.audit_path), clock=clock),
        block=BlockMarker(conf.path(server.block_path)),
        rotation_key=conf.rotation_key_value(),
        lock_path=conf.path(server.lock_path),
        policy=ConflictPolicy(server.conflict_policy),
        reloader=reloader_from_command(server.reload_command, timeout=server.reload_timeout_seconds),
        clock=clock,
        token_bytes=server.token_bytes,
    )


def build_server_scheduler(
    conf: TokenshiftConfig,
    coordinator: RotationCoordinator,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> Scheduler:
    """Scheduler wired to the coordinator; also installed as its finalize trigger."""
    scheduler = Scheduler(coordinator.handle, clock=clock)
    coordinator.trigger = scheduler
    scheduler.ensure_every("finalize-sweep", conf.server.sweep_interval_seconds, FinalizeSweep())
    periodic = conf.server.periodic_stage
    if periodic.interval_hours > 0:
        scheduler.ensure_every(
            "periodic-stage",
            periodic.interval_hours * 3600.0,
            StageDue(grace_minutes=periodic.grace_minutes),
        )
    coordinator.resume()
    return scheduler


def build_sync_agent(
    conf: TokenshiftConfig,
    *,
    client: PendingSource | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> SyncAgent:
    settings = conf.client
    return SyncAgent(
        client=client or RotationClient.from_config(conf),
        store=TokenStore(
            conf.path(settings.tokens_path),
            role=Role.CLIENT,
            backups_dir=conf.path(settings.backups_dir),
            clock=clock,
        ),
        state=SyncStateStore(conf.path(settings.state_path)),
        audit=AuditLog(conf.path(settings.audit_path), clock=clock),
        expected_services=settings.expected_services,
        reloader=reloader_from_command(settings.reload_command, timeout=settings.reload_timeout_seconds),
        reconcile=settings.reconcile,
        clock=clock,
    )


def build_agent_scheduler(conf: TokenshiftConfig, agent: SyncAgent) -> Scheduler:
    scheduler = Scheduler(agent.handle)
    scheduler.ensure_every("sync", conf.client.poll_interval_seconds, SyncDue())
    return scheduler
