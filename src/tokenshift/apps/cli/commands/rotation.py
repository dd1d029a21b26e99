"""Operator commands for the server-side rotation coordinator."""

from __future__ import annotations

import json
from typing import List, Optional

import typer

from tokenshift.apps.cli.output import already, config_of, failed, ok
from tokenshift.services.bootstrap import build_coordinator
from tokenshift.services.config import ConfigError
from tokenshift.services.rotation.audit import AuditLog
from tokenshift.services.rotation.coordinator import RotationCoordinator
from tokenshift.services.rotation.errors import (
    AlreadyPending,
    NoPendingRotation,
    RotationError,
)
from tokenshift.services.rotation.models import isoformat


app = typer.Typer(help="Stage, cancel and finalize credential rotations.")


def _coordinator(ctx: typer.Context) -> RotationCoordinator:
    try:
        return build_coordinator(config_of(ctx))
    except ConfigError as exc:
        failed(str(exc))


def _parse_tokens(values: List[str]) -> dict[str, str]:
    tokens: dict[str, str] = {}
    for raw in values:
        service, sep, value = raw.partition("=")
        service = service.strip()
        if not sep or not service or not value:
            raise typer.BadParameter(f"expected SERVICE=VALUE, got {raw!r}", param_hint="--token")
        tokens[service] = value
    return tokens


@app.command("stage")
def stage(
    ctx: typer.Context,
    token: Optional[List[str]] = typer.Option(None, "--token", "-t", help="SERVICE=VALUE; repeatable"),
    generate: bool = typer.Option(False, "--generate", help="Generate fresh tokens for every active service"),
    grace: Optional[int] = typer.Option(None, "--grace", min=0, help="Minutes until finalize (default from config)"),
    exact: bool = typer.Option(False, "--exact", help="Stage only the given tokens instead of merging over the active set"),
):
    """Stage a new token set; clients pick it up during the grace period."""
    if bool(token) == generate:
        raise typer.BadParameter("pass either --token or --generate")
    conf = config_of(ctx)
    grace_minutes = conf.server.default_grace_minutes if grace is None else grace
    coordinator = _coordinator(ctx)
    try:
        if generate:
            rotation_id = coordinator.stage_generated(grace_minutes)
        else:
            given = _parse_tokens(token or [])
            staged = given if exact else coordinator.store.load().with_updates(given).as_dict()
            rotation_id = coordinator.stage_rotation(staged, grace_minutes)
    except AlreadyPending as exc:
        failed("a rotation is already pending", rotation=exc.rotation_id)
    except RotationError as exc:
        failed(str(exc), code=exc.error_code)
    pending = coordinator.pending.load()
    ok(
        "staged",
        rotation=rotation_id,
        finalize_at=isoformat(pending.finalize_at) if pending else None,
    )


@app.command("cancel")
def cancel(ctx: typer.Context):
    coordinator = _coordinator(ctx)
    try:
        rotation_id = coordinator.cancel_pending()
    except NoPendingRotation:
        already("no pending rotation")
        return
    except RotationError as exc:
        failed(str(exc), code=exc.error_code)
    ok("cancelled", rotation=rotation_id)


@app.command("finalize")
def finalize(
    ctx: typer.Context,
    rotation_id: Optional[str] = typer.Argument(None, help="Finalize only if this id is still pending; omit to force"),
):
    """Promote the pending token set now."""
    coordinator = _coordinator(ctx)
    try:
        result = coordinator.finalize(rotation_id) if rotation_id else coordinator.force_finalize()
    except NoPendingRotation:
        already("no pending rotation")
        return
    except RotationError as exc:
        failed(str(exc), code=exc.error_code)
    if not result.finalized:
        already(result.reason or "nothing to finalize", rotation=result.rotation_id)
        return
    ok(
        "finalized",
        rotation=result.rotation_id,
        backup=result.backup.backup_id if result.backup else None,
        reload="failed" if result.reload_error else "ok",
    )
    if result.reload_error:
        typer.echo(f"warning: reload failed: {result.reload_error}", err=True)


@app.command("status")
def status(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Machine-readable output"),
):
    coordinator = _coordinator(ctx)
    try:
        current = coordinator.status()
    except RotationError as exc:
        failed(str(exc), code=exc.error_code)
    payload = {
        "policy": current.policy.value,
        "active": {
            "rotation_id": current.active.rotation_id,
            "updated_at": isoformat(current.active.updated_at) if current.active.updated_at else None,
            "services": sorted(current.active.tokens.services()),
        },
        "pending": None,
        "blocked": current.blocked.as_json() if current.blocked else None,
    }
    if current.pending is not None:
        payload["pending"] = {
            "rotation_id": current.pending.rotation_id,
            "created_at": isoformat(current.pending.created_at),
            "finalize_at": isoformat(current.pending.finalize_at),
            "services": sorted(current.pending.staged.services()),
        }
    if as_json:
        typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
        return
    active = payload["active"]
    typer.echo(f"active: rotation={active['rotation_id'] or '-'} services={','.join(active['services']) or '-'}")
    pending = payload["pending"]
    if pending:
        typer.echo(f"pending: rotation={pending['rotation_id']} finalize_at={pending['finalize_at']}")
    else:
        typer.echo("pending: none")
    if current.blocked:
        typer.echo(f"blocked: {current.blocked.reason} (run 'tokenshift rotation unblock' after review)")


@app.command("audit")
def audit(
    ctx: typer.Context,
    rotation_id: Optional[str] = typer.Option(None, "--rotation", help="Only entries for this rotation"),
    limit: int = typer.Option(20, "--limit", min=1),
    client: bool = typer.Option(False, "--client", help="Read the sync agent's audit log"),
):
    conf = config_of(ctx)
    path = conf.path(conf.client.audit_path if client else conf.server.audit_path)
    log = AuditLog(path)
    entries = log.for_rotation(rotation_id) if rotation_id else list(log.entries())
    for entry in entries[-limit:]:
        typer.echo(json.dumps(entry.as_dict(), ensure_ascii=False))


@app.command("backups")
def backups(ctx: typer.Context):
    coordinator = _coordinator(ctx)
    items = coordinator.store.backups()
    if not items:
        typer.echo("no backups")
        return
    for item in items:
        typer.echo(f"{item.backup_id}\t{item.rotation_id or '-'}\t{len(item.tokens)} services\t{item.path}")


@app.command("unblock")
def unblock(ctx: typer.Context):
    """Clear the block left by a failed finalize write."""
    coordinator = _coordinator(ctx)
    state = coordinator.unblock()
    if state is None:
        already("coordinator is not blocked")
        return
    ok("unblocked", rotation=state.rotation_id)
