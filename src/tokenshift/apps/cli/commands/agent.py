"""Client-side commands: one-shot sync and the polling loop."""

from __future__ import annotations

import asyncio

import typer

from tokenshift.apps.cli.output import config_of, failed, ok
from tokenshift.services.bootstrap import build_agent_scheduler, build_sync_agent
from tokenshift.services.config import ConfigError
from tokenshift.services.sync.agent import SyncAgent, SyncReport


app = typer.Typer(help="Pull staged rotations from the coordinator.")


def _agent(ctx: typer.Context) -> SyncAgent:
    try:
        return build_sync_agent(config_of(ctx))
    except ConfigError as exc:
        failed(str(exc))


def _print_report(report: SyncReport) -> None:
    for warning in report.warnings:
        typer.echo(f"warning: {warning}", err=True)
    if report.ok:
        ok(report.action, rotation=report.rotation_id)
    else:
        failed(report.error or "sync failed", code=report.error_code, rotation=report.rotation_id)


@app.command("sync")
def sync(ctx: typer.Context):
    """Poll once; exit code 1 when the poll failed (it is retried on the next run)."""
    _print_report(_agent(ctx).sync_once())


async def _run_forever(agent: SyncAgent, ctx: typer.Context) -> None:
    scheduler = build_agent_scheduler(config_of(ctx), agent)
    await asyncio.to_thread(agent.sync_once)
    await scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        await scheduler.stop()


@app.command("run")
def run(ctx: typer.Context):
    """Poll on client.poll_interval_seconds until interrupted."""
    agent = _agent(ctx)
    try:
        asyncio.run(_run_forever(agent, ctx))
    except KeyboardInterrupt:
        typer.echo("stopped")
