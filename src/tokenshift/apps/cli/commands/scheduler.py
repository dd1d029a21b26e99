from __future__ import annotations

import typer

from tokenshift.apps.cli.output import already, config_of, failed, ok
from tokenshift.services.bootstrap import build_coordinator, build_sync_agent
from tokenshift.services.config import ConfigError
from tokenshift.services.rotation.commands import FinalizeSweep, SyncDue
from tokenshift.services.rotation.coordinator import FinalizeResult
from tokenshift.services.rotation.errors import RotationError
from tokenshift.services.sync.agent import SyncReport

app = typer.Typer(help="Cron-friendly single scheduler ticks.")


@app.command("tick")
def tick(ctx: typer.Context):
    """Run one scheduler tick for the configured role.

    On a server this finalizes a due rotation; on a client it performs one sync.
    """
    conf = config_of(ctx)
    try:
        if conf.role == "client":
            report: SyncReport = build_sync_agent(conf).handle(SyncDue())
            if not report.ok:
                failed(report.error or "sync failed", code=report.error_code)
            ok(f"sync {report.action}", rotation=report.rotation_id)
            return
        result: FinalizeResult | None = build_coordinator(conf).handle(FinalizeSweep())
    except ConfigError as exc:
        failed(str(exc))
    except RotationError as exc:
        failed(str(exc), code=exc.error_code)
    if result is None:
        already("nothing due")
    elif result.finalized:
        ok("finalized", rotation=result.rotation_id)
    else:
        already(result.reason or "nothing due", rotation=result.rotation_id)
