# src/tokenshift/apps/cli/app.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import typer

from tokenshift import __version__
from tokenshift.apps.cli.commands import agent, key, rotation, scheduler, server
from tokenshift.services.config import ENV_HOME, ConfigError, load_config
from tokenshift.services.logging import setup_logging

app = typer.Typer(help="Staged credential rotation for tunnel servers and their clients.", no_args_is_help=True)

app.add_typer(rotation.app, name="rotation")
app.add_typer(server.app, name="server")
app.add_typer(agent.app, name="agent")
app.add_typer(scheduler.app, name="scheduler")
app.add_typer(key.app, name="key")


def _version(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    home: Optional[Path] = typer.Option(None, "--home", help=f"Base directory (default: ${ENV_HOME} or ~/.tokenshift)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override logging.level from the config"),
    version: bool = typer.Option(False, "--version", callback=_version, is_eager=True, help="Print the version"),
):
    if home is not None:
        os.environ[ENV_HOME] = str(home)
    try:
        conf = load_config()
    except ConfigError as exc:
        typer.echo(f"failed: {exc}", err=True)
        raise typer.Exit(1)
    setup_logging(
        log_level or conf.logging.level,
        logfile=conf.path(conf.logging.file),
        max_bytes=conf.logging.max_bytes,
        backup_count=conf.logging.backup_count,
    )
    ctx.obj = conf


if __name__ == "__main__":
    app()
