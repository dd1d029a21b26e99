# src/tokenshift/apps/cli/commands/server.py
from typing import Optional

import typer
import uvicorn

from tokenshift.apps.cli.output import config_of, failed
from tokenshift.services.config import ConfigError

app = typer.Typer(help="Rotation coordinator HTTP API")


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Defaults to server.host"),
    port: Optional[int] = typer.Option(None, "--port", help="Defaults to server.port"),
    ssl_certfile: Optional[str] = typer.Option(None, "--ssl-certfile"),
    ssl_keyfile: Optional[str] = typer.Option(None, "--ssl-keyfile"),
):
    """Serve the pull endpoint and run the finalize scheduler in-process."""
    from tokenshift.apps.api.server import create_app

    conf = config_of(ctx)
    try:
        api = create_app(conf)
    except ConfigError as exc:
        failed(str(exc))
    uvicorn.run(
        api,
        host=host or conf.server.host,
        port=port or conf.server.port,
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
        log_config=None,
    )
