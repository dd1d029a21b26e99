import secrets

import typer

from tokenshift.apps.cli.output import config_of, failed, ok
from tokenshift.services.keyring import KeyringUnavailableError, delete_rotation_key, save_rotation_key

app = typer.Typer(help="Manage the rotation key in the system keyring.")


@app.command("set")
def set_key(
    ctx: typer.Context,
    value: str = typer.Option(None, "--value", help="Rotation key; prompted for when omitted"),
    generate: bool = typer.Option(False, "--generate", help="Generate a random key and print it once"),
):
    conf = config_of(ctx)
    if generate:
        value = secrets.token_urlsafe(32)
    elif not value:
        value = typer.prompt("Rotation key", hide_input=True, confirmation_prompt=True)
    try:
        save_rotation_key(conf.profile, value)
    except KeyringUnavailableError as exc:
        failed(str(exc))
    ok("rotation key stored", profile=conf.profile)
    if generate:
        typer.echo(value)


@app.command("delete")
def delete_key(ctx: typer.Context):
    conf = config_of(ctx)
    try:
        delete_rotation_key(conf.profile)
    except KeyringUnavailableError as exc:
        failed(str(exc))
    ok("rotation key removed", profile=conf.profile)
