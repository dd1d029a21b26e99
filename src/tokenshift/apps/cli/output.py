"""Result lines shared by operator commands: ``ok``, ``already`` or ``failed``."""
from __future__ import annotations

from typing import NoReturn

import typer

from tokenshift.services.config import TokenshiftConfig


def _fields(fields: dict[str, object]) -> str:
    return "".join(f" {name}={value}" for name, value in fields.items() if value is not None)


def ok(what: str, **fields: object) -> None:
    typer.echo(f"ok: {what}{_fields(fields)}")


def already(what: str, **fields: object) -> None:
    typer.echo(f"already: {what}{_fields(fields)}")


def failed(what: str, **fields: object) -> NoReturn:
    typer.echo(f"failed: {what}{_fields(fields)}", err=True)
    raise typer.Exit(1)


def config_of(ctx: typer.Context) -> TokenshiftConfig:
    conf = ctx.find_root().obj
    if not isinstance(conf, TokenshiftConfig):
        raise RuntimeError("configuration not loaded")
    return conf
