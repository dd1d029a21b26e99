# src/tokenshift/apps/api/server.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from tokenshift import __version__
from tokenshift.apps.api import rotation
from tokenshift.services.bootstrap import build_coordinator, build_server_scheduler
from tokenshift.services.config import TokenshiftConfig
from tokenshift.services.rotation.coordinator import RotationCoordinator
from tokenshift.services.scheduler import Scheduler

_log = logging.getLogger("tokenshift.api")


def create_app(
    conf: TokenshiftConfig | None = None,
    *,
    coordinator: RotationCoordinator | None = None,
    scheduler: Scheduler | None = None,
) -> FastAPI:
    """Build the pull API.

    With ``conf`` the coordinator and its scheduler are built from configuration;
    tests pass a ready ``coordinator`` (and usually no scheduler).
    """
    if coordinator is None:
        if conf is None:
            raise ValueError("either conf or coordinator is required")
        coordinator = build_coordinator(conf)
        scheduler = scheduler or build_server_scheduler(conf, coordinator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None:
            await scheduler.start()
        status = coordinator.status()
        _log.info(
            "rotation api ready pending=%s active_rotation=%s blocked=%s",
            status.pending.rotation_id if status.pending else None,
            status.active.rotation_id,
            status.blocked is not None,
        )
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()

    app = FastAPI(title="tokenshift", version=__version__, lifespan=lifespan)
    app.state.coordinator = coordinator
    app.state.scheduler = scheduler
    app.include_router(rotation.router)
    return app
