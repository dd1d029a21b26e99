from __future__ import annotations

from typing import Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from tokenshift.apps.api.auth import rotation_credential
from tokenshift.services.rotation.coordinator import RotationCoordinator
from tokenshift.services.rotation.errors import AuthenticationFailure, MalformedPayload, RotationError
from tokenshift.services.rotation.wire import ActiveSnapshot, PollResult, encode_active, encode_poll


router = APIRouter(prefix="/v1/rotation", tags=["rotation"])


class RotationOut(BaseModel):
    rotation_id: str
    tokens: Dict[str, str]
    created_at: str
    finalize_at: str


class PollOut(BaseModel):
    status: Literal["pending", "none"]
    rotation: Optional[RotationOut] = None
    active_rotation_id: Optional[str] = None


class ActiveOut(BaseModel):
    rotation_id: Optional[str] = None
    tokens: Dict[str, str]


class HealthOut(BaseModel):
    ok: bool
    blocked: bool


def _get_coordinator(request: Request) -> RotationCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="coordinator not initialised")
    return coordinator


def _error(exc: RotationError, status_code: int) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": exc.error_code, "message": str(exc)})


def _ensure_serving(coordinator: RotationCoordinator) -> None:
    state = coordinator.block.get()
    if state is not None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "coordinator_blocked", "message": "rotation state awaits operator review"},
        )


@router.get("/health", response_model=HealthOut)
def health(coordinator: RotationCoordinator = Depends(_get_coordinator)) -> dict:
    return {"ok": True, "blocked": coordinator.block.get() is not None}


@router.get("/pending", response_model=PollOut)
def get_pending(
    credential: str = Depends(rotation_credential),
    coordinator: RotationCoordinator = Depends(_get_coordinator),
) -> dict:
    try:
        pending = coordinator.get_pending(credential)
        _ensure_serving(coordinator)
        active_rotation_id = None if pending is not None else coordinator.store.current_rotation_id()
    except AuthenticationFailure as exc:
        raise _error(exc, status.HTTP_401_UNAUTHORIZED)
    except MalformedPayload as exc:
        raise _error(exc, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return encode_poll(PollResult(pending=pending, active_rotation_id=active_rotation_id))


@router.get("/active", response_model=ActiveOut)
def get_active(
    credential: str = Depends(rotation_credential),
    coordinator: RotationCoordinator = Depends(_get_coordinator),
) -> dict:
    try:
        snapshot = coordinator.get_active(credential)
        _ensure_serving(coordinator)
    except AuthenticationFailure as exc:
        raise _error(exc, status.HTTP_401_UNAUTHORIZED)
    except MalformedPayload as exc:
        raise _error(exc, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return encode_active(ActiveSnapshot(rotation_id=snapshot.rotation_id, tokens=snapshot.tokens))
