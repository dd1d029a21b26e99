from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Tuple

import pytest

from tokenshift.services.rotation.audit import AuditLog
from tokenshift.services.rotation.coordinator import RotationCoordinator
from tokenshift.services.rotation.enums import ConflictPolicy, Role
from tokenshift.services.rotation.models import TokenSet
from tokenshift.services.rotation.pending_store import BlockMarker, PendingStore
from tokenshift.services.rotation.token_store import TokenStore

ROTATION_KEY = "rk-test-secret"
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class RecordingTrigger:
    def __init__(self) -> None:
        self.scheduled: List[Tuple[str, datetime]] = []
        self.cancelled: List[str] = []

    def schedule_finalize(self, rotation_id: str, at: datetime) -> None:
        self.scheduled.append((rotation_id, at))

    def cancel_finalize(self, rotation_id: str) -> None:
        self.cancelled.append(rotation_id)


def make_coordinator(
    root: Path,
    clock: FakeClock,
    *,
    active: dict[str, str] | None = None,
    policy: ConflictPolicy = ConflictPolicy.REJECT,
    reloader=None,
    trigger=None,
) -> RotationCoordinator:
    store = TokenStore(root / "tokens.yaml", role=Role.SERVER, backups_dir=root / "backups", clock=clock)
    if active:
        store.replace(TokenSet.from_mapping(active), rotation_id=None)
    return RotationCoordinator(
        store=store,
        pending=PendingStore(root / "pending.json"),
        audit=AuditLog(root / "audit.log", clock=clock),
        block=BlockMarker(root / "coordinator.blocked"),
        rotation_key=ROTATION_KEY,
        lock_path=root / "rotation.lock",
        policy=policy,
        reloader=reloader,
        trigger=trigger,
        clock=clock,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def coordinator(tmp_path: Path, clock: FakeClock) -> RotationCoordinator:
    return make_coordinator(tmp_path / "server", clock, active={"svc1": "A"})
