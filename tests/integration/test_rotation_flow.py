"""End-to-end rotation: coordinator behind the HTTP API, agents pulling through it."""
from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from conftest import ROTATION_KEY, FakeClock, make_coordinator
from tokenshift.apps.api.server import create_app
from tokenshift.services.rotation.audit import AuditLog
from tokenshift.services.rotation.enums import AuditEvent, Role
from tokenshift.services.rotation.models import TokenSet
from tokenshift.services.rotation.token_store import TokenStore
from tokenshift.services.scheduler import Scheduler
from tokenshift.services.sync.agent import SyncAgent
from tokenshift.services.sync.client import RotationClient
from tokenshift.services.sync.state import SyncStateStore


def _agent(root: Path, http: TestClient, clock: FakeClock, *, reconcile: bool = True) -> SyncAgent:
    store = TokenStore(root / "tokens.yaml", role=Role.CLIENT, backups_dir=root / "backups", clock=clock)
    store.replace(TokenSet.from_mapping({"svc1": "A"}), rotation_id=None)
    return SyncAgent(
        client=RotationClient(base_url="http://testserver", rotation_key=ROTATION_KEY, http=http),
        store=store,
        state=SyncStateStore(root / "state.json"),
        audit=AuditLog(root / "audit.log", clock=clock),
        reconcile=reconcile,
        clock=clock,
    )


def _setup(tmp_path: Path):
    clock = FakeClock()
    coordinator = make_coordinator(tmp_path / "server", clock, active={"svc1": "A"})
    scheduler = Scheduler(coordinator.handle, clock=clock)
    coordinator.trigger = scheduler
    http = TestClient(create_app(coordinator=coordinator))
    return clock, coordinator, scheduler, http


def test_grace_period_scenario(tmp_path):
    clock, coordinator, scheduler, http = _setup(tmp_path)
    early = _agent(tmp_path / "early", http, clock)
    late = _agent(tmp_path / "late", http, clock)
    stranded = _agent(tmp_path / "stranded", http, clock, reconcile=False)

    rotation_id = coordinator.stage_rotation({"svc1": "B"}, grace_minutes=5)

    clock.advance(minutes=1)
    assert coordinator.get_pending(ROTATION_KEY).rotation_id == rotation_id
    assert scheduler.run_pending() == []

    clock.advance(minutes=1)
    report = early.sync_once()
    assert report.action == "applied"
    assert early.store.load().get("svc1") == "B"
    assert coordinator.store.load().get("svc1") == "A"

    clock.advance(minutes=3)
    fired = scheduler.run_pending()
    assert len(fired) == 1 and fired[0][1].finalized
    assert coordinator.store.load().get("svc1") == "B"
    assert early.sync_once().action == "none"

    clock.advance(minutes=1)
    assert stranded.sync_once().action == "none"
    assert stranded.store.load().get("svc1") == "A"

    converged = late.sync_once()
    assert converged.action == "reconciled"
    assert converged.rotation_id == rotation_id
    assert late.store.load().get("svc1") == "B"


def test_cancelled_rotation_is_never_applied(tmp_path):
    clock, coordinator, scheduler, http = _setup(tmp_path)
    agent = _agent(tmp_path / "client", http, clock)

    rotation_id = coordinator.stage_rotation({"svc1": "B"}, grace_minutes=5)
    coordinator.cancel_pending()

    report = agent.sync_once()
    assert report.action == "none"
    assert agent.store.load().get("svc1") == "A"

    clock.advance(minutes=10)
    assert scheduler.run_pending() == []
    assert coordinator.store.load().get("svc1") == "A"
    events = [entry.event for entry in coordinator.audit.for_rotation(rotation_id)]
    assert AuditEvent.FINALIZE not in events


def test_wrong_key_is_recorded_as_sync_failure(tmp_path):
    clock, coordinator, _, http = _setup(tmp_path)
    agent = _agent(tmp_path / "client", http, clock)
    agent.client = RotationClient(base_url="http://testserver", rotation_key="not-the-key", http=http)

    coordinator.stage_rotation({"svc1": "B"}, grace_minutes=5)
    report = agent.sync_once()

    assert not report.ok
    assert report.error_code == "authentication_failed"
    assert agent.store.load().get("svc1") == "A"
