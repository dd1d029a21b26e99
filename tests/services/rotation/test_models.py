from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tokenshift.services.rotation.enums import AuditEvent, Outcome, SyncOutcome
from tokenshift.services.rotation.errors import MalformedPayload
from tokenshift.services.rotation.models import (
    AuditEntry,
    ClientSyncState,
    PendingRotation,
    TokenSet,
    parse_datetime,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_token_set_validates_mapping():
    assert TokenSet.from_mapping({" svc1 ": "A"}).tokens == {"svc1": "A"}
    with pytest.raises(MalformedPayload):
        TokenSet.from_mapping(["svc1", "A"])
    with pytest.raises(MalformedPayload):
        TokenSet.from_mapping({"svc1": ""})
    with pytest.raises(MalformedPayload):
        TokenSet.from_mapping({"": "A"})


def test_token_set_merge_and_restrict():
    current = TokenSet.from_mapping({"svc1": "A", "svc2": "X"})
    merged = current.with_updates({"svc1": "B", "svc3": "C"})
    assert merged.as_dict() == {"svc1": "B", "svc2": "X", "svc3": "C"}
    assert current.get("svc1") == "A"  # original untouched
    assert merged.restricted_to(["svc1", "nope"]).tokens == {"svc1": "B"}
    assert merged.services() == frozenset({"svc1", "svc2", "svc3"})
    assert merged.contains_value("C")
    assert "svc2" in merged


def test_pending_rotation_wire_shape():
    record = PendingRotation(
        rotation_id="r-1",
        staged=TokenSet.from_mapping({"svc1": "B"}),
        created_at=NOW,
        finalize_at=NOW + timedelta(minutes=5),
    )
    data = record.as_dict()
    assert data["tokens"] == {"svc1": "B"}
    assert data["finalize_at"] == "2026-03-01T12:05:00+00:00"
    assert PendingRotation.from_mapping(data) == record


def test_pending_rotation_due_at_deadline():
    record = PendingRotation("r-1", TokenSet.from_mapping({"svc1": "B"}), NOW, NOW + timedelta(minutes=5))
    assert not record.is_due(NOW + timedelta(minutes=4, seconds=59))
    assert record.is_due(NOW + timedelta(minutes=5))


def test_pending_rotation_rejects_empty_or_incomplete_payload():
    base = {"rotation_id": "r-1", "tokens": {}, "created_at": NOW.isoformat(), "finalize_at": NOW.isoformat()}
    with pytest.raises(MalformedPayload):
        PendingRotation.from_mapping(base)
    with pytest.raises(MalformedPayload):
        PendingRotation.from_mapping({**base, "tokens": {"svc1": "B"}, "finalize_at": "soon"})
    with pytest.raises(MalformedPayload):
        PendingRotation.from_mapping({**base, "tokens": {"svc1": "B"}, "rotation_id": ""})


def test_parse_datetime_assumes_utc_for_naive_values():
    assert parse_datetime("2026-03-01T12:00:00", field_name="x") == NOW
    assert parse_datetime("2026-03-01T12:00:00Z", field_name="x") == NOW
    with pytest.raises(MalformedPayload):
        parse_datetime(None, field_name="x")


def test_audit_entry_as_dict_contains_required_fields():
    entry = AuditEntry(
        timestamp=NOW,
        event=AuditEvent.FINALIZE,
        rotation_id="r-1",
        outcome=Outcome.OK,
        detail={"backup": "20260301T120000000000Z"},
    )
    data = entry.as_dict()
    assert data["event"] == "FINALIZE"
    assert data["outcome"] == "ok"
    assert AuditEntry.from_mapping(data) == entry


def test_client_sync_state_keeps_last_known_id_across_empty_polls():
    state = ClientSyncState()
    state.record_success(NOW, "r-1")
    state.record_failure(NOW + timedelta(minutes=1), "network_failure: boom")
    assert state.last_sync_outcome is SyncOutcome.FAILURE
    state.record_success(NOW + timedelta(minutes=2))
    assert state.is_synced("r-1")
    assert state.last_error is None
    restored = ClientSyncState.from_mapping(state.as_json())
    assert restored == state
