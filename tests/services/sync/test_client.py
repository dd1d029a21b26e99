from __future__ import annotations

import ssl

import httpx
import pytest

from tokenshift.services.config import ENV_ROTATION_KEY, load_config
from tokenshift.services.rotation.errors import AuthenticationFailure, MalformedPayload, TransientNetworkFailure
from tokenshift.services.sync import client as client_module
from tokenshift.services.sync.client import RotationClient

PENDING = {
    "status": "pending",
    "rotation": {
        "rotation_id": "r-1",
        "tokens": {"svc1": "B"},
        "created_at": "2026-03-01T12:00:00+00:00",
        "finalize_at": "2026-03-01T12:05:00+00:00",
    },
}


def _client(handler) -> RotationClient:
    return RotationClient(
        base_url="https://coordinator.test",
        rotation_key="rk",
        transport=httpx.MockTransport(handler),
    )


def test_fetch_pending_sends_key_in_header_only():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=PENDING)

    poll = _client(handler).fetch_pending()

    assert poll.pending is not None
    assert poll.pending.rotation_id == "r-1"
    assert poll.pending.staged.get("svc1") == "B"
    request = seen[0]
    assert request.url.path == "/v1/rotation/pending"
    assert request.headers["X-Rotation-Key"] == "rk"
    assert "rk" not in str(request.url)


def test_fetch_pending_none_carries_active_rotation():
    poll = _client(lambda request: httpx.Response(200, json={"status": "none", "active_rotation_id": "r-0"})).fetch_pending()
    assert poll.pending is None
    assert poll.active_rotation_id == "r-0"


def test_fetch_active():
    snapshot = _client(
        lambda request: httpx.Response(200, json={"rotation_id": "r-0", "tokens": {"svc1": "A"}})
    ).fetch_active()
    assert snapshot.rotation_id == "r-0"
    assert snapshot.tokens.get("svc1") == "A"


def test_unauthorized_maps_to_authentication_failure():
    with pytest.raises(AuthenticationFailure):
        _client(lambda request: httpx.Response(401, json={"detail": {"code": "authentication_failed"}})).fetch_pending()


def test_server_errors_are_transient():
    client = _client(
        lambda request: httpx.Response(503, json={"detail": {"code": "coordinator_blocked", "message": "blocked"}})
    )
    with pytest.raises(TransientNetworkFailure) as exc_info:
        client.fetch_pending()
    assert exc_info.value.error_code == "http_error"
    assert "blocked" in str(exc_info.value)


def test_connection_errors_are_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientNetworkFailure) as exc_info:
        _client(handler).fetch_pending()
    assert exc_info.value.error_code == "network_failure"


def test_timeouts_are_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransientNetworkFailure):
        _client(handler).fetch_pending()


def test_bad_payloads_are_malformed():
    with pytest.raises(MalformedPayload):
        _client(lambda request: httpx.Response(200, text="<html>")).fetch_pending()
    with pytest.raises(MalformedPayload):
        _client(lambda request: httpx.Response(200, json={"status": "maybe"})).fetch_pending()
    broken = {"status": "pending", "rotation": {**PENDING["rotation"], "tokens": {}}}
    with pytest.raises(MalformedPayload):
        _client(lambda request: httpx.Response(200, json=broken)).fetch_pending()


def test_from_config_pins_the_configured_ca_bundle(tmp_path, monkeypatch):
    monkeypatch.setenv(ENV_ROTATION_KEY, "rk")
    (tmp_path / "coordinator-ca.pem").write_text("-----BEGIN CERTIFICATE-----\n", encoding="utf-8")
    cafiles = []
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)

    def fake_context(*, cafile=None):
        cafiles.append(cafile)
        return context

    monkeypatch.setattr(client_module.ssl, "create_default_context", fake_context)
    conf = load_config(tmp_path)
    conf.client.ca_cert = "coordinator-ca.pem"

    client = RotationClient.from_config(conf)

    assert client.verify is context
    assert cafiles == [str(tmp_path / "coordinator-ca.pem")]


def test_from_config_without_ca_uses_system_trust(tmp_path, monkeypatch):
    monkeypatch.setenv(ENV_ROTATION_KEY, "rk")
    conf = load_config(tmp_path)
    conf.client.ca_cert = "missing.pem"

    assert RotationClient.from_config(conf).verify is True
