# src/tokenshift/services/sync/client.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping
import os
import ssl

import httpx

from tokenshift.services.config import TokenshiftConfig
from tokenshift.services.rotation.errors import (
    AuthenticationFailure,
    MalformedPayload,
    TransientNetworkFailure,
)
from tokenshift.services.rotation.wire import (
    ROTATION_KEY_HEADER,
    ActiveSnapshot,
    PollResult,
    decode_active,
    decode_poll,
)

__all__ = ["RotationClient"]


@dataclass(slots=True)
class RotationClient:
    """HTTP client for the coordinator's pull endpoints."""

    base_url: str
    rotation_key: str
    timeout: float = 10.0
    verify: str | bool | ssl.SSLContext = True
    # tests pass httpx.MockTransport or a prebuilt client (FastAPI TestClient)
    transport: httpx.BaseTransport | None = None
    http: httpx.Client | None = None

    @classmethod
    def from_config(cls, conf: TokenshiftConfig) -> "RotationClient":
        verify: bool | ssl.SSLContext = True
        ca_path = conf.path(conf.client.ca_cert)
        if ca_path is not None and os.path.exists(ca_path):
            verify = ssl.create_default_context(cafile=str(ca_path))
        return cls(
            base_url=conf.client.server_url,
            rotation_key=conf.rotation_key_value(),
            timeout=conf.client.timeout_seconds,
            verify=verify,
        )

    def fetch_pending(self) -> PollResult:
        return decode_poll(self._request("GET", "/v1/rotation/pending"))

    def fetch_active(self) -> ActiveSnapshot:
        return decode_active(self._request("GET", "/v1/rotation/active"))

    def _request(self, method: str, path: str) -> Any:
        headers = {ROTATION_KEY_HEADER: self.rotation_key, "Accept": "application/json"}
        try:
            if self.http is not None:
                response = self.http.request(method, path, headers=headers)
            else:
                with httpx.Client(
                    base_url=self.base_url,
                    timeout=self.timeout,
                    verify=self.verify,
                    transport=self.transport,
                ) as client:
                    response = client.request(method, path, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientNetworkFailure(f"{method} {path} timed out after {self.timeout}s") from exc
        except httpx.RequestError as exc:
            raise TransientNetworkFailure(f"{method} {path} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthenticationFailure(f"{method} {path} rejected the rotation key ({response.status_code})")
        if response.status_code >= 400:
            message = _error_message(response)
            raise TransientNetworkFailure(
                f"{method} {path} returned HTTP {response.status_code}: {message}",
                error_code="http_error",
            )
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedPayload(f"{method} {path} returned a non-JSON body") from exc


def _error_message(response: httpx.Response) -> str:
    try:
        content = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(content, Mapping):
        detail = content.get("detail") or content.get("message")
        if isinstance(detail, Mapping):
            detail = detail.get("message") or detail.get("code")
        if isinstance(detail, str):
            return detail
    return f"HTTP {response.status_code}"
