from __future__ import annotations

from types import SimpleNamespace

import pytest

from tokenshift.services import keyring as keyring_module


class _PasswordDeleteError(Exception):
    pass


class _MemoryKeyring:
    errors = SimpleNamespace(PasswordDeleteError=_PasswordDeleteError)

    def __init__(self) -> None:
        self.items: dict[tuple[str, str], str] = {}

    def set_password(self, service, username, password):
        self.items[(service, username)] = password

    def get_password(self, service, username):
        return self.items.get((service, username))

    def delete_password(self, service, username):
        if (service, username) not in self.items:
            raise _PasswordDeleteError(username)
        del self.items[(service, username)]


@pytest.fixture()
def backend(monkeypatch):
    memory = _MemoryKeyring()
    monkeypatch.setattr(keyring_module, "_require_keyring", lambda: memory)
    return memory


def test_rotation_key_is_stored_per_profile(backend):
    keyring_module.save_rotation_key("edge", "secret")
    assert backend.items == {(keyring_module.SERVICE_NAME, "profile:edge"): "secret"}
    assert keyring_module.load_rotation_key("edge") == "secret"
    assert keyring_module.load_rotation_key("other") is None


def test_delete_is_idempotent(backend):
    keyring_module.save_rotation_key("edge", "secret")
    keyring_module.delete_rotation_key("edge")
    keyring_module.delete_rotation_key("edge")
    assert keyring_module.load_rotation_key("edge") is None


def test_backend_errors_become_unavailable(monkeypatch):
    class _Broken(_MemoryKeyring):
        def get_password(self, service, username):
            raise RuntimeError("locked")

    monkeypatch.setattr(keyring_module, "_require_keyring", lambda: _Broken())
    with pytest.raises(keyring_module.KeyringUnavailableError):
        keyring_module.load_rotation_key("edge")
