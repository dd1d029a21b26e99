"""Rotation key storage in the operating system keyring.

Both roles authenticate with one shared rotation key: the coordinator checks
it on every poll and the sync agent sends it in ``X-Rotation-Key``.  The key is
kept out of ``tokenshift.yaml`` and lives in the keyring under
``SERVICE_NAME``, one entry per configuration profile.  ``TOKENSHIFT_ROTATION_KEY``
in the environment still wins over the keyring (see ``services.config``).
"""
from __future__ import annotations

SERVICE_NAME = "tokenshift/rotation-key"


class KeyringUnavailableError(RuntimeError):
    """No usable keyring backend, or the backend refused the operation."""


def _username(profile: str) -> str:
    return f"profile:{profile}"


def _require_keyring():
    try:
        import keyring  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise KeyringUnavailableError("system keyring is unavailable; set TOKENSHIFT_ROTATION_KEY instead") from exc
    return keyring


def save_rotation_key(profile: str, rotation_key: str) -> None:
    """Store the rotation key for ``profile``, replacing any previous one.

    Used by ``tokenshift key set``; a coordinator that is already running keeps
    the key it loaded at startup.
    """
    keyring = _require_keyring()
    try:
        keyring.set_password(SERVICE_NAME, _username(profile), rotation_key)
    except Exception as exc:  # pragma: no cover - backend specific errors
        raise KeyringUnavailableError("failed to write rotation key to keyring") from exc


def load_rotation_key(profile: str) -> str | None:
    """Return the rotation key for ``profile``; ``None`` when none was stored."""
    keyring = _require_keyring()
    try:
        key = keyring.get_password(SERVICE_NAME, _username(profile))
    except Exception as exc:  # pragma: no cover
        raise KeyringUnavailableError("failed to load rotation key from keyring") from exc
    return key or None


def delete_rotation_key(profile: str) -> None:
    # missing entry is fine: `key delete` may run twice
    keyring = _require_keyring()
    try:
        keyring.delete_password(SERVICE_NAME, _username(profile))
    except keyring.errors.PasswordDeleteError:  # type: ignore[attr-defined]
        return
    except Exception as exc:  # pragma: no cover
        raise KeyringUnavailableError("failed to delete rotation key from keyring") from exc


__all__ = [
    "KeyringUnavailableError",
    "save_rotation_key",
    "load_rotation_key",
    "delete_rotation_key",
]
