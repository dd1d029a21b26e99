from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from tokenshift.services import config as config_module
from tokenshift.services.config import (
    CONFIG_FILENAME,
    ENV_HOME,
    ENV_ROTATION_KEY,
    ConfigError,
    load_config,
    save_config,
)


@pytest.fixture(autouse=True)
def _no_ambient_key(monkeypatch):
    monkeypatch.delenv(ENV_ROTATION_KEY, raising=False)
    monkeypatch.setattr(config_module, "load_rotation_key", lambda profile: None)


def test_missing_config_writes_defaults(tmp_path):
    conf = load_config(tmp_path)
    assert (tmp_path / CONFIG_FILENAME).exists()
    assert conf.role == "server"
    assert conf.server.conflict_policy == "reject"
    assert conf.client.reconcile is True
    assert conf.path(conf.server.tokens_path) == tmp_path / "server" / "tokens.yaml"


def test_home_comes_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv(ENV_HOME, str(tmp_path / "home"))
    assert load_config().base_dir == tmp_path / "home"


def test_yaml_overrides_are_typed(tmp_path):
    (tmp_path / CONFIG_FILENAME).write_text(
        yaml.safe_dump(
            {
                "role": "Client",
                "client": {
                    "server_url": "https://tunnel.example:8787",
                    "poll_interval_seconds": "60",
                    "expected_services": ["svc1", "svc2"],
                    "reload_command": "systemctl reload tunnel-client",
                    "reconcile": False,
                },
                "server": {"periodic_stage": {"interval_hours": 24, "grace_minutes": 90}},
            }
        ),
        encoding="utf-8",
    )
    conf = load_config(tmp_path)
    assert conf.role == "client"
    assert conf.client.poll_interval_seconds == 60.0
    assert conf.client.reload_command == ["systemctl", "reload", "tunnel-client"]
    assert conf.client.reconcile is False
    assert conf.server.periodic_stage.interval_hours == 24.0
    assert conf.server.periodic_stage.grace_minutes == 90
    assert conf.server.port == 8787


def test_invalid_role_is_rejected(tmp_path):
    (tmp_path / CONFIG_FILENAME).write_text("role: relay\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_absolute_paths_are_kept(tmp_path):
    conf = load_config(tmp_path)
    conf.server.audit_path = str(tmp_path / "elsewhere" / "audit.log")
    save_config(conf)
    assert load_config(tmp_path).path(conf.server.audit_path) == tmp_path / "elsewhere" / "audit.log"


def test_rotation_key_resolution_order(tmp_path, monkeypatch):
    conf = load_config(tmp_path)
    with pytest.raises(ConfigError):
        conf.rotation_key_value()

    monkeypatch.setattr(config_module, "load_rotation_key", lambda profile: f"keyring-{profile}")
    assert conf.rotation_key_value() == "keyring-default"

    conf.rotation_key = "from-yaml"
    assert conf.rotation_key_value() == "from-yaml"

    monkeypatch.setenv(ENV_ROTATION_KEY, "from-env")
    assert conf.rotation_key_value() == "from-env"


def test_saved_config_is_private(tmp_path):
    path = save_config(load_config(tmp_path))
    assert isinstance(path, Path)
    assert oct(path.stat().st_mode & 0o777) == oct(0o600)


@pytest.mark.parametrize(("raw", "expected"), [("false", False), ("No", False), ("off", False), ("true", True), ("1", True)])
def test_quoted_booleans_are_parsed(tmp_path, raw, expected):
    (tmp_path / CONFIG_FILENAME).write_text(
        yaml.safe_dump({"client": {"reconcile": raw}}), encoding="utf-8"
    )
    assert load_config(tmp_path).client.reconcile is expected


def test_unrecognised_boolean_is_rejected(tmp_path):
    (tmp_path / CONFIG_FILENAME).write_text(
        yaml.safe_dump({"client": {"reconcile": "sometimes"}}), encoding="utf-8"
    )
    with pytest.raises(ConfigError, match="reconcile"):
        load_config(tmp_path)
