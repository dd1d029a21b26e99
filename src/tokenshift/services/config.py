from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any
import logging
import os

import yaml

from tokenshift.services.keyring import KeyringUnavailableError, load_rotation_key

CONFIG_FILENAME = "tokenshift.yaml"
ENV_HOME = "TOKENSHIFT_HOME"
ENV_ROTATION_KEY = "TOKENSHIFT_ROTATION_KEY"

_log = logging.getLogger("tokenshift.config")


class ConfigError(RuntimeError):
    """Raised when the configuration cannot be loaded or is incomplete."""


def default_base_dir() -> Path:
    env = os.environ.get(ENV_HOME)
    if env:
        return Path(env).expanduser()
    return Path("~/.tokenshift").expanduser()


@dataclass
class PeriodicStageSettings:
    # 0 disables periodic staging
    interval_hours: float = 0.0
    grace_minutes: int = 60


@dataclass
class ServerSettings:
    # Store relative/default-friendly paths; resolve via TokenshiftConfig.path
    tokens_path: str = "server/tokens.yaml"
    pending_path: str = "server/pending.json"
    audit_path: str = "server/audit.log"
    backups_dir: str = "server/backups"
    lock_path: str = "server/rotation.lock"
    block_path: str = "server/coordinator.blocked"
    conflict_policy: str = "reject"
    default_grace_minutes: int = 30
    reload_command: list[str] = field(default_factory=list)
    reload_timeout_seconds: float = 30.0
    host: str = "127.0.0.1"
    port: int = 8787
    sweep_interval_seconds: float = 15.0
    token_bytes: int = 32
    periodic_stage: PeriodicStageSettings = field(default_factory=PeriodicStageSettings)


@dataclass
class ClientSettings:
    server_url: str = "https://127.0.0.1:8787"
    tokens_path: str = "client/tokens.yaml"
    state_path: str = "client/sync-state.json"
    audit_path: str = "client/audit.log"
    backups_dir: str = "client/backups"
    poll_interval_seconds: float = 300.0
    timeout_seconds: float = 10.0
    ca_cert: str | None = None
    expected_services: list[str] = field(default_factory=list)
    reload_command: list[str] = field(default_factory=list)
    reload_timeout_seconds: float = 30.0
    reconcile: bool = True


@dataclass
class LoggingSettings:
    level: str = "INFO"
    file: str | None = "logs/tokenshift.log"
    max_bytes: int = 5_000_000
    backup_count: int = 3


@dataclass
class TokenshiftConfig:
    base_dir: Path
    role: str = "server"
    profile: str = "default"
    rotation_key: str | None = None
    server: ServerSettings = field(default_factory=ServerSettings)
    client: ClientSettings = field(default_factory=ClientSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @property
    def config_path(self) -> Path:
        return self.base_dir / CONFIG_FILENAME

    def path(self, value: str | None) -> Path | None:
        if not value:
            return None
        candidate = Path(value).expanduser()
        if candidate.is_absolute():
            return candidate
        return self.base_dir / candidate

    def rotation_key_value(self) -> str:
        """Environment first, then the YAML file, then the system keyring."""
        env = os.environ.get(ENV_ROTATION_KEY)
        if env:
            return env
        if self.rotation_key:
            return self.rotation_key
        try:
            stored = load_rotation_key(self.profile)
        except KeyringUnavailableError:
            _log.debug("keyring unavailable while resolving rotation key", exc_info=True)
            stored = None
        if stored:
            return stored
        raise ConfigError(
            f"rotation key is not configured; set {ENV_ROTATION_KEY}, 'rotation_key' in "
            f"{self.config_path} or run 'tokenshift key set'"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "profile": self.profile,
            "rotation_key": self.rotation_key,
            "server": asdict(self.server),
            "client": asdict(self.client),
            "logging": asdict(self.logging),
        }


_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _settings_from_dict(settings_cls: type, payload: Any):
    payload = payload if isinstance(payload, dict) else {}
    kwargs: dict[str, Any] = {}
    for item in fields(settings_cls):
        if item.name not in payload:
            continue
        value = payload[item.name]
        default = item.default_factory() if callable(item.default_factory) else item.default  # type: ignore[misc]
        if is_dataclass(default):
            value = _settings_from_dict(type(default), value)
        elif isinstance(default, list):
            if isinstance(value, str):
                value = value.split()
            value = [str(v) for v in (value or [])]
        elif isinstance(default, bool):
            value = _as_bool(item.name, value)
        elif isinstance(default, int) and value is not None:
            value = int(value)
        elif isinstance(default, float) and value is not None:
            value = float(value)
        kwargs[item.name] = value
    return settings_cls(**kwargs)


def load_config(base_dir: Path | None = None) -> TokenshiftConfig:
    base = (base_dir or default_base_dir()).expanduser()
    path = base / CONFIG_FILENAME
    if not path.exists():
        conf = TokenshiftConfig(base_dir=base)
        save_config(conf)
        _log.info("wrote default configuration path=%s", path)
        return conf
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")

    role = (data.get("role") or "server").strip().lower()
    if role not in ("server", "client"):
        raise ConfigError("role must be 'server' or 'client'")
    return TokenshiftConfig(
        base_dir=base,
        role=role,
        profile=str(data.get("profile") or "default"),
        rotation_key=data.get("rotation_key") or None,
        server=_settings_from_dict(ServerSettings, data.get("server")),
        client=_settings_from_dict(ClientSettings, data.get("client")),
        logging=_settings_from_dict(LoggingSettings, data.get("logging")),
    )


def save_config(conf: TokenshiftConfig) -> Path:
    path = conf.config_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(conf.to_dict(), allow_unicode=True, sort_keys=False),
        encoding="utf-8",
    )
    try:
        os.chmod(path, 0o600)
    except PermissionError:
        pass
    return path
