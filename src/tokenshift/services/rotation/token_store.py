"""File-backed active token configuration for server and client roles."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable
import logging

import yaml

from tokenshift.adapters.fs.atomic import atomic_write_text

from .enums import Role
from .errors import MalformedPayload, WriteFailure
from .ids import backup_id_for
from .models import ConfigBackup, TokenSet, isoformat, parse_datetime, utcnow

__all__ = ["TokenStore", "StoreSnapshot"]

_log = logging.getLogger("tokenshift.token_store")


@dataclass(frozen=True, slots=True)
class StoreSnapshot:
    tokens: TokenSet
    rotation_id: str | None
    updated_at: datetime | None


class TokenStore:
    """Persist one :class:`TokenSet` as YAML, keeping a backup before every overwrite."""

    def __init__(
        self,
        path: Path,
        *,
        role: Role,
        backups_dir: Path,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.path = path
        self.role = role
        self.backups_dir = backups_dir
        self._clock = clock

    def exists(self) -> bool:
        return self.path.exists()

    def snapshot(self) -> StoreSnapshot:
        if not self.path.exists():
            return StoreSnapshot(tokens=TokenSet(), rotation_id=None, updated_at=None)
        return self._parse(self.path)

    def load(self) -> TokenSet:
        return self.snapshot().tokens

    def current_rotation_id(self) -> str | None:
        return self.snapshot().rotation_id

    def replace(self, tokens: TokenSet, *, rotation_id: str | None) -> ConfigBackup | None:
        """Atomically swap the active token set, returning the backup of the prior one."""
        backup = self._backup() if self.path.exists() else None
        payload = {
            "role": self.role.value,
            "rotation_id": rotation_id,
            "updated_at": isoformat(self._clock()),
            "tokens": tokens.as_dict(),
        }
        try:
            atomic_write_text(self.path, yaml.safe_dump(payload, allow_unicode=True, sort_keys=False))
        except OSError as exc:
            raise WriteFailure(f"failed to replace {self.path}: {exc}") from exc
        _log.info(
            "token store replaced role=%s path=%s services=%d rotation=%s",
            self.role,
            self.path,
            len(tokens),
            rotation_id,
        )
        return backup

    def backups(self) -> list[ConfigBackup]:
        if not self.backups_dir.exists():
            return []
        items: list[ConfigBackup] = []
        for path in sorted(self.backups_dir.glob(f"{self.role.value}-*.yaml")):
            try:
                snap = self._parse(path)
            except MalformedPayload:
                _log.warning("skipping unreadable backup path=%s", path)
                continue
            backup_id = path.stem.split("-", 1)[1]
            items.append(
                ConfigBackup(
                    backup_id=backup_id,
                    role=self.role,
                    taken_at=snap.updated_at or datetime.fromtimestamp(path.stat().st_mtime).astimezone(),
                    tokens=snap.tokens,
                    rotation_id=snap.rotation_id,
                    path=path,
                )
            )
        return items

    # ------------------------------------------------------------------ helpers
    def _backup(self) -> ConfigBackup:
        current = self._parse(self.path)
        taken_at = self._clock()
        backup_id = backup_id_for(taken_at)
        target = self.backups_dir / f"{self.role.value}-{backup_id}.yaml"
        suffix = 1
        while target.exists():
            target = self.backups_dir / f"{self.role.value}-{backup_id}-{suffix}.yaml"
            suffix += 1
        backup_id = target.stem.split("-", 1)[1]
        payload = {
            "role": self.role.value,
            "rotation_id": current.rotation_id,
            "updated_at": isoformat(taken_at),
            "tokens": current.tokens.as_dict(),
        }
        try:
            atomic_write_text(target, yaml.safe_dump(payload, allow_unicode=True, sort_keys=False))
        except OSError as exc:
            raise WriteFailure(f"failed to back up {self.path}: {exc}") from exc
        _log.info("token store backup written role=%s path=%s", self.role, target)
        return ConfigBackup(
            backup_id=backup_id,
            role=self.role,
            taken_at=taken_at,
            tokens=current.tokens,
            rotation_id=current.rotation_id,
            path=target,
        )

    @staticmethod
    def _parse(path: Path) -> StoreSnapshot:
        try:
            data: Any = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise MalformedPayload(f"{path} is not valid YAML") from exc
        except (UnicodeDecodeError, OSError) as exc:
            raise MalformedPayload(f"{path} could not be read: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedPayload(f"{path} must contain a mapping")
        updated = data.get("updated_at")
        return StoreSnapshot(
            tokens=TokenSet.from_mapping(data.get("tokens") or {}),
            rotation_id=data.get("rotation_id") or None,
            updated_at=parse_datetime(updated, field_name="updated_at") if updated else None,
        )
