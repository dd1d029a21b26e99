"""Reload hooks that tell the tunnel service to pick up new tokens."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence
import logging
import subprocess

from .errors import ReloadFailure

__all__ = ["ServiceReloader", "CommandReloader", "NullReloader", "reloader_from_command"]

_log = logging.getLogger("tokenshift.reload")


class ServiceReloader(Protocol):
    def reload(self) -> None: ...


class NullReloader:
    """Used when no reload command is configured."""

    def reload(self) -> None:
        _log.debug("reload skipped: no command configured")


@dataclass(slots=True)
class CommandReloader:
    argv: Sequence[str]
    timeout: float = 30.0
    calls: int = field(default=0, init=False)

    def reload(self) -> None:
        self.calls += 1
        try:
            proc = subprocess.run(
                list(self.argv),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ReloadFailure(f"reload command {self.argv[0]!r} failed to run: {exc}") from exc
        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            raise ReloadFailure(f"reload command exited with {proc.returncode}: {stderr[:200]}")
        _log.info("reload command finished argv0=%s", self.argv[0])


def reloader_from_command(argv: Sequence[str] | None, *, timeout: float = 30.0) -> ServiceReloader:
    if not argv:
        return NullReloader()
    return CommandReloader(argv=list(argv), timeout=timeout)
