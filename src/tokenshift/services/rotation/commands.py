"""Commands emitted by the scheduler and consumed by the coordinator or agent."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol, Union

__all__ = [
    "FinalizeDue",
    "FinalizeSweep",
    "StageDue",
    "SyncDue",
    "Command",
    "Dispatch",
    "FinalizeTrigger",
]


@dataclass(frozen=True, slots=True)
class FinalizeDue:
    rotation_id: str


@dataclass(frozen=True, slots=True)
class FinalizeSweep:
    """Finalize whatever pending record is past its deadline."""


@dataclass(frozen=True, slots=True)
class StageDue:
    grace_minutes: int


@dataclass(frozen=True, slots=True)
class SyncDue:
    pass


Command = Union[FinalizeDue, FinalizeSweep, StageDue, SyncDue]
Dispatch = Callable[[Command], object]


class FinalizeTrigger(Protocol):
    """What the coordinator needs from a scheduler."""

    def schedule_finalize(self, rotation_id: str, at: datetime) -> None: ...

    def cancel_finalize(self, rotation_id: str) -> None: ...
