"""Client-side half of the rotation protocol."""
from .agent import SyncAgent, SyncReport
from .client import RotationClient
from .state import SyncStateStore

__all__ = ["SyncAgent", "SyncReport", "RotationClient", "SyncStateStore"]
