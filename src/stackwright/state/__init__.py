"""State management module for tracking applied resources."""

from .lock import RunLock
from .models import StateEntry, StateSnapshot
from .store import FileStateStore, StateStore

__all__ = [
    "StateEntry",
    "StateSnapshot",
    "StateStore",
    "FileStateStore",
    "RunLock",
]
