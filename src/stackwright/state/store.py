"""Keyed persistence for the state snapshot."""

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from stackwright.state.models import StateEntry, StateSnapshot, utcnow
from stackwright.utils.errors import StateError
from stackwright.utils.logging import get_logger

logger = get_logger(__name__)


class StateStore(ABC):
    """Keyed store of StateEntry values.

    Implementations must make each ``put`` and ``delete`` an atomic
    read-modify-write of a single entry; executor workers call them
    concurrently.
    """

    @abstractmethod
    def get(self, resource_id: str) -> Optional[StateEntry]:
        """Get the entry for a resource, or None if not recorded."""

    @abstractmethod
    def put(self, resource_id: str, entry: StateEntry) -> None:
        """Record an entry, replacing any previous one."""

    @abstractmethod
    def delete(self, resource_id: str) -> Optional[StateEntry]:
        """Remove an entry and return it, or None if it was not recorded."""

    @abstractmethod
    def all(self) -> StateSnapshot:
        """Return a copy of the full snapshot."""


class FileStateStore(StateStore):
    """JSON file backed state store.

    Every mutation reloads the file, applies the change and atomically
    replaces the file through a temporary file in the same directory. The
    state file itself is never removed.
    """

    def __init__(self, state_path: str):
        """
        Initialize FileStateStore.

        Args:
            state_path: Path to the state file
        """
        self.state_path = Path(state_path)
        self._lock = threading.RLock()

    @property
    def lock_path(self) -> Path:
        """Path of the run lock file that guards this state."""
        return self.state_path.with_name(self.state_path.name + ".lock")

    def exists(self) -> bool:
        """Check if the state file exists."""
        return self.state_path.exists()

    def get(self, resource_id: str) -> Optional[StateEntry]:
        with self._lock:
            return self._load().get(resource_id)

    def put(self, resource_id: str, entry: StateEntry) -> None:
        with self._lock:
            snapshot = self._load()
            snapshot.resources[resource_id] = entry.model_copy(update={"updated_at": utcnow()})
            self._save(snapshot)
        logger.debug(f"Recorded state for {resource_id} ({entry.external_id})")

    def delete(self, resource_id: str) -> Optional[StateEntry]:
        with self._lock:
            snapshot = self._load()
            removed = snapshot.resources.pop(resource_id, None)
            if removed is not None:
                self._save(snapshot)
        if removed is not None:
            logger.debug(f"Removed state for {resource_id}")
        return removed

    def all(self) -> StateSnapshot:
        with self._lock:
            return self._load()

    def _load(self) -> StateSnapshot:
        """
        Load the snapshot from disk.

        Returns:
            StateSnapshot, empty if the file does not exist yet

        Raises:
            StateError: If the state file is corrupted or invalid
        """
        if not self.state_path.exists():
            return StateSnapshot()

        try:
            with open(self.state_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return StateSnapshot.from_dict(data)
        except json.JSONDecodeError as e:
            raise StateError(f"Failed to parse state file {self.state_path}: {e}", cause=e)
        except PydanticValidationError as e:
            raise StateError(f"Invalid state file {self.state_path}: {e}", cause=e)
        except OSError as e:
            raise StateError(f"Failed to read state file {self.state_path}: {e}", cause=e)

    def _save(self, snapshot: StateSnapshot) -> None:
        """
        Write the snapshot atomically.

        Raises:
            StateError: If state cannot be saved
        """
        self.state_path.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_name = tempfile.mkstemp(
            dir=str(self.state_path.parent), prefix=f".{self.state_path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot.to_dict(), f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_name, self.state_path)
        except OSError as e:
            if os.path.exists(temp_name):
                os.unlink(temp_name)
            raise StateError(f"Failed to save state file {self.state_path}: {e}", cause=e)
