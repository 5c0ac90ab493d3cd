"""Exclusive run lock guarding a state file."""

import fcntl
import os
import time
from pathlib import Path
from typing import Optional

from stackwright.utils.errors import StateLockError
from stackwright.utils.logging import get_logger

logger = get_logger(__name__)


class RunLock:
    """Exclusive lease held for the duration of one orchestrator run.

    Backed by ``flock`` on a lock file next to the state file, so the lease
    is dropped by the kernel even if the process dies mid-run.
    """

    def __init__(self, lock_path: str, timeout: float = 30.0, poll_interval: float = 0.1):
        """
        Initialize RunLock.

        Args:
            lock_path: Path of the lock file
            timeout: Seconds to wait for the lock before giving up
            poll_interval: Seconds between acquisition attempts
        """
        self.lock_path = Path(lock_path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """
        Acquire the lock.

        Raises:
            StateLockError: If the lock cannot be acquired within the timeout
        """
        if self._fd is not None:
            raise StateLockError(f"Run lock already held: {self.lock_path}")

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.lock_path), os.O_CREAT | os.O_RDWR, 0o644)

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    os.close(fd)
                    raise StateLockError(
                        f"Another run holds the lock on {self.lock_path} "
                        f"(waited {self.timeout:.0f}s)",
                        suggestions=["Wait for the other run to finish and retry"]
                    )
                time.sleep(self.poll_interval)
            except OSError as e:
                os.close(fd)
                raise StateLockError(f"Failed to acquire lock {self.lock_path}: {e}", cause=e)

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug(f"Acquired run lock {self.lock_path}")

    def release(self) -> None:
        """Release the lock if held."""
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
            os.close(self._fd)
        finally:
            self._fd = None
            logger.debug(f"Released run lock {self.lock_path}")

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
