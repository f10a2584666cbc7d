"""Single-instance lock file."""

import fcntl
import logging
import os
from pathlib import Path
from typing import Optional, TextIO

from overdrive.const import LOCK_FILE_NAME
from overdrive.models import OverdriveError

logger = logging.getLogger(__name__)


class LockError(OverdriveError):
    """Another instance already holds the lock."""


def default_lock_path() -> Path:
    runtime_dir = os.getenv("XDG_RUNTIME_DIR")
    if not runtime_dir:
        raise LockError("XDG_RUNTIME_DIR not set, cannot place lock file")
    return Path(runtime_dir) / LOCK_FILE_NAME


class InstanceLock:
    """Exclusive, non-blocking flock held for the lifetime of the daemon."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._handle: Optional[TextIO] = None

    def acquire(self) -> None:
        # Content is replaced only after flock succeeds
        handle = open(self.path, "a+")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            raise LockError(f"Failed to acquire {self.path}. Another instance is running.") from None
        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle
        logger.info("Lock acquired")

    def release(self) -> None:
        if self._handle is None:
            return
        fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        self._handle.close()
        self._handle = None
        try:
            self.path.unlink()
            logger.info("Lock released")
        except OSError as e:
            logger.error(f"Failed to remove lock file {self.path}: {e}")

    @property
    def held(self) -> bool:
        return self._handle is not None

    def __enter__(self) -> "InstanceLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
