"""Advisory exclusive lock backed by flock(2) on a lock file."""

import contextlib
import fcntl
import logging
import os
from pathlib import Path

log = logging.getLogger(__name__)


class LockHeldError(RuntimeError):
    pass


class ExclusiveLock(contextlib.AbstractContextManager):
    def __init__(self, path: Path):
        self.path = Path(path)
        self._fd: int | None = None

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def _open(self) -> int:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)

    def try_acquire(self) -> bool:
        if self._fd is not None:
            raise RuntimeError(f"{self.path} is already held by this process")
        fd = self._open()
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            log.debug("Lock %s is held elsewhere", self.path)
            return False
        self._fd = fd
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        log.debug("Acquired lock %s", self.path)
        return True

    def acquire(self):
        if self._fd is not None:
            raise RuntimeError(f"{self.path} is already held by this process")
        fd = self._open()
        fcntl.flock(fd, fcntl.LOCK_EX)
        self._fd = fd
        log.debug("Acquired lock %s", self.path)

    def release(self):
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        log.debug("Released lock %s", self.path)

    def __enter__(self):
        if not self.try_acquire():
            raise LockHeldError(f"{self.path} is locked by another process")
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()
        return None
