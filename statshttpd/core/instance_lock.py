"""Exclusive, non-blocking advisory lock on the configuration file.

At most one statshttpd process may run per configuration file. The lock is an
``flock`` held on an open descriptor, so the kernel drops it whenever the
process exits, including on a crash or SIGKILL.
"""

import fcntl
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path


class InstanceLockError(RuntimeError):
    """Raised by ``single_instance_lock`` when another process holds the lock."""

    def __init__(self, path: str) -> None:
        super().__init__(f"another instance holds the lock on {path}")
        self.path = path


class InstanceLock:
    """Single-instance guard keyed by a configuration file path."""

    def __init__(self, path: str | Path) -> None:
        self.path = str(Path(path).resolve())
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> bool:
        """Try to take the lock without waiting.

        Returns ``False`` immediately if another holder exists. Other OS
        errors (missing file, permissions) propagate as ``OSError``.
        """

        if self._fd is not None:
            return True

        fd = os.open(self.path, os.O_RDONLY | os.O_CLOEXEC)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return False
        except OSError:
            os.close(fd)
            raise

        self._fd = fd
        return True

    def release(self) -> None:
        if self._fd is None:
            return
        fd = self._fd
        self._fd = None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def __enter__(self) -> "InstanceLock":
        if not self.acquire():
            raise InstanceLockError(self.path)
        return self

    def __exit__(self, *_exc: object) -> None:
        self.release()


@contextmanager
def single_instance_lock(path: str | Path) -> Iterator[InstanceLock]:
    """Hold the instance lock for the duration of the block."""

    with InstanceLock(path) as lock:
        yield lock
