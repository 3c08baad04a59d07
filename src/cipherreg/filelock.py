"""
Locking and atomic replacement of registry files.

A project is read, mutated and written back as a whole, so writers hold
one exclusive lock on .cipherreg/registry.lock for the entire session.
POSIX systems use flock(); elsewhere an O_EXCL marker file stands in.
"""

import os
import sys
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Union

if sys.platform != "win32":
    import fcntl
else:
    fcntl = None


class FileLockError(Exception):
    """Base exception for lock failures"""
    pass


class FileLockTimeout(FileLockError):
    """The lock stayed busy for longer than the timeout"""
    pass


class FileLock:
    """
    Advisory lock on a path, usable as a context manager.

    exclusive=False takes a shared lock where flock() is available; the
    marker-file fallback is always exclusive.
    """

    MARKER_SUFFIX = ".lock"

    def __init__(
        self,
        path: Path,
        exclusive: bool = True,
        timeout: float = 10.0,
        poll_interval: float = 0.05,
    ):
        self.path = Path(path)
        self.exclusive = exclusive
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._handle = None
        self._marker = None

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    @property
    def held(self) -> bool:
        return self._handle is not None or self._marker is not None

    def _poll(self, attempt: Callable[[], bool]) -> None:
        deadline = time.monotonic() + self.timeout
        while not attempt():
            if time.monotonic() >= deadline:
                raise FileLockTimeout(f"{self.path} still locked after {self.timeout}s")
            time.sleep(self.poll_interval)

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if fcntl is None:
            self._poll(self._try_marker)
            return

        self._handle = open(self.path, "a+")
        try:
            self._poll(self._try_flock)
        except FileLockTimeout:
            self._handle.close()
            self._handle = None
            raise

    def _try_flock(self) -> bool:
        mode = fcntl.LOCK_EX if self.exclusive else fcntl.LOCK_SH
        try:
            fcntl.flock(self._handle.fileno(), mode | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _try_marker(self) -> bool:
        marker = Path(f"{self.path}{self.MARKER_SUFFIX}")
        try:
            fd = os.open(marker, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        self._marker = marker
        return True

    def release(self) -> None:
        if self._handle is not None:
            try:
                fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
            finally:
                self._handle.close()
                self._handle = None
        if self._marker is not None:
            if self._marker.exists():
                self._marker.unlink()
            self._marker = None


@contextmanager
def file_lock(path: Path, exclusive: bool = True, timeout: float = 10.0):
    """
    Hold a FileLock for the duration of a block.

    Usage:
        with file_lock(storage.lock_path):
            ...
    """
    with FileLock(path, exclusive=exclusive, timeout=timeout) as lock:
        yield lock


def atomic_write(path: Path, content: Union[str, bytes], mode: int = 0o644) -> None:
    """
    Replace path with content in one step.

    The data goes to a temporary file beside the target, which is then
    renamed over it; readers see the old file or the new one, never a mix.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode("utf-8") if isinstance(content, str) else content

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
