"""Filesystem utilities for Lockstep."""

from __future__ import annotations

import contextlib
import logging
import os
import stat
import sys
import tempfile
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import IO

logger = logging.getLogger(__name__)

if sys.platform == "win32":
    import msvcrt

    def _lock_handle(handle: IO[bytes]) -> None:
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)

    def _unlock_handle(handle: IO[bytes]) -> None:
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _lock_handle(handle: IO[bytes]) -> None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)

    def _unlock_handle(handle: IO[bytes]) -> None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


# flock() is per open file description, so threads in one process need their
# own mutex per lock path on top of the OS lock.
_process_locks: dict[str, threading.Lock] = {}
_process_locks_guard = threading.Lock()


def _process_lock(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _process_locks_guard:
        return _process_locks.setdefault(key, threading.Lock())


@contextlib.contextmanager
def exclusive_lock(lock_path: Path) -> Iterator[Path]:
    """Hold an exclusive advisory lock on ``lock_path`` for the block.

    Blocks without timeout until the lock is available. The lock is released
    on every exit path, including exceptions.

    Args:
        lock_path: Path of the lock file (created if missing)

    Yields:
        The lock file path
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    mutex = _process_lock(lock_path)
    with mutex, open(lock_path, "a+b") as handle:
        logger.debug("Acquiring lock %s", lock_path)
        _lock_handle(handle)
        try:
            yield lock_path
        finally:
            _unlock_handle(handle)
            logger.debug("Released lock %s", lock_path)


def _target_mode(path: Path) -> int:
    """Permission bits for ``path``: its current mode, or the umask default."""
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def atomic_write_bytes(path: Path, data: bytes) -> Path:
    """Write bytes to ``path`` so readers see either the old or the new content.

    The data goes to a temporary file in the same directory which is then
    renamed over the destination. The destination keeps its permission bits;
    a new file gets the umask default.

    Args:
        path: Destination file
        data: Content to write

    Returns:
        The destination path
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = _target_mode(path)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink()
        raise
    return path


def read_bytes_if_exists(path: Path) -> bytes | None:
    """Read a file's bytes, or return None if it does not exist."""
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def relative_posix(path: Path, start: Path) -> str:
    """Express ``path`` relative to ``start`` using forward slashes.

    Args:
        path: Path to express
        start: Directory to express it relative to

    Returns:
        Relative POSIX path ("." when both are the same directory)
    """
    relative = os.path.relpath(path.resolve(), start.resolve())
    return Path(relative).as_posix()
