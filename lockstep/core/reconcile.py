"""Lockfile reconciliation and writing.

Merging a new resolution into an existing lockfile replaces only the
``[[package]]`` entries. The metadata block and the file's line ending style
are carried over, and nothing is written when the bytes would not change.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from pathlib import Path

from lockstep.core.lockfile import Lockfile, parse_lockfile
from lockstep.core.package import ResolvedGraph
from lockstep.utils.filesystem import atomic_write_bytes, exclusive_lock, read_bytes_if_exists

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lck"


def reconcile(
    new_graph: ResolvedGraph,
    existing_file_bytes: bytes | None = None,
    path: Path | None = None,
) -> tuple[Lockfile, bool]:
    """Merge a resolution into existing lockfile content.

    Args:
        new_graph: Freshly computed resolution
        existing_file_bytes: Current lockfile content, or None if there is none
        path: Lockfile path, for error messages

    Returns:
        (lockfile to persist, whether its bytes differ from the existing content)

    Raises:
        LockfileParseError: If the existing content is not a valid lockfile
    """
    if existing_file_bytes is None:
        lockfile = Lockfile.from_graph(new_graph)
        logger.debug("No existing lockfile; creating one with %d package(s)", len(new_graph))
        return lockfile, True

    existing = parse_lockfile(existing_file_bytes, path)
    lockfile = existing.with_packages(new_graph)
    should_write = lockfile.to_bytes() != existing_file_bytes
    logger.debug("Reconciled lockfile: %s", "changed" if should_write else "unchanged")
    return lockfile, should_write


class LockfileWriter:
    """Serializes access to one lockfile path across threads and processes.

    The advisory lock lives in a sidecar file next to the lockfile
    (``lockstep.lock.lck``). It stays in place between runs: removing it
    while another process waits on it would let two writers in at once.
    Projects usually list it in their VCS ignore file.

    Usage::

        writer = LockfileWriter(path)
        with writer.locked():
            existing = writer.read()
            ...
            writer.write(lockfile)
    """

    def __init__(self, path: Path):
        self._path = path
        self._lock_path = path.with_name(path.name + LOCK_SUFFIX)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    @contextlib.contextmanager
    def locked(self) -> Iterator[LockfileWriter]:
        """Hold the exclusive lock on the lockfile for the block.

        Blocks until any other holder releases it; released on every exit path.
        """
        with exclusive_lock(self._lock_path):
            yield self

    def read(self) -> bytes | None:
        """Current lockfile bytes, or None if the file does not exist."""
        return read_bytes_if_exists(self._path)

    def write(self, lockfile: Lockfile) -> Path:
        """Atomically replace the lockfile with the serialized model."""
        data = lockfile.to_bytes()
        logger.debug("Writing %d bytes to %s", len(data), self._path)
        return atomic_write_bytes(self._path, data)
