"""Local file system index accessor."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from lockstep.core.package import SourceId
from lockstep.registry.base import IndexAccessor, IndexEntry, IndexFetchError
from lockstep.registry.common import extract_entries_from_package_data

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"


class LocalIndex(IndexAccessor):
    """Index accessor for a directory holding an ``index.json`` document.

    The document maps package names to their per-package data::

        {"packages": {"serde": {"versions": [...]}}}

    Local reads never touch the network, so offline and no-refresh modes do
    not change behaviour.

    URL format:
    - file:///path/to/index (absolute path)
    - file:../relative/path (relative to ``base_dir``)
    """

    def __init__(self, url: str, base_dir: Path | None = None):
        """Initialize the local index.

        Args:
            url: Local file URL (file:// or file:) as written in the manifest
            base_dir: Directory relative URLs are resolved against (default: cwd)
        """
        self._url = url
        self._base_dir = base_dir or Path.cwd()
        self._path = self._parse_url(url)
        self._data: dict[str, Any] | None = None
        self._lock = threading.Lock()

        logger.info("Initializing local index for %s", self._path)

    def _parse_url(self, url: str) -> Path:
        """Parse a file URL to a Path."""
        if url.startswith("file://"):
            # Absolute path
            parsed = urlparse(url)
            return Path(parsed.path)
        elif url.startswith("file:"):
            # Relative path (file:../path or file:./path)
            return (self._base_dir / url[5:]).resolve()
        else:
            # Assume it's a path
            return (self._base_dir / url).resolve()

    @property
    def source_id(self) -> SourceId:
        return SourceId.registry(self._url)

    @property
    def path(self) -> Path:
        """Get the local path this index points to."""
        return self._path

    def _get_index_data(self) -> dict[str, Any]:
        """Load index.json data once per accessor.

        Raises:
            IndexFetchError: If index.json cannot be loaded or is invalid JSON
        """
        with self._lock:
            if self._data is not None:
                return self._data

            index_file = self._path / INDEX_FILENAME
            if not index_file.exists():
                raise IndexFetchError(
                    f"Index not found: {self._path} does not contain {INDEX_FILENAME}",
                    url=self._url,
                )

            try:
                with open(index_file, encoding="utf-8") as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise IndexFetchError(
                    f"Invalid JSON in {index_file}: {e}",
                    url=self._url,
                ) from e
            except OSError as e:
                raise IndexFetchError(f"Cannot read {index_file}: {e}", url=self._url) from e

            if not isinstance(data, dict) or not isinstance(data.get("packages", {}), dict):
                raise IndexFetchError(f"Malformed index document {index_file}", url=self._url)

            self._data = data
            return data

    def query(self, name: str) -> list[IndexEntry]:
        """Get every available version of a package from index.json."""
        logger.debug("Querying '%s' from local index %s", name, self._path)
        packages = self._get_index_data().get("packages", {})
        if name not in packages:
            logger.debug("Package '%s' not found in local index", name)
            return []
        return extract_entries_from_package_data(packages[name], name, self.source_id, self._url)
