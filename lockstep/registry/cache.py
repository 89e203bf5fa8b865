"""Index metadata caches.

Two caches live here:
- IndexCache: in-memory, per-run memo of query results, append-only
- MetadataCache: on-disk cache of fetched index documents with a TTL
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections.abc import Hashable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from lockstep.utils.filesystem import atomic_write_bytes

if TYPE_CHECKING:
    from typing import Any

    from lockstep.registry.base import IndexEntry

logger = logging.getLogger(__name__)


class IndexCache:
    """Append-only memo of index query results for one run.

    Entries are immutable once written: if two threads race to store the same
    key, the first stored value wins and both callers get it back.
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, tuple[IndexEntry, ...]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> tuple[IndexEntry, ...] | None:
        with self._lock:
            return self._entries.get(key)

    def add(self, key: Hashable, entries: list[IndexEntry]) -> tuple[IndexEntry, ...]:
        """Store entries for a key unless already present; return the stored value."""
        frozen = tuple(entries)
        with self._lock:
            return self._entries.setdefault(key, frozen)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass
class CacheEntry:
    """A cached document with metadata."""

    url: str
    path: Path
    timestamp: float
    metadata: dict[str, Any] = field(default_factory=dict)


class MetadataCache:
    """File-based cache for index documents fetched from remote indexes.

    Cache structure:
        cache_dir/
            metadata.json       # Tracks all cached documents
            <sha256-hash>.json  # Documents keyed by URL hash
    """

    DEFAULT_TTL_SECONDS = 86400  # 24 hours

    def __init__(self, cache_dir: Path, ttl_seconds: int | None = None):
        """Initialize the metadata cache.

        Args:
            cache_dir: Directory to store cached documents
            ttl_seconds: Time-to-live in seconds (default: 24 hours)
        """
        self._cache_dir = cache_dir
        self._ttl_seconds = ttl_seconds if ttl_seconds is not None else self.DEFAULT_TTL_SECONDS
        self._metadata_file = cache_dir / "metadata.json"
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._load_metadata()
        logger.debug("Initialized cache at %s with TTL %d seconds", cache_dir, self._ttl_seconds)

    @property
    def cache_dir(self) -> Path:
        """Get the cache directory."""
        return self._cache_dir

    def _load_metadata(self) -> None:
        """Load cache metadata from disk."""
        if not self._metadata_file.exists():
            self._entries = {}
            return

        try:
            with open(self._metadata_file, encoding="utf-8") as f:
                data = json.load(f)

            self._entries = {}
            for url, entry_data in data.get("entries", {}).items():
                self._entries[url] = CacheEntry(
                    url=url,
                    path=Path(entry_data["path"]),
                    timestamp=entry_data["timestamp"],
                    metadata=entry_data.get("metadata", {}),
                )
        except (json.JSONDecodeError, KeyError, OSError):
            logger.warning("Ignoring unreadable cache metadata at %s", self._metadata_file)
            self._entries = {}

    def _save_metadata(self) -> None:
        """Save cache metadata to disk."""
        data = {
            "entries": {
                url: {
                    "path": str(entry.path),
                    "timestamp": entry.timestamp,
                    "metadata": entry.metadata,
                }
                for url, entry in sorted(self._entries.items())
            }
        }
        atomic_write_bytes(self._metadata_file, json.dumps(data, indent=2).encode("utf-8"))

    @staticmethod
    def _hash_url(url: str) -> str:
        """Generate a SHA256 hash of a URL for use as cache key."""
        return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]

    def _is_expired(self, entry: CacheEntry) -> bool:
        """Check if a cache entry has expired."""
        age = time.time() - entry.timestamp
        return age >= self._ttl_seconds

    def get(self, url: str, allow_stale: bool = False) -> bytes | None:
        """Get the cached document for a URL.

        Args:
            url: URL to look up in cache
            allow_stale: Return the document even if its TTL has passed

        Returns:
            Cached bytes if a usable entry exists, None otherwise
        """
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                logger.debug("Cache miss for %s", url)
                return None

            if not allow_stale and self._is_expired(entry):
                # Expired entries stay on disk for offline use
                logger.debug("Cache entry expired for %s", url)
                return None

            try:
                data = entry.path.read_bytes()
            except OSError:
                logger.debug("Cache entry orphaned (file missing) for %s", url)
                del self._entries[url]
                self._save_metadata()
                return None

        logger.debug("Cache hit for %s at %s", url, entry.path)
        return data

    def put(self, url: str, data: bytes, metadata: dict[str, Any] | None = None) -> Path:
        """Add or update a cached document.

        Args:
            url: URL being cached
            data: Document content
            metadata: Optional metadata to store with the entry

        Returns:
            Path to the cached content
        """
        cache_path = self._cache_dir / f"{self._hash_url(url)}.json"
        logger.debug("Caching %s to %s (%d bytes)", url, cache_path, len(data))

        with self._lock:
            atomic_write_bytes(cache_path, data)
            self._entries[url] = CacheEntry(
                url=url,
                path=cache_path,
                timestamp=time.time(),
                metadata=metadata or {},
            )
            self._save_metadata()

        return cache_path
