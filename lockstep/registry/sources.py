"""Source routing for index queries.

PackageSources is the index the resolver talks to. It maps each SourceId to
an IndexAccessor, memoizes every query result in an IndexCache, and can
dispatch queries for several packages concurrently.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from lockstep.core.package import SourceId
from lockstep.registry.base import IndexAccessor, IndexEntry, NetworkMode
from lockstep.registry.cache import IndexCache
from lockstep.registry.factory import create_index
from lockstep.registry.path import PathSource

logger = logging.getLogger(__name__)

PackageKey = tuple[str, SourceId]


class PackageSources:
    """Routes (name, source) queries to the right index accessor."""

    DEFAULT_MAX_WORKERS = 8

    def __init__(
        self,
        project_root: Path,
        network: NetworkMode | None = None,
        cache_dir: Path | None = None,
        ttl_seconds: int | None = None,
        fallback_registry: str | None = None,
        cache: IndexCache | None = None,
        max_workers: int | None = None,
    ):
        """Initialize the source router.

        Args:
            project_root: Root of the project being resolved
            network: Network access mode passed to remote indexes
            cache_dir: Directory for cached remote index documents
            ttl_seconds: Cache TTL for remote index documents
            fallback_registry: Registry URL for path packages that configure none
            cache: Query memo shared across resolutions (default: a new one)
            max_workers: Thread pool size for concurrent prefetching
        """
        self._project_root = project_root
        self._network = network or NetworkMode()
        self._cache_dir = cache_dir
        self._ttl_seconds = ttl_seconds
        self._fallback_registry = fallback_registry
        self._cache = cache if cache is not None else IndexCache()
        self._max_workers = max_workers or self.DEFAULT_MAX_WORKERS
        self._accessors: dict[SourceId, IndexAccessor] = {}
        self._lock = threading.Lock()

    @property
    def network(self) -> NetworkMode:
        return self._network

    @property
    def cache(self) -> IndexCache:
        return self._cache

    def register(self, accessor: IndexAccessor) -> None:
        """Use a specific accessor for its source."""
        with self._lock:
            self._accessors[accessor.source_id] = accessor

    def accessor(self, source: SourceId) -> IndexAccessor:
        """Get (creating on first use) the accessor for a source."""
        with self._lock:
            accessor = self._accessors.get(source)
            if accessor is None:
                accessor = self._create_accessor(source)
                self._accessors[source] = accessor
            return accessor

    def _create_accessor(self, source: SourceId) -> IndexAccessor:
        if source.is_path:
            return PathSource(source.location, self._project_root, self._fallback_registry)
        return create_index(
            source.location,
            network=self._network,
            cache_dir=self._cache_dir,
            base_dir=self._project_root,
            ttl_seconds=self._ttl_seconds,
        )

    def query(self, name: str, source: SourceId) -> tuple[IndexEntry, ...]:
        """Get every available version of a package from its source.

        Results are memoized for the lifetime of the cache.

        Raises:
            IndexUnavailable: If offline and the data is not cached
            IndexFetchError: If fetching the data failed
        """
        key: PackageKey = (name, source)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        entries = self.accessor(source).query(name)
        return self._cache.add(key, entries)

    def prefetch(self, keys: Iterable[PackageKey]) -> None:
        """Query several packages concurrently, filling the cache.

        Errors are raised for the first failing key in sorted order, so the
        reported failure does not depend on thread scheduling.
        """
        missing = sorted({key for key in keys if key not in self._cache})
        if len(missing) < 2:
            for name, source in missing:
                self.query(name, source)
            return

        logger.debug("Prefetching %d package(s) concurrently", len(missing))
        workers = min(self._max_workers, len(missing))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="lockstep-index") as pool:
            futures = [pool.submit(self.query, name, source) for name, source in missing]
            for future in futures:
                future.result()
