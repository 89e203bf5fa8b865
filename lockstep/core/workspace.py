"""Workspace model representing a Lockstep-managed project.

A workspace is a project root holding a ``lockstep.yaml`` manifest and,
once generated, a ``lockstep.lock`` lockfile next to it.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass
from pathlib import Path

from lockstep.config.parser import find_project_root, load_manifest
from lockstep.config.schemas import LOCKFILE_FILENAME, MANIFEST_FILENAME, ProjectManifest
from lockstep.core.errors import PackageSpecMismatch
from lockstep.core.lockfile import Lockfile, parse_lockfile
from lockstep.core.package import DependencyRequirement, PackageId, ResolvedGraph, SourceId
from lockstep.core.reconcile import LockfileWriter, reconcile
from lockstep.core.resolver import DependencyResolver
from lockstep.registry.base import NetworkMode
from lockstep.registry.path import manifest_requirements
from lockstep.registry.sources import PackageSources

logger = logging.getLogger(__name__)

ROOT_SOURCE = SourceId.path(".")


@dataclass
class LockResult:
    """Outcome of a lockfile generation or update."""

    graph: ResolvedGraph
    lockfile: Lockfile
    path: Path
    written: bool

    @property
    def warnings(self) -> list[str]:
        return self.graph.warnings

    @property
    def package_count(self) -> int:
        return len(self.graph)


class Workspace:
    """A project root and the operations that keep its lockfile current."""

    def __init__(
        self,
        root: Path,
        manifest: ProjectManifest,
        network: NetworkMode | None = None,
        cache_dir: Path | None = None,
        sources: PackageSources | None = None,
    ):
        """Initialize a Workspace.

        Args:
            root: Path to the project root directory
            manifest: Parsed root manifest
            network: Network access mode (default: from the manifest settings)
            cache_dir: Index cache directory (default: from the manifest settings)
            sources: Package sources to resolve against (default: built from the manifest)
        """
        self._root = root.resolve()
        self._manifest = manifest
        settings = manifest.settings

        if network is None:
            network = NetworkMode(offline=settings.offline, no_refresh=settings.no_refresh)
        self._network = network

        if cache_dir is None and settings.cache_dir:
            cache_dir = self._root / settings.cache_dir
        self._cache_dir = cache_dir

        if sources is None:
            sources = PackageSources(
                self._root,
                network=self._network,
                cache_dir=self._cache_dir,
                ttl_seconds=settings.cache_ttl,
                fallback_registry=manifest.registry_url(),
            )
        self._sources = sources

    @classmethod
    def load(
        cls,
        path: Path | None = None,
        offline: bool = False,
        no_refresh: bool = False,
        cache_dir: Path | None = None,
    ) -> Workspace:
        """Load a workspace from disk.

        The network flags only ever enable a mode; a mode switched on in the
        manifest settings stays on.

        Args:
            path: Path to the project root, or None to search from cwd
            offline: Never touch the network
            no_refresh: Reuse cached index data regardless of age
            cache_dir: Index cache directory override

        Returns:
            Loaded Workspace instance

        Raises:
            FileNotFoundError: If no manifest is found
            ConfigError: If the manifest is invalid
        """
        if path is None:
            path = find_project_root()
            if path is None:
                raise FileNotFoundError(
                    f"No {MANIFEST_FILENAME} found in current directory or any parent directory"
                )
        else:
            path = path.resolve()
            if not (path / MANIFEST_FILENAME).exists():
                raise FileNotFoundError(f"No {MANIFEST_FILENAME} found in {path}")

        manifest = load_manifest(path)
        logger.debug("Loaded manifest for '%s' from %s", manifest.name, path)
        network = NetworkMode(
            offline=offline or manifest.settings.offline,
            no_refresh=no_refresh or manifest.settings.no_refresh,
        )
        return cls(path, manifest, network=network, cache_dir=cache_dir)

    @property
    def root(self) -> Path:
        """Get the project root directory."""
        return self._root

    @property
    def manifest(self) -> ProjectManifest:
        return self._manifest

    @property
    def network(self) -> NetworkMode:
        return self._network

    @property
    def sources(self) -> PackageSources:
        return self._sources

    @property
    def lockfile_path(self) -> Path:
        return self._root / LOCKFILE_FILENAME

    @property
    def root_package(self) -> PackageId:
        """Identity of the project's own package."""
        return PackageId(self._manifest.name, self._manifest.version, ROOT_SOURCE)

    def root_requirements(self) -> tuple[DependencyRequirement, ...]:
        """Requirements declared by the root manifest.

        Raises:
            ConfigError: If a registry dependency has no registry configured
        """
        return manifest_requirements(self._manifest, self._root, self._root)

    def read_lockfile(self) -> Lockfile | None:
        """Parse the lockfile on disk, if there is one.

        Raises:
            LockfileParseError: If the lockfile is corrupt
        """
        data = LockfileWriter(self.lockfile_path).read()
        if data is None:
            return None
        return parse_lockfile(data, self.lockfile_path)

    def resolve(
        self,
        previous_lockfile: Lockfile | None = None,
        unlock: Collection[str] = (),
    ) -> ResolvedGraph:
        """Resolve the manifest without touching the lockfile.

        Args:
            previous_lockfile: Lockfile whose versions are preferred
            unlock: Package names whose locked versions are not preferred

        Returns:
            ResolvedGraph including the root package
        """
        resolver = DependencyResolver(self._sources, previous_lockfile, unlock)
        return resolver.resolve(self.root_package, self.root_requirements())

    def generate_lockfile(self) -> LockResult:
        """Resolve and write the lockfile, keeping locked versions that still fit.

        Returns:
            LockResult; ``written`` is False when the file was already current

        Raises:
            ResolutionError: If resolution fails
            IndexAccessError: If index data cannot be obtained
            LockfileParseError: If the existing lockfile is corrupt
            ConfigError: If a manifest is invalid
        """
        return self._lock(prefer_locked=True)

    def update(self, packages: Collection[str] = ()) -> LockResult:
        """Re-resolve, ignoring locked versions for some or all packages.

        Args:
            packages: Package names to unlock; empty unlocks everything

        Returns:
            LockResult

        Raises:
            PackageSpecMismatch: If a named package is not in the lockfile
        """
        if not packages:
            return self._lock(prefer_locked=False)
        return self._lock(prefer_locked=True, unlock=packages)

    def _lock(self, prefer_locked: bool, unlock: Collection[str] = ()) -> LockResult:
        writer = LockfileWriter(self.lockfile_path)
        with writer.locked():
            existing_bytes = writer.read()
            existing = None
            if existing_bytes is not None:
                existing = parse_lockfile(existing_bytes, self.lockfile_path)
                for name in sorted(unlock):
                    if existing.find(name) is None:
                        raise PackageSpecMismatch(name)

            graph = self.resolve(existing if prefer_locked else None, unlock)
            lockfile, should_write = reconcile(graph, existing_bytes, self.lockfile_path)
            if should_write:
                writer.write(lockfile)
                logger.info("Wrote %s", self.lockfile_path)
            else:
                logger.info("%s is up to date", self.lockfile_path)

        return LockResult(
            graph=graph, lockfile=lockfile, path=self.lockfile_path, written=should_write
        )
