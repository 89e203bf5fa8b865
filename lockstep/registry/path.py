"""Path dependency source.

A path source is a directory holding a package's own lockstep.yaml. It offers
exactly one version, the one its manifest declares, and never carries a
checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from lockstep.config.parser import ConfigError, load_manifest
from lockstep.config.schemas import MANIFEST_FILENAME, ProjectManifest
from lockstep.core.package import DependencyRequirement, SourceId
from lockstep.registry.base import IndexAccessor, IndexEntry
from lockstep.registry.factory import normalize_source
from lockstep.utils.filesystem import relative_posix

logger = logging.getLogger(__name__)


def _rebase_file_url(url: str, package_dir: Path, project_root: Path) -> str:
    """Express a relative ``file:`` URL relative to the project root.

    Manifests write relative index locations against their own directory;
    rebasing gives one spelling per index across every manifest.
    """
    if not url.startswith("file:") or url.startswith("file://"):
        return url
    location = url[len("file:") :]
    if Path(location).is_absolute():
        return url
    relative = relative_posix(package_dir / location, project_root)
    if not relative.startswith("."):
        relative = f"./{relative}"
    return f"file:{relative}"


def manifest_requirements(
    manifest: ProjectManifest,
    package_dir: Path,
    project_root: Path,
    fallback_registry: str | None = None,
) -> tuple[DependencyRequirement, ...]:
    """Translate a manifest's dependency table into requirements.

    Path dependencies become ``path+`` sources relative to the project root,
    as do relative ``file:`` registries the manifest declares. Registry
    dependencies use the manifest's registry, falling back to
    ``fallback_registry`` (already relative to the root) when it has none.

    Args:
        manifest: Parsed manifest
        package_dir: Directory the manifest lives in
        project_root: Root of the project being resolved
        fallback_registry: Registry URL used when the manifest names none

    Returns:
        Requirements sorted by name

    Raises:
        ConfigError: If a registry dependency has no registry to resolve from
    """
    requirements: list[DependencyRequirement] = []
    for name in sorted(manifest.dependencies):
        spec = manifest.dependency_spec(name)
        assert spec is not None

        if spec.path is not None:
            location = relative_posix(package_dir / spec.path, project_root)
            source = SourceId.path(location)
        else:
            url = manifest.registry_url(spec.registry)
            base_dir = package_dir
            if url is None:
                url, base_dir = fallback_registry, project_root
            if url is None:
                raise ConfigError(
                    f"Dependency '{name}' of '{manifest.name}' needs a registry, "
                    "but no registry is configured",
                    package_dir / MANIFEST_FILENAME,
                )
            url = _rebase_file_url(normalize_source(url), base_dir, project_root)
            source = SourceId.registry(url)

        requirements.append(DependencyRequirement.create(name, spec.version_spec, source))
    return tuple(requirements)


class PathSource(IndexAccessor):
    """Index accessor for a package stored in a local directory."""

    def __init__(
        self,
        location: str,
        project_root: Path,
        fallback_registry: str | None = None,
    ):
        """Initialize the path source.

        Args:
            location: POSIX path of the package directory relative to the project root
            project_root: Root of the project being resolved
            fallback_registry: Registry URL for dependencies that name none
        """
        self._location = location
        self._project_root = project_root
        self._fallback_registry = fallback_registry
        self._directory = (project_root / location).resolve()

    @property
    def source_id(self) -> SourceId:
        return SourceId.path(self._location)

    @property
    def directory(self) -> Path:
        return self._directory

    def query(self, name: str) -> list[IndexEntry]:
        """Get the single version the directory's manifest declares.

        Raises:
            ConfigError: If the directory has no valid lockstep.yaml
        """
        logger.debug("Reading path package '%s' from %s", name, self._directory)
        manifest = load_manifest(self._directory)
        requirements = manifest_requirements(
            manifest, self._directory, self._project_root, self._fallback_registry
        )

        if manifest.name != name:
            logger.warning(
                "Path %s holds package '%s', not '%s'", self._location, manifest.name, name
            )
            return []

        return [
            IndexEntry(
                name=manifest.name,
                version=manifest.version,
                source=self.source_id,
                requirements=requirements,
            )
        ]
