"""Shared fixtures for Lockstep tests."""

import json
import shutil
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError

import pytest
import yaml

from lockstep.core.package import DependencyRequirement, PackageId, SourceId
from lockstep.registry.base import IndexAccessor, IndexEntry, sort_entries
from lockstep.registry.sources import PackageSources

FAKE_REGISTRY_URL = "https://index.test/"

# name -> version -> {dependency name: version range}
PackageTable = dict[str, dict[str, dict[str, str]]]


class FakeIndex(IndexAccessor):
    """In-memory index accessor that records every query."""

    def __init__(
        self,
        packages: PackageTable,
        url: str = FAKE_REGISTRY_URL,
        yanked: set[tuple[str, str]] | None = None,
    ):
        self._packages = packages
        self._url = url
        self._yanked = yanked or set()
        self.queries: list[str] = []

    @property
    def source_id(self) -> SourceId:
        return SourceId.registry(self._url)

    def query(self, name: str) -> list[IndexEntry]:
        self.queries.append(name)
        entries = [
            IndexEntry(
                name=name,
                version=version,
                source=self.source_id,
                requirements=tuple(
                    DependencyRequirement.create(dep, spec, self.source_id)
                    for dep, spec in sorted(deps.items())
                ),
                checksum=f"sha256:{name}-{version}",
                yanked=(name, version) in self._yanked,
            )
            for version, deps in self._packages.get(name, {}).items()
        ]
        return sort_entries(entries)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory."""
    path = Path(tempfile.mkdtemp(prefix="lockstep_test_"))
    yield path
    if path.exists():
        shutil.rmtree(path)


@pytest.fixture
def temp_project(temp_dir: Path) -> Path:
    """Create a temporary project directory."""
    project_dir = temp_dir / "test-project"
    project_dir.mkdir()
    return project_dir


@pytest.fixture
def registry_source() -> SourceId:
    """Source of the fake registry."""
    return SourceId.registry(FAKE_REGISTRY_URL)


@pytest.fixture
def root_package() -> PackageId:
    """Identity of the project being resolved in unit tests."""
    return PackageId("app", "0.1.0", SourceId.path("."))


@pytest.fixture
def make_sources(
    temp_project: Path,
) -> Callable[..., tuple[PackageSources, FakeIndex]]:
    """Factory building PackageSources backed by a FakeIndex."""

    def factory(
        packages: PackageTable,
        yanked: set[tuple[str, str]] | None = None,
        extra_indexes: dict[str, PackageTable] | None = None,
    ) -> tuple[PackageSources, FakeIndex]:
        index = FakeIndex(packages, yanked=yanked)
        sources = PackageSources(temp_project)
        sources.register(index)
        for url, table in (extra_indexes or {}).items():
            sources.register(FakeIndex(table, url=url))
        return sources, index

    return factory


@pytest.fixture
def requirement(registry_source: SourceId) -> Callable[[str, str], DependencyRequirement]:
    """Factory for requirements on the fake registry."""

    def factory(name: str, spec: str) -> DependencyRequirement:
        return DependencyRequirement.create(name, spec, registry_source)

    return factory


def write_index(directory: Path, packages: dict[str, Any]) -> Path:
    """Write an index.json holding the given per-package documents."""
    directory.mkdir(parents=True, exist_ok=True)
    index_file = directory / "index.json"
    index_file.write_text(json.dumps({"packages": packages}, indent=2))
    return index_file


def write_manifest(directory: Path, data: dict[str, Any]) -> Path:
    """Write a lockstep.yaml manifest."""
    directory.mkdir(parents=True, exist_ok=True)
    manifest_file = directory / "lockstep.yaml"
    manifest_file.write_text(yaml.safe_dump(data, sort_keys=False))
    return manifest_file


@pytest.fixture
def temp_index(temp_dir: Path) -> Path:
    """Create a local index with a small dependency graph.

    - serde 1.0.0, 1.0.100, 1.1.0 (1.1.0 requires serde_derive ^1)
    - serde_derive 1.0.0, 1.0.5
    - log 0.4.0, 0.4.20, 0.5.0-beta.1
    - rand 0.8.0 (yanked), 0.8.5 (requires log ^0.4)
    """
    index_dir = temp_dir / "index"
    write_index(
        index_dir,
        {
            "serde": {
                "versions": [
                    {"version": "1.0.0", "checksum": "sha256:serde100"},
                    {"version": "1.0.100", "checksum": "sha256:serde10100"},
                    {
                        "version": "1.1.0",
                        "dependencies": {"serde_derive": "^1"},
                        "checksum": "sha256:serde110",
                    },
                ]
            },
            "serde_derive": {
                "versions": [
                    {"version": "1.0.0", "checksum": "sha256:derive100"},
                    {"version": "1.0.5", "checksum": "sha256:derive105"},
                ]
            },
            "log": {
                "versions": [
                    {"version": "0.4.0", "checksum": "sha256:log040"},
                    {"version": "0.4.20", "checksum": "sha256:log0420"},
                    {"version": "0.5.0-beta.1", "checksum": "sha256:log050b1"},
                ]
            },
            "rand": {
                "versions": [
                    {"version": "0.8.0", "checksum": "sha256:rand080", "yanked": True},
                    {
                        "version": "0.8.5",
                        "dependencies": {"log": "^0.4"},
                        "checksum": "sha256:rand085",
                    },
                ]
            },
        },
    )
    return index_dir


@pytest.fixture
def index_writer() -> Callable[[Path, dict[str, Any]], Path]:
    """Helper writing index.json files."""
    return write_index


@pytest.fixture
def manifest_writer() -> Callable[[Path, dict[str, Any]], Path]:
    """Helper writing lockstep.yaml files."""
    return write_manifest


def serve_index(documents: dict[str, Any]):
    """Patch urlopen to answer ``<base>/<name>.json`` from ``documents``.

    Unknown names get a 404 like a real index would send.
    """

    def respond(request, **kwargs):
        name = request.full_url.rsplit("/", 1)[-1].removesuffix(".json")
        if name not in documents:
            raise HTTPError(request.full_url, 404, "Not Found", {}, None)
        response = MagicMock()
        response.__enter__.return_value.read.return_value = json.dumps(documents[name]).encode()
        return response

    return patch("lockstep.registry.https.urlopen", side_effect=respond)


@pytest.fixture
def index_server() -> Callable[[dict[str, Any]], Any]:
    """Helper serving per-package documents over a mocked HTTPS index."""
    return serve_index
