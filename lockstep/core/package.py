"""Package identity and resolution data model.

This module defines the value types shared by the index accessors, the
resolver and the lockfile:
- SourceId: where a package comes from
- PackageId: name, version and source of a concrete package
- DependencyRequirement: a declared (name, range, source) requirement
- PackageRecord: a resolved package with its dependencies
- ResolvedGraph: the canonical set of records produced by a resolution
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Literal

from lockstep.utils.version import SemVer, VersionRange

SourceKind = Literal["registry", "path"]


@dataclass(frozen=True, order=True)
class SourceId:
    """Location a package is obtained from.

    Rendered as ``registry+<url>`` or ``path+<relative path>``.
    """

    kind: SourceKind
    location: str

    @classmethod
    def registry(cls, url: str) -> SourceId:
        return cls("registry", url)

    @classmethod
    def path(cls, location: str) -> SourceId:
        return cls("path", location)

    @classmethod
    def parse(cls, text: str) -> SourceId:
        """Parse the ``kind+location`` form written in lockfiles.

        Raises:
            ValueError: If the text is not a recognised source string
        """
        kind, sep, location = text.partition("+")
        if not sep or not location or kind not in ("registry", "path"):
            raise ValueError(f"Invalid source: {text!r}")
        return cls(kind, location)  # type: ignore[arg-type]

    @property
    def is_registry(self) -> bool:
        return self.kind == "registry"

    @property
    def is_path(self) -> bool:
        return self.kind == "path"

    def __str__(self) -> str:
        return f"{self.kind}+{self.location}"


@dataclass(frozen=True)
class PackageId:
    """Identity of a concrete package: name, version and source."""

    name: str
    version: str
    source: SourceId

    @property
    def semver(self) -> SemVer:
        return SemVer.parse(self.version)

    @property
    def key(self) -> tuple[str, SourceId]:
        """The (name, source) pair a resolution picks exactly one version for."""
        return (self.name, self.source)

    def sort_key(self) -> tuple[str, SemVer, SourceId]:
        return (self.name, self.semver, self.source)

    def __str__(self) -> str:
        return f"{self.name} v{self.version} ({self.source})"


@dataclass(frozen=True)
class DependencyRequirement:
    """A declared requirement on a package from a given source."""

    name: str
    version_range: VersionRange
    source: SourceId

    @classmethod
    def create(cls, name: str, spec: str, source: SourceId) -> DependencyRequirement:
        """Build a requirement from a textual version specifier.

        Raises:
            ValueError: If the specifier is not a valid version range
        """
        return cls(name=name, version_range=VersionRange(spec), source=source)

    @property
    def key(self) -> tuple[str, SourceId]:
        return (self.name, self.source)

    def matches(self, version: str | SemVer) -> bool:
        # A path dependency names its package directly, pre-release or not
        return self.version_range.matches(version, include_prerelease=self.source.is_path)

    def __str__(self) -> str:
        return f"{self.name} {self.version_range} ({self.source})"


@dataclass(frozen=True)
class PackageRecord:
    """A resolved package and the packages it depends on."""

    package_id: PackageId
    dependencies: tuple[PackageId, ...] = ()
    checksum: str | None = None

    @property
    def name(self) -> str:
        return self.package_id.name

    @property
    def version(self) -> str:
        return self.package_id.version

    @property
    def source(self) -> SourceId:
        return self.package_id.source


@dataclass
class ResolvedGraph:
    """Complete, canonically ordered result of a resolution."""

    root: PackageId
    records: list[PackageRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.records = canonical_order(self.records)

    def __iter__(self) -> Iterator[PackageRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def get(self, name: str, source: SourceId | None = None) -> PackageRecord | None:
        """Find the record for a package name, optionally narrowed by source."""
        for record in self.records:
            if record.name == name and (source is None or record.source == source):
                return record
        return None

    def package_ids(self) -> list[PackageId]:
        return [record.package_id for record in self.records]


def canonical_order(records: Iterable[PackageRecord]) -> list[PackageRecord]:
    """Sort records by name, then version precedence, then source."""
    ordered = sorted(records, key=lambda record: record.package_id.sort_key())
    return [
        PackageRecord(
            package_id=record.package_id,
            dependencies=tuple(sorted(set(record.dependencies), key=PackageId.sort_key)),
            checksum=record.checksum,
        )
        for record in ordered
    ]
