"""Abstract base class and shared types for index accessors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from lockstep.core.package import DependencyRequirement, PackageId, SourceId
from lockstep.utils.version import SemVer


class IndexAccessError(Exception):
    """Error obtaining package metadata from an index."""

    def __init__(self, message: str, url: str | None = None):
        self.url = url
        super().__init__(message)


class IndexUnavailable(IndexAccessError):
    """Index data is required but not cached, and network access is disabled."""

    def __init__(self, name: str, url: str | None = None):
        self.name = name
        message = (
            f"no cached index data for `{name}` in {url or 'the index'} "
            "and network access is disabled (--offline); "
            "run again without --offline to fetch it"
        )
        super().__init__(message, url)


class IndexFetchError(IndexAccessError):
    """Transient failure fetching index data (safe for the caller to retry)."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message, url)


@dataclass(frozen=True)
class NetworkMode:
    """How index accessors may touch the network.

    - offline: never fetch; fail with IndexUnavailable if data is not cached
    - no_refresh: reuse any cached data regardless of age; fetch only if absent
    """

    offline: bool = False
    no_refresh: bool = False


@dataclass(frozen=True)
class IndexEntry:
    """One available version of a package, as reported by an index."""

    name: str
    version: str
    source: SourceId
    requirements: tuple[DependencyRequirement, ...] = field(default_factory=tuple)
    checksum: str | None = None
    yanked: bool = False

    @property
    def semver(self) -> SemVer:
        return SemVer.parse(self.version)

    @property
    def package_id(self) -> PackageId:
        return PackageId(self.name, self.version, self.source)


class IndexAccessor(ABC):
    """Abstract base class for index accessors.

    An accessor answers "which versions of this package exist, what do they
    require, and what are their checksums" for a single source. Results are
    returned in ascending version order.
    """

    @property
    @abstractmethod
    def source_id(self) -> SourceId:
        """Source identity shared by every entry this accessor returns."""
        ...

    @abstractmethod
    def query(self, name: str) -> list[IndexEntry]:
        """Get every available version of a package.

        Args:
            name: Package name

        Returns:
            Entries in ascending version order (empty if the package is unknown)

        Raises:
            IndexUnavailable: If offline and the data is not cached
            IndexFetchError: If fetching the data failed
        """
        ...

    def lookup(self, name: str) -> list[IndexEntry]:
        """Alias of query() matching the index query protocol."""
        return self.query(name)


def sort_entries(entries: list[IndexEntry]) -> list[IndexEntry]:
    """Order entries by ascending version precedence."""
    return sorted(entries, key=lambda entry: entry.semver)
