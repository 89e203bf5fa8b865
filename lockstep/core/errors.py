"""Resolution error taxonomy."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lockstep.core.package import DependencyRequirement, SourceId


class ResolutionError(Exception):
    """Error during dependency resolution. Never retried."""

    pass


class NoMatchingVersion(ResolutionError):
    """No version of a package satisfies every active requirement."""

    def __init__(
        self,
        name: str,
        conflicting_requirements: Sequence[tuple[str, DependencyRequirement]],
        available: Sequence[str] = (),
    ):
        self.name = name
        self.conflicting_requirements = list(conflicting_requirements)
        self.available = list(available)

        lines = [f"failed to select a version for the requirement `{name}`"]
        for required_by, requirement in self.conflicting_requirements:
            lines.append(
                f"  required by {required_by}: {requirement.version_range} "
                f"from {requirement.source}"
            )
        if self.available:
            lines.append(f"  versions available: {', '.join(self.available)}")
        else:
            lines.append("  no versions available")
        super().__init__("\n".join(lines))


class PackageCollision(ResolutionError):
    """Two distinct sources would occupy the same lockfile identity."""

    def __init__(self, name: str, version: str, sources: Sequence[SourceId]):
        self.name = name
        self.version = version
        self.sources = list(sources)

        described = " and ".join(f"{name} {version} ({source})" for source in self.sources)
        message = (
            f"package collision in the lockfile: packages {described} are different, "
            "but only one can be written to lockfile unambiguously"
        )
        super().__init__(message)


class CyclicDependencyError(ResolutionError):
    """The resolved graph contains a dependency cycle."""

    def __init__(self, chain: list[str]):
        self.chain = chain
        message = f"cyclic package dependency: {' -> '.join(chain)}"
        super().__init__(message)


class PackageSpecMismatch(ResolutionError):
    """A package named on the command line is not in the lockfile."""

    def __init__(self, spec: str):
        self.spec = spec
        super().__init__(f"package ID specification `{spec}` did not match any packages")
