"""Dependency resolver for Lockstep.

This module chooses one concrete version for every (name, source) pair
reachable from the root package. The search is a backtracking search over an
explicit stack of decision frames, so a failed branch unwinds
deterministically without relying on the call stack.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from lockstep.core.collision import detect_collisions
from lockstep.core.errors import CyclicDependencyError, NoMatchingVersion
from lockstep.core.package import (
    DependencyRequirement,
    PackageId,
    PackageRecord,
    ResolvedGraph,
    SourceId,
)
from lockstep.registry.base import IndexEntry

if TYPE_CHECKING:
    from lockstep.core.lockfile import Lockfile
    from lockstep.registry.sources import PackageSources

logger = logging.getLogger(__name__)

PackageKey = tuple[str, SourceId]
ActiveRequirements = dict[PackageKey, list[tuple[str, DependencyRequirement]]]


@dataclass
class DecisionFrame:
    """One choice point: a package and the versions still to try for it."""

    key: PackageKey
    candidates: list[IndexEntry]
    position: int = 0

    @property
    def chosen(self) -> IndexEntry:
        return self.candidates[self.position]

    def advance(self) -> bool:
        """Move to the next candidate; False when none remain."""
        self.position += 1
        return self.position < len(self.candidates)


class DependencyResolver:
    """Resolves a root package's requirements against package sources.

    Selection order per package:
    1. The version recorded in the previous lockfile, if it still satisfies
       every requirement and still exists in the index
    2. Otherwise the highest satisfying version

    Among undecided packages, the one with the fewest candidates is decided
    first, ties broken by name and source.
    """

    def __init__(
        self,
        index: PackageSources,
        previous_lockfile: Lockfile | None = None,
        unlock: Collection[str] = (),
    ):
        """Initialize the resolver.

        Args:
            index: Package sources to query for available versions
            previous_lockfile: Lockfile whose versions are preferred when still valid
            unlock: Package names whose locked versions must not be preferred
        """
        self._index = index
        self._locked: dict[PackageKey, str] = {}
        if previous_lockfile is not None:
            self._locked = {
                key: version
                for key, version in previous_lockfile.locked_versions().items()
                if key[0] not in unlock
            }
        self._warnings: list[str] = []

    def resolve(
        self,
        root: PackageId,
        root_requirements: Iterable[DependencyRequirement],
    ) -> ResolvedGraph:
        """Resolve the requirements of a root package.

        Args:
            root: Identity of the root package (recorded in the result)
            root_requirements: The root manifest's dependency requirements

        Returns:
            ResolvedGraph in canonical order

        Raises:
            NoMatchingVersion: If no assignment satisfies every requirement
            PackageCollision: If two sources need the same (name, version)
            CyclicDependencyError: If the chosen packages form a cycle
            IndexUnavailable: If offline and index data is not cached
            IndexFetchError: If index data could not be fetched
        """
        root_requirements = tuple(root_requirements)
        self._warnings = []
        stack: list[DecisionFrame] = []
        failure: NoMatchingVersion | None = None

        while True:
            active = self._active_requirements(root, root_requirements, stack)
            failure = self._find_conflict(stack, active)

            if failure is None:
                decided = {frame.key for frame in stack}
                pending = [key for key in active if key not in decided]
                if not pending:
                    break

                self._index.prefetch(pending)
                key, candidates = self._select_next(pending, active)
                if candidates:
                    logger.debug(
                        "Deciding %s from %s: %d candidate(s)", key[0], key[1], len(candidates)
                    )
                    stack.append(DecisionFrame(key, candidates))
                    continue
                failure = self._no_match(key, active)

            logger.debug("Dead end at '%s', backtracking", failure.name)
            if not self._backtrack(stack):
                raise failure

        records = self._build_records(root, root_requirements, stack)
        detect_collisions(record.package_id for record in records)
        self._check_cycles(records)

        logger.info("Resolved %d package(s)", len(records))
        return ResolvedGraph(root=root, records=records, warnings=list(self._warnings))

    def _active_requirements(
        self,
        root: PackageId,
        root_requirements: tuple[DependencyRequirement, ...],
        stack: list[DecisionFrame],
    ) -> ActiveRequirements:
        """Collect requirements from the root and every decided package."""
        active: ActiveRequirements = {}
        for requirement in root_requirements:
            active.setdefault(requirement.key, []).append((root.name, requirement))
        for frame in stack:
            entry = frame.chosen
            for requirement in entry.requirements:
                active.setdefault(requirement.key, []).append(
                    (f"{entry.name} v{entry.version}", requirement)
                )
        return active

    def _find_conflict(
        self, stack: list[DecisionFrame], active: ActiveRequirements
    ) -> NoMatchingVersion | None:
        """Find a decided package whose version violates a newer requirement."""
        for frame in stack:
            requirements = active.get(frame.key, [])
            if not all(req.matches(frame.chosen.semver) for _, req in requirements):
                return self._no_match(frame.key, active)
        return None

    def _select_next(
        self, pending: list[PackageKey], active: ActiveRequirements
    ) -> tuple[PackageKey, list[IndexEntry]]:
        """Pick the most constrained undecided package and its candidates."""
        best: tuple[PackageKey, list[IndexEntry]] | None = None
        for key in sorted(pending):
            candidates = self._candidates(key, active[key])
            if not candidates:
                return key, candidates
            if best is None or len(candidates) < len(best[1]):
                best = (key, candidates)
        assert best is not None
        return best

    def _candidates(
        self, key: PackageKey, requirements: list[tuple[str, DependencyRequirement]]
    ) -> list[IndexEntry]:
        """Versions satisfying every requirement, most preferred first."""
        name, source = key
        entries = self._index.query(name, source)
        locked_version = self._locked.get(key)

        matching = [
            entry
            for entry in entries
            if all(req.matches(entry.semver) for _, req in requirements)
            and (not entry.yanked or entry.version == locked_version)
        ]
        matching.sort(key=lambda entry: entry.semver, reverse=True)

        if locked_version is None:
            return matching

        locked = next((entry for entry in entries if entry.version == locked_version), None)
        if locked is None:
            if source.is_registry:
                self._warn(
                    f"locked version {name} v{locked_version} is no longer available in "
                    f"{source}; selecting a new version"
                )
            else:
                logger.info("Path package %s changed from v%s", name, locked_version)
            return matching
        if locked not in matching:
            logger.info(
                "Locked %s v%s no longer satisfies current requirements", name, locked_version
            )
            return matching
        if locked.yanked:
            self._warn(f"locked version {name} v{locked_version} has been yanked from {source}")

        return [locked] + [entry for entry in matching if entry is not locked]

    def _no_match(self, key: PackageKey, active: ActiveRequirements) -> NoMatchingVersion:
        name, source = key
        entries = self._index.query(name, source)
        return NoMatchingVersion(
            name,
            active.get(key, []),
            available=[entry.version for entry in entries if not entry.yanked],
        )

    @staticmethod
    def _backtrack(stack: list[DecisionFrame]) -> bool:
        """Undo the most recent choice that still has untried candidates."""
        while stack:
            if stack[-1].advance():
                return True
            stack.pop()
        return False

    def _build_records(
        self,
        root: PackageId,
        root_requirements: tuple[DependencyRequirement, ...],
        stack: list[DecisionFrame],
    ) -> list[PackageRecord]:
        chosen = {frame.key: frame.chosen for frame in stack}
        records = [
            PackageRecord(
                package_id=root,
                dependencies=tuple(chosen[req.key].package_id for req in root_requirements),
            )
        ]
        for frame in stack:
            entry = frame.chosen
            records.append(
                PackageRecord(
                    package_id=entry.package_id,
                    dependencies=tuple(chosen[req.key].package_id for req in entry.requirements),
                    checksum=entry.checksum if entry.source.is_registry else None,
                )
            )
        return records

    @staticmethod
    def _check_cycles(records: list[PackageRecord]) -> None:
        """Reject dependency cycles among the resolved packages."""
        edges = {record.package_id: record.dependencies for record in records}
        done: set[PackageId] = set()

        for start in sorted(edges, key=PackageId.sort_key):
            if start in done:
                continue
            path: list[PackageId] = []
            on_path: set[PackageId] = set()
            # Iterative DFS: (node, index of next dependency to visit)
            work: list[tuple[PackageId, int]] = [(start, 0)]
            while work:
                node, position = work.pop()
                if position == 0:
                    path.append(node)
                    on_path.add(node)
                dependencies = edges.get(node, ())
                if position < len(dependencies):
                    work.append((node, position + 1))
                    child = dependencies[position]
                    if child in on_path:
                        chain = path[path.index(child) :] + [child]
                        raise CyclicDependencyError([package.name for package in chain])
                    if child not in done:
                        work.append((child, 0))
                else:
                    path.pop()
                    on_path.discard(node)
                    done.add(node)

    def _warn(self, message: str) -> None:
        if message not in self._warnings:
            logger.warning(message)
            self._warnings.append(message)


def resolve(
    root: PackageId,
    root_requirements: Iterable[DependencyRequirement],
    index: PackageSources,
    previous_lockfile: Lockfile | None = None,
    unlock: Collection[str] = (),
) -> ResolvedGraph:
    """Convenience function to resolve dependencies.

    Args:
        root: Identity of the root package
        root_requirements: The root manifest's dependency requirements
        index: Package sources to query
        previous_lockfile: Optional lockfile whose versions are preferred
        unlock: Package names whose locked versions must not be preferred

    Returns:
        ResolvedGraph

    Raises:
        ResolutionError: If resolution fails
    """
    resolver = DependencyResolver(index, previous_lockfile, unlock)
    return resolver.resolve(root, root_requirements)
