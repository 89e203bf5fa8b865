"""Tests for lockstep.core.resolver module."""

import pytest

from lockstep.core.errors import CyclicDependencyError, NoMatchingVersion, PackageCollision
from lockstep.core.lockfile import LockedPackage, Lockfile
from lockstep.core.package import DependencyRequirement, SourceId
from lockstep.core.resolver import DependencyResolver, resolve


def versions(graph) -> dict[str, str]:
    """Map package name to chosen version, leaving out the root."""
    return {r.name: r.version for r in graph if r.package_id != graph.root}


def locked(*pins: tuple[str, str], source: SourceId) -> Lockfile:
    return Lockfile(packages=[LockedPackage(name, version, source) for name, version in pins])


class TestDependencyResolver:
    """Tests for basic selection."""

    def test_resolves_highest_compatible_version(self, make_sources, root_package, requirement):
        """Selects the highest version in the range."""
        sources, _ = make_sources({"serde": {"1.0.0": {}, "1.2.0": {}, "2.0.0": {}}})

        graph = resolve(root_package, [requirement("serde", "^1")], sources)

        assert versions(graph) == {"serde": "1.2.0"}

    def test_version_precedence_is_numeric(self, make_sources, root_package, requirement):
        """1.0.100 beats 1.0.20."""
        sources, _ = make_sources({"serde": {"1.0.20": {}, "1.0.100": {}}})

        graph = resolve(root_package, [requirement("serde", "1.0")], sources)

        assert versions(graph) == {"serde": "1.0.100"}

    def test_resolves_transitive_dependencies(self, make_sources, root_package, requirement):
        """Transitive requirements are followed."""
        sources, _ = make_sources(
            {
                "bar": {"0.1.0": {"baz": "^1"}},
                "baz": {"1.0.0": {}, "1.5.0": {}},
            }
        )

        graph = resolve(root_package, [requirement("bar", "0.1")], sources)

        assert versions(graph) == {"bar": "0.1.0", "baz": "1.5.0"}
        bar = graph.get("bar")
        assert [dep.name for dep in bar.dependencies] == ["baz"]

    def test_root_is_recorded_with_its_dependencies(
        self, make_sources, root_package, requirement
    ):
        """The root package appears in the graph, pointing at its direct deps."""
        sources, _ = make_sources({"a": {"1.0.0": {}}, "b": {"1.0.0": {}}})

        graph = resolve(root_package, [requirement("b", "1"), requirement("a", "1")], sources)

        root = graph.get("app")
        assert root.package_id == root_package
        assert [dep.name for dep in root.dependencies] == ["a", "b"]
        assert root.checksum is None

    def test_registry_packages_carry_checksums(self, make_sources, root_package, requirement):
        sources, _ = make_sources({"a": {"1.0.0": {}}})

        graph = resolve(root_package, [requirement("a", "1")], sources)

        assert graph.get("a").checksum == "sha256:a-1.0.0"

    def test_no_dependencies(self, make_sources, root_package):
        """A project without dependencies resolves to just the root."""
        sources, _ = make_sources({})

        graph = resolve(root_package, [], sources)

        assert graph.package_ids() == [root_package]

    def test_resolution_is_deterministic(self, make_sources, root_package, requirement):
        """The same inputs always give the same graph."""
        table = {
            "a": {"1.0.0": {"c": "*"}, "1.1.0": {"c": "^1"}},
            "b": {"2.0.0": {"c": ">=1.0, <3"}},
            "c": {"1.0.0": {}, "1.4.0": {}, "2.0.0": {}},
        }
        requirements = [requirement("a", "*"), requirement("b", "2")]

        first = resolve(root_package, requirements, make_sources(table)[0])
        second = resolve(root_package, list(reversed(requirements)), make_sources(table)[0])

        assert first.records == second.records

    def test_queries_are_memoized(self, make_sources, root_package, requirement):
        """Each package is fetched from the index once per run."""
        sources, index = make_sources(
            {"a": {"1.0.0": {"c": "1"}}, "b": {"1.0.0": {"c": "1"}}, "c": {"1.0.0": {}}}
        )

        resolve(root_package, [requirement("a", "1"), requirement("b", "1")], sources)
        resolve(root_package, [requirement("a", "1"), requirement("b", "1")], sources)

        assert sorted(index.queries) == ["a", "b", "c"]


class TestBacktracking:
    """Tests for conflict handling."""

    def test_backtracks_past_highest_candidate(self, make_sources, root_package, requirement):
        """A newer version whose requirements conflict is abandoned for an older one."""
        sources, _ = make_sources(
            {
                "a": {"1.0.0": {}, "2.0.0": {"c": "^1"}},
                "b": {"1.0.0": {"c": "^2"}},
                "c": {"1.0.0": {}, "2.0.0": {}},
            }
        )

        graph = resolve(root_package, [requirement("a", "*"), requirement("b", "*")], sources)

        assert versions(graph) == {"a": "1.0.0", "b": "1.0.0", "c": "2.0.0"}

    def test_backtracks_into_earlier_decision(self, make_sources, root_package, requirement):
        """A conflict deep in the graph unwinds to an earlier choice."""
        sources, _ = make_sources(
            {
                "a": {"1.0.0": {}, "2.0.0": {"b": "^1", "c": "^1"}},
                "b": {"1.0.0": {"c": "^2"}},
                "c": {"1.0.0": {}, "2.0.0": {}},
            }
        )

        graph = resolve(root_package, [requirement("a", "*")], sources)

        assert versions(graph) == {"a": "1.0.0"}

    def test_no_matching_version(self, make_sources, root_package, requirement):
        """Unsatisfiable requirements raise NoMatchingVersion."""
        sources, _ = make_sources({"a": {"1.0.0": {}}})

        with pytest.raises(NoMatchingVersion) as exc_info:
            resolve(root_package, [requirement("a", "^3")], sources)

        error = exc_info.value
        assert error.name == "a"
        assert error.available == ["1.0.0"]
        assert [by for by, _ in error.conflicting_requirements] == ["app"]
        assert "failed to select a version for the requirement `a`" in str(error)
        assert "versions available: 1.0.0" in str(error)

    def test_conflicting_requirements_reported(self, make_sources, root_package, requirement):
        """Every requirement on the failing package is listed."""
        sources, _ = make_sources(
            {
                "a": {"1.0.0": {"c": "=1.0.0"}},
                "b": {"1.0.0": {"c": "=2.0.0"}},
                "c": {"1.0.0": {}, "2.0.0": {}},
            }
        )

        with pytest.raises(NoMatchingVersion) as exc_info:
            resolve(root_package, [requirement("a", "1"), requirement("b", "1")], sources)

        error = exc_info.value
        assert error.name == "c"
        assert sorted(by for by, _ in error.conflicting_requirements) == [
            "a v1.0.0",
            "b v1.0.0",
        ]

    def test_unknown_package(self, make_sources, root_package, requirement):
        sources, _ = make_sources({})

        with pytest.raises(NoMatchingVersion, match="no versions available"):
            resolve(root_package, [requirement("ghost", "*")], sources)


class TestPreReleasesAndYanked:
    """Tests for pre-release and yanked version handling."""

    def test_prerelease_not_selected_by_default(self, make_sources, root_package, requirement):
        sources, _ = make_sources({"log": {"0.4.20": {}, "0.5.0-beta.1": {}}})

        graph = resolve(root_package, [requirement("log", ">=0.4")], sources)

        assert versions(graph) == {"log": "0.4.20"}

    def test_prerelease_selected_when_requested(self, make_sources, root_package, requirement):
        sources, _ = make_sources({"log": {"0.4.20": {}, "0.5.0-beta.1": {}}})

        graph = resolve(root_package, [requirement("log", "^0.5.0-beta.1")], sources)

        assert versions(graph) == {"log": "0.5.0-beta.1"}

    def test_yanked_version_skipped(self, make_sources, root_package, requirement):
        sources, _ = make_sources(
            {"rand": {"0.8.0": {}, "0.8.5": {}}}, yanked={("rand", "0.8.5")}
        )

        graph = resolve(root_package, [requirement("rand", "0.8")], sources)

        assert versions(graph) == {"rand": "0.8.0"}
        assert graph.warnings == []

    def test_only_yanked_versions_fail(self, make_sources, root_package, requirement):
        sources, _ = make_sources({"rand": {"0.8.0": {}}}, yanked={("rand", "0.8.0")})

        with pytest.raises(NoMatchingVersion):
            resolve(root_package, [requirement("rand", "0.8")], sources)


class TestLockfilePreference:
    """Tests for previous-lockfile preference."""

    def test_prefers_locked_version(
        self, make_sources, root_package, requirement, registry_source
    ):
        """A still-valid locked version wins over a newer one."""
        sources, _ = make_sources({"serde": {"1.0.0": {}, "1.2.0": {}}})
        previous = locked(("serde", "1.0.0"), source=registry_source)

        graph = resolve(root_package, [requirement("serde", "1")], sources, previous)

        assert versions(graph) == {"serde": "1.0.0"}
        assert graph.warnings == []

    def test_unlock_ignores_locked_version(
        self, make_sources, root_package, requirement, registry_source
    ):
        """Unlocked packages move to the newest version; others stay put."""
        sources, _ = make_sources(
            {"serde": {"1.0.0": {}, "1.2.0": {}}, "log": {"0.4.0": {}, "0.4.20": {}}}
        )
        previous = locked(("serde", "1.0.0"), ("log", "0.4.0"), source=registry_source)

        graph = resolve(
            root_package,
            [requirement("serde", "1"), requirement("log", "0.4")],
            sources,
            previous,
            unlock={"serde"},
        )

        assert versions(graph) == {"log": "0.4.0", "serde": "1.2.0"}

    def test_tightened_requirement_reselects_silently(
        self, make_sources, root_package, requirement, registry_source
    ):
        """A locked version that no longer satisfies is replaced without a warning."""
        sources, _ = make_sources({"serde": {"1.0.0": {}, "1.2.0": {}}})
        previous = locked(("serde", "1.0.0"), source=registry_source)

        graph = resolve(root_package, [requirement("serde", ">=1.1")], sources, previous)

        assert versions(graph) == {"serde": "1.2.0"}
        assert graph.warnings == []

    def test_unavailable_locked_version_warns(
        self, make_sources, root_package, requirement, registry_source
    ):
        """A locked version missing from the index is replaced with a warning."""
        sources, _ = make_sources({"serde": {"1.2.0": {}}})
        previous = locked(("serde", "1.0.0"), source=registry_source)

        graph = resolve(root_package, [requirement("serde", "1")], sources, previous)

        assert versions(graph) == {"serde": "1.2.0"}
        assert len(graph.warnings) == 1
        assert "no longer available" in graph.warnings[0]

    def test_yanked_locked_version_kept_with_warning(
        self, make_sources, root_package, requirement, registry_source
    ):
        """A locked version that was yanked stays selected but is reported."""
        sources, _ = make_sources(
            {"serde": {"1.0.0": {}, "1.2.0": {}}}, yanked={("serde", "1.0.0")}
        )
        previous = locked(("serde", "1.0.0"), source=registry_source)

        graph = resolve(root_package, [requirement("serde", "1")], sources, previous)

        assert versions(graph) == {"serde": "1.0.0"}
        assert graph.warnings == [
            "locked version serde v1.0.0 has been yanked from registry+https://index.test/"
        ]

    def test_lock_for_other_source_is_ignored(
        self, make_sources, root_package, requirement
    ):
        """Locked versions only apply to the same (name, source)."""
        sources, _ = make_sources({"serde": {"1.0.0": {}, "1.2.0": {}}})
        previous = locked(("serde", "1.0.0"), source=SourceId.registry("https://other.test/"))

        graph = resolve(root_package, [requirement("serde", "1")], sources, previous)

        assert versions(graph) == {"serde": "1.2.0"}

    def test_removing_and_re_adding_reproduces_graph(
        self, make_sources, root_package, requirement
    ):
        """Resolution does not depend on hidden state from earlier runs."""
        table = {"a": {"1.0.0": {"b": "1"}}, "b": {"1.0.0": {}, "1.1.0": {}}}
        sources, _ = make_sources(table)
        resolver = DependencyResolver(sources)

        original = resolver.resolve(root_package, [requirement("a", "1")])
        resolver.resolve(root_package, [])
        restored = resolver.resolve(root_package, [requirement("a", "1")])

        assert restored.records == original.records


class TestGraphChecks:
    """Tests for collision and cycle detection on the result."""

    def test_cycle_detected(self, make_sources, root_package, requirement):
        sources, _ = make_sources({"a": {"1.0.0": {"b": "1"}}, "b": {"1.0.0": {"a": "1"}}})

        with pytest.raises(CyclicDependencyError) as exc_info:
            resolve(root_package, [requirement("a", "1")], sources)

        assert exc_info.value.chain == ["a", "b", "a"]
        assert str(exc_info.value) == "cyclic package dependency: a -> b -> a"

    def test_collision_between_sources(self, make_sources, root_package, requirement):
        """The same name and version from two sources cannot both be locked."""
        other_url = "https://other.test/"
        sources, _ = make_sources(
            {"common": {"1.0.0": {}}},
            extra_indexes={other_url: {"common": {"1.0.0": {}}}},
        )
        requirements = [
            requirement("common", "1"),
            DependencyRequirement.create("common", "1", SourceId.registry(other_url)),
        ]

        with pytest.raises(PackageCollision) as exc_info:
            resolve(root_package, requirements, sources)

        assert str(exc_info.value) == (
            "package collision in the lockfile: packages "
            "common 1.0.0 (registry+https://index.test/) and "
            "common 1.0.0 (registry+https://other.test/) are different, "
            "but only one can be written to lockfile unambiguously"
        )

    def test_same_name_different_versions_allowed(
        self, make_sources, root_package, requirement
    ):
        """Two sources may provide the same name at different versions."""
        other_url = "https://other.test/"
        sources, _ = make_sources(
            {"common": {"1.0.0": {}}},
            extra_indexes={other_url: {"common": {"2.0.0": {}}}},
        )
        requirements = [
            requirement("common", "1"),
            DependencyRequirement.create("common", "2", SourceId.registry(other_url)),
        ]

        graph = resolve(root_package, requirements, sources)

        assert sorted(r.version for r in graph if r.name == "common") == ["1.0.0", "2.0.0"]
