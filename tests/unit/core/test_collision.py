"""Tests for lockstep.core.collision module."""

import pytest

from lockstep.core.collision import detect_collisions
from lockstep.core.errors import PackageCollision
from lockstep.core.package import PackageId, SourceId

REGISTRY = SourceId.registry("https://index.test/")


class TestDetectCollisions:
    """Tests for detect_collisions()."""

    def test_distinct_packages_pass(self):
        detect_collisions(
            [
                PackageId("a", "1.0.0", REGISTRY),
                PackageId("a", "2.0.0", SourceId.path("vendor/a")),
                PackageId("b", "1.0.0", REGISTRY),
            ]
        )

    def test_duplicate_identical_ids_pass(self):
        """The same package reported twice is not a collision."""
        package = PackageId("a", "1.0.0", REGISTRY)
        detect_collisions([package, package])

    def test_registry_and_path_collide(self):
        with pytest.raises(PackageCollision) as exc_info:
            detect_collisions(
                [
                    PackageId("common", "0.1.0", SourceId.path("common")),
                    PackageId("common", "0.1.0", REGISTRY),
                ]
            )

        error = exc_info.value
        assert error.name == "common"
        assert error.version == "0.1.0"
        assert error.sources == [SourceId.path("common"), REGISTRY]
        assert "common 0.1.0 (path+common) and common 0.1.0 (registry+https://index.test/)" in (
            str(error)
        )

    def test_reports_first_collision_in_sorted_order(self):
        """With several collisions, the alphabetically first is reported."""
        other = SourceId.registry("https://other.test/")
        with pytest.raises(PackageCollision) as exc_info:
            detect_collisions(
                [
                    PackageId("zeta", "1.0.0", REGISTRY),
                    PackageId("zeta", "1.0.0", other),
                    PackageId("alpha", "1.0.0", other),
                    PackageId("alpha", "1.0.0", REGISTRY),
                ]
            )

        assert exc_info.value.name == "alpha"
