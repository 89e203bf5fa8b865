"""Lockfile identity collision detection."""

import logging
from collections.abc import Iterable

from lockstep.core.errors import PackageCollision
from lockstep.core.package import PackageId, SourceId

logger = logging.getLogger(__name__)


def detect_collisions(package_ids: Iterable[PackageId]) -> None:
    """Reject package sets that cannot be written to a lockfile unambiguously.

    The lockfile identifies packages by (name, version), so two packages with
    the same name and version but different sources cannot both be recorded.

    Args:
        package_ids: Every package chosen by a resolution

    Raises:
        PackageCollision: For the first colliding (name, version) in sorted order
    """
    groups: dict[tuple[str, str], set[SourceId]] = {}
    for package_id in package_ids:
        groups.setdefault((package_id.name, package_id.version), set()).add(package_id.source)

    for (name, version), sources in sorted(groups.items()):
        if len(sources) > 1:
            logger.debug("Collision on %s %s between %d sources", name, version, len(sources))
            raise PackageCollision(name, version, sorted(sources))
