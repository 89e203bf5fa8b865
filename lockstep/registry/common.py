"""Centralized utilities for index accessors.

This module provides shared functionality used across index accessors:
- Index document parsing into IndexEntry records
"""

from __future__ import annotations

import logging
from typing import Any

from lockstep.core.package import DependencyRequirement, SourceId
from lockstep.registry.base import IndexEntry, IndexFetchError, sort_entries
from lockstep.utils.version import SemVer

logger = logging.getLogger(__name__)


def extract_entries_from_package_data(
    package_data: dict[str, Any],
    name: str,
    source: SourceId,
    url: str | None = None,
) -> list[IndexEntry]:
    """Convert one package's index document into entries.

    The document has the form::

        {"versions": [
            {"version": "1.0.0",
             "dependencies": {"dep": "^1.0", "other": {"version": "2", "registry": "https://..."}},
             "checksum": "sha256:...",
             "yanked": false}
        ]}

    Args:
        package_data: Parsed per-package document
        name: Package name the document describes
        source: Source of the index the document came from
        url: Location of the document, for error messages

    Returns:
        Entries in ascending version order

    Raises:
        IndexFetchError: If the document is malformed
    """
    versions = package_data.get("versions", [])
    if not isinstance(versions, list):
        raise IndexFetchError(f"Malformed index data for `{name}`: 'versions' is not a list", url)

    entries: list[IndexEntry] = []
    for version_data in versions:
        try:
            version = str(version_data["version"])
            SemVer.parse(version)
            requirements = tuple(
                _parse_requirement(dep_name, dep_spec, source)
                for dep_name, dep_spec in sorted(version_data.get("dependencies", {}).items())
            )
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise IndexFetchError(f"Malformed index data for `{name}`: {e}", url) from e

        entries.append(
            IndexEntry(
                name=name,
                version=version,
                source=source,
                requirements=requirements,
                checksum=version_data.get("checksum"),
                yanked=bool(version_data.get("yanked", False)),
            )
        )

    logger.debug("Parsed %d version(s) of '%s' from %s", len(entries), name, source)
    return sort_entries(entries)


def _parse_requirement(name: str, spec: Any, default_source: SourceId) -> DependencyRequirement:
    """Parse one dependency declaration from an index document."""
    if isinstance(spec, str):
        return DependencyRequirement.create(name, spec, default_source)

    version = spec.get("version", "*")
    registry = spec.get("registry")
    source = SourceId.registry(registry) if registry else default_source
    return DependencyRequirement.create(name, version, source)
