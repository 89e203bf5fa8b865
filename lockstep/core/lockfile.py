"""Lockfile model and (de)serialization.

The lockfile is a TOML document::

    # This file is automatically @generated by lockstep.
    # It is not intended for manual editing.
    version = 1

    [[package]]
    name = "bar"
    version = "0.1.0"
    source = "registry+https://index.example.com/"
    dependencies = [
     "baz",
    ]
    checksum = "sha256:..."

    [metadata]
    anything = "kept verbatim"

Serialization is hand-rolled so equal inputs always produce equal bytes. The
``[metadata]`` block is owned by users and other tools: its text is carried
over exactly as it was read.
"""

from __future__ import annotations

import logging
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w

from lockstep.core.package import PackageId, PackageRecord, ResolvedGraph, SourceId
from lockstep.utils.version import SemVer

logger = logging.getLogger(__name__)

HEADER_LINES = (
    "# This file is automatically @generated by lockstep.",
    "# It is not intended for manual editing.",
)
FORMAT_VERSION = 1

LF = "\n"
CRLF = "\r\n"

_TABLE_HEADER = re.compile(r"^\s*\[")
_METADATA_HEADER = re.compile(r"^\s*\[\s*metadata\s*\]\s*(#.*)?$")
_METADATA_SUBTABLE = re.compile(r"^\s*\[\[?\s*metadata\s*\.")


class LockfileParseError(Exception):
    """The lockfile on disk is corrupt or not understood."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        location = f" in {path}" if path else ""
        super().__init__(f"failed to parse lockfile{location}: {message}")


@dataclass(frozen=True)
class LockedPackage:
    """A package entry as written in the lockfile."""

    name: str
    version: str
    source: SourceId
    dependencies: tuple[str, ...] = ()
    checksum: str | None = None

    @property
    def package_id(self) -> PackageId:
        return PackageId(self.name, self.version, self.source)


@dataclass
class Lockfile:
    """In-memory lockfile.

    ``metadata`` is the parsed view of the ``[metadata]`` block; when the block
    came from disk, ``raw_metadata`` holds its exact text (with LF line endings)
    and is what gets written back.
    """

    packages: list[LockedPackage] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    format_version: int = FORMAT_VERSION
    line_ending: str = LF
    raw_metadata: str | None = None

    @classmethod
    def from_graph(
        cls,
        graph: ResolvedGraph,
        metadata: dict[str, Any] | None = None,
        line_ending: str = LF,
        raw_metadata: str | None = None,
    ) -> Lockfile:
        """Build a lockfile from a resolved graph.

        Args:
            graph: Resolution result
            metadata: Metadata entries to carry
            line_ending: Line ending to write with
            raw_metadata: Verbatim metadata block text, if read from disk

        Returns:
            Lockfile with packages sorted by name and version
        """
        name_counts: dict[str, int] = {}
        for record in graph:
            name_counts[record.name] = name_counts.get(record.name, 0) + 1

        def dependency_label(dep: PackageId) -> str:
            if name_counts.get(dep.name, 0) > 1:
                return f"{dep.name} {dep.version}"
            return dep.name

        packages = [
            LockedPackage(
                name=record.name,
                version=record.version,
                source=record.source,
                dependencies=tuple(dependency_label(dep) for dep in record.dependencies),
                checksum=record.checksum,
            )
            for record in graph
        ]
        return cls(
            packages=packages,
            metadata=dict(metadata or {}),
            line_ending=line_ending,
            raw_metadata=raw_metadata,
        )

    def with_packages(self, graph: ResolvedGraph) -> Lockfile:
        """Replace the packages section, keeping metadata and formatting."""
        return Lockfile.from_graph(
            graph,
            metadata=self.metadata,
            line_ending=self.line_ending,
            raw_metadata=self.raw_metadata,
        )

    def locked_versions(self) -> dict[tuple[str, SourceId], str]:
        """Map each (name, source) to its locked version."""
        return {(package.name, package.source): package.version for package in self.packages}

    def find(self, name: str, version: str | None = None) -> LockedPackage | None:
        """Find a locked package by name and optionally version."""
        for package in self.packages:
            if package.name == name and (version is None or package.version == version):
                return package
        return None

    def to_records(self) -> list[PackageRecord]:
        """Rebuild resolved records, resolving dependency labels to packages.

        Raises:
            LockfileParseError: If a dependency label matches no single package
        """
        records = []
        for package in self.packages:
            dependencies = tuple(
                self._resolve_label(label, package).package_id for label in package.dependencies
            )
            records.append(
                PackageRecord(
                    package_id=package.package_id,
                    dependencies=dependencies,
                    checksum=package.checksum,
                )
            )
        return records

    def _resolve_label(self, label: str, owner: LockedPackage) -> LockedPackage:
        name, _, version = label.partition(" ")
        matches = [
            package
            for package in self.packages
            if package.name == name and (not version or package.version == version)
        ]
        if len(matches) != 1:
            problem = "unknown" if not matches else "ambiguous"
            raise LockfileParseError(
                f"{problem} dependency `{label}` of package `{owner.name} {owner.version}`"
            )
        return matches[0]

    def to_text(self) -> str:
        """Serialize with LF line endings."""
        return serialize_lockfile(self)

    def to_bytes(self) -> bytes:
        """Serialize with the lockfile's own line ending style."""
        text = self.to_text()
        if self.line_ending != LF:
            text = text.replace(LF, self.line_ending)
        return text.encode("utf-8")


def _toml_string(value: str) -> str:
    """Render a TOML basic string."""
    return tomli_w.dumps({"v": value})[len("v = ") :].rstrip("\n")


def _toml_pair(key: str, value: Any) -> str:
    """Render a single ``key = value`` line."""
    return tomli_w.dumps({key: value}).rstrip("\n")


def serialize_lockfile(lockfile: Lockfile) -> str:
    """Serialize a lockfile to text with LF line endings.

    Args:
        lockfile: Lockfile to serialize

    Returns:
        Lockfile text, ending with a single newline
    """
    blocks: list[list[str]] = [[*HEADER_LINES, f"version = {lockfile.format_version}"]]

    for package in lockfile.packages:
        lines = [
            "[[package]]",
            f"name = {_toml_string(package.name)}",
            f"version = {_toml_string(package.version)}",
            f"source = {_toml_string(str(package.source))}",
        ]
        if package.dependencies:
            lines.append("dependencies = [")
            lines.extend(f" {_toml_string(dep)}," for dep in package.dependencies)
            lines.append("]")
        if package.checksum:
            lines.append(f"checksum = {_toml_string(package.checksum)}")
        blocks.append(lines)

    if lockfile.raw_metadata is not None:
        blocks.append(lockfile.raw_metadata.rstrip(LF).split(LF))
    elif lockfile.metadata:
        lines = ["[metadata]"]
        lines.extend(_toml_pair(key, value) for key, value in lockfile.metadata.items())
        blocks.append(lines)

    return "\n\n".join("\n".join(lines) for lines in blocks) + LF


def detect_line_ending(text: str) -> str:
    """CRLF if the text contains any CRLF sequence, LF otherwise."""
    return CRLF if CRLF in text else LF


def extract_metadata_block(text: str) -> str | None:
    """Return the verbatim text of the ``[metadata]`` block, if any.

    The block runs from its header up to the next table that is not a
    ``metadata.*`` subtable. Trailing blank lines are dropped.

    Args:
        text: Lockfile text with LF line endings
    """
    lines = text.split(LF)
    start = next((i for i, line in enumerate(lines) if _METADATA_HEADER.match(line)), None)
    if start is None:
        return None

    end = len(lines)
    for i in range(start + 1, len(lines)):
        if _TABLE_HEADER.match(lines[i]) and not _METADATA_SUBTABLE.match(lines[i]):
            end = i
            break

    block = lines[start:end]
    while block and not block[-1].strip():
        block.pop()
    return LF.join(block)


def parse_lockfile(data: bytes, path: Path | None = None) -> Lockfile:
    """Parse lockfile bytes.

    Args:
        data: Raw file content
        path: File path, for error messages

    Returns:
        Parsed Lockfile, remembering line ending style and metadata text

    Raises:
        LockfileParseError: If the content is not a valid lockfile
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise LockfileParseError(f"not valid UTF-8: {e}", path) from e

    line_ending = detect_line_ending(text)
    text = text.replace(CRLF, LF)

    try:
        document = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise LockfileParseError(str(e), path) from e

    format_version = document.get("version", FORMAT_VERSION)
    if not isinstance(format_version, int) or isinstance(format_version, bool):
        raise LockfileParseError(f"invalid format version {format_version!r}", path)
    if format_version > FORMAT_VERSION:
        raise LockfileParseError(
            f"lockfile format version {format_version} is newer than supported "
            f"version {FORMAT_VERSION}",
            path,
        )

    raw_packages = document.get("package", [])
    if not isinstance(raw_packages, list):
        raise LockfileParseError("`package` must be an array of tables", path)
    packages = [_parse_package(raw, path) for raw in raw_packages]

    metadata = document.get("metadata", {})
    if not isinstance(metadata, dict):
        raise LockfileParseError("`metadata` must be a table", path)

    lockfile = Lockfile(
        packages=packages,
        metadata=metadata,
        format_version=format_version,
        line_ending=line_ending,
        raw_metadata=extract_metadata_block(text) if "metadata" in document else None,
    )
    # Dependency labels must point at packages in the file
    lockfile.to_records()

    logger.debug("Parsed lockfile with %d package(s)", len(packages))
    return lockfile


def _parse_package(raw: Any, path: Path | None) -> LockedPackage:
    """Validate and convert one ``[[package]]`` table."""
    if not isinstance(raw, dict):
        raise LockfileParseError("`package` entries must be tables", path)

    try:
        name = raw["name"]
        version = raw["version"]
        source_text = raw["source"]
    except KeyError as e:
        raise LockfileParseError(f"package entry missing field {e.args[0]!r}", path) from e

    dependencies = raw.get("dependencies", [])
    checksum = raw.get("checksum")
    if not all(isinstance(value, str) for value in (name, version, source_text)):
        raise LockfileParseError(f"package `{name}` has non-string fields", path)
    if not isinstance(dependencies, list) or not all(isinstance(d, str) for d in dependencies):
        raise LockfileParseError(f"package `{name}` has invalid dependencies", path)
    if checksum is not None and not isinstance(checksum, str):
        raise LockfileParseError(f"package `{name}` has an invalid checksum", path)

    try:
        SemVer.parse(version)
        source = SourceId.parse(source_text)
    except ValueError as e:
        raise LockfileParseError(f"package `{name}`: {e}", path) from e

    return LockedPackage(
        name=name,
        version=version,
        source=source,
        dependencies=tuple(dependencies),
        checksum=checksum,
    )
