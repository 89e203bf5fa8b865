"""Semantic versioning utilities."""

import re
from dataclasses import dataclass
from functools import total_ordering


@total_ordering
@dataclass
class SemVer:
    """Semantic version representation."""

    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    build: str | None = None

    _SEMVER_PATTERN = re.compile(
        r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
        r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
        r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
        r"(?:\+(?P<build>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
    )

    @classmethod
    def parse(cls, version_str: str) -> "SemVer":
        """Parse a semver string.

        Args:
            version_str: Version string (e.g., "1.2.3", "2.0.0-beta.1+build.123")

        Returns:
            SemVer instance

        Raises:
            ValueError: If the string is not valid semver
        """
        match = cls._SEMVER_PATTERN.match(version_str.strip())
        if not match:
            raise ValueError(f"Invalid semver: {version_str}")

        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch")),
            prerelease=match.group("prerelease"),
            build=match.group("build"),
        )

    @property
    def release(self) -> tuple[int, int, int]:
        """The numeric (major, minor, patch) triple."""
        return (self.major, self.minor, self.patch)

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            version += f"-{self.prerelease}"
        if self.build:
            version += f"+{self.build}"
        return version

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.release == other.release and self.prerelease == other.prerelease

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented

        if self.release != other.release:
            return self.release < other.release

        # Prerelease versions have lower precedence
        if self.prerelease and not other.prerelease:
            return True
        if not self.prerelease and other.prerelease:
            return False
        if self.prerelease and other.prerelease:
            return self._compare_prerelease(self.prerelease, other.prerelease) < 0

        return False

    @staticmethod
    def _compare_prerelease(a: str, b: str) -> int:
        """Compare two prerelease strings."""
        parts_a = a.split(".")
        parts_b = b.split(".")

        for pa, pb in zip(parts_a, parts_b, strict=False):
            a_numeric, b_numeric = pa.isdigit(), pb.isdigit()
            if a_numeric and b_numeric:
                if int(pa) != int(pb):
                    return int(pa) - int(pb)
            elif a_numeric != b_numeric:
                # Numeric identifiers sort before alphanumeric ones
                return -1 if a_numeric else 1
            elif pa != pb:
                return -1 if pa < pb else 1

        # Longer prerelease has higher precedence
        return len(parts_a) - len(parts_b)

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.prerelease))


# A single comparator: optional operator followed by a possibly partial version
_COMPARATOR_PATTERN = re.compile(
    r"^(?P<op>\^|~|>=|<=|>|<|=)?\s*"
    r"(?P<major>\d+|[xX*])(?:\.(?P<minor>\d+|[xX*]))?(?:\.(?P<patch>\d+|[xX*]))?"
    r"(?:-(?P<prerelease>[0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)

_WILDCARDS = ("x", "X", "*")


class VersionRange:
    """A version range specification.

    Ranges follow the caret-by-default convention: a bare ``1.2`` means
    ``^1.2``. Several comparators may be joined with commas, in which case a
    version must satisfy all of them.
    """

    def __init__(self, spec: str):
        """Initialize a version range.

        Args:
            spec: Version specifier (e.g., "^1.2.3", "~2.0", ">=1.0, <2.0", "1.*")

        Raises:
            ValueError: If the specifier cannot be parsed
        """
        self.spec = spec
        self._constraints = self._parse_spec(spec)

    def _parse_spec(self, spec: str) -> list[tuple[str, SemVer]]:
        """Parse a version specifier into constraints."""
        spec = spec.strip()

        if spec in ("", "*", "latest"):
            return []

        constraints: list[tuple[str, SemVer]] = []
        for part in spec.split(","):
            part = part.strip()
            if not part:
                raise ValueError(f"Empty comparator in version range: {spec!r}")
            constraints.extend(self._parse_comparator(part))
        return constraints

    @staticmethod
    def _parse_comparator(text: str) -> list[tuple[str, SemVer]]:
        """Expand one comparator into primitive (op, version) constraints."""
        match = _COMPARATOR_PATTERN.match(text)
        if not match:
            raise ValueError(f"Invalid version range: {text!r}")

        op = match.group("op") or "^"
        fields = [match.group("major"), match.group("minor"), match.group("patch")]
        prerelease = match.group("prerelease")

        # Precision is the number of fields given before the first wildcard
        precision = 0
        for value in fields:
            if value is None or value in _WILDCARDS:
                break
            precision += 1

        if precision == 0:
            if op in ("^", "~", "=", ">="):
                return []
            raise ValueError(f"Invalid version range: {text!r}")
        if precision < 3 and fields[precision] in _WILDCARDS:
            # 1.* and 1.2.x behave like the tilde range of the given prefix
            op = "~" if op in ("^", "=") else op

        major = int(fields[0])
        minor = int(fields[1]) if precision > 1 else 0
        patch = int(fields[2]) if precision > 2 else 0
        base = SemVer(major, minor, patch, prerelease if precision == 3 else None)

        if op == "=":
            if precision == 3:
                return [("=", base)]
            return [(">=", base), ("<", _bump(base, precision))]

        if op == "^":
            if major > 0 or precision == 1:
                upper = SemVer(major + 1, 0, 0)
            elif minor > 0 or precision == 2:
                upper = SemVer(0, minor + 1, 0)
            else:
                upper = SemVer(0, 0, patch + 1)
            return [(">=", base), ("<", upper)]

        if op == "~":
            upper = SemVer(major + 1, 0, 0) if precision == 1 else SemVer(major, minor + 1, 0)
            return [(">=", base), ("<", upper)]

        if op == ">" and precision < 3:
            return [(">=", _bump(base, precision))]
        if op == "<=" and precision < 3:
            return [("<", _bump(base, precision))]

        return [(op, base)]

    @property
    def allows_prerelease(self) -> bool:
        """Whether the range explicitly names a pre-release version."""
        return any(constraint.prerelease for _, constraint in self._constraints)

    def matches(self, version: SemVer | str, include_prerelease: bool = False) -> bool:
        """Check if a version matches this range.

        Pre-release versions only match when a comparator in the range names a
        pre-release of the same major.minor.patch, unless ``include_prerelease``
        lifts that restriction.

        Args:
            version: Version to check
            include_prerelease: Compare pre-releases by precedence alone

        Returns:
            True if the version satisfies the range
        """
        if isinstance(version, str):
            version = SemVer.parse(version)

        if (
            version.prerelease
            and not include_prerelease
            and not any(
                constraint.prerelease and constraint.release == version.release
                for _, constraint in self._constraints
            )
        ):
            return False

        for op, constraint in self._constraints:
            if op == ">=" and version < constraint:
                return False
            if op == "<=" and version > constraint:
                return False
            if op == ">" and version <= constraint:
                return False
            if op == "<" and version >= constraint:
                return False
            if op == "=" and version != constraint:
                return False

        return True

    def __str__(self) -> str:
        return self.spec

    def __repr__(self) -> str:
        return f"VersionRange({self.spec!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionRange):
            return NotImplemented
        return self.spec.strip() == other.spec.strip()

    def __hash__(self) -> int:
        return hash(self.spec.strip())


def _bump(version: SemVer, precision: int) -> SemVer:
    """Smallest version above every version sharing the first ``precision`` fields."""
    if precision == 1:
        return SemVer(version.major + 1, 0, 0)
    if precision == 2:
        return SemVer(version.major, version.minor + 1, 0)
    return SemVer(version.major, version.minor, version.patch + 1)
