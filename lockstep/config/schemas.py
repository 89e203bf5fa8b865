"""Pydantic schemas for Lockstep configuration files.

This module defines the data models for:
- lockstep.yaml (project manifest, also used by path dependencies)
- the manifest's settings block
"""

import re

from pydantic import BaseModel, Field, field_validator, model_validator

from lockstep.utils.version import SemVer, VersionRange

MANIFEST_FILENAME = "lockstep.yaml"
LOCKFILE_FILENAME = "lockstep.lock"

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


# =============================================================================
# Settings
# =============================================================================


class Settings(BaseModel):
    """Project-level settings for index access."""

    offline: bool = False
    no_refresh: bool = False
    cache_dir: str | None = None
    cache_ttl: int = Field(default=86400, ge=0)


# =============================================================================
# Dependency Spec (within lockstep.yaml)
# =============================================================================


class DependencySpec(BaseModel):
    """Dependency specification in a manifest.

    Either a registry dependency (optional ``registry`` name, optional
    ``version`` range) or a path dependency (``path`` plus optional
    ``version`` the path package must satisfy).
    """

    version: str | None = None
    registry: str | None = None
    path: str | None = None

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str | None) -> str | None:
        """Validate the version range syntax."""
        if v is not None:
            VersionRange(v)
        return v

    @model_validator(mode="after")
    def validate_spec(self) -> "DependencySpec":
        """Validate that registry and path are not combined."""
        if self.path is not None and self.registry is not None:
            raise ValueError("Dependency spec cannot have both 'path' and 'registry'")
        return self

    @property
    def version_spec(self) -> str:
        return self.version or "*"


# =============================================================================
# Project Manifest (lockstep.yaml)
# =============================================================================


class ProjectManifest(BaseModel):
    """Project manifest (lockstep.yaml) schema."""

    name: str
    version: str = "0.0.0"
    registries: dict[str, str] = Field(default_factory=dict)
    default_registry: str | None = None
    dependencies: dict[str, str | DependencySpec] = Field(default_factory=dict)
    settings: Settings = Field(default_factory=Settings)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate package name format."""
        if not _NAME_PATTERN.match(v):
            raise ValueError(
                f"Invalid package name {v!r}: must start with an alphanumeric character "
                "and contain only letters, numbers, hyphens, and underscores"
            )
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate semver format."""
        SemVer.parse(v)
        return v

    @field_validator("dependencies")
    @classmethod
    def validate_dependencies(
        cls, v: dict[str, str | DependencySpec]
    ) -> dict[str, str | DependencySpec]:
        """Validate dependency names and short-form version ranges."""
        for name, spec in v.items():
            if not _NAME_PATTERN.match(name):
                raise ValueError(f"Invalid dependency name {name!r}")
            if isinstance(spec, str):
                VersionRange(spec)
        return v

    @model_validator(mode="after")
    def validate_registries(self) -> "ProjectManifest":
        """Validate that referenced registries exist."""
        if self.default_registry and self.default_registry not in self.registries:
            raise ValueError(f"default_registry '{self.default_registry}' not found in registries")
        for name, spec in self.dependencies.items():
            if isinstance(spec, DependencySpec) and spec.registry:
                if spec.registry not in self.registries:
                    raise ValueError(
                        f"Dependency '{name}' uses unknown registry '{spec.registry}'"
                    )
        return self

    def dependency_spec(self, name: str) -> DependencySpec | None:
        """Get the normalized specification for a dependency."""
        spec = self.dependencies.get(name)
        if spec is None:
            return None
        if isinstance(spec, str):
            return DependencySpec(version=spec)
        return spec

    def registry_url(self, name: str | None = None) -> str | None:
        """Get a registry URL by name, or the default registry's URL."""
        if name is None:
            name = self.default_registry
            if name is None and len(self.registries) == 1:
                name = next(iter(self.registries))
        if name is None:
            return None
        return self.registries.get(name)
