"""Configuration file parsing utilities."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from lockstep.config.schemas import MANIFEST_FILENAME, ProjectManifest


class ConfigError(Exception):
    """Error loading or parsing configuration."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed YAML as a dictionary

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"File not found: {path}", path)

    try:
        with open(path, encoding="utf-8") as f:
            result = yaml.safe_load(f)
            if result is None:
                return {}
            if not isinstance(result, dict):
                raise ConfigError(f"YAML file must contain a mapping: {path}", path)
            return result
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", path) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e


def load_manifest(package_root: Path) -> ProjectManifest:
    """Load a package manifest from lockstep.yaml.

    Args:
        package_root: Directory containing lockstep.yaml

    Returns:
        Parsed ProjectManifest

    Raises:
        ConfigError: If the file is missing or invalid
    """
    manifest_path = package_root / MANIFEST_FILENAME
    data = load_yaml(manifest_path)

    try:
        return ProjectManifest.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid manifest {manifest_path}: {e}", manifest_path) from e


def find_project_root(start_path: Path | None = None) -> Path | None:
    """Find the project root by looking for lockstep.yaml.

    Args:
        start_path: Directory to start searching from (defaults to cwd)

    Returns:
        Path to project root, or None if not found
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()
    while current != current.parent:
        if (current / MANIFEST_FILENAME).exists():
            return current
        current = current.parent

    # Check root
    if (current / MANIFEST_FILENAME).exists():
        return current

    return None
