"""
Configuration file loading.

Reads ``migrator.yaml`` from the project directory, overlays
``migrator.{env}.yaml`` when an environment is given, then resolves
environment variables. The file is optional: without it every setting
takes its default.
"""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from sfmigrator.config.resolver import resolve_config
from sfmigrator.exceptions import ConfigurationError
from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.config")

CONFIG_FILENAME = "migrator.yaml"


class Config:
    """Configuration container with dict-like and dot-notation access."""

    def __init__(self, data: dict[str, Any], path: Path | None = None):
        self.data = data
        self.path = path

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation, e.g. ``config.get("logging.level")``."""
        value: Any = self.data
        for k in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default
        return value

    def __getitem__(self, key: str) -> Any:
        if "." in key:
            return self.get(key)
        if key in self.data:
            value = self.data[key]
            if isinstance(value, dict):
                return Config(value)
            return value
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        value: Any = self.data
        for k in key.split("."):
            if not isinstance(value, dict) or k not in value:
                return False
            value = value[k]
        return True

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def validate(self) -> None:
        """Validate the structure of known sections."""
        errors = []
        for section in ("orgs", "cli", "api", "polling", "export", "logging"):
            value = self.data.get(section)
            if value is not None and not isinstance(value, dict):
                errors.append(f"Configuration '{section}' must be a mapping, got {type(value).__name__}")
        if errors:
            raise ConfigurationError("\n".join(errors))


def load_config(project_path: Path | None = None, env: str | None = None) -> Config:
    """
    Load the project configuration.

    Args:
        project_path: Project root (default: current directory)
        env: Environment name; selects the ``migrator.{env}.yaml`` overlay

    Returns:
        Config instance (empty when no configuration file exists)

    Raises:
        ConfigurationError: unreadable file, invalid YAML or a non-mapping document
    """
    if project_path is None:
        project_path = Path.cwd()

    base_path = project_path / CONFIG_FILENAME
    config_data: dict[str, Any] = {}
    if base_path.exists():
        config_data = _read_yaml(base_path)
    else:
        logger.debug(f"No {CONFIG_FILENAME} in {project_path}, using defaults")

    if env:
        env_path = project_path / f"migrator.{env}.yaml"
        if env_path.exists():
            _merge_dict(config_data, _read_yaml(env_path))

    config = Config(resolve_config(config_data, env or "dev"), path=base_path if base_path.exists() else None)
    config.validate()
    return config


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigurationError(f"Configuration path is not a file: {path}")
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        if mark is not None:
            raise ConfigurationError(
                f"Error parsing {path.name} at line {mark.line + 1}, column {mark.column + 1}:\n"
                f"  {e}\n"
                f"  Suggestion: Check YAML syntax, ensure proper indentation and quotes",
                details={"file": str(path)},
            ) from e
        raise ConfigurationError(f"Error parsing {path.name}: {e}", details={"file": str(path)}) from e
    except PermissionError as e:
        raise ConfigurationError(
            f"Permission denied reading {path}\n  Suggestion: Check file permissions", details={"file": str(path)}
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{path.name} must contain a mapping, got {type(data).__name__}", details={"file": str(path)}
        )
    return data


def _merge_dict(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value
