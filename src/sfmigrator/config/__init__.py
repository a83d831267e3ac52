"""
Configuration management: YAML loading, environment resolution and typed settings.
"""

from sfmigrator.config.loader import Config, load_config
from sfmigrator.config.resolver import resolve_config
from sfmigrator.config.settings import MigratorSettings

__all__ = [
    "load_config",
    "Config",
    "resolve_config",
    "MigratorSettings",
]
