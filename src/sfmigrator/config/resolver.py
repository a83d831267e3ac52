"""
Environment variable and placeholder substitution for configuration values.

``${VAR}`` takes the value of an environment variable, ``${VAR:-fallback}``
falls back when it is unset or empty, and ``{env}`` is the environment name
(e.g. ``exports/{env}``). An unset variable without a fallback is kept
verbatim so the org alias check fails with a readable value.
"""

import os
import re
from typing import Any

from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.config")

_ENV_VAR = re.compile(r"\$\{(?P<name>[A-Za-z_]\w*)(?::-(?P<fallback>[^}]*))?\}")


def resolve_config(config_data: dict[str, Any], env: str = "dev") -> dict[str, Any]:
    """Substitute variables and placeholders throughout ``config_data``; non-strings pass through."""
    return _resolve_value(config_data, env)


def _resolve_value(value: Any, env: str) -> Any:
    if isinstance(value, dict):
        return {key: _resolve_value(item, env) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve_value(item, env) for item in value]
    if isinstance(value, str):
        return _ENV_VAR.sub(_substitute, value).replace("{env}", env)
    return value


def _substitute(match: re.Match[str]) -> str:
    name, fallback = match.group("name"), match.group("fallback")
    value = os.environ.get(name)
    if value:
        return value
    if fallback is not None:
        return fallback
    logger.warning(f"Environment variable {name} is not set; leaving ${{{name}}} in the configuration")
    return match.group(0)
