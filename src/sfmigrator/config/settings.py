"""
Typed settings built from the loaded configuration.

Example ``migrator.yaml``::

    orgs:
      source: dev-sandbox
      target: ${TARGET_ORG}
    cli:
      executable: sf
    api:
      request_timeout: 60
      max_result_pages: 100
    polling:
      interval: 1.0
      max_attempts: 600
    export:
      directory: exports/{env}
    logging:
      level: INFO
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sfmigrator.commands.runner import DEFAULT_BENIGN_STDERR_PATTERNS, DEFAULT_MAX_OUTPUT_BYTES
from sfmigrator.config.loader import Config
from sfmigrator.core.poller import PollPolicy
from sfmigrator.exceptions import ConfigurationError


@dataclass
class MigratorSettings:
    """Runtime settings; passed explicitly into the components that need them."""

    source_org: str | None = None
    target_org: str | None = None
    cli_executable: str = "sf"
    benign_stderr_patterns: tuple[str, ...] = DEFAULT_BENIGN_STDERR_PATTERNS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    request_timeout: float = 60.0
    max_result_pages: int = 100
    poll_interval: float = 1.0
    poll_max_attempts: int | None = None
    workspace_root: Path = field(default_factory=Path.cwd)
    exports_dir: str = "exports"
    logging: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.request_timeout <= 0:
            raise ConfigurationError("api.request_timeout must be > 0")
        if self.max_result_pages < 1:
            raise ConfigurationError("api.max_result_pages must be >= 1")
        if self.max_output_bytes < 1:
            raise ConfigurationError("cli.max_output_bytes must be >= 1")

    @property
    def poll_policy(self) -> PollPolicy:
        try:
            return PollPolicy(interval=self.poll_interval, max_attempts=self.poll_max_attempts)
        except ValueError as e:
            raise ConfigurationError(f"Invalid polling configuration: {e}") from e

    @property
    def exports_path(self) -> Path:
        return self.workspace_root / self.exports_dir

    @classmethod
    def from_config(cls, config: Config, project_dir: Path | None = None) -> MigratorSettings:
        """Build settings from a Config; relative workspace roots resolve against ``project_dir``."""
        project_dir = project_dir or Path.cwd()
        workspace_root = Path(config.get("workspace_root", "."))
        if not workspace_root.is_absolute():
            workspace_root = project_dir / workspace_root

        max_attempts = config.get("polling.max_attempts")
        patterns = config.get("cli.benign_stderr_patterns")
        try:
            return cls(
                source_org=config.get("orgs.source"),
                target_org=config.get("orgs.target"),
                cli_executable=str(config.get("cli.executable", "sf")),
                benign_stderr_patterns=tuple(patterns) if patterns else DEFAULT_BENIGN_STDERR_PATTERNS,
                max_output_bytes=int(config.get("cli.max_output_bytes", DEFAULT_MAX_OUTPUT_BYTES)),
                request_timeout=float(config.get("api.request_timeout", 60.0)),
                max_result_pages=int(config.get("api.max_result_pages", 100)),
                poll_interval=float(config.get("polling.interval", 1.0)),
                poll_max_attempts=int(max_attempts) if max_attempts is not None else None,
                workspace_root=workspace_root.resolve(),
                exports_dir=str(config.get("export.directory", "exports")),
                logging=dict(config.get("logging", {})),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}") from e
