"""
sfmigrator - Migrate metadata and records between Salesforce orgs.

Bulk query/ingest jobs are driven to completion by a cancellable poller;
metadata moves through folder-aware retrieve/deploy plans executed with the
platform CLI.
"""

__version__ = "0.1.0"

from sfmigrator.api import RemoteApiClient
from sfmigrator.commands import CommandRunner, SubprocessCommandRunner
from sfmigrator.config import Config, MigratorSettings, load_config
from sfmigrator.controller import MigrationController
from sfmigrator.core import (
    CancellationToken,
    JobPoller,
    OperationOutcome,
    OrgContext,
    PollPolicy,
    RemoteJob,
)

# Exceptions
from sfmigrator.exceptions import (
    CancelledError,
    CommandError,
    ConfigurationError,
    DeploymentStepError,
    JobTerminalFailure,
    MigratorError,
    NetworkError,
    PartialDeploymentFailure,
    PollTimeoutError,
    QueryRejectedError,
    ValidationError,
)
from sfmigrator.pipelines import (
    DeploymentPipeline,
    DmlPipeline,
    ExportPipeline,
    SelectionKey,
    build_plan,
)
from sfmigrator.services import MetadataService, OrgService

# Logging utilities
from sfmigrator.utils.logging import get_logger, setup_logging, setup_logging_from_config

__all__ = [
    "__version__",
    # Core
    "CancellationToken",
    "JobPoller",
    "PollPolicy",
    "OrgContext",
    "RemoteJob",
    "OperationOutcome",
    # Collaborators
    "RemoteApiClient",
    "CommandRunner",
    "SubprocessCommandRunner",
    "OrgService",
    "MetadataService",
    # Pipelines
    "DeploymentPipeline",
    "DmlPipeline",
    "ExportPipeline",
    "SelectionKey",
    "build_plan",
    "MigrationController",
    # Configuration
    "Config",
    "MigratorSettings",
    "load_config",
    # Exceptions
    "MigratorError",
    "ConfigurationError",
    "ValidationError",
    "NetworkError",
    "QueryRejectedError",
    "CommandError",
    "JobTerminalFailure",
    "PollTimeoutError",
    "CancelledError",
    "PartialDeploymentFailure",
    "DeploymentStepError",
    # Logging
    "get_logger",
    "setup_logging",
    "setup_logging_from_config",
]
