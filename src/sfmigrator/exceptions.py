"""
sfmigrator exception hierarchy.

All domain-specific exceptions inherit from MigratorError, so callers can catch
any migrator failure with a single base class while still handling the
individual outcomes (validation, network, job failure, cancellation) separately.

Hierarchy::

    MigratorError
    ├── ConfigurationError        - config loading, parsing, validation
    ├── ValidationError           - rejected at the boundary, before any remote call
    │   └── QueryRejectedError    - query job creation refused by the remote (also a NetworkError)
    ├── NetworkError              - transport failure or non-2xx response
    ├── CommandError              - external CLI command failed
    ├── JobTerminalFailure        - bulk job reached Failed/Aborted
    ├── PollTimeoutError          - polling attempt bound exceeded
    ├── CancelledError            - user-initiated cancellation (not a failure)
    ├── PartialDeploymentFailure  - deploy succeeded but some components were rejected
    └── DeploymentStepError       - a deployment step failed; remaining steps skipped
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sfmigrator.pipelines.deployment import ComponentProblem, DeploymentStep


class MigratorError(Exception):
    """Base exception for all sfmigrator errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(MigratorError):
    """Raised when configuration loading, parsing, or validation fails."""


# --- Validation --------------------------------------------------------------


class ValidationError(MigratorError):
    """Raised when input is rejected before any remote call is made.

    Covers disallowed query targets, missing file paths or field selections,
    malformed identifiers and destinations outside the workspace root.
    """


# --- Network -----------------------------------------------------------------


class NetworkError(MigratorError):
    """Raised on transport failures and non-2xx HTTP responses.

    ``status`` is the HTTP status code, or None when no response was received.
    """

    def __init__(self, message: str, *, status: int | None = None, details: dict | None = None) -> None:
        super().__init__(message, details={"status": status, **(details or {})})
        self.status = status


class QueryRejectedError(NetworkError, ValidationError):
    """Raised when the remote system refuses to create a query job (bad SOQL, unknown field)."""


# --- External command --------------------------------------------------------


class CommandError(MigratorError):
    """Raised when an external CLI command fails or produces unusable output."""

    def __init__(self, message: str, *, command: str | None = None, details: dict | None = None) -> None:
        super().__init__(message, details={"command": command, **(details or {})})
        self.command = command


# --- Bulk jobs ---------------------------------------------------------------


class JobTerminalFailure(MigratorError):
    """Raised when a bulk job reaches the ``Failed`` or ``Aborted`` state."""

    def __init__(self, job_id: str, state: str, *, error_message: str | None = None) -> None:
        full = f"Job {state.lower()}: {job_id}"
        if error_message:
            full = f"{full}. Error: {error_message}"
        super().__init__(full, details={"job_id": job_id, "state": state})
        self.job_id = job_id
        self.state = state
        self.error_message = error_message


class PollTimeoutError(MigratorError):
    """Raised when the configured maximum number of poll attempts is exceeded."""

    def __init__(self, job_id: str, attempts: int) -> None:
        super().__init__(
            f"Job polling timed out after {attempts} attempts: {job_id}",
            details={"job_id": job_id, "attempts": attempts},
        )
        self.job_id = job_id
        self.attempts = attempts


# --- Cancellation ------------------------------------------------------------


class CancelledError(MigratorError):
    """Raised when the user cancels an operation.

    Not to be confused with ``asyncio.CancelledError``: this is an ordinary
    exception and is reported as a cancellation, never as an error.
    """

    def __init__(self, message: str = "Operation cancelled by user", *, job_id: str | None = None) -> None:
        super().__init__(message, details={"job_id": job_id} if job_id else None)
        self.job_id = job_id


# --- Deployment --------------------------------------------------------------


class PartialDeploymentFailure(MigratorError):
    """Carries per-component rejections from a deploy that succeeded at the transport level."""

    def __init__(
        self,
        problems: list[ComponentProblem],
        *,
        report_url: str | None = None,
        partial_success: bool = False,
    ) -> None:
        super().__init__(
            f"Deployment completed with {len(problems)} component error(s)",
            details={"report_url": report_url, "partial_success": partial_success},
        )
        self.problems = list(problems)
        self.report_url = report_url
        self.partial_success = partial_success


class DeploymentStepError(MigratorError):
    """Raised when a deployment step fails; carries the failing step."""

    def __init__(self, step: DeploymentStep, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(f"Step {step} failed: {message}", details={"step": str(step)})
        self.step = step
        if cause is not None:
            self.__cause__ = cause


def describe_error(error: Any) -> str:
    """Return the user-facing text for an error."""
    if isinstance(error, MigratorError):
        return error.message
    return str(error) or type(error).__name__
