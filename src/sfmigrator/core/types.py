"""
Core data types shared by the API client, the poller and the pipelines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol


@dataclass(frozen=True)
class OrgContext:
    """
    Connection details for one environment (org).

    Supplied per call and never persisted; immutable for the duration of an operation.
    """

    instance_url: str
    access_token: str
    api_version: str
    alias: str | None = None

    def __repr__(self) -> str:
        # Keep the access token out of logs and tracebacks
        return f"OrgContext(instance_url={self.instance_url!r}, api_version={self.api_version!r}, alias={self.alias!r})"


class JobKind(StrEnum):
    """Bulk job family; selects the resource path."""

    QUERY = "query"
    INGEST = "ingest"


class JobState(StrEnum):
    """Bulk job states as reported by the remote system."""

    OPEN = "Open"
    UPLOAD_COMPLETE = "UploadComplete"
    IN_PROGRESS = "InProgress"
    JOB_COMPLETE = "JobComplete"
    FAILED = "Failed"
    ABORTED = "Aborted"


FAILURE_STATES = frozenset({JobState.FAILED, JobState.ABORTED})
TERMINAL_STATES = frozenset({JobState.JOB_COMPLETE, *FAILURE_STATES})


@dataclass(frozen=True)
class RemoteJob:
    """
    A bulk job as last fetched from the remote system.

    ``state`` is the raw state string; the job is never advanced locally, only
    replaced by a fresh status fetch.
    """

    id: str
    kind: JobKind
    state: str
    object: str | None = None
    operation: str | None = None
    number_records_processed: int | None = None
    number_records_failed: int | None = None
    error_message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any], kind: JobKind) -> RemoteJob:
        """Build a job from the JSON job record returned by the bulk API."""
        return cls(
            id=str(payload.get("id", "")),
            kind=kind,
            state=str(payload.get("state", "")),
            object=payload.get("object"),
            operation=payload.get("operation"),
            number_records_processed=payload.get("numberRecordsProcessed"),
            number_records_failed=payload.get("numberRecordsFailed"),
            error_message=payload.get("errorMessage") or None,
            raw=dict(payload),
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_complete(self) -> bool:
        return self.state == JobState.JOB_COMPLETE


@dataclass(frozen=True)
class PicklistValue:
    value: str
    label: str
    active: bool = True


@dataclass(frozen=True)
class FieldDescription:
    """A single field from an object description."""

    name: str
    label: str
    type: str
    picklist_values: tuple[PicklistValue, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> FieldDescription:
        picklist = tuple(
            PicklistValue(
                value=str(entry.get("value", "")),
                label=str(entry.get("label") or entry.get("value", "")),
                active=bool(entry.get("active", True)),
            )
            for entry in payload.get("picklistValues") or []
        )
        return cls(
            name=str(payload.get("name", "")),
            label=str(payload.get("label", "")),
            type=str(payload.get("type", "")),
            picklist_values=picklist,
            raw=dict(payload),
        )


class ProgressReporter(Protocol):
    """Receives human-readable progress messages from long-running operations."""

    def report(self, message: str) -> None: ...


class NullProgress:
    """Progress reporter that discards every message."""

    def report(self, message: str) -> None:
        pass


class OperationOutcome(StrEnum):
    """Terminal outcome of a pipeline invocation; each produces exactly one summary notification."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobProgress:
    """Prefixes every message with the job id."""

    def __init__(self, job_id: str, progress: ProgressReporter):
        self.job_id = job_id
        self.progress = progress

    def report(self, message: str) -> None:
        self.progress.report(f"Job {self.job_id}: {message}")
