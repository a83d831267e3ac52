"""
Core orchestration primitives: job types, cancellation, scheduling and polling.
"""

from sfmigrator.core.cancellation import CancellationToken, run_cancellable
from sfmigrator.core.poller import DEFAULT_POLL_POLICY, JobPoller, PollPolicy
from sfmigrator.core.scheduler import AsyncioScheduler, Scheduler
from sfmigrator.core.types import (
    FieldDescription,
    JobKind,
    JobProgress,
    JobState,
    NullProgress,
    OperationOutcome,
    OrgContext,
    PicklistValue,
    ProgressReporter,
    RemoteJob,
    TERMINAL_STATES,
)

__all__ = [
    "CancellationToken",
    "run_cancellable",
    "JobPoller",
    "PollPolicy",
    "DEFAULT_POLL_POLICY",
    "Scheduler",
    "AsyncioScheduler",
    "OrgContext",
    "RemoteJob",
    "JobKind",
    "JobProgress",
    "JobState",
    "TERMINAL_STATES",
    "FieldDescription",
    "PicklistValue",
    "ProgressReporter",
    "NullProgress",
    "OperationOutcome",
]
