"""
Bulk job polling.

JobPoller drives a remote job from creation to a terminal state with a fixed
delay between status checks. It is a plain async loop: one status fetch in
flight at a time, cancellation observed at the top of every iteration and
raced against every suspension point.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, NoReturn, Protocol, TypeVar

from sfmigrator.core.cancellation import CancellationToken, run_cancellable
from sfmigrator.core.scheduler import DEFAULT_SCHEDULER, Scheduler
from sfmigrator.core.types import FAILURE_STATES, JobState, NullProgress, ProgressReporter, RemoteJob
from sfmigrator.exceptions import CancelledError, JobTerminalFailure, PollTimeoutError
from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.poller")

T = TypeVar("T")


class JobStatus(Protocol):
    """Anything with a raw ``state`` string (normally a RemoteJob)."""

    state: str


@dataclass(frozen=True)
class PollPolicy:
    """
    Polling configuration.

    The interval is fixed (no backoff). ``max_attempts`` bounds the number of
    status checks; None means poll until a terminal state or cancellation.

    Examples:
        >>> PollPolicy()                      # 1s interval, unbounded
        >>> PollPolicy(max_attempts=60)       # give up after 60 status checks
    """

    interval: float = 1.0
    max_attempts: int | None = None

    def __post_init__(self) -> None:
        if self.interval < 0:
            raise ValueError("interval must be >= 0")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


DEFAULT_POLL_POLICY = PollPolicy()


class JobPoller:
    """
    Polls a bulk job until JobComplete, Failed/Aborted, cancellation or timeout.

    Each call settles exactly once:
    - JobComplete: the payload returned by ``fetch_result``
    - Failed / Aborted: JobTerminalFailure
    - token fired: one ``abort`` call for the job, then CancelledError
    - attempt bound exceeded: PollTimeoutError

    Example:
        >>> poller = JobPoller()
        >>> csv_text = await poller.poll_until_complete(
        ...     job,
        ...     fetch_status=lambda job_id: client.get_job_status(org, job_id),
        ...     fetch_result=lambda job_id: client.get_job_results(org, job_id),
        ...     abort=lambda job_id: client.abort_job(org, job_id),
        ...     token=token,
        ... )
    """

    def __init__(self, scheduler: Scheduler | None = None, policy: PollPolicy | None = None):
        self.scheduler = scheduler or DEFAULT_SCHEDULER
        self.policy = policy or DEFAULT_POLL_POLICY

    async def poll_until_complete(
        self,
        job: RemoteJob,
        fetch_status: Callable[[str], Awaitable[JobStatus]],
        fetch_result: Callable[[str], Awaitable[T]],
        abort: Callable[[str], Awaitable[Any]],
        interval: float | None = None,
        token: CancellationToken | None = None,
        *,
        policy: PollPolicy | None = None,
        progress: ProgressReporter | None = None,
    ) -> T:
        """
        Poll ``job`` until it settles.

        Args:
            job: The job returned by the creation call
            fetch_status: Fetches the current job record; must not mutate remote state
            fetch_result: Fetches the result payload once the job is complete
            abort: Aborts the job remotely; called only on cancellation
            interval: Seconds between status checks (overrides the policy interval)
            token: Optional cancellation token
            policy: Poll policy for this call (defaults to the poller's policy)
            progress: Receives the raw state string after every status check

        Returns:
            The payload returned by ``fetch_result``
        """
        policy = policy or self.policy
        delay = policy.interval if interval is None else interval
        progress = progress or NullProgress()
        attempts = 0

        while True:
            if token is not None and token.is_cancelled:
                await self._abort(job, abort)

            attempts += 1
            logger.debug(f"Checking status of job {job.id} (attempt {attempts})")
            try:
                status = await run_cancellable(fetch_status(job.id), token)
            except CancelledError:
                await self._abort(job, abort)

            progress.report(status.state)

            if status.state == JobState.JOB_COMPLETE:
                logger.info(f"Job {job.id} completed after {attempts} status check(s), retrieving results")
                try:
                    return await run_cancellable(fetch_result(job.id), token)
                except CancelledError:
                    await self._abort(job, abort)

            if status.state in FAILURE_STATES:
                logger.error(f"Job {job.id} reached terminal state {status.state}")
                raise JobTerminalFailure(job.id, status.state, error_message=getattr(status, "error_message", None))

            if policy.max_attempts is not None and attempts >= policy.max_attempts:
                logger.error(f"Job {job.id} still {status.state} after {attempts} status checks, giving up")
                raise PollTimeoutError(job.id, attempts)

            try:
                await run_cancellable(self.scheduler.sleep(delay), token)
            except CancelledError:
                await self._abort(job, abort)

    async def _abort(self, job: RemoteJob, abort: Callable[[str], Awaitable[Any]]) -> NoReturn:
        """Abort the job remotely, then raise CancelledError regardless of the abort outcome."""
        logger.info(f"Cancelling job {job.id}")
        try:
            await abort(job.id)
        except Exception as e:
            logger.warning(f"Abort request for job {job.id} failed: {e}")
        raise CancelledError(job_id=job.id)
