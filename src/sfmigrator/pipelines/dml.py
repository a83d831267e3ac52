"""
Record import through a bulk ingest job (insert, update, upsert, delete, hardDelete).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import aiofiles
import aiofiles.os

from sfmigrator.api.client import DML_OPERATIONS, RemoteApiClient
from sfmigrator.core.cancellation import CancellationToken, run_cancellable
from sfmigrator.core.poller import JobPoller, PollPolicy
from sfmigrator.core.types import (
    JobKind,
    JobProgress,
    NullProgress,
    OperationOutcome,
    OrgContext,
    ProgressReporter,
    RemoteJob,
)
from sfmigrator.exceptions import CancelledError, MigratorError, ValidationError, describe_error
from sfmigrator.notifications import LoggingNotifier, Notifier
from sfmigrator.pipelines.export import count_csv_rows, resolve_destination
from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.pipelines.dml")


@dataclass
class DmlResult:
    status: OperationOutcome
    operation: str
    object_name: str
    source_path: Path
    job_id: str | None = None
    records_processed: int = 0
    records_failed: int = 0
    failed_results_path: Path | None = None
    error: MigratorError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == OperationOutcome.SUCCESS


class DmlPipeline:
    """
    Loads a CSV file into one object.

    The job is created, the file uploaded and the upload closed; the job is
    then polled to completion. Rejected records are written next to the
    input as ``<stem>_failed.csv``. Cancelling after the job exists aborts it
    remotely.
    """

    def __init__(
        self,
        client: RemoteApiClient,
        org: OrgContext,
        *,
        workspace_root: str | Path,
        poller: JobPoller | None = None,
        poll_policy: PollPolicy | None = None,
        notifier: Notifier | None = None,
        progress: ProgressReporter | None = None,
    ):
        self.client = client
        self.org = org
        self.workspace_root = Path(workspace_root)
        self.poller = poller or JobPoller()
        self.poll_policy = poll_policy
        self.notifier = notifier or LoggingNotifier()
        self.progress = progress or NullProgress()

    async def run(
        self,
        operation: str,
        object_name: str,
        csv_path: str | Path,
        external_id_field: str | None = None,
        token: CancellationToken | None = None,
    ) -> DmlResult:
        """
        Run one DML operation.

        Raises:
            ValidationError: unknown operation, missing external id for upsert,
                or a CSV path that is missing, outside the workspace or has no data rows
        """
        if operation.lower() not in DML_OPERATIONS:
            raise ValidationError(f"Invalid DML operation: {operation}")
        if operation.lower() == "upsert" and not external_id_field:
            raise ValidationError("Upsert requires an external ID field")

        path = resolve_destination(csv_path, self.workspace_root, label="Source")
        csv_text = await _read_csv(path)
        if count_csv_rows(csv_text) < 1:
            raise ValidationError(f"{path.name} has no data rows")

        result = DmlResult(
            status=OperationOutcome.SUCCESS, operation=operation, object_name=object_name, source_path=path
        )
        logger.info(f"Starting {operation} of {path.name} into {object_name}")

        try:
            job = await self._load(operation, object_name, csv_text, external_id_field, result, token)
            result.records_processed = job.number_records_processed or 0
            result.records_failed = job.number_records_failed or 0

            if result.records_failed:
                self.progress.report(f"Downloading {result.records_failed} failed record(s)")
                failed_csv = await run_cancellable(self.client.get_failed_results(self.org, job.id), token)
                result.failed_results_path = path.with_name(f"{path.stem}_failed.csv")
                await _write_failed_results(result.failed_results_path, failed_csv)
        except CancelledError as e:
            logger.info(f"{operation} of {object_name} cancelled")
            result.status = OperationOutcome.CANCELLED
            result.error = e
            self.notifier.notify(OperationOutcome.CANCELLED, f"{operation} cancelled")
            return result
        except MigratorError as e:
            logger.error(f"{operation} of {object_name} failed: {describe_error(e)}")
            result.status = OperationOutcome.FAILED
            result.error = e
            self.notifier.notify(OperationOutcome.FAILED, f"{operation} failed: {describe_error(e)}")
            return result

        if result.records_failed:
            result.status = OperationOutcome.PARTIAL
            self.notifier.notify(
                OperationOutcome.PARTIAL,
                f"{operation}: {result.records_processed} record(s) processed, {result.records_failed} failed; "
                f"see {result.failed_results_path}",
            )
        else:
            self.notifier.notify(
                OperationOutcome.SUCCESS, f"{operation}: {result.records_processed} record(s) processed"
            )
        return result

    async def _load(
        self,
        operation: str,
        object_name: str,
        csv_text: str,
        external_id_field: str | None,
        result: DmlResult,
        token: CancellationToken | None,
    ) -> RemoteJob:
        self.progress.report(f"Creating {operation} job")
        job = await run_cancellable(
            self.client.create_ingest_job(self.org, operation, object_name, external_id_field=external_id_field),
            token,
        )
        result.job_id = job.id

        try:
            self.progress.report(f"Job {job.id}: uploading data")
            await run_cancellable(self.client.upload_job_data(self.org, job.id, csv_text), token)
            await run_cancellable(self.client.complete_job_upload(self.org, job.id), token)
        except CancelledError:
            await self._abort_quietly(job.id)
            raise

        return await self.poller.poll_until_complete(
            job,
            fetch_status=lambda job_id: self.client.get_job_status(self.org, job_id, JobKind.INGEST),
            fetch_result=lambda job_id: self.client.get_job_status(self.org, job_id, JobKind.INGEST),
            abort=lambda job_id: self.client.abort_job(self.org, job_id, JobKind.INGEST),
            token=token,
            policy=self.poll_policy,
            progress=JobProgress(job.id, self.progress),
        )

    async def _abort_quietly(self, job_id: str) -> None:
        try:
            await self.client.abort_job(self.org, job_id, JobKind.INGEST)
        except MigratorError as e:
            logger.warning(f"Abort request for job {job_id} failed: {e}")


async def _read_csv(path: Path) -> str:
    if not await aiofiles.os.path.isfile(path):
        raise ValidationError(f"File not found: {path}")
    async with aiofiles.open(path, encoding="utf-8-sig") as f:
        return await f.read()


async def _write_failed_results(path: Path, csv_text: str) -> None:
    try:
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(csv_text)
    except OSError as e:
        raise MigratorError(f"Failed to write {path}: {e}") from e
