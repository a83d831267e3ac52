"""
Record export: one bulk query job through to a verified CSV file.

Order of work for ExportPipeline.run:
1. query target must match the object bound to the pipeline (no network call otherwise)
2. destination resolved inside the workspace root, created or truncated
3. best-effort expected count via a COUNT() query
4. bulk query job created
5. job polled to completion
6. CSV written to the destination
7. row count reconciled against the expected count

Cancellation after the destination exists deletes it.
"""

from __future__ import annotations

import contextlib
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import aiofiles.os

from sfmigrator.api.client import RemoteApiClient
from sfmigrator.core.cancellation import CancellationToken, run_cancellable
from sfmigrator.core.poller import JobPoller, PollPolicy
from sfmigrator.core.types import JobKind, JobProgress, NullProgress, OperationOutcome, OrgContext, ProgressReporter
from sfmigrator.exceptions import CancelledError, MigratorError, ValidationError, describe_error
from sfmigrator.notifications import LoggingNotifier, Notifier, ReconciliationChoice
from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.pipelines.export")

_FROM_TARGET = re.compile(r"\bFROM\s+([A-Za-z0-9_]+)", re.IGNORECASE)


def extract_query_target(query: str) -> str | None:
    """Object name following the first FROM clause, or None."""
    match = _FROM_TARGET.search(query)
    return match.group(1) if match else None


def count_csv_rows(csv_text: str) -> int:
    """Data rows in CSV text: non-blank lines minus the header line."""
    lines = [line for line in csv_text.splitlines() if line.strip()]
    return max(0, len(lines) - 1)


def build_query(object_name: str, fields: Sequence[str]) -> str:
    """Compose ``SELECT <fields> FROM <object>`` from a field selection."""
    if not fields:
        raise ValidationError("Select at least one field to export")
    return f"SELECT {', '.join(fields)}\nFROM {object_name}"


def resolve_destination(destination: str | Path, workspace_root: str | Path, *, label: str = "Destination") -> Path:
    """
    Resolve ``destination`` against the workspace root.

    Raises:
        ValidationError: empty path, or the resolved path lies outside the root
    """
    if not str(destination).strip():
        raise ValidationError(f"{label} file path is required")
    root = Path(workspace_root).resolve()
    path = Path(destination)
    if not path.is_absolute():
        path = root / path
    path = path.resolve()
    if not path.is_relative_to(root):
        raise ValidationError(f"{label} {destination} is outside the workspace root {root}")
    return path


@dataclass
class ExportResult:
    """
    Outcome of one export.

    ``expected_count`` is None when the count pre-check was unavailable, in
    which case no reconciliation was done. ``reconciled`` is False when the
    counts differed and the file was accepted as-is.
    """

    status: OperationOutcome
    file_path: Path
    expected_count: int | None = None
    actual_count: int = 0
    job_id: str | None = None
    reconciled: bool = True
    error: MigratorError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == OperationOutcome.SUCCESS


class ExportPipeline:
    """
    Exports the records of one object to CSV.

    The pipeline is bound to a single object; queries against anything else
    are rejected before any network call.
    """

    def __init__(
        self,
        client: RemoteApiClient,
        org: OrgContext,
        object_name: str,
        *,
        workspace_root: str | Path,
        poller: JobPoller | None = None,
        poll_policy: PollPolicy | None = None,
        notifier: Notifier | None = None,
        progress: ProgressReporter | None = None,
    ):
        self.client = client
        self.org = org
        self.object_name = object_name
        self.workspace_root = Path(workspace_root)
        self.poller = poller or JobPoller()
        self.poll_policy = poll_policy
        self.notifier = notifier or LoggingNotifier()
        self.progress = progress or NullProgress()

    def validate_query(self, query: str) -> None:
        """Reject queries whose FROM target is not the bound object (case-insensitive)."""
        if not query or not query.strip():
            raise ValidationError("Query is required")
        target = extract_query_target(query)
        if target is None:
            raise ValidationError("Query has no FROM clause")
        if target.lower() != self.object_name.lower():
            raise ValidationError(f"Query must target {self.object_name}, not {target}")

    async def run(
        self, query: str, destination: str | Path, token: CancellationToken | None = None
    ) -> ExportResult:
        """
        Run the export.

        Raises:
            ValidationError: bad query target or destination; nothing was created

        Every other terminal outcome is returned as an ExportResult after a
        single summary notification.
        """
        self.validate_query(query)
        path = resolve_destination(destination, self.workspace_root)

        try:
            await _truncate(path)
        except OSError as e:
            raise ValidationError(f"Cannot create destination {path}: {e}") from e
        result = ExportResult(status=OperationOutcome.SUCCESS, file_path=path)
        logger.info(f"Exporting {self.object_name} to {path}")

        try:
            while True:
                result.expected_count = await self._expected_count(query, token)
                csv_text = await self._run_job(query, result, token)

                self.progress.report(f"Writing results to {path.name}")
                await _write(path, csv_text)
                if token is not None:
                    token.raise_if_cancelled()
                result.actual_count = count_csv_rows(csv_text)

                if result.expected_count is None or result.expected_count == result.actual_count:
                    result.reconciled = True
                    break

                logger.warning(
                    f"Row count mismatch for {self.object_name}: expected {result.expected_count}, "
                    f"got {result.actual_count}"
                )
                choice = await run_cancellable(
                    self.notifier.confirm_reconciliation(result.expected_count, result.actual_count), token
                )
                if token is not None:
                    token.raise_if_cancelled()
                if choice != ReconciliationChoice.RERUN:
                    result.reconciled = False
                    break
                logger.info(f"Re-running export of {self.object_name}")
        except CancelledError as e:
            with contextlib.suppress(FileNotFoundError):
                await aiofiles.os.remove(path)
            logger.info(f"Export of {self.object_name} cancelled, removed {path}")
            result.status = OperationOutcome.CANCELLED
            result.error = e
            self.notifier.notify(OperationOutcome.CANCELLED, "Export cancelled")
            return result
        except MigratorError as e:
            logger.error(f"Export of {self.object_name} failed: {describe_error(e)}")
            result.status = OperationOutcome.FAILED
            result.error = e
            self.notifier.notify(OperationOutcome.FAILED, f"Export failed: {describe_error(e)}")
            return result

        if result.reconciled:
            message = f"Exported {result.actual_count} record(s) to {path}"
        else:
            message = (
                f"Exported {result.actual_count} record(s) to {path} "
                f"(expected {result.expected_count}; file kept as-is)"
            )
        self.notifier.notify(OperationOutcome.SUCCESS, message)
        return result

    async def _expected_count(self, query: str, token: CancellationToken | None) -> int | None:
        self.progress.report("Counting records")
        try:
            return await run_cancellable(self.client.query_record_count(self.org, query), token)
        except CancelledError:
            raise
        except MigratorError as e:
            logger.warning(f"Record count pre-check failed, skipping reconciliation: {describe_error(e)}")
            return None

    async def _run_job(self, query: str, result: ExportResult, token: CancellationToken | None) -> str:
        self.progress.report("Creating bulk query job")
        job = await run_cancellable(self.client.create_query_job(self.org, query), token)
        result.job_id = job.id

        return await self.poller.poll_until_complete(
            job,
            fetch_status=lambda job_id: self.client.get_job_status(self.org, job_id, JobKind.QUERY),
            fetch_result=lambda job_id: self.client.get_job_results(self.org, job_id),
            abort=lambda job_id: self.client.abort_job(self.org, job_id, JobKind.QUERY),
            token=token,
            policy=self.poll_policy,
            progress=JobProgress(job.id, self.progress),
        )


async def _truncate(path: Path) -> None:
    await aiofiles.os.makedirs(path.parent, exist_ok=True)
    async with aiofiles.open(path, "w", encoding="utf-8"):
        pass


async def _write(path: Path, csv_text: str) -> None:
    try:
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(csv_text)
    except OSError as e:
        raise MigratorError(f"Failed to write {path}: {e}") from e
