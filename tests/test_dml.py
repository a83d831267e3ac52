"""
Tests for the bulk ingest (DML) pipeline.
"""

import asyncio

import pytest

from sfmigrator.core.cancellation import CancellationToken
from sfmigrator.core.poller import JobPoller
from sfmigrator.core.types import JobKind, OperationOutcome, OrgContext, RemoteJob
from sfmigrator.exceptions import NetworkError, ValidationError
from sfmigrator.pipelines.dml import DmlPipeline
from sfmigrator.testing import RecordingNotifier, VirtualScheduler

ORG = OrgContext(instance_url="https://x.my.salesforce.com", access_token="00Dtoken", api_version="60.0")


class FakeIngestClient:
    def __init__(self, processed=2, failed=0, states=("JobComplete",), create_error=None):
        self.processed = processed
        self.failed = failed
        self.states = list(states)
        self.create_error = create_error
        self.calls = []
        self.uploaded = None
        self.upload_gate = None

    async def create_ingest_job(self, org, operation, object_name, *, external_id_field=None):
        self.calls.append(("create", operation, object_name, external_id_field))
        if self.create_error:
            raise self.create_error
        return RemoteJob(id="750yy", kind=JobKind.INGEST, state="Open")

    async def upload_job_data(self, org, job_id, csv_text):
        self.calls.append(("upload", job_id))
        self.uploaded = csv_text
        if self.upload_gate is not None:
            await self.upload_gate.wait()

    async def complete_job_upload(self, org, job_id):
        self.calls.append(("complete", job_id))
        return RemoteJob(id=job_id, kind=JobKind.INGEST, state="UploadComplete")

    async def get_job_status(self, org, job_id, kind=JobKind.QUERY):
        self.calls.append(("status", job_id, kind))
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        return RemoteJob(
            id=job_id,
            kind=kind,
            state=state,
            number_records_processed=self.processed,
            number_records_failed=self.failed,
        )

    async def get_failed_results(self, org, job_id):
        self.calls.append(("failed", job_id))
        return '"sf__Id","sf__Error",Name\n"","REQUIRED_FIELD_MISSING",\n'

    async def abort_job(self, org, job_id, kind=JobKind.QUERY):
        self.calls.append(("abort", job_id, kind))

    def names(self):
        return [call[0] for call in self.calls]


@pytest.fixture
def accounts_csv(tmp_path):
    path = tmp_path / "accounts.csv"
    path.write_text("\ufeffName\r\nAcme\r\nGlobex\r\n", encoding="utf-8")
    return path


def make_pipeline(client, tmp_path, scheduler=None, **kwargs):
    kwargs.setdefault("notifier", RecordingNotifier())
    poller = JobPoller(scheduler or VirtualScheduler())
    return DmlPipeline(client, ORG, workspace_root=tmp_path, poller=poller, **kwargs)


class TestDmlValidation:
    @pytest.mark.asyncio
    async def test_unknown_operation(self, tmp_path, accounts_csv):
        client = FakeIngestClient()
        with pytest.raises(ValidationError, match="Invalid DML operation"):
            await make_pipeline(client, tmp_path).run("merge", "Account", accounts_csv)
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_upsert_requires_external_id(self, tmp_path, accounts_csv):
        client = FakeIngestClient()
        with pytest.raises(ValidationError, match="external ID"):
            await make_pipeline(client, tmp_path).run("upsert", "Account", accounts_csv)
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError, match="File not found"):
            await make_pipeline(FakeIngestClient(), tmp_path).run("insert", "Account", "missing.csv")

    @pytest.mark.asyncio
    async def test_header_only_file(self, tmp_path):
        (tmp_path / "empty.csv").write_text("Name\n")
        with pytest.raises(ValidationError, match="no data rows"):
            await make_pipeline(FakeIngestClient(), tmp_path).run("insert", "Account", "empty.csv")

    @pytest.mark.asyncio
    async def test_file_outside_workspace(self, tmp_path):
        root = tmp_path / "workspace"
        root.mkdir()
        (tmp_path / "outside.csv").write_text("Name\nAcme\n")
        with pytest.raises(ValidationError, match="outside the workspace root"):
            await make_pipeline(FakeIngestClient(), root).run("insert", "Account", "../outside.csv")


class TestDmlRun:
    @pytest.mark.asyncio
    async def test_insert_success(self, tmp_path, accounts_csv):
        client = FakeIngestClient(processed=2, states=["InProgress", "JobComplete"])
        notifier = RecordingNotifier()

        result = await make_pipeline(client, tmp_path, notifier=notifier).run("insert", "Account", "accounts.csv")

        assert result.status == OperationOutcome.SUCCESS
        assert result.job_id == "750yy"
        assert result.records_processed == 2
        assert result.failed_results_path is None
        assert client.names() == ["create", "upload", "complete", "status", "status", "status"]
        assert client.calls[3][2] == JobKind.INGEST
        assert client.uploaded == "Name\nAcme\nGlobex\n"
        assert notifier.outcomes == [OperationOutcome.SUCCESS]
        assert notifier.notifications[0].message == "insert: 2 record(s) processed"

    @pytest.mark.asyncio
    async def test_upsert_passes_external_id(self, tmp_path, accounts_csv):
        client = FakeIngestClient()
        await make_pipeline(client, tmp_path).run("upsert", "Account", accounts_csv, external_id_field="Legacy_Id__c")
        assert client.calls[0] == ("create", "upsert", "Account", "Legacy_Id__c")

    @pytest.mark.asyncio
    async def test_failed_records_are_written_beside_input(self, tmp_path, accounts_csv):
        client = FakeIngestClient(processed=2, failed=1)
        notifier = RecordingNotifier()

        result = await make_pipeline(client, tmp_path, notifier=notifier).run("insert", "Account", accounts_csv)

        assert result.status == OperationOutcome.PARTIAL
        assert result.records_failed == 1
        assert result.failed_results_path == (tmp_path / "accounts_failed.csv").resolve()
        assert "REQUIRED_FIELD_MISSING" in result.failed_results_path.read_text()
        assert notifier.outcomes == [OperationOutcome.PARTIAL]

    @pytest.mark.asyncio
    async def test_unwritable_failed_results_file_fails_run(self, tmp_path, accounts_csv):
        (tmp_path / "accounts_failed.csv").mkdir()
        client = FakeIngestClient(processed=2, failed=1)
        notifier = RecordingNotifier()

        result = await make_pipeline(client, tmp_path, notifier=notifier).run("insert", "Account", accounts_csv)

        assert result.status == OperationOutcome.FAILED
        assert "Failed to write" in result.error.message
        assert notifier.outcomes == [OperationOutcome.FAILED]

    @pytest.mark.asyncio
    async def test_job_failure(self, tmp_path, accounts_csv):
        client = FakeIngestClient(states=["Failed"])
        notifier = RecordingNotifier()

        result = await make_pipeline(client, tmp_path, notifier=notifier).run("delete", "Account", accounts_csv)

        assert result.status == OperationOutcome.FAILED
        assert notifier.outcomes == [OperationOutcome.FAILED]
        assert "abort" not in client.names()

    @pytest.mark.asyncio
    async def test_create_failure(self, tmp_path, accounts_csv):
        client = FakeIngestClient(create_error=NetworkError("Failed to create ingest job: bad object", status=400))
        notifier = RecordingNotifier()

        result = await make_pipeline(client, tmp_path, notifier=notifier).run("insert", "Nope__c", accounts_csv)

        assert result.status == OperationOutcome.FAILED
        assert result.job_id is None
        assert notifier.notifications[0].message == "insert failed: Failed to create ingest job: bad object"


class TestDmlCancellation:
    @pytest.mark.asyncio
    async def test_cancel_during_upload_aborts_job(self, tmp_path, accounts_csv):
        token = CancellationToken()
        client = FakeIngestClient()
        client.upload_gate = asyncio.Event()
        notifier = RecordingNotifier()

        task = asyncio.create_task(
            make_pipeline(client, tmp_path, notifier=notifier).run("insert", "Account", accounts_csv, token=token)
        )
        while "upload" not in client.names():
            await asyncio.sleep(0)
        token.cancel()
        result = await task

        assert result.status == OperationOutcome.CANCELLED
        assert ("abort", "750yy", JobKind.INGEST) in client.calls
        assert "complete" not in client.names()
        assert notifier.outcomes == [OperationOutcome.CANCELLED]

    @pytest.mark.asyncio
    async def test_cancel_while_polling_aborts_once(self, tmp_path, accounts_csv):
        token = CancellationToken()
        client = FakeIngestClient(states=["InProgress"])
        scheduler = VirtualScheduler(on_sleep=lambda count: token.cancel())

        result = await make_pipeline(client, tmp_path, scheduler=scheduler).run(
            "insert", "Account", accounts_csv, token=token
        )

        assert result.status == OperationOutcome.CANCELLED
        assert client.names().count("abort") == 1
