"""
Authenticated access to the bulk job and object description resources.

Every call takes the OrgContext of the environment it targets, so one client
(and one HTTP session) serves both the source and the target org. Failures of
any kind surface as a single NetworkError carrying the HTTP status and the
best available message.
"""

import asyncio
import json
import re
import time
from typing import Any

import aiohttp

from sfmigrator.core.types import FieldDescription, JobKind, OrgContext, RemoteJob
from sfmigrator.exceptions import NetworkError, QueryRejectedError, ValidationError
from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.api.client")

JOB_ID_PATTERN = re.compile(r"^[a-zA-Z0-9]+$")
OBJECT_NAME_PATTERN = re.compile(r"^[a-zA-Z]\w*(__[a-z]+)?$")
FIELD_NAME_PATTERN = OBJECT_NAME_PATTERN
API_VERSION_PATTERN = re.compile(r"^\d+\.\d+$")

# Lower-cased input -> operation name expected by the ingest API
DML_OPERATIONS = {
    "insert": "insert",
    "update": "update",
    "upsert": "upsert",
    "delete": "delete",
    "harddelete": "hardDelete",
}

_SELECT_LIST = re.compile(r"^\s*SELECT\s+.*?\s+FROM\s", re.IGNORECASE | re.DOTALL)
_ORDER_BY = re.compile(r"\s+ORDER\s+BY\s+.*?(?=\s+LIMIT\s|\s+OFFSET\s|$)", re.IGNORECASE | re.DOTALL)

REAUTH_MESSAGE = (
    "Session expired or invalid. Please re-authenticate your org by running: "
    "sf org login web --alias <your-org-alias>"
)


def to_count_query(query: str) -> str:
    """
    Derive a COUNT() query from a record query.

    The select list is replaced by COUNT() and any ORDER BY clause is dropped
    (the server rejects ORDER BY on COUNT() queries).
    """
    count_query = _SELECT_LIST.sub("SELECT COUNT() FROM ", query.strip(), count=1)
    return _ORDER_BY.sub("", count_query)


class RemoteApiClient:
    """
    Client for the bulk query/ingest job resources, object description and record counts.

    Example:
        ```python
        async with RemoteApiClient() as client:
            job = await client.create_query_job(org, "SELECT Id, Name FROM Account")
            status = await client.get_job_status(org, job.id)
        ```
    """

    def __init__(
        self,
        timeout: float = 60.0,
        max_result_pages: int = 100,
        session: aiohttp.ClientSession | None = None,
    ):
        """
        Initialize the client.

        Args:
            timeout: Per-request timeout in seconds (default: 60)
            max_result_pages: Upper bound on query result pages fetched per job (default: 100)
            session: Optional externally managed aiohttp session
        """
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_result_pages = max_result_pages
        self.session = session
        self._owns_session = session is None
        self._session_lock = asyncio.Lock()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure session exists, creating it if needed."""
        async with self._session_lock:
            if self.session is None or self.session.closed:
                self.session = aiohttp.ClientSession(timeout=self.timeout)
                self._owns_session = True
            return self.session

    async def __aenter__(self) -> "RemoteApiClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the session if this client created it."""
        async with self._session_lock:
            if self._owns_session and self.session and not self.session.closed:
                await self.session.close()
            self.session = None

    # --- request plumbing ----------------------------------------------------

    def _build_url(self, org: OrgContext, path: str) -> str:
        if not org.instance_url.startswith("https://"):
            raise ValidationError("Instance URL must use HTTPS")
        if not API_VERSION_PATTERN.match(org.api_version):
            raise ValidationError(f"Invalid API version format: {org.api_version}")
        return f"{org.instance_url.rstrip('/')}/services/data/v{org.api_version}{path}"

    async def _request(
        self,
        org: OrgContext,
        method: str,
        path: str,
        *,
        action: str,
        json_body: dict[str, Any] | None = None,
        data: bytes | None = None,
        params: dict[str, str] | None = None,
        accept: str = "application/json",
        content_type: str = "application/json",
    ) -> tuple[str, dict[str, str]]:
        """
        Issue one authenticated request.

        Returns:
            Tuple of (response text, response headers)

        Raises:
            NetworkError: transport failure, timeout or non-2xx response
        """
        url = self._build_url(org, path)
        session = await self._ensure_session()
        headers = {
            "Authorization": f"Bearer {org.access_token}",
            "Content-Type": content_type,
            "Accept": accept,
        }

        start_time = time.monotonic()
        try:
            async with session.request(
                method,
                url,
                json=json_body,
                data=data,
                params=params,
                headers=headers,
                timeout=self.timeout,
            ) as response:
                duration = time.monotonic() - start_time
                text = await response.text()
                log_level = logger.debug if response.status <= 299 else logger.warning
                log_level(f"{method} {url} {response.status} {duration:.2f}s")

                if response.status > 299:
                    raise self._api_error(action, response.status, response.reason, text)
                return text, dict(response.headers)
        except asyncio.TimeoutError as e:
            raise NetworkError(f"{action}: request timed out after {self.timeout.total:.0f}s") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"{action}: {e}") from e

    def _api_error(self, action: str, status: int, reason: str | None, body: str) -> NetworkError:
        """Normalise an error response into a NetworkError."""
        if status == 401:
            return NetworkError(REAUTH_MESSAGE, status=status)
        return NetworkError(f"{action}: {extract_error_message(status, reason, body)}", status=status)

    @staticmethod
    def _parse_json(text: str, action: str) -> Any:
        try:
            return json.loads(text) if text else {}
        except json.JSONDecodeError as e:
            raise NetworkError(f"{action}: response is not valid JSON") from e

    # --- query jobs -----------------------------------------------------------

    async def create_query_job(self, org: OrgContext, query: str) -> RemoteJob:
        """
        Create a bulk query job.

        Raises:
            QueryRejectedError: the remote refused the job (non-2xx); also a ValidationError
        """
        action = "Failed to create query job"
        try:
            text, _ = await self._request(
                org, "POST", "/jobs/query", action=action, json_body={"operation": "query", "query": query}
            )
        except NetworkError as e:
            if e.status is None:
                raise
            raise QueryRejectedError(e.message, status=e.status) from e
        job = RemoteJob.from_payload(self._parse_json(text, action), JobKind.QUERY)
        logger.info(f"Created query job {job.id}")
        return job

    async def get_job_results(self, org: OrgContext, job_id: str) -> str:
        """
        Fetch the CSV results of a completed query job, following Sforce-Locator pagination.

        The header row of the first page is kept; later pages drop theirs.
        """
        self._validate_job_id(job_id)
        parts: list[str] = []
        locator: str | None = None

        for _ in range(self.max_result_pages):
            params = {"locator": locator} if locator else None
            text, headers = await self._request(
                org,
                "GET",
                f"/jobs/query/{job_id}/results",
                action="Failed to get job results",
                params=params,
                accept="text/csv",
            )

            body = text if not parts else text.partition("\n")[2]
            if body:
                parts.append(body if body.endswith("\n") else body + "\n")

            locator = _header(headers, "Sforce-Locator")
            if not locator or locator == "null":
                return "".join(parts)

        raise NetworkError(f"Query exceeded maximum of {self.max_result_pages} result pages")

    # --- shared job operations -------------------------------------------------

    async def get_job_status(self, org: OrgContext, job_id: str, kind: JobKind = JobKind.QUERY) -> RemoteJob:
        """Fetch the current job record. Never mutates remote state."""
        self._validate_job_id(job_id)
        action = "Failed to check job status"
        text, _ = await self._request(org, "GET", f"/jobs/{kind.value}/{job_id}", action=action)
        return RemoteJob.from_payload(self._parse_json(text, action), kind)

    async def abort_job(self, org: OrgContext, job_id: str, kind: JobKind = JobKind.QUERY) -> None:
        """Move the job to the Aborted state."""
        self._validate_job_id(job_id)
        await self._request(
            org, "PATCH", f"/jobs/{kind.value}/{job_id}", action="Failed to abort job", json_body={"state": "Aborted"}
        )
        logger.info(f"Aborted {kind.value} job {job_id}")

    # --- ingest jobs -----------------------------------------------------------

    async def create_ingest_job(
        self,
        org: OrgContext,
        operation: str,
        object_name: str,
        *,
        external_id_field: str | None = None,
        line_ending: str = "LF",
    ) -> RemoteJob:
        """
        Create a bulk ingest (DML) job.

        Args:
            org: Target org
            operation: insert, update, upsert, delete or hardDelete (case-insensitive)
            object_name: API name of the object
            external_id_field: Matching field, required for upsert
            line_ending: Line ending of the uploaded CSV (LF after normalisation)
        """
        api_operation = DML_OPERATIONS.get(operation.lower())
        if api_operation is None:
            raise ValidationError(f"Invalid DML operation: {operation}")
        self._validate_object_name(object_name)

        body: dict[str, Any] = {
            "operation": api_operation,
            "object": object_name,
            "contentType": "CSV",
            "lineEnding": line_ending,
        }
        if api_operation == "upsert":
            if not external_id_field:
                raise ValidationError("Upsert requires an external ID field")
            if not FIELD_NAME_PATTERN.match(external_id_field):
                raise ValidationError(f"Invalid field name format: {external_id_field}")
            body["externalIdFieldName"] = external_id_field

        action = "Failed to create ingest job"
        text, _ = await self._request(org, "POST", "/jobs/ingest", action=action, json_body=body)
        job = RemoteJob.from_payload(self._parse_json(text, action), JobKind.INGEST)
        logger.info(f"Created {api_operation} job {job.id} for {object_name}")
        return job

    async def upload_job_data(self, org: OrgContext, job_id: str, csv_text: str) -> None:
        """Upload CSV data to an open ingest job (BOM stripped, line endings normalised to LF)."""
        self._validate_job_id(job_id)
        normalized = csv_text.removeprefix("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
        await self._request(
            org,
            "PUT",
            f"/jobs/ingest/{job_id}/batches",
            action="Failed to upload job data",
            data=normalized.encode("utf-8"),
            content_type="text/csv",
        )

    async def complete_job_upload(self, org: OrgContext, job_id: str) -> RemoteJob:
        """Close the upload; the job moves to UploadComplete and starts processing."""
        self._validate_job_id(job_id)
        action = "Failed to complete job upload"
        text, _ = await self._request(
            org, "PATCH", f"/jobs/ingest/{job_id}", action=action, json_body={"state": "UploadComplete"}
        )
        return RemoteJob.from_payload(self._parse_json(text, action), JobKind.INGEST)

    async def get_failed_results(self, org: OrgContext, job_id: str) -> str:
        """CSV of records the ingest job rejected, with sf__Id and sf__Error columns."""
        self._validate_job_id(job_id)
        text, _ = await self._request(
            org,
            "GET",
            f"/jobs/ingest/{job_id}/failedResults/",
            action="Failed to get failed results",
            accept="text/csv",
        )
        return text

    async def get_successful_results(self, org: OrgContext, job_id: str) -> str:
        """CSV of records the ingest job processed successfully."""
        self._validate_job_id(job_id)
        text, _ = await self._request(
            org,
            "GET",
            f"/jobs/ingest/{job_id}/successfulResults/",
            action="Failed to get successful results",
            accept="text/csv",
        )
        return text

    # --- description and counts -----------------------------------------------

    async def describe_object(self, org: OrgContext, object_name: str) -> list[FieldDescription]:
        """Fetch field metadata (including picklist values) for an object."""
        self._validate_object_name(object_name)
        action = "Failed to describe object"
        text, _ = await self._request(org, "GET", f"/sobjects/{object_name}/describe/", action=action)
        payload = self._parse_json(text, action)
        return [FieldDescription.from_payload(entry) for entry in payload.get("fields", [])]

    async def query_record_count(self, org: OrgContext, query: str) -> int:
        """
        Approximate number of records a query returns, via a derived COUNT() query.

        Only a pre-check: the bulk job result is authoritative.
        """
        action = "Failed to count records"
        text, _ = await self._request(org, "GET", "/query", action=action, params={"q": to_count_query(query)})
        payload = self._parse_json(text, action)
        return int(payload.get("totalSize", 0))

    # --- validation -------------------------------------------------------------

    @staticmethod
    def _validate_job_id(job_id: str) -> None:
        if not job_id or not JOB_ID_PATTERN.match(job_id):
            raise ValidationError(f"Invalid job ID format: {job_id!r}")

    @staticmethod
    def _validate_object_name(object_name: str) -> None:
        if not object_name or not OBJECT_NAME_PATTERN.match(object_name):
            raise ValidationError(f"Invalid object name format: {object_name!r}")


def extract_error_message(status: int, reason: str | None, body: str) -> str:
    """
    Pick the best error text from an error response.

    Prefers the ``message`` of the first entry of the JSON error array, then
    the raw body, then the HTTP status line.
    """
    try:
        payload = json.loads(body) if body else None
    except json.JSONDecodeError:
        payload = None

    if isinstance(payload, list) and payload and isinstance(payload[0], dict) and payload[0].get("message"):
        return str(payload[0]["message"])
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    if body and body.strip():
        return body.strip()[:500]
    return f"HTTP {status} {reason or ''}".strip()


def _header(headers: dict[str, str], name: str) -> str | None:
    # dict(CIMultiDictProxy) keeps the server's casing
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None
