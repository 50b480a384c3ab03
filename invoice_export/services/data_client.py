"""Client for the upstream invoice data endpoint."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx
from pydantic import ValidationError

from invoice_export.core.config import settings
from invoice_export.core.exceptions import NetworkError
from invoice_export.core.observability import get_job_id, trace_function
from invoice_export.schemas.exports import ExportRequest, ExportSource
from invoice_export.schemas.report_data import ReportData

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Export request failed"


class InvoiceDataClient:
    """Fetches export payloads from ``POST /export`` or ``GET /reports/export``.

    Each call opens a fresh request so a retry never resumes a previous
    attempt's stream.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.base_url = (base_url or settings.EXPORT_API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.EXPORT_HTTP_TIMEOUT
        self.transport = transport
        self.headers = headers or {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            transport=self.transport,
            headers=self.headers,
            follow_redirects=True,
        )

    def _build(self, client: httpx.AsyncClient, request: ExportRequest) -> httpx.Request:
        if request.source is ExportSource.REPORTS:
            return client.build_request("GET", "/reports/export", params=request.to_report_params())
        return client.build_request("POST", "/export", json=request.to_export_body())

    @asynccontextmanager
    async def open_stream(self, request: ExportRequest) -> AsyncIterator[httpx.Response]:
        """Open the export request with a streamed body (CSV)."""
        async with self._client() as client:
            try:
                response = await client.send(self._build(client, request), stream=True)
            except httpx.HTTPError as exc:
                raise NetworkError(f"Could not reach export service: {exc}") from exc

            try:
                if response.is_error:
                    await response.aread()
                    raise _status_error(response)
                yield response
            finally:
                await response.aclose()

    @trace_function("invoice_data_client.fetch_report")
    async def fetch_report(self, request: ExportRequest) -> ReportData:
        """Fetch rows and aggregates as JSON (PDF)."""
        async with self._client() as client:
            try:
                response = await client.send(self._build(client, request))
            except httpx.HTTPError as exc:
                raise NetworkError(f"Could not reach export service: {exc}") from exc

        if response.is_error:
            raise _status_error(response)

        try:
            return ReportData.model_validate(response.json())
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.error(
                "Malformed report payload",
                extra={"job_id": get_job_id(), "status_code": response.status_code},
            )
            raise NetworkError(f"Malformed report payload: {exc}") from exc


def _status_error(response: httpx.Response) -> NetworkError:
    """NetworkError carrying the server's ``error`` field when it sent one."""
    message = None
    try:
        body: Any = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    if isinstance(body, dict) and body.get("error"):
        message = str(body["error"])

    logger.warning(
        "Export endpoint returned an error",
        extra={"job_id": get_job_id(), "status_code": response.status_code, "error": message},
    )
    return NetworkError(
        message or f"{DEFAULT_ERROR_MESSAGE} (HTTP {response.status_code})",
        status_code=response.status_code,
    )
