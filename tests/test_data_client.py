"""Test the upstream invoice data client."""

import json

import httpx
import pytest

from invoice_export.core.exceptions import NetworkError
from invoice_export.schemas.exports import ExportRequest
from tests.support import csv_body, json_response, make_invoice, make_report_payload, mock_client


def _request(**overrides) -> ExportRequest:
    return ExportRequest.from_input({"startDate": "2024-01-01", "endDate": "2024-01-31", **overrides})


@pytest.mark.asyncio
async def test_csv_export_posts_filters_and_streams_body():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=csv_body(3), headers={"Content-Type": "text/csv"})

    client = mock_client(handler)
    async with client.open_stream(_request(vendor="ACME")) as response:
        body = b"".join([chunk async for chunk in response.aiter_bytes()])

    assert body == csv_body(3)
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/export"
    assert json.loads(seen[0].content) == {
        "startDate": "2024-01-01",
        "endDate": "2024-01-31",
        "format": "csv",
        "includeIVA": True,
        "vendor": "ACME",
    }


@pytest.mark.asyncio
async def test_error_field_becomes_the_message():
    client = mock_client(lambda request: json_response(500, {"error": "Database unavailable"}))

    with pytest.raises(NetworkError) as exc_info:
        async with client.open_stream(_request()):
            pass

    assert str(exc_info.value) == "Database unavailable"
    assert exc_info.value.status_code == 500
    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_error_without_body_uses_status():
    client = mock_client(lambda request: httpx.Response(502, content=b"<html>bad gateway</html>"))

    with pytest.raises(NetworkError) as exc_info:
        await client.fetch_report(_request(format="pdf"))

    assert str(exc_info.value) == "Export request failed (HTTP 502)"


@pytest.mark.asyncio
async def test_fetch_report_parses_rows():
    payload = make_report_payload([make_invoice(1), make_invoice(2, vendor="Other")])
    client = mock_client(lambda request: json_response(200, payload))

    data = await client.fetch_report(_request(format="pdf"))

    assert [row.vendor for row in data.invoices] == ["Vendor A", "Other"]
    assert data.summary.total_invoices == 2


@pytest.mark.asyncio
async def test_reports_source_uses_query_parameters():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return json_response(200, make_report_payload([make_invoice(1)]))

    await mock_client(handler).fetch_report(_request(format="pdf", source="reports", reportType="detailed"))

    assert seen[0].method == "GET"
    assert seen[0].url.path == "/api/reports/export"
    assert seen[0].url.params["dateFrom"] == "2024-01-01"
    assert seen[0].url.params["reportType"] == "detailed"


@pytest.mark.asyncio
async def test_malformed_payload_is_a_network_error():
    client = mock_client(lambda request: httpx.Response(200, content=b"not json"))

    with pytest.raises(NetworkError):
        await client.fetch_report(_request(format="pdf"))


@pytest.mark.asyncio
async def test_transport_failure_is_a_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        await mock_client(handler).fetch_report(_request(format="pdf"))
