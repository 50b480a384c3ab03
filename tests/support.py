"""Test doubles and payload builders for export pipeline tests."""

import asyncio
import json
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx

from invoice_export.services.data_client import InvoiceDataClient


class FakeStreamResponse:
    """Minimal streamed response: headers plus scripted chunks."""

    def __init__(
        self,
        chunks: List[bytes],
        content_length: Optional[int] = None,
        fail_after: Optional[int] = None,
    ) -> None:
        self.headers: Dict[str, str] = {}
        if content_length is not None:
            self.headers["Content-Length"] = str(content_length)
        self.chunks = chunks
        self.fail_after = fail_after

    async def aiter_bytes(self, chunk_size: Optional[int] = None):
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index == self.fail_after:
                raise httpx.ReadError("connection reset")
            yield chunk


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_invoice(
    index: int,
    vendor: str = "Vendor A",
    purchase_date: str = "2024-01-15",
    amount: float = 113.0,
    category: Optional[str] = "Services",
) -> Dict[str, Any]:
    return {
        "id": f"inv-{index}",
        "authorization_code": f"AUTH{index:04d}",
        "name": f"Invoice {index}",
        "nit": "1234567",
        "nit_ci_cex": "7654321",
        "number_receipt": f"{1000 + index}",
        "purchase_date": f"{purchase_date}T10:00:00.000Z",
        "total_amount": amount,
        "vendor": vendor,
        "category": {"name": category} if category else None,
        "rubro": "General",
    }


def make_report_payload(invoices: List[Dict[str, Any]], **summary: Any) -> Dict[str, Any]:
    total = sum(invoice["total_amount"] for invoice in invoices)
    base_summary = {
        "totalInvoices": len(invoices),
        "totalAmount": f"{total:.2f}",
        "totalWithoutIVA": f"{total / 1.13:.2f}",
        "totalIVA": f"{total - total / 1.13:.2f}",
        "period": "2024-01-01 - 2024-01-31",
        "exportDate": "31/1/2024",
    }
    base_summary.update(summary)
    return {
        "invoices": invoices,
        "summary": base_summary,
        "filters": {"startDate": "2024-01-01", "endDate": "2024-01-31"},
    }


def spread_invoices(count: int, vendors: List[str], start: date, step_days: int = 1) -> List[Dict[str, Any]]:
    return [
        make_invoice(
            i,
            vendor=vendors[i % len(vendors)],
            purchase_date=(start + timedelta(days=i * step_days)).isoformat(),
            amount=100.0 + i,
            category=["Services", "Supplies", "Travel"][i % 3],
        )
        for i in range(count)
    ]


def csv_body(rows: int) -> bytes:
    lines = ["Fecha,Vendedor,NIT,Monto Total (Bs.),Monto sin IVA (Bs.),IVA (Bs.)"]
    for i in range(rows):
        total = 100.0 + i
        lines.append(f"15/1/2024,Vendor {i},123,{total:.2f},{total / 1.13:.2f},{total - total / 1.13:.2f}")
    return ("\ufeff" + "\n".join(lines)).encode("utf-8")


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> InvoiceDataClient:
    return InvoiceDataClient(base_url="http://upstream.test/api", transport=httpx.MockTransport(handler))


def json_response(status_code: int, payload: Any) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
    )


async def wait_for_pending_retry(orchestrator, timeout: float = 5.0) -> None:
    """Wait until ``orchestrator`` has a retry delay scheduled, failing after ``timeout``."""

    async def pending() -> None:
        while not orchestrator.has_pending_retry:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(pending(), timeout=timeout)
