"""Shared fixtures for export pipeline tests."""

import pytest

from invoice_export.schemas.report_data import ReportData
from invoice_export.services.charts import ChartRasterizer
from invoice_export.services.documents import DocumentAssembler
from tests.support import SleepRecorder, make_invoice, make_report_payload


@pytest.fixture
def rasterizer() -> ChartRasterizer:
    return ChartRasterizer(settle_seconds=0)


@pytest.fixture
def assembler(rasterizer: ChartRasterizer) -> DocumentAssembler:
    return DocumentAssembler(rasterizer)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def two_month_report() -> ReportData:
    invoices = [
        make_invoice(1, vendor="Vendor A", purchase_date="2024-01-10", amount=500.0, category="Services"),
        make_invoice(2, vendor="Vendor B", purchase_date="2024-01-20", amount=300.0, category="Supplies"),
        make_invoice(3, vendor="Vendor C", purchase_date="2024-02-05", amount=200.0, category="Services"),
    ]
    return ReportData.model_validate(make_report_payload(invoices))
