"""Test PDF report assembly."""

from datetime import date

import pytest

from invoice_export.core.exceptions import ChartRenderError, DocumentBuildError
from invoice_export.schemas.exports import ReportType
from invoice_export.schemas.report_data import ReportData
from invoice_export.services.charts import RenderedChart
from invoice_export.services.documents import (
    DETAILED_COLUMNS,
    AssemblyOptions,
    DocumentAssembler,
    column_layout,
    footer_text,
    relative_widths,
)
from invoice_export.services.tax import amount_without_vat, format_amount, vat_amount
from tests.support import make_invoice, make_report_payload, spread_invoices


class FailingRasterizer:
    def __init__(self) -> None:
        self.calls = 0

    async def render(self, *args, **kwargs):
        self.calls += 1
        raise ChartRenderError("surface lost")


def _block(document, name):
    return next(block for block in document.blocks if block.name == name)


@pytest.mark.asyncio
async def test_summary_report_blocks_in_order(assembler, two_month_report):
    document = await assembler.assemble(two_month_report)

    names = [block.name for block in document.blocks]
    assert names[0] == "title"
    for name in ("vendor-chart", "category-chart", "monthly-chart"):
        assert name in names
    assert names.index("summary") < names.index("vendor-chart") < names.index("detail-break")
    assert names[-1] == "detail"
    assert len(document.charts) == 3


@pytest.mark.asyncio
async def test_single_vendor_has_no_vendor_chart(assembler):
    invoices = [
        make_invoice(1, vendor="Solo", purchase_date="2024-01-05"),
        make_invoice(2, vendor="Solo", purchase_date="2024-02-05"),
    ]
    document = await assembler.assemble(ReportData.model_validate(make_report_payload(invoices)))

    assert not document.has_block("vendor-chart")
    assert document.has_block("monthly-chart")


@pytest.mark.asyncio
async def test_single_month_has_no_monthly_chart(assembler):
    invoices = [
        make_invoice(1, vendor="A", purchase_date="2024-01-05"),
        make_invoice(2, vendor="B", purchase_date="2024-01-25"),
    ]
    document = await assembler.assemble(ReportData.model_validate(make_report_payload(invoices)))

    assert document.has_block("vendor-chart")
    assert not document.has_block("monthly-chart")


@pytest.mark.asyncio
async def test_summary_without_rows(assembler):
    data = ReportData.model_validate(make_report_payload([], totalInvoices=0, totalAmount="0.00"))

    document = await assembler.assemble(data)

    assert document.has_block("summary")
    assert document.has_block("no-rows")
    assert not document.has_block("detail")
    assert document.charts == []
    assert document.finalize().startswith(b"%PDF")


@pytest.mark.asyncio
async def test_no_rows_and_no_summary_is_an_error(assembler):
    with pytest.raises(DocumentBuildError):
        await assembler.assemble(ReportData())


@pytest.mark.asyncio
async def test_failed_chart_is_skipped(two_month_report):
    rasterizer = FailingRasterizer()
    document = await DocumentAssembler(rasterizer).assemble(two_month_report)

    assert rasterizer.calls == 3
    assert document.charts == []
    assert document.has_block("detail")


@pytest.mark.asyncio
async def test_charts_can_be_disabled(assembler, two_month_report):
    document = await assembler.assemble(two_month_report, AssemblyOptions(include_charts=False))
    assert document.charts == []


@pytest.mark.asyncio
async def test_detailed_variant(assembler, two_month_report):
    options = AssemblyOptions(variant=ReportType.DETAILED, include_tax_breakdown=True)
    document = await assembler.assemble(two_month_report, options)

    assert document.title == "Detailed Invoice Report"
    assert not document.has_block("vendor-chart")
    assert not document.has_block("category-chart")
    assert document.has_block("monthly-chart")

    detail = _block(document, "detail")
    assert detail.rows[0] == [column.header for column in DETAILED_COLUMNS]
    assert detail.col_widths == relative_widths(list(DETAILED_COLUMNS))


@pytest.mark.asyncio
async def test_tax_columns_follow_the_toggle(assembler, two_month_report):
    without_tax = await assembler.assemble(two_month_report, AssemblyOptions(include_tax_breakdown=False))
    headers = _block(without_tax, "detail").rows[0]
    assert "VAT (Bs.)" not in headers
    assert all(row[0] != "VAT (13%)" for row in _block(without_tax, "summary").rows)

    with_tax = await assembler.assemble(two_month_report, AssemblyOptions(include_tax_breakdown=True))
    assert "VAT (Bs.)" in _block(with_tax, "detail").rows[0]


@pytest.mark.asyncio
async def test_detail_total_row(assembler, two_month_report):
    document = await assembler.assemble(two_month_report, AssemblyOptions(include_charts=False))
    detail = _block(document, "detail")
    headers, totals = detail.rows[0], detail.rows[-1]

    assert len(detail.rows) == 1 + 3 + 1
    assert totals[0] == "TOTAL"
    assert totals[headers.index("Amount (Bs.)")] == format_amount(1000.0)
    assert totals[headers.index("VAT (Bs.)")] == format_amount(vat_amount(1000.0))


@pytest.mark.asyncio
async def test_top_performer_tables(assembler):
    payload = make_report_payload([make_invoice(1)])
    payload["topPerformers"] = {
        "categories": [{"name": "Services", "amount": 113.0, "count": 1}],
        "vendors": [],
    }
    document = await assembler.assemble(ReportData.model_validate(payload))

    assert document.has_block("top-categories")
    assert not document.has_block("top-vendors")


@pytest.mark.asyncio
async def test_finalize_paginates_long_listings(assembler):
    invoices = spread_invoices(250, ["A", "B", "C", "D"], date(2024, 1, 1))
    document = await assembler.assemble(
        ReportData.model_validate(make_report_payload(invoices)),
        AssemblyOptions(include_charts=False),
    )

    pdf = document.finalize()

    assert pdf.startswith(b"%PDF")
    assert document.page_count > 2


@pytest.mark.asyncio
async def test_finalize_embeds_charts(assembler, two_month_report):
    document = await assembler.assemble(two_month_report)
    pdf = document.finalize()
    assert pdf.startswith(b"%PDF")
    assert b"/Image" in pdf
    assert document.page_count >= 2


def test_relative_widths_are_proportional():
    columns = column_layout(ReportType.SUMMARY, include_tax_breakdown=True)
    widths = relative_widths(columns)

    assert sum(widths) == pytest.approx(1.0)
    for column, fraction in zip(columns, widths):
        assert fraction / widths[0] == pytest.approx(column.width / columns[0].width)


def test_column_layout_drops_tax_columns():
    assert len(column_layout(ReportType.SUMMARY, include_tax_breakdown=False)) == 5
    assert len(column_layout(ReportType.DETAILED, include_tax_breakdown=False)) == 6


def test_footer_text():
    assert footer_text(2, 7) == "Page 2 of 7"


@pytest.mark.parametrize("amount", [0.0, 113.0, 1234.56])
def test_vat_split_adds_up(amount):
    assert amount_without_vat(amount) + vat_amount(amount) == pytest.approx(amount)
    assert amount_without_vat(113.0) == pytest.approx(100.0)


class RecordingRasterizer:
    def __init__(self) -> None:
        self.rendered = {}

    async def render(self, series, kind, title, **kwargs):
        self.rendered[title] = series
        return RenderedChart(image=b"", width=600, height=400, title=title, kind=kind)


@pytest.mark.asyncio
async def test_monthly_chart_plots_amount_and_count(two_month_report):
    rasterizer = RecordingRasterizer()
    await DocumentAssembler(rasterizer).assemble(two_month_report)

    series = rasterizer.rendered["Monthly trend"]
    assert series.labels == ["2024-01", "2024-02"]
    assert [dataset.label for dataset in series.datasets] == ["Monthly amount", "Invoice count"]
    assert series.datasets[0].values == [800.0, 200.0]
    assert series.datasets[1].values == [2.0, 1.0]
