"""PDF report assembly from invoice rows and aggregates."""

import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Callable, List, Optional
from xml.sax.saxutils import escape

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas
from reportlab.platypus import (
    CondPageBreak,
    Image,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from invoice_export.core.exceptions import DocumentBuildError
from invoice_export.core.feature_flags import is_enabled
from invoice_export.core.observability import get_job_id, trace_function
from invoice_export.schemas.exports import ReportType
from invoice_export.schemas.report_data import InvoiceRow, ReportData
from invoice_export.services.charts import ChartKind, ChartRasterizer, ChartSeries, ChartDataset, RenderedChart
from invoice_export.services.tax import amount_without_vat, format_amount, vat_amount

logger = logging.getLogger(__name__)

PAGE_SIZE = letter
PAGE_MARGIN = 0.75 * inch
FOOTER_OFFSET = 0.45 * inch
# Keep a heading on the same page as at least this much of what follows
HEADING_RESERVE = 1.5 * inch
MAX_CHART_WIDTH = 6 * inch

TOP_VENDORS = 5
TOP_CATEGORIES = 10

NO_VENDOR = "No vendor"
NO_CATEGORY = "Uncategorized"

HEADER_FILL = colors.Color(41 / 255, 128 / 255, 185 / 255)
ALTERNATE_FILL = colors.Color(245 / 255, 245 / 255, 245 / 255)


class BlockKind(str, Enum):
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    TABLE = "table"
    IMAGE = "image"
    PAGE_BREAK = "page_break"


@dataclass
class DocumentBlock:
    """One typed block of the document, emitted in order."""
    kind: BlockKind
    name: str = ""
    text: str = ""
    level: int = 1
    rows: List[List[str]] = field(default_factory=list)
    col_widths: List[float] = field(default_factory=list)
    chart: Optional[RenderedChart] = None


@dataclass(frozen=True)
class ColumnSpec:
    header: str
    width: float
    value: Callable[[InvoiceRow], str]
    tax: bool = False


def _date(row: InvoiceRow) -> str:
    return row.purchase_date.strftime("%d/%m/%Y")


# Relative column widths are fixed per variant; tax columns are optional.
INVOICE_COLUMNS = (
    ColumnSpec("Date", 20, _date),
    ColumnSpec("Vendor", 35, lambda r: r.vendor or NO_VENDOR),
    ColumnSpec("NIT", 25, lambda r: r.nit or "-"),
    ColumnSpec("Receipt No.", 25, lambda r: r.number_receipt or "-"),
    ColumnSpec("Amount (Bs.)", 20, lambda r: format_amount(r.total_amount)),
    ColumnSpec("Without VAT (Bs.)", 20, lambda r: format_amount(amount_without_vat(r.total_amount)), tax=True),
    ColumnSpec("VAT (Bs.)", 20, lambda r: format_amount(vat_amount(r.total_amount)), tax=True),
)

DETAILED_COLUMNS = (
    ColumnSpec("Number", 25, lambda r: r.number_receipt or ""),
    ColumnSpec("Vendor", 35, lambda r: r.vendor or NO_VENDOR),
    ColumnSpec("Category", 30, lambda r: r.category or NO_CATEGORY),
    ColumnSpec("Rubro", 25, lambda r: r.rubro or "-"),
    ColumnSpec("Amount (Bs.)", 25, lambda r: format_amount(r.total_amount)),
    ColumnSpec("Date", 25, _date),
    ColumnSpec("Without VAT (Bs.)", 20, lambda r: format_amount(amount_without_vat(r.total_amount)), tax=True),
    ColumnSpec("VAT (Bs.)", 20, lambda r: format_amount(vat_amount(r.total_amount)), tax=True),
)


def column_layout(variant: ReportType, include_tax_breakdown: bool) -> List[ColumnSpec]:
    columns = DETAILED_COLUMNS if variant is ReportType.DETAILED else INVOICE_COLUMNS
    return [column for column in columns if include_tax_breakdown or not column.tax]


def relative_widths(columns: List[ColumnSpec]) -> List[float]:
    """Column widths as fractions of the table width."""
    total = sum(column.width for column in columns)
    return [column.width / total for column in columns]


def footer_text(page: int, total: int) -> str:
    return f"Page {page} of {total}"


@dataclass
class AssemblyOptions:
    variant: ReportType = ReportType.SUMMARY
    include_tax_breakdown: bool = True
    include_charts: bool = field(default_factory=lambda: is_enabled("enable_charts"))
    title: Optional[str] = None
    chart_width: Optional[int] = None
    chart_height: Optional[int] = None


class NumberedCanvas(canvas.Canvas):
    """Canvas that defers pages so each footer can show the total count."""

    def __init__(self, *args, page_counter: Optional[Callable[[int], None]] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._saved_page_states: List[dict] = []
        self._page_counter = page_counter

    def showPage(self) -> None:
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self) -> None:
        total = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self._draw_footer(total)
            super().showPage()
        if self._page_counter is not None:
            self._page_counter(total)
        super().save()

    def _draw_footer(self, total: int) -> None:
        self.saveState()
        self.setFont("Helvetica", 8)
        self.setFillColor(colors.grey)
        self.drawString(PAGE_MARGIN, FOOTER_OFFSET, footer_text(self._pageNumber, total))
        self.restoreState()


@dataclass
class Document:
    """Ordered blocks of a report, finalized into PDF bytes on demand."""
    title: str
    blocks: List[DocumentBlock] = field(default_factory=list)
    page_count: Optional[int] = None

    def add(self, block: DocumentBlock) -> None:
        self.blocks.append(block)

    def has_block(self, name: str) -> bool:
        return any(block.name == name for block in self.blocks)

    @property
    def charts(self) -> List[RenderedChart]:
        return [block.chart for block in self.blocks if block.kind is BlockKind.IMAGE and block.chart]

    @trace_function("document.finalize")
    def finalize(self) -> bytes:
        """Lay out the blocks on pages and return the PDF."""
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=PAGE_SIZE,
            leftMargin=PAGE_MARGIN,
            rightMargin=PAGE_MARGIN,
            topMargin=PAGE_MARGIN,
            bottomMargin=PAGE_MARGIN,
            title=self.title,
        )
        story = _FlowableBuilder(doc.width).build(self.blocks)

        def record_pages(total: int) -> None:
            self.page_count = total

        doc.build(story, canvasmaker=partial(NumberedCanvas, page_counter=record_pages))
        return buffer.getvalue()


class _FlowableBuilder:
    """Maps document blocks onto reportlab flowables."""

    def __init__(self, available_width: float) -> None:
        self.available_width = available_width
        self.styles = getSampleStyleSheet()
        self.cell_style = ParagraphStyle("Cell", parent=self.styles["Normal"], fontSize=7, leading=9)
        self.header_style = ParagraphStyle(
            "HeaderCell",
            parent=self.cell_style,
            fontName="Helvetica-Bold",
            textColor=colors.white,
        )

    def build(self, blocks: List[DocumentBlock]) -> list:
        story = []
        for block in blocks:
            story.extend(self._flowables(block))
        return story

    def _flowables(self, block: DocumentBlock) -> list:
        if block.kind is BlockKind.HEADING:
            style = self.styles["Title"] if block.level == 0 else self.styles[f"Heading{block.level}"]
            return [CondPageBreak(HEADING_RESERVE), Paragraph(escape(block.text), style)]

        if block.kind is BlockKind.PARAGRAPH:
            return [Paragraph(escape(block.text), self.styles["Normal"]), Spacer(1, 4)]

        if block.kind is BlockKind.TABLE:
            return [self._table(block), Spacer(1, 12)]

        if block.kind is BlockKind.IMAGE and block.chart is not None:
            return [self._image(block.chart), Spacer(1, 12)]

        if block.kind is BlockKind.PAGE_BREAK:
            return [PageBreak()]

        return []

    def _table(self, block: DocumentBlock) -> Table:
        header, *body = block.rows
        data = [[Paragraph(escape(cell), self.header_style) for cell in header]]
        data.extend([Paragraph(escape(cell), self.cell_style) for cell in row] for row in body)

        widths = None
        if block.col_widths:
            widths = [fraction * self.available_width for fraction in block.col_widths]

        table = Table(data, colWidths=widths, repeatRows=1)
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), HEADER_FILL),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, ALTERNATE_FILL]),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ("GRID", (0, 0), (-1, -1), 0.25, colors.lightgrey),
            ("TOPPADDING", (0, 0), (-1, -1), 2),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
        ]))
        return table

    def _image(self, chart: RenderedChart) -> Image:
        width = min(self.available_width, MAX_CHART_WIDTH)
        height = width * chart.height / chart.width
        image = Image(io.BytesIO(chart.image), width=width, height=height)
        image.hAlign = "CENTER" if chart.x is None else "LEFT"
        return image


def invoices_frame(rows: List[InvoiceRow]) -> pd.DataFrame:
    """Rows as a DataFrame with the columns the aggregations need."""
    frame = pd.DataFrame(
        [
            {
                "vendor": row.vendor or NO_VENDOR,
                "category": row.category or NO_CATEGORY,
                "total_amount": row.total_amount,
                "purchase_date": row.purchase_date,
            }
            for row in rows
        ],
        columns=["vendor", "category", "total_amount", "purchase_date"],
    )
    if not frame.empty:
        frame["month"] = [value.strftime("%Y-%m") for value in frame["purchase_date"]]
    else:
        frame["month"] = pd.Series(dtype=str)
    return frame


class DocumentAssembler:
    """Builds the multi-page PDF report for an export."""

    def __init__(self, rasterizer: Optional[ChartRasterizer] = None) -> None:
        self.rasterizer = rasterizer or ChartRasterizer()

    @trace_function("document_assembler.assemble")
    async def assemble(self, data: ReportData, options: Optional[AssemblyOptions] = None) -> Document:
        """Assemble title, summary, charts and the detailed listing."""
        options = options or AssemblyOptions()
        frame = invoices_frame(data.invoices)

        if frame.empty and data.summary.is_empty:
            raise DocumentBuildError("No invoices or summary data to export")

        document = Document(title=options.title or self._default_title(options.variant))
        self._add_header(document, data, options)
        self._add_summary(document, data, frame, options)

        if options.include_charts and not frame.empty:
            if options.variant is ReportType.SUMMARY:
                await self._add_vendor_chart(document, frame, options)
                await self._add_category_chart(document, frame, options)
            await self._add_monthly_chart(document, frame, options)

        if options.variant is ReportType.SUMMARY:
            self._add_top_performers(document, data)

        if data.invoices:
            document.add(DocumentBlock(BlockKind.PAGE_BREAK, name="detail-break"))
            self._add_detail(document, data, options)
        else:
            document.add(DocumentBlock(
                BlockKind.PARAGRAPH,
                name="no-rows",
                text="No invoices found for the selected filters.",
            ))

        logger.info(
            "Document assembled",
            extra={
                "job_id": get_job_id(),
                "variant": options.variant.value,
                "rows": len(data.invoices),
                "charts": len(document.charts),
            },
        )
        return document

    def _default_title(self, variant: ReportType) -> str:
        if variant is ReportType.DETAILED:
            return "Detailed Invoice Report"
        return "Invoice Report"

    def _add_header(self, document: Document, data: ReportData, options: AssemblyOptions) -> None:
        document.add(DocumentBlock(BlockKind.HEADING, name="title", text=document.title, level=0))
        document.add(DocumentBlock(BlockKind.PARAGRAPH, name="period", text=f"Period: {self._period(data)}"))

        export_date = data.summary.export_date or data.export_date or datetime.now().strftime("%d/%m/%Y")
        document.add(DocumentBlock(BlockKind.PARAGRAPH, name="export-date", text=f"Export date: {export_date}"))

        applied = []
        if data.filters.vendor:
            applied.append(f"Vendor: {data.filters.vendor}")
        if data.filters.nit:
            applied.append(f"NIT: {data.filters.nit}")
        if data.filters.category:
            applied.append(f"Category: {data.filters.category}")
        document.add(DocumentBlock(
            BlockKind.PARAGRAPH,
            name="filters",
            text="Filters applied: " + (", ".join(applied) if applied else "None"),
        ))
        document.add(DocumentBlock(
            BlockKind.PARAGRAPH,
            name="report-type",
            text=f"Report type: {options.variant.value.capitalize()}",
        ))

    def _period(self, data: ReportData) -> str:
        summary, filters = data.summary, data.filters
        if summary.period:
            return summary.period
        start = summary.period_start or filters.start_date or filters.date_from
        end = summary.period_end or filters.end_date or filters.date_to
        if start and end:
            return f"{start} - {end}"
        return "All time"

    def _add_summary(
        self,
        document: Document,
        data: ReportData,
        frame: pd.DataFrame,
        options: AssemblyOptions,
    ) -> None:
        summary = data.summary
        count = summary.total_invoices if summary.total_invoices is not None else len(frame)
        total = summary.total_amount if summary.total_amount is not None else float(frame["total_amount"].sum())
        if summary.average_amount is not None:
            average = summary.average_amount
        else:
            average = total / count if count else 0.0

        rows = [
            ["Metric", "Value"],
            ["Total invoices", str(count)],
            ["Total amount", f"Bs. {format_amount(total)}"],
            ["Average per invoice", f"Bs. {format_amount(average)}"],
        ]
        if options.include_tax_breakdown:
            rows.append(["Amount without VAT", f"Bs. {format_amount(amount_without_vat(total))}"])
            rows.append(["VAT (13%)", f"Bs. {format_amount(vat_amount(total))}"])

        document.add(DocumentBlock(BlockKind.HEADING, name="summary-heading", text="Summary", level=2))
        document.add(DocumentBlock(BlockKind.TABLE, name="summary", rows=rows, col_widths=[0.6, 0.4]))

    async def _add_vendor_chart(self, document: Document, frame: pd.DataFrame, options: AssemblyOptions) -> None:
        if frame["vendor"].nunique() < 2:
            return
        totals = frame.groupby("vendor")["total_amount"].sum().sort_values(ascending=False).head(TOP_VENDORS)
        series = ChartSeries(
            labels=[str(name) for name in totals.index],
            datasets=[ChartDataset("Amount by vendor", [float(v) for v in totals.values])],
        )
        await self._add_chart(document, "vendor-chart", series, ChartKind.PIE, "Top vendors by amount", options)

    async def _add_category_chart(self, document: Document, frame: pd.DataFrame, options: AssemblyOptions) -> None:
        if frame["category"].nunique() < 2:
            return
        totals = frame.groupby("category")["total_amount"].sum().sort_values(ascending=False).head(TOP_CATEGORIES)
        series = ChartSeries(
            labels=[str(name) for name in totals.index],
            datasets=[ChartDataset("Amount by category", [float(v) for v in totals.values])],
        )
        await self._add_chart(document, "category-chart", series, ChartKind.BAR, "Amount by category", options)

    async def _add_monthly_chart(self, document: Document, frame: pd.DataFrame, options: AssemblyOptions) -> None:
        if frame["month"].nunique() < 2:
            return
        monthly = frame.groupby("month")["total_amount"].agg(["sum", "count"]).sort_index()
        series = ChartSeries(
            labels=[str(month) for month in monthly.index],
            datasets=[
                ChartDataset("Monthly amount", [float(v) for v in monthly["sum"]]),
                ChartDataset("Invoice count", [float(v) for v in monthly["count"]]),
            ],
        )
        await self._add_chart(document, "monthly-chart", series, ChartKind.LINE, "Monthly trend", options)

    async def _add_chart(
        self,
        document: Document,
        name: str,
        series: ChartSeries,
        kind: ChartKind,
        title: str,
        options: AssemblyOptions,
    ) -> None:
        # Charts are optional content: a failed render drops only that chart
        try:
            chart = await self.rasterizer.render(
                series,
                kind,
                title,
                width=options.chart_width,
                height=options.chart_height,
            )
        except Exception as exc:
            logger.warning(
                "Skipping chart",
                extra={"job_id": get_job_id(), "chart": name, "error": str(exc)},
                exc_info=True,
            )
            return
        document.add(DocumentBlock(BlockKind.IMAGE, name=name, text=title, chart=chart))

    def _add_top_performers(self, document: Document, data: ReportData) -> None:
        performers = data.top_performers
        if performers is None:
            return
        for name, heading, label, entries in (
            ("top-categories", "Top categories", "Category", performers.categories),
            ("top-vendors", "Top vendors", "Vendor", performers.vendors),
        ):
            if not entries:
                continue
            rows = [[label, "Amount", "Count"]]
            rows.extend([entry.name, f"Bs. {format_amount(entry.amount)}", str(entry.count)] for entry in entries)
            document.add(DocumentBlock(BlockKind.HEADING, name=f"{name}-heading", text=heading, level=2))
            document.add(DocumentBlock(BlockKind.TABLE, name=name, rows=rows, col_widths=[0.5, 0.3, 0.2]))

    def _add_detail(self, document: Document, data: ReportData, options: AssemblyOptions) -> None:
        columns = column_layout(options.variant, options.include_tax_breakdown)
        rows = [[column.header for column in columns]]
        rows.extend([column.value(invoice) for column in columns] for invoice in data.invoices)

        total = sum(invoice.total_amount for invoice in data.invoices)
        totals_row = ["" for _ in columns]
        totals_row[0] = "TOTAL"
        for index, column in enumerate(columns):
            if column.header.startswith("Amount"):
                totals_row[index] = format_amount(total)
            elif column.header.startswith("Without VAT"):
                totals_row[index] = format_amount(amount_without_vat(total))
            elif column.header.startswith("VAT"):
                totals_row[index] = format_amount(vat_amount(total))
        rows.append(totals_row)

        document.add(DocumentBlock(BlockKind.HEADING, name="detail-heading", text="Invoice detail", level=2))
        document.add(DocumentBlock(BlockKind.TABLE, name="detail", rows=rows, col_widths=relative_widths(columns)))
