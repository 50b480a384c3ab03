from invoice_export.schemas.exports import (
    ExportFormat,
    ExportJobStatus,
    ExportRequest,
    ExportSource,
    ReportType,
    SizeEstimate,
)
from invoice_export.schemas.report_data import InvoiceRow, ReportData, ReportSummary

__all__ = [
    "ExportFormat",
    "ExportJobStatus",
    "ExportRequest",
    "ExportSource",
    "InvoiceRow",
    "ReportData",
    "ReportSummary",
    "ReportType",
    "SizeEstimate",
]
