"""Schemas for the JSON payload the data endpoint returns for PDF exports."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InvoiceRow(BaseModel):
    """One invoice as returned by the data endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    vendor: Optional[str] = None
    nit: Optional[str] = None
    nit_ci_cex: Optional[str] = None
    number_receipt: Optional[str] = None
    authorization_code: Optional[str] = None
    name: Optional[str] = None
    category: Optional[str] = None
    rubro: Optional[str] = None
    purchase_date: datetime
    total_amount: float = 0.0

    @field_validator("id", "nit", "nit_ci_cex", "number_receipt", "authorization_code", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> Any:
        """Identifiers arrive as numbers from some endpoints."""
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("category", "rubro", mode="before")
    @classmethod
    def relation_name(cls, v: Any) -> Any:
        """Category and rubro may be nested ``{name: ...}`` objects."""
        if isinstance(v, dict):
            return v.get("name")
        return v


class ReportSummary(BaseModel):
    """Aggregates computed by the data endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    total_invoices: Optional[int] = Field(None, alias="totalInvoices")
    total_amount: Optional[float] = Field(None, alias="totalAmount")
    total_without_vat: Optional[float] = Field(None, alias="totalWithoutIVA")
    total_vat: Optional[float] = Field(None, alias="totalIVA")
    total_tax: Optional[float] = Field(None, alias="totalTax")
    average_amount: Optional[float] = Field(None, alias="averageAmount")
    period: Optional[str] = None
    period_start: Optional[str] = Field(None, alias="periodStart")
    period_end: Optional[str] = Field(None, alias="periodEnd")
    export_date: Optional[str] = Field(None, alias="exportDate")

    @property
    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class Performer(BaseModel):
    """Aggregated amount for a vendor or category."""

    name: str
    amount: float
    count: int = 0


class TopPerformers(BaseModel):
    categories: List[Performer] = Field(default_factory=list)
    vendors: List[Performer] = Field(default_factory=list)


class ReportFilters(BaseModel):
    """Filters echoed back by the data endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    start_date: Optional[str] = Field(None, alias="startDate")
    end_date: Optional[str] = Field(None, alias="endDate")
    date_from: Optional[str] = Field(None, alias="dateFrom")
    date_to: Optional[str] = Field(None, alias="dateTo")
    vendor: Optional[str] = None
    nit: Optional[str] = None
    category: Optional[str] = None
    report_type: Optional[str] = Field(None, alias="reportType")


class ReportData(BaseModel):
    """Rows plus aggregates for one PDF export."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    invoices: List[InvoiceRow] = Field(default_factory=list)
    summary: ReportSummary = Field(default_factory=ReportSummary)
    filters: ReportFilters = Field(default_factory=ReportFilters)
    top_performers: Optional[TopPerformers] = Field(None, alias="topPerformers")
    export_date: Optional[str] = Field(None, alias="exportDate")
