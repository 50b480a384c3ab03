"""Export schemas."""

from datetime import date
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from invoice_export.core.exceptions import ExportValidationError

FILENAME_PATTERN = r"^[A-Za-z0-9._-]{3,50}$"

MISSING_DATES_MESSAGE = "Please select a date range"
INVERTED_RANGE_MESSAGE = "Start date cannot be after end date"
INVALID_FILENAME_MESSAGE = "Filename must be 3-50 characters of letters, digits, '.', '_' or '-'"


class ExportFormat(str, Enum):
    """Artifact format requested by the user."""

    CSV = "csv"
    PDF = "pdf"


class ExportSource(str, Enum):
    """Upstream endpoint family the rows come from."""

    INVOICES = "invoices"
    REPORTS = "reports"


class ReportType(str, Enum):
    """Document variant."""

    SUMMARY = "summary"
    DETAILED = "detailed"


class ExportRequest(BaseModel):
    """Export request schema."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    start_date: date = Field(..., alias="startDate")
    end_date: date = Field(..., alias="endDate")
    format: ExportFormat = ExportFormat.CSV
    vendor: Optional[str] = None
    nit: Optional[str] = None
    include_tax_breakdown: bool = Field(True, alias="includeIVA")
    compress: bool = False
    filename: Optional[str] = Field(None, pattern=FILENAME_PATTERN)
    source: ExportSource = ExportSource.INVOICES
    report_type: ReportType = Field(ReportType.SUMMARY, alias="reportType")

    @field_validator("vendor", "nit", "filename", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Treat whitespace-only filters as absent."""
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def require_date(cls, v: Any) -> Any:
        """Blank form values count as a missing range."""
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError(MISSING_DATES_MESSAGE)
        return v

    @model_validator(mode="after")
    def check_date_order(self) -> "ExportRequest":
        """Start must not be after end."""
        if self.start_date > self.end_date:
            raise ValueError(INVERTED_RANGE_MESSAGE)
        return self

    @property
    def days_in_range(self) -> int:
        """Whole days between start and end."""
        return (self.end_date - self.start_date).days

    @property
    def base_filename(self) -> str:
        """User filename or the ``facturas_<start>_<end>`` default, without extension."""
        if self.filename:
            return self.filename
        return f"facturas_{self.start_date.isoformat()}_{self.end_date.isoformat()}"

    @classmethod
    def from_input(cls, data: "ExportRequest | Mapping[str, Any]") -> "ExportRequest":
        """Validate user input, raising ``ExportValidationError`` with a readable message."""
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise ExportValidationError(_describe(exc)) from exc

    def to_export_body(self) -> Dict[str, Any]:
        """JSON body for ``POST /export``."""
        body: Dict[str, Any] = {
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "format": self.format.value,
            "includeIVA": self.include_tax_breakdown,
        }
        if self.vendor:
            body["vendor"] = self.vendor
        if self.nit:
            body["nit"] = self.nit
        return body

    def to_report_params(self) -> Dict[str, str]:
        """Query parameters for ``GET /reports/export``."""
        params = {
            "dateFrom": self.start_date.isoformat(),
            "dateTo": self.end_date.isoformat(),
            "reportType": self.report_type.value,
            "format": self.format.value,
        }
        if self.vendor:
            params["vendor"] = self.vendor
        if self.nit:
            params["nit"] = self.nit
        return params


def _describe(exc: ValidationError) -> str:
    for error in exc.errors():
        field = error["loc"][0] if error["loc"] else None
        if field in ("startDate", "endDate", "start_date", "end_date") and error["type"] == "missing":
            return MISSING_DATES_MESSAGE
        if field == "filename":
            return INVALID_FILENAME_MESSAGE
        if error["type"] == "value_error":
            return str(error["ctx"]["error"])
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]


class SizeEstimate(BaseModel):
    """Advisory artifact size."""

    raw_bytes: int
    compressed_bytes: Optional[int] = None


class NoticeSchema(BaseModel):
    """User-facing notice."""

    level: str
    title: str
    message: str


class ExportJobStatus(BaseModel):
    """Export status schema."""

    surface_id: str
    job_id: Optional[str] = None
    state: str
    history: List[str] = Field(default_factory=list)
    attempt: int = 0
    progress: Optional[int] = None
    bytes_received: int = 0
    bytes_total: Optional[int] = None
    filename: Optional[str] = None
    error: Optional[str] = None
    estimate: Optional[SizeEstimate] = None
    notices: List[NoticeSchema] = Field(default_factory=list)
