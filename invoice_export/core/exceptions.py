"""Export pipeline error taxonomy.

Every error carries a ``retryable`` class attribute that the retry layer
consults. Anything that is not an ``ExportError`` (raw transport failures,
unexpected bugs in a unit of work) is treated as retryable.
"""

from typing import Optional

UNKNOWN_EXPORT_ERROR = "unknown export error"


class ExportError(Exception):
    """Base class for export pipeline errors."""

    retryable: bool = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ExportValidationError(ExportError):
    """Invalid date range, filename or other local input problem."""


class NetworkError(ExportError):
    """Fetch failure or non-2xx response from the data endpoint."""

    retryable = True

    def __init__(self, message: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkStreamError(NetworkError):
    """The response body failed mid-stream; the attempt is discarded."""


class ChartRenderError(ExportError):
    """A chart could not be rasterized. Recoverable per chart."""


class DocumentBuildError(ExportError):
    """No data at all to render into a document."""


class RetryCancelledError(ExportError):
    """A pending retry delay was abandoned because the export was dismissed."""


class ExportInProgressError(ExportError):
    """An export is already running on this surface."""


class ExhaustedRetriesError(ExportError):
    """All attempts failed; wraps the last underlying error."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(error_message(last_error))
        self.last_error = last_error
        self.attempts = attempts


def error_message(error: Optional[BaseException]) -> str:
    """Human-readable message for an error, never empty."""
    if error is None:
        return UNKNOWN_EXPORT_ERROR
    if isinstance(error, ExportError):
        return error.message or UNKNOWN_EXPORT_ERROR
    return str(error) or UNKNOWN_EXPORT_ERROR
