"""Compression policy, ZIP packaging and artifact size estimation."""

import io
import zipfile

from invoice_export.core.observability import trace_function
from invoice_export.schemas.exports import ExportFormat, ExportRequest, SizeEstimate

MIB = 1024 * 1024

# Exclusive thresholds: exactly at the threshold is not compressed
COMPRESSION_THRESHOLDS = {
    ExportFormat.CSV: 1 * MIB,
    ExportFormat.PDF: 5 * MIB,
}

# Archive size as a fraction of the original. PDFs are already deflated internally.
COMPRESSION_RATIOS = {
    ExportFormat.CSV: 0.3,
    ExportFormat.PDF: 0.9,
}

BYTES_PER_INVOICE = {
    ExportFormat.CSV: 500,
    ExportFormat.PDF: 2000,
}

ZIP_COMPRESSION_LEVEL = 6


def should_compress(estimated_bytes: int, format: ExportFormat | str) -> bool:
    """Whether an artifact of this estimated size is worth archiving."""
    return estimated_bytes > COMPRESSION_THRESHOLDS[ExportFormat(format)]


def estimate_ratio(format: ExportFormat | str) -> float:
    """Expected archive size relative to the original."""
    return COMPRESSION_RATIOS[ExportFormat(format)]


def estimated_invoice_count(request: ExportRequest) -> int:
    return max(1, request.days_in_range * 2)


def estimate_size(request: ExportRequest) -> SizeEstimate:
    """Advisory size of the artifact a request will produce.

    ``compressed_bytes`` is only filled when the request asks for compression
    and the policy recommends it.
    """
    raw_bytes = estimated_invoice_count(request) * BYTES_PER_INVOICE[request.format]
    compressed_bytes = None
    if request.compress and should_compress(raw_bytes, request.format):
        compressed_bytes = int(raw_bytes * estimate_ratio(request.format))
    return SizeEstimate(raw_bytes=raw_bytes, compressed_bytes=compressed_bytes)


@trace_function("compression.compress")
def compress(filename: str, payload: bytes) -> bytes:
    """Pack a single artifact into a DEFLATE ZIP archive."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(
        buffer,
        mode="w",
        compression=zipfile.ZIP_DEFLATED,
        compresslevel=ZIP_COMPRESSION_LEVEL,
    ) as archive:
        archive.writestr(filename, payload)
    return buffer.getvalue()
