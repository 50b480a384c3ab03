"""Incremental download of streamed export bodies with byte-level progress."""

import logging
import math
from typing import AsyncIterator, Callable, Mapping, Optional, Protocol

import httpx

from invoice_export.core.exceptions import NetworkStreamError
from invoice_export.core.observability import get_job_id, trace_function

logger = logging.getLogger(__name__)

# Progress stays below 100 until the artifact is handed to the save step.
MAX_STREAMING_PROGRESS = 99

ProgressCallback = Callable[[Optional[int], int, Optional[int]], None]


class StreamingResponse(Protocol):
    """The subset of ``httpx.Response`` the downloader reads."""

    headers: Mapping[str, str]

    def aiter_bytes(self, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]: ...


def parse_content_length(value: Optional[str]) -> Optional[int]:
    """Parse a ``Content-Length`` header, ``None`` when absent or unusable."""
    if value is None:
        return None
    try:
        length = int(value.strip())
    except (TypeError, ValueError):
        return None
    return length if length > 0 else None


def streaming_percent(received: int, total: int) -> int:
    """Rounded percentage, half up, capped below completion."""
    return min(MAX_STREAMING_PROGRESS, math.floor(received * 100 / total + 0.5))


class StreamingDownloader:
    """Consumes a response body chunk by chunk and assembles the bytes."""

    def __init__(
        self,
        on_progress: Optional[ProgressCallback] = None,
        chunk_size: Optional[int] = 64 * 1024,
    ) -> None:
        self.on_progress = on_progress
        self.chunk_size = chunk_size

    @trace_function("streaming_downloader.download")
    async def download(self, response: StreamingResponse) -> bytes:
        """Read the whole body in arrival order.

        With a ``Content-Length`` header, progress is reported as a
        percentage capped at 99. Without one, progress is reported as
        ``None`` (indeterminate).
        """
        total = parse_content_length(response.headers.get("Content-Length"))
        buffer = bytearray()
        received = 0

        try:
            async for chunk in response.aiter_bytes(self.chunk_size):
                if not chunk:
                    continue
                buffer.extend(chunk)
                received += len(chunk)
                self._report(received, total)
        except (httpx.HTTPError, httpx.StreamError, OSError) as exc:
            logger.warning(
                "Export stream interrupted",
                extra={"job_id": get_job_id(), "bytes_received": received, "bytes_total": total},
            )
            raise NetworkStreamError(
                f"Download interrupted after {received} bytes: {exc}"
            ) from exc

        logger.info(
            "Export stream complete",
            extra={"job_id": get_job_id(), "bytes_received": received, "bytes_total": total},
        )
        return bytes(buffer)

    def _report(self, received: int, total: Optional[int]) -> None:
        if self.on_progress is None:
            return
        percent = streaming_percent(received, total) if total else None
        self.on_progress(percent, received, total)
