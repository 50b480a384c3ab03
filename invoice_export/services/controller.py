"""Export job state machine.

``Idle -> Validating -> Estimating -> Exporting(n) -> [Assembling ->] Saving -> Completed``
with error edges to ``Failed``. One job runs at a time per controller.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Coroutine, List, Mapping, Optional

from invoice_export.core.config import settings
from invoice_export.core.exceptions import (
    ExhaustedRetriesError,
    ExportInProgressError,
    ExportValidationError,
    RetryCancelledError,
    error_message,
)
from invoice_export.core.feature_flags import is_enabled
from invoice_export.core.observability import set_job_context, trace_function
from invoice_export.schemas.exports import ExportFormat, ExportRequest, SizeEstimate
from invoice_export.services import compression
from invoice_export.services.data_client import InvoiceDataClient
from invoice_export.services.documents import AssemblyOptions, DocumentAssembler
from invoice_export.services.notifications import (
    Notifier,
    failure_notice,
    retry_notice,
    success_notice,
    validation_notice,
)
from invoice_export.services.retry import RetryOrchestrator
from invoice_export.services.storage import ArtifactSink, SavedArtifact
from invoice_export.services.streaming import StreamingDownloader

logger = logging.getLogger(__name__)


class ExportState(str, Enum):
    IDLE = "Idle"
    VALIDATING = "Validating"
    ESTIMATING = "Estimating"
    EXPORTING = "Exporting"
    ASSEMBLING = "Assembling"
    SAVING = "Saving"
    COMPLETED = "Completed"
    FAILED = "Failed"


TERMINAL_STATES = (ExportState.COMPLETED, ExportState.FAILED)


@dataclass
class ExportJob:
    """Runtime record of one export, mutated only by the controller."""
    job_id: str
    request: Optional[ExportRequest] = None
    state: ExportState = ExportState.IDLE
    attempt_count: int = 0
    bytes_received: int = 0
    bytes_total: Optional[int] = None
    progress_percent: Optional[int] = None
    last_error: Optional[str] = None
    filename: Optional[str] = None
    estimate: Optional[SizeEstimate] = None
    artifact: Optional[SavedArtifact] = None
    history: List[str] = field(default_factory=list)
    progress_history: List[int] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def state_label(self) -> str:
        if self.state is ExportState.EXPORTING:
            return f"{self.state.value}({self.attempt_count})"
        return self.state.value


def artifact_filename(request: ExportRequest, compressed: bool) -> str:
    """``<name>.<csv|pdf|zip>``."""
    extension = "zip" if compressed else request.format.value
    return f"{request.base_filename}.{extension}"


class ExportController:
    """Drives one export surface through the export state machine."""

    def __init__(
        self,
        client: InvoiceDataClient,
        notifier: Notifier,
        sink: ArtifactSink,
        assembler: Optional[DocumentAssembler] = None,
        orchestrator: Optional[RetryOrchestrator] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        self.client = client
        self.notifier = notifier
        self.sink = sink
        self.assembler = assembler or DocumentAssembler()
        self.orchestrator = orchestrator or RetryOrchestrator()
        self.orchestrator.on_retry = self._on_retry
        self.max_attempts = max_attempts or settings.EXPORT_MAX_ATTEMPTS
        self.job: Optional[ExportJob] = None
        self._discarded = False
        self._running = False

    @property
    def state(self) -> ExportState:
        return self.job.state if self.job else ExportState.IDLE

    @property
    def is_busy(self) -> bool:
        """True while a job (including a dismissed one still in flight) runs."""
        return self._running

    def estimate(self, request_data: ExportRequest | Mapping[str, Any]) -> SizeEstimate:
        """Advisory size for the current filters; never blocks an export."""
        request = ExportRequest.from_input(request_data)
        return compression.estimate_size(request)

    def start(self, request_data: ExportRequest | Mapping[str, Any]) -> Coroutine[Any, Any, ExportJob]:
        """Claim the surface now and return the coroutine that runs the job.

        Raises ``ExportInProgressError`` when a job is already running, so
        callers that schedule the work in the background reject overlapping
        requests synchronously.
        """
        if self._running:
            raise ExportInProgressError("An export is already in progress")
        self._running = True

        # The new job replaces the previous one before any work is scheduled
        job = ExportJob(job_id=uuid.uuid4().hex)
        job.history.append(job.state_label)
        self.job = job
        self._discarded = False
        return self._run(job, request_data)

    async def export(self, request_data: ExportRequest | Mapping[str, Any]) -> ExportJob:
        """Run one export to a terminal state and return the job."""
        return await self.start(request_data)

    @trace_function("export_controller.run")
    async def _run(self, job: ExportJob, request_data: ExportRequest | Mapping[str, Any]) -> ExportJob:
        try:
            return await self._run_job(job, request_data)
        finally:
            self._running = False

    async def _run_job(self, job: ExportJob, request_data: ExportRequest | Mapping[str, Any]) -> ExportJob:
        set_job_context(job.job_id)
        self._transition(job, ExportState.VALIDATING)
        try:
            request = ExportRequest.from_input(request_data)
        except ExportValidationError as exc:
            job.last_error = error_message(exc)
            self._transition(job, ExportState.FAILED)
            self.notifier.notify(validation_notice(job.last_error))
            return job
        job.request = request

        self._transition(job, ExportState.ESTIMATING)
        job.estimate = compression.estimate_size(request)
        compressed = (
            request.compress
            and is_enabled("enable_compression")
            and compression.should_compress(job.estimate.raw_bytes, request.format)
        )
        job.filename = artifact_filename(request, compressed)

        try:
            if request.format is ExportFormat.CSV:
                payload = await self.orchestrator.execute(
                    lambda: self._fetch_csv(job, request), self.max_attempts
                )
            else:
                data = await self.orchestrator.execute(
                    lambda: self._fetch_report(job, request), self.max_attempts
                )
                self._ensure_current(job)
                self._transition(job, ExportState.ASSEMBLING)
                document = await self.assembler.assemble(
                    data,
                    AssemblyOptions(
                        variant=request.report_type,
                        include_tax_breakdown=request.include_tax_breakdown,
                    ),
                )
                payload = document.finalize()

            self._ensure_current(job)
            self._transition(job, ExportState.SAVING)
            if compressed:
                inner_name = f"{request.base_filename}.{request.format.value}"
                payload = compression.compress(inner_name, payload)
            job.artifact = self.sink.save(job.filename, payload)
        except RetryCancelledError:
            logger.info("Export dismissed during retry", extra={"job_id": job.job_id})
            return job
        except Exception as exc:
            if self._discarded:
                return job
            self._fail(job, exc)
            return job

        self._set_progress(job, 100)
        self._transition(job, ExportState.COMPLETED)
        self.notifier.notify(success_notice(job.filename))
        return job

    def dismiss(self) -> None:
        """Close the export surface.

        Terminal jobs reset to Idle. In-flight jobs have any pending retry
        timer cancelled and their eventual result discarded.
        """
        if self.job is not None and not self.job.is_terminal:
            self._discarded = True
            self.orchestrator.cancel_pending()
            logger.info("Export discarded", extra={"job_id": self.job.job_id, "state": self.job.state_label})
        self.job = None

    async def _fetch_csv(self, job: ExportJob, request: ExportRequest) -> bytes:
        self._start_attempt(job)
        downloader = StreamingDownloader(on_progress=lambda *args: self._on_stream_progress(job, *args))
        async with self.client.open_stream(request) as response:
            return await downloader.download(response)

    async def _fetch_report(self, job: ExportJob, request: ExportRequest):
        self._start_attempt(job)
        return await self.client.fetch_report(request)

    def _start_attempt(self, job: ExportJob) -> None:
        self._ensure_current(job)
        job.attempt_count += 1
        job.bytes_received = 0
        job.bytes_total = None
        self._transition(job, ExportState.EXPORTING)

    def _on_retry(self, attempt: int, max_attempts: int, error: Optional[BaseException]) -> None:
        if self._discarded:
            return
        if self.job is not None:
            self.job.last_error = error_message(error)
        self.notifier.notify(retry_notice(attempt, max_attempts))

    def _on_stream_progress(self, job: ExportJob, percent: Optional[int], received: int, total: Optional[int]) -> None:
        job.bytes_received = received
        job.bytes_total = total
        if percent is not None:
            self._set_progress(job, percent)

    def _set_progress(self, job: ExportJob, percent: int) -> None:
        # Monotonic within a job, even when a retry restarts the byte count
        if job.progress_percent is not None and percent <= job.progress_percent:
            return
        job.progress_percent = percent
        job.progress_history.append(percent)

    def _ensure_current(self, job: ExportJob) -> None:
        if self._discarded or self.job is not job:
            raise RetryCancelledError("Export dismissed")

    def _transition(self, job: ExportJob, state: ExportState) -> None:
        job.state = state
        job.history.append(job.state_label)
        logger.info(
            "Export state changed",
            extra={"job_id": job.job_id, "state": job.state_label},
        )

    def _fail(self, job: ExportJob, exc: BaseException) -> None:
        underlying = exc.last_error if isinstance(exc, ExhaustedRetriesError) else exc
        job.last_error = error_message(underlying)
        self._transition(job, ExportState.FAILED)
        logger.error(
            "Export failed",
            extra={"job_id": job.job_id, "error": job.last_error},
            exc_info=not isinstance(exc, ExhaustedRetriesError),
        )
        self.notifier.notify(failure_notice(job.last_error))
