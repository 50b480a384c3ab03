"""Per-surface export controllers for the HTTP layer."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Dict, Mapping, Optional

from invoice_export.schemas.exports import ExportJobStatus, NoticeSchema
from invoice_export.services.controller import ExportController, ExportJob
from invoice_export.services.data_client import InvoiceDataClient
from invoice_export.services.documents import DocumentAssembler
from invoice_export.services.notifications import CollectingNotifier
from invoice_export.services.storage import MemorySink

logger = logging.getLogger(__name__)


@dataclass
class ExportSurface:
    """One export dialog: a controller plus its notice feed and saved files."""
    surface_id: str
    controller: ExportController
    notifier: CollectingNotifier
    sink: MemorySink

    def status(self) -> ExportJobStatus:
        job = self.controller.job
        notices = [
            NoticeSchema(level=notice.level.value, title=notice.title, message=notice.message)
            for notice in self.notifier.notices
        ]
        if job is None:
            return ExportJobStatus(surface_id=self.surface_id, state="Idle", notices=notices)
        return ExportJobStatus(
            surface_id=self.surface_id,
            job_id=job.job_id,
            state=job.state.value,
            history=list(job.history),
            attempt=job.attempt_count,
            progress=job.progress_percent,
            bytes_received=job.bytes_received,
            bytes_total=job.bytes_total,
            filename=job.filename,
            error=job.last_error,
            estimate=job.estimate,
            notices=notices,
        )

    def artifact(self) -> Optional[bytes]:
        job = self.controller.job
        if job is None or job.artifact is None:
            return None
        return self.sink.get(job.artifact.filename)

    def start(self, request_data: Mapping[str, Any]) -> Coroutine[Any, Any, ExportJob]:
        """Claim the controller for a new job and drop the previous job's artifact."""
        runner = self.controller.start(request_data)
        self.sink.clear()
        return runner


class ExportSurfaceRegistry:
    """Creates surfaces lazily; no state is shared between surfaces."""

    def __init__(
        self,
        client_factory: Callable[[], InvoiceDataClient] = InvoiceDataClient,
        assembler_factory: Callable[[], DocumentAssembler] = DocumentAssembler,
    ) -> None:
        self.client_factory = client_factory
        self.assembler_factory = assembler_factory
        self._surfaces: Dict[str, ExportSurface] = {}

    def __len__(self) -> int:
        return len(self._surfaces)

    def get(self, surface_id: str) -> Optional[ExportSurface]:
        return self._surfaces.get(surface_id)

    def get_or_create(self, surface_id: str) -> ExportSurface:
        surface = self._surfaces.get(surface_id)
        if surface is None:
            notifier = CollectingNotifier()
            sink = MemorySink()
            controller = ExportController(
                client=self.client_factory(),
                notifier=notifier,
                sink=sink,
                assembler=self.assembler_factory(),
            )
            surface = ExportSurface(surface_id, controller, notifier, sink)
            self._surfaces[surface_id] = surface
            logger.debug("Created export surface", extra={"surface_id": surface_id})
        return surface

    def dismiss(self, surface_id: str) -> bool:
        """Close the surface: discard its job and release its notices and files.

        A job still in flight keeps running on the detached controller, but
        its result is discarded; the next request for the id gets a fresh
        surface.
        """
        surface = self._surfaces.pop(surface_id, None)
        if surface is None:
            return False
        surface.controller.dismiss()
        surface.notifier.clear()
        surface.sink.clear()
        logger.debug("Dismissed export surface", extra={"surface_id": surface_id})
        return True


registry = ExportSurfaceRegistry()


def get_registry() -> ExportSurfaceRegistry:
    """FastAPI dependency returning the process-wide registry."""
    return registry
