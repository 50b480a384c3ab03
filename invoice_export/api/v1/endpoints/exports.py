"""Export endpoints: start, poll, download and dismiss exports per surface."""

import io
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from invoice_export.core.exceptions import ExportInProgressError, ExportValidationError
from invoice_export.core.feature_flags import is_enabled
from invoice_export.core.observability import trace_function
from invoice_export.schemas.exports import ExportJobStatus, ExportRequest, SizeEstimate
from invoice_export.services.compression import estimate_size
from invoice_export.services.controller import ExportJob
from invoice_export.services.storage import media_type_for
from invoice_export.services.surfaces import ExportSurfaceRegistry, get_registry

router = APIRouter()


def _require_exports_enabled() -> None:
    if not is_enabled("enable_exports"):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Exports are disabled")


async def _drive(runner) -> ExportJob:
    return await runner


@router.post(
    "/{surface_id}",
    response_model=ExportJobStatus,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(_require_exports_enabled)],
)
@trace_function("export_endpoint.start_export")
async def start_export(
    surface_id: str,
    payload: Dict[str, Any],
    background_tasks: BackgroundTasks,
    registry: ExportSurfaceRegistry = Depends(get_registry),
) -> ExportJobStatus:
    """Start an export on a surface; the job runs in the background."""
    surface = registry.get_or_create(surface_id)
    try:
        runner = surface.start(payload)
    except ExportInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    background_tasks.add_task(_drive, runner)
    return surface.status()


@router.post("/{surface_id}/estimate", response_model=SizeEstimate)
@trace_function("export_endpoint.estimate_export")
async def estimate_export(surface_id: str, payload: Dict[str, Any]) -> SizeEstimate:
    """Advisory artifact size for the given filters."""
    try:
        return estimate_size(ExportRequest.from_input(payload))
    except ExportValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/{surface_id}/status", response_model=ExportJobStatus)
@trace_function("export_endpoint.get_export_status")
async def get_export_status(
    surface_id: str,
    registry: ExportSurfaceRegistry = Depends(get_registry),
) -> ExportJobStatus:
    """Get export status."""
    surface = registry.get(surface_id)
    if surface is None:
        return ExportJobStatus(surface_id=surface_id, state="Idle")
    return surface.status()


@router.get("/{surface_id}/download")
@trace_function("export_endpoint.download_export")
async def download_export(
    surface_id: str,
    registry: ExportSurfaceRegistry = Depends(get_registry),
) -> StreamingResponse:
    """Download the completed artifact."""
    surface = registry.get(surface_id)
    content = surface.artifact() if surface else None
    if content is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No completed export")

    filename = surface.controller.job.filename
    return StreamingResponse(
        io.BytesIO(content),
        media_type=media_type_for(filename),
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.delete("/{surface_id}", status_code=status.HTTP_204_NO_CONTENT)
@trace_function("export_endpoint.dismiss_export")
async def dismiss_export(
    surface_id: str,
    registry: ExportSurfaceRegistry = Depends(get_registry),
) -> None:
    """Dismiss the surface: cancel pending retries and reset to Idle."""
    registry.dismiss(surface_id)
