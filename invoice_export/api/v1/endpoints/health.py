"""Health check endpoints."""

from fastapi import APIRouter

from invoice_export.core.feature_flags import is_enabled

router = APIRouter()


@router.get("/")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": "invoice-export-api"}


@router.get("/ready")
async def readiness_check() -> dict[str, str]:
    """Readiness check endpoint."""
    if not is_enabled("enable_exports"):
        return {"status": "disabled", "service": "invoice-export-api"}
    return {"status": "ready", "service": "invoice-export-api"}
