"""API v1 router."""

from fastapi import APIRouter

from invoice_export.api.v1.endpoints import exports, health

api_router = APIRouter()

# Include endpoint routers
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(exports.router, prefix="/exports", tags=["exports"])
