"""
Health check routes.
"""
import os
import logging

from fastapi import APIRouter

from app.middleware.error_handling import error_tracker
from app.schemas.common import HealthResponse

router = APIRouter()
logger = logging.getLogger(__name__)


def _status() -> dict:
    return {
        "status": "healthy",
        "version": os.getenv('APP_VERSION', 'unknown'),
        "persistence_backend": os.getenv('PERSISTENCE_BACKEND', 'dynamodb'),
        "errors": error_tracker.get_stats(),
    }


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint at /health."""
    return HealthResponse(success=True, data=_status(), message="OK")


@router.get("/api/v1/health", response_model=HealthResponse)
async def health_check_v1():
    """Health check endpoint at /api/v1/health (for load balancers behind the API prefix)."""
    return HealthResponse(success=True, data=_status(), message="OK")


@router.get("/", response_model=HealthResponse)
async def root():
    """Root endpoint."""
    return HealthResponse(
        success=True,
        data={"message": f"Welcome to {os.getenv('APP_NAME', 'Peer Connect')} API"},
        message="OK"
    )
