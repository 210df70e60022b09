"""Service-level endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter

from clinicflow import __version__
from clinicflow.models.api import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
