"""Health check endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from app import __version__
from app.api.deps import CoordinatorDep
from app.config import settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    environment: str
    active_runs: int
    timestamp: datetime


@router.get("/health", response_model=HealthResponse)
async def health_check(coordinator: CoordinatorDep) -> HealthResponse:
    """Check API health status."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.app_env,
        active_runs=len(coordinator.tracker.active_runs()),
        timestamp=datetime.now(timezone.utc),
    )
