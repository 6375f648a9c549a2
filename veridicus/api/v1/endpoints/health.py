"""Health check API endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from veridicus.core.config import settings
from veridicus.schemas.health import HealthCheckResponse
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()


@router.get(
    "",
    response_model=HealthCheckResponse,
    summary="Health check endpoint",
    description="Check if the service is running and healthy",
    operation_id="get_service_health_status",
)
async def health_check(request: Request) -> HealthCheckResponse:
    """Liveness probe; reports ``degraded`` when the database is unreachable."""
    database = getattr(request.app.state.container, "database", None)
    status = "ok"
    if database is not None and not database.is_connected:
        status = "degraded"

    return HealthCheckResponse(
        status=status,
        version=settings.app_version,
        timestamp=datetime.now(timezone.utc),
    )
