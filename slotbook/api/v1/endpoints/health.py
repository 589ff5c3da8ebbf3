"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from slotbook.config import settings
from slotbook.core.redis_client import check_redis_connection
from slotbook.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str
    timezone: str


class DetailedHealthResponse(HealthResponse):
    """Health check including dependencies and the booking calendar."""

    database: str
    redis: str
    business_hours: str
    slot_interval_minutes: int


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns:
        Basic health status
    """
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
        timezone=settings.business_timezone,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Detailed health check",
)
async def detailed_health_check() -> DetailedHealthResponse:
    """
    Health of the database and Redis plus the configured booking calendar.

    A Redis outage only degrades catalog caching, so it reports ``degraded``
    rather than failing the check.

    Returns:
        Detailed health status
    """
    db_healthy = await check_database_connection()
    redis_healthy = await check_redis_connection()

    if not db_healthy:
        overall = "unhealthy"
    elif not redis_healthy:
        overall = "degraded"
    else:
        overall = "healthy"

    return DetailedHealthResponse(
        status=overall,
        version=settings.app_version,
        environment=settings.environment,
        timezone=settings.business_timezone,
        database="healthy" if db_healthy else "unhealthy",
        redis="healthy" if redis_healthy else "unhealthy",
        business_hours=f"{settings.business_open_hour:02d}:00-{settings.business_close_hour:02d}:00",
        slot_interval_minutes=settings.slot_interval_minutes,
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Simple ping endpoint."""
    return {"message": "pong"}
