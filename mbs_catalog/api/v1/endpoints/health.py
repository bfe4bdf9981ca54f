"""Health check endpoint."""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from mbs_catalog.core.config import settings
from mbs_catalog.core.database import db_client

router = APIRouter()


class HealthCheckResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Overall service status")
    version: str = Field(..., description="Running application version")
    service: str = Field(..., description="Service name")
    database: dict = Field(default_factory=dict, description="Database health details")


@router.get(
    "",
    response_model=HealthCheckResponse,
    summary="Service health",
    operation_id="get_service_health",
)
async def health_check() -> HealthCheckResponse:
    """Report service and database health.

    The service is ``degraded`` while the database is unreachable.
    """
    database = await db_client.health_check()
    return HealthCheckResponse(
        status="healthy" if database.get("status") == "healthy" else "degraded",
        version=settings.app_version,
        service=settings.app_name,
        database=database,
    )
