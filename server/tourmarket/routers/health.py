"""Health check router."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..core.clock import utc_now
from ..core.observability import SERVICE_VERSION
from ..schemas.health import HealthResponse, HealthStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/health", tags=["health"])


@router.post("/ping", response_model=HealthResponse)
async def health_ping() -> JSONResponse:
    """Liveness ping returning the service status and server time."""
    response_data = HealthResponse(
        status=HealthStatus.HEALTHY,
        timestamp=utc_now(),
        version=SERVICE_VERSION
    )

    logger.debug(
        "Health check requested",
        extra={"timestamp": response_data.timestamp.isoformat()}
    )

    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
