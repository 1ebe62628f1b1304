"""
Health check endpoints
"""

import logging
from typing import Any
from fastapi import APIRouter, Depends, Response, status

from boxoffice.api.v1.deps import get_container
from boxoffice.core.container import ServiceContainer
from boxoffice.schemas.response import HealthResponse

router = APIRouter()
logger = logging.getLogger(__name__)


async def _probe(name: str, check) -> bool:
    try:
        return bool(await check())
    except Exception as e:
        logger.warning(f"Readiness check {name} failed: {e}")
        return False


@router.get("/live", response_model=HealthResponse)
async def liveness() -> Any:
    """
    Kubernetes liveness probe
    """
    return HealthResponse(status="alive")


@router.get("/ready", response_model=HealthResponse)
async def readiness(
    response: Response,
    container: ServiceContainer = Depends(get_container)
) -> Any:
    """
    Kubernetes readiness probe - checks all dependencies
    """
    checks = {"database": await _probe("database", container.db.ping)}
    if container.redis is not None:
        checks["redis"] = await _probe("redis", container.redis.ping)

    all_healthy = all(checks.values())
    if not all_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="ready" if all_healthy else "not ready",
        checks=checks,
        version=container.settings.APP_VERSION
    )
