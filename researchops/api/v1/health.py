"""
ResearchOps API v1 - Health Endpoints

- GET /healthz
"""

import time
from typing import Dict

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
import structlog

from researchops import __version__
from researchops.api.dependencies import Services, get_services

logger = structlog.get_logger()

router = APIRouter()


class HealthCheckResult(BaseModel):
    """Health check result for a single dependency."""
    status: str  # "up", "down" or "disabled"
    latency_ms: float


class HealthResponse(BaseModel):
    """
    Health check response.

    Airtable being down or disabled does not make the service unhealthy:
    writes degrade to replica-only. The replica being down does.
    """
    status: str  # "healthy" or "degraded"
    checks: Dict[str, HealthCheckResult]
    pending_replica_misses: int
    version: str


@router.get("/healthz", response_model=HealthResponse, status_code=status.HTTP_200_OK)
def health_check(response: Response, services: Services = Depends(get_services)):
    """
    Health check endpoint.

    Returns:
        - 200 OK if the replica is reachable
        - 503 Service Unavailable otherwise

    Checks:
        - Postgres replica connectivity (REQUIRED)
        - Airtable configuration (informational)
    """
    checks = {}
    overall_status = "healthy"

    start_time = time.time()
    replica_up = services.replica.ping()
    latency_ms = (time.time() - start_time) * 1000

    checks["replica"] = HealthCheckResult(
        status="up" if replica_up else "down",
        latency_ms=round(latency_ms, 2) if replica_up else 0.0
    )

    if not replica_up:
        overall_status = "degraded"
        logger.error("health.replica.down")

    checks["airtable"] = HealthCheckResult(
        status="up" if services.record_store is not None else "disabled",
        latency_ms=0.0
    )

    if overall_status == "degraded":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall_status,
        checks=checks,
        pending_replica_misses=len(services.miss_queue),
        version=__version__
    )
