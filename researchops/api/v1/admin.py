"""
ResearchOps API v1 - Admin Endpoints

Administrative endpoints requiring API key authentication.
"""

from threading import Lock
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
import structlog

from researchops.api.dependencies import Services, get_services, verify_api_key

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/admin")

# One sweep at a time per process
_sweep_lock = Lock()


class ReconcileResponse(BaseModel):
    """Response for the reconcile endpoint."""
    scanned: int
    promoted: int
    failed: int
    skipped: int
    vanished: int
    replayed: int
    replay_failed: int
    rate_limited: bool
    errors: List[str]


@router.post("/reconcile", response_model=ReconcileResponse)
def reconcile(
    request: Request,
    limit: Optional[int] = Query(100, ge=1, le=1000, description="Max pending rows"),
    api_key: str = Depends(verify_api_key),
    services: Services = Depends(get_services)
):
    """
    Run one reconciliation sweep.

    Replays replica misses, then promotes up to `limit` placeholder rows.

    Raises:
        401: Missing or invalid API key
        409: A sweep is already running
    """
    request_id = request.state.request_id

    if not _sweep_lock.acquire(blocking=False):
        logger.warning("admin.reconcile.busy", request_id=request_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Reconciliation already running"
        )

    try:
        logger.info(
            "admin.reconcile",
            request_id=request_id,
            limit=limit,
            api_key_prefix=api_key[:8] + "..."
        )
        report = services.sweep.run(limit=limit)
    finally:
        _sweep_lock.release()

    logger.info("admin.reconcile.success", request_id=request_id, **report.to_dict())

    return ReconcileResponse(**report.to_dict())
