"""
Admin / observability endpoints
===============================

GET /api/admin/health    -- simple health check (no auth)
GET /api/admin/realtime  -- socket hub, location index and receipt queue stats
"""

from fastapi import APIRouter, Depends, Request

from ridebeacon.api.dependencies import (
    get_current_user,
    get_hub,
    get_location_index,
    get_receipt_worker,
)
from ridebeacon.api.middleware import RATE_LIMIT, limiter
from ridebeacon.api.schemas import HealthResponse, RealtimeStatsResponse
from ridebeacon.config import settings
from ridebeacon.domain.proximity import LocationIndex
from ridebeacon.realtime.hub import BroadcastHub

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/realtime",
    response_model=RealtimeStatsResponse,
    summary="Realtime hub statistics",
    dependencies=[Depends(get_current_user)],
)
@limiter.limit(RATE_LIMIT)
async def realtime_stats(
    request: Request,
    hub: BroadcastHub = Depends(get_hub),
    locations: LocationIndex = Depends(get_location_index),
    receipts=Depends(get_receipt_worker),
):
    return RealtimeStatsResponse(
        **hub.stats(),
        relay=settings.broadcast_backend,
        tracked_drivers=len(locations),
        queued_receipts=receipts.pending if receipts else 0,
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
