"""
Ride endpoints
==============

POST  /api/rides                   -- create a ride request
GET   /api/rides/nearby            -- open rides near a driver, nearest first
GET   /api/rides/user/{rider_id}   -- rides requested by a rider
GET   /api/rides/history           -- ride history for ?userId=&role=rider|driver
POST  /api/rides/{id}/accept       -- claim a pending ride (409 if taken)
PATCH /api/rides/{id}/status       -- in_progress | completed
PATCH /api/rides/{id}/cancel       -- cancel a pending or confirmed ride
PATCH /api/rides/{id}/decline      -- driver passes on a pending ride
PATCH /api/rides/{id}/mark-paid    -- payment_status = completed
PATCH /api/rides/{id}/complete     -- complete once a payment is recorded
GET   /api/rides/{id}              -- ride with rider / driver profiles
GET   /api/rides/{id}/receipt      -- PDF receipt
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ridebeacon.api.dependencies import get_current_user, get_db, get_lifecycle
from ridebeacon.api.middleware import RATE_LIMIT, limiter
from ridebeacon.api.schemas import (
    ERROR_RESPONSES,
    DriverActionRequest,
    NearbyRideResponse,
    RideCreateRequest,
    RideDetailResponse,
    RideHistoryEntry,
    RideResponse,
    StatusUpdateRequest,
)
from ridebeacon.config import settings
from ridebeacon.infrastructure.receipts import render_receipt
from ridebeacon.services.lifecycle import RideLifecycleEngine
from ridebeacon.workers.receipts import load_receipt_data

router = APIRouter(
    prefix="/rides",
    tags=["rides"],
    dependencies=[Depends(get_current_user)],
    responses=ERROR_RESPONSES,
)

CONFLICT = {409: {"description": "Ride already taken or transition not allowed"}}


def _lenient_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except ValueError:
        return None


@router.post("", response_model=RideResponse, summary="Create a ride request")
@limiter.limit(RATE_LIMIT)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    engine: RideLifecycleEngine = Depends(get_lifecycle),
):
    return await engine.create(**body.model_dump())


@router.get(
    "/nearby",
    response_model=list[NearbyRideResponse],
    summary="Open rides near a driver",
    description="Malformed coordinates or radius return an empty list.",
)
@limiter.limit(RATE_LIMIT)
async def nearby_rides(
    request: Request,
    driver_lat: Optional[str] = None,
    driver_lng: Optional[str] = None,
    driver_id: Optional[str] = None,
    radius_km: Optional[str] = None,
    engine: RideLifecycleEngine = Depends(get_lifecycle),
):
    return await engine.nearby(
        driver_lat,
        driver_lng,
        radius_km if radius_km not in (None, "") else settings.nearby_radius_km,
        driver_id=_lenient_int(driver_id),
    )


@router.get("/user/{rider_id}", response_model=list[RideResponse], summary="Rides of a rider")
async def rides_for_rider(
    rider_id: int,
    engine: RideLifecycleEngine = Depends(get_lifecycle),
):
    return await engine.list_for_rider(rider_id)


@router.get("/history", response_model=list[RideHistoryEntry], summary="Ride history")
async def ride_history(
    user_id: Optional[int] = Query(None, alias="userId"),
    role: Optional[str] = None,
    engine: RideLifecycleEngine = Depends(get_lifecycle),
):
    return await engine.history(user_id, role)


@router.post(
    "/{ride_id}/accept",
    response_model=RideDetailResponse,
    summary="Accept a pending ride",
    responses=CONFLICT,
)
@limiter.limit(RATE_LIMIT)
async def accept_ride(
    request: Request,
    ride_id: int,
    body: DriverActionRequest,
    engine: RideLifecycleEngine = Depends(get_lifecycle),
):
    return await engine.accept(ride_id, body.driver_id)


@router.patch(
    "/{ride_id}/status",
    response_model=RideResponse,
    summary="Start or complete a ride",
    responses=CONFLICT,
)
async def update_ride_status(
    ride_id: int,
    body: StatusUpdateRequest,
    engine: RideLifecycleEngine = Depends(get_lifecycle),
):
    return await engine.update_status(ride_id, body.status)


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    responses=CONFLICT,
)
@limiter.limit(RATE_LIMIT)
async def cancel_ride(
    request: Request,
    ride_id: int,
    engine: RideLifecycleEngine = Depends(get_lifecycle),
):
    return await engine.cancel(ride_id)


@router.patch(
    "/{ride_id}/decline",
    response_model=RideResponse,
    summary="Decline a pending ride",
    responses=CONFLICT,
)
async def decline_ride(
    ride_id: int,
    body: DriverActionRequest,
    engine: RideLifecycleEngine = Depends(get_lifecycle),
):
    return await engine.decline(ride_id, body.driver_id)


@router.patch("/{ride_id}/mark-paid", response_model=RideResponse, summary="Mark a ride paid")
async def mark_ride_paid(
    ride_id: int,
    engine: RideLifecycleEngine = Depends(get_lifecycle),
):
    return await engine.mark_paid(ride_id)


@router.patch(
    "/{ride_id}/complete",
    response_model=RideResponse,
    summary="Complete a ride after payment",
    responses=CONFLICT,
)
async def complete_paid_ride(
    ride_id: int,
    engine: RideLifecycleEngine = Depends(get_lifecycle),
):
    return await engine.complete_after_payment(ride_id)


@router.get("/{ride_id}", response_model=RideDetailResponse, summary="Get a ride")
@limiter.limit(RATE_LIMIT)
async def get_ride(
    request: Request,
    ride_id: int,
    engine: RideLifecycleEngine = Depends(get_lifecycle),
):
    return await engine.get(ride_id)


@router.get(
    "/{ride_id}/receipt",
    summary="Download the PDF receipt",
    response_class=Response,
    responses={200: {"content": {"application/pdf": {}}}},
)
async def ride_receipt(ride_id: int, db: AsyncSession = Depends(get_db)):
    data = await load_receipt_data(db, ride_id)
    return Response(
        content=render_receipt(data),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{data.filename}"'},
    )
