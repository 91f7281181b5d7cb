"""
Driver endpoints
================

POST /api/drivers/{id}/location        -- report position (optionally for a ride)
POST /api/drivers/{id}/connect-stripe  -- Stripe Express onboarding link
POST /api/drivers/{id}/payout          -- transfer to the connected account
                                          (optional Idempotency-Key header)
GET  /api/drivers/{id}/earnings        -- cumulative earnings
GET  /api/drivers/{id}/reviews         -- reviews with average rating
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from ridebeacon.api.dependencies import get_current_user, get_driver_service
from ridebeacon.api.middleware import RATE_LIMIT, limiter
from ridebeacon.api.schemas import (
    ERROR_RESPONSES,
    ConnectStripeResponse,
    DriverReviewsResponse,
    EarningsResponse,
    LocationResponse,
    LocationUpdateRequest,
    PayoutRequest,
    PayoutResponse,
)
from ridebeacon.services.drivers import DriverService

router = APIRouter(
    prefix="/drivers",
    tags=["drivers"],
    dependencies=[Depends(get_current_user)],
    responses=ERROR_RESPONSES,
)


@router.post(
    "/{driver_id}/location",
    response_model=LocationResponse,
    summary="Report a driver position",
)
@limiter.limit(RATE_LIMIT)
async def report_location(
    request: Request,
    driver_id: int,
    body: LocationUpdateRequest,
    service: DriverService = Depends(get_driver_service),
):
    return await service.record_location(driver_id, body.lat, body.lng, body.ride_id)


@router.post(
    "/{driver_id}/connect-stripe",
    response_model=ConnectStripeResponse,
    summary="Start Stripe Connect onboarding",
)
async def connect_stripe(
    driver_id: int,
    service: DriverService = Depends(get_driver_service),
):
    return await service.connect_stripe(driver_id)


@router.post(
    "/{driver_id}/payout",
    response_model=PayoutResponse,
    summary="Request a payout",
    responses={409: {"description": "Another payout is in progress"}},
)
async def request_payout(
    driver_id: int,
    body: PayoutRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    service: DriverService = Depends(get_driver_service),
):
    return await service.payout(driver_id, body.amount, idempotency_key)


@router.get(
    "/{driver_id}/earnings",
    response_model=EarningsResponse,
    summary="Total earnings",
)
async def driver_earnings(
    driver_id: int,
    service: DriverService = Depends(get_driver_service),
):
    return await service.earnings(driver_id)


@router.get(
    "/{driver_id}/reviews",
    response_model=DriverReviewsResponse,
    summary="Reviews left for a driver",
)
async def driver_reviews(
    driver_id: int,
    service: DriverService = Depends(get_driver_service),
):
    return await service.reviews_for(driver_id)
