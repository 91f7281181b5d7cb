"""
Payment endpoints
=================

POST /api/payments/intent   -- create a Stripe PaymentIntent for a ride
POST /api/payments          -- record a pending payment
POST /api/payments/webhook  -- Stripe webhook (signed, raw body, no bearer auth)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ridebeacon.api.dependencies import get_current_user, get_payment_service
from ridebeacon.api.schemas import (
    ERROR_RESPONSES,
    PaymentCreateRequest,
    PaymentIntentRequest,
    PaymentIntentResponse,
    PaymentResponse,
    WebhookResponse,
)
from ridebeacon.services.payments import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"], responses=ERROR_RESPONSES)

SIGNATURE_HEADER = "stripe-signature"


@router.post(
    "/intent",
    response_model=PaymentIntentResponse,
    summary="Create a payment intent",
    dependencies=[Depends(get_current_user)],
)
async def create_payment_intent(
    body: PaymentIntentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    return await service.create_intent(body.ride_id, body.rider_id, body.amount)


@router.post(
    "",
    response_model=PaymentResponse,
    summary="Record a pending payment",
    dependencies=[Depends(get_current_user)],
)
async def record_payment(
    body: PaymentCreateRequest,
    service: PaymentService = Depends(get_payment_service),
):
    return await service.record_payment(
        body.ride_id, body.rider_id, body.amount, body.payment_method
    )


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Stripe webhook",
    description="The body must be the exact bytes Stripe signed.",
)
async def stripe_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    raw_body = await request.body()
    result = await service.handle_webhook(raw_body, request.headers.get(SIGNATURE_HEADER))
    return result.as_dict()
