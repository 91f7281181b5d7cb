"""
Payment Reconciliation Handler
==============================

Rider side
----------
``create_intent`` reuses (or creates) the pending payment for the
(ride, rider) pair, asks Stripe for a PaymentIntent in paise and stores
the intent id on that pending row.

Provider side
-------------
``handle_webhook`` applies a ``payment_intent.succeeded`` event exactly
once:

1. The signature is checked over the raw bytes before anything is
   parsed.  A bad signature changes nothing.
2. A completed payment for the intent already exists: no-op.
3. One transaction finalises the payment, settles the ride
   (``completed`` / payment ``completed``) and credits the driver's
   earnings with ``total_earnings = total_earnings + fare``.  A
   concurrent duplicate trips a partial unique index and turns into a
   no-op.
4. After commit: broadcasts, then a receipt job is queued.  Neither can
   undo step 3.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ridebeacon.domain.enums import RideStatus
from ridebeacon.domain.events import RideCompleted, RideStatusUpdate, RideUpdated
from ridebeacon.domain.exceptions import RideNotFound, ValidationFailed
from ridebeacon.infrastructure.models import PaymentModel
from ridebeacon.infrastructure.repositories import (
    PaymentRepository,
    RideRepository,
    UserRepository,
)
from ridebeacon.infrastructure.stripe_gateway import StripeGateway
from ridebeacon.realtime.hub import BroadcastHub

from .lifecycle import ride_to_dict

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
INTENT_PAYMENT_METHOD = "stripe_intent"


class ReceiptQueue(Protocol):
    def enqueue(self, ride_id: int) -> None: ...


# ── Provider payloads ─────────────────────────────────────────────────


class PaymentIntentObject(BaseModel):
    id: str
    amount_received: int = 0
    metadata: dict[str, str] = Field(default_factory=dict)
    payment_method_types: list[str] = Field(default_factory=list)


class ProviderEvent(BaseModel):
    id: Optional[str] = None
    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    def payment_intent(self) -> PaymentIntentObject:
        return PaymentIntentObject.model_validate(self.data.get("object") or {})


@dataclass(frozen=True)
class WebhookResult:
    received: bool = True
    handled: bool = False
    duplicate: bool = False
    ride_id: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "received": self.received,
            "handled": self.handled,
            "duplicate": self.duplicate,
            "ride_id": self.ride_id,
        }


def payment_to_dict(payment: PaymentModel) -> dict[str, Any]:
    return {
        "id": payment.id,
        "ride_id": payment.ride_id,
        "rider_id": payment.rider_id,
        "amount": payment.amount,
        "status": getattr(payment.status, "value", payment.status),
        "payment_method": payment.payment_method,
        "payment_intent_id": payment.payment_intent_id,
        "created_at": payment.created_at.isoformat() if payment.created_at else None,
    }


def _positive_amount(amount) -> float:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount <= 0:
        raise ValidationFailed("Amount must be a positive number", reason="invalid_amount")
    return float(amount)


def _metadata_id(metadata: dict[str, str], key: str) -> int:
    try:
        return int(metadata[key])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationFailed(
            f"Payment intent metadata is missing {key}", reason="invalid_metadata"
        ) from exc


# ── Service ───────────────────────────────────────────────────────────


class PaymentService:
    def __init__(
        self,
        session: AsyncSession,
        hub: BroadcastHub,
        gateway: StripeGateway,
        receipts: Optional[ReceiptQueue] = None,
    ):
        self.session = session
        self.hub = hub
        self.gateway = gateway
        self.receipts = receipts
        self.rides = RideRepository(session)
        self.payments = PaymentRepository(session)
        self.users = UserRepository(session)

    async def create_intent(self, ride_id: int, rider_id: int, amount) -> dict[str, Any]:
        amount = _positive_amount(amount)
        if await self.rides.get_by_id(ride_id) is None:
            raise RideNotFound(f"Ride {ride_id} not found")

        pending = await self.payments.get_or_create_pending(
            ride_id=ride_id,
            rider_id=rider_id,
            amount=amount,
            payment_method=INTENT_PAYMENT_METHOD,
        )
        # keep the dedup row even if Stripe fails below
        await self.session.commit()

        amount_minor = round(amount * 100)
        intent = await self.gateway.create_payment_intent(
            amount_minor,
            metadata={"ride_id": str(ride_id), "rider_id": str(rider_id)},
            idempotency_key=f"intent-{pending.id}-{amount_minor}",
        )
        await self.payments.set_intent(pending.id, intent.id)
        await self.session.commit()
        logger.info("Payment intent %s created for ride %s", intent.id, ride_id)
        return {"clientSecret": intent.client_secret, "paymentIntentId": intent.id}

    async def record_payment(
        self,
        ride_id: int,
        rider_id: int,
        amount,
        payment_method: Optional[str] = None,
    ) -> dict[str, Any]:
        amount = _positive_amount(amount)
        if await self.rides.get_by_id(ride_id) is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        payment = await self.payments.get_or_create_pending(
            ride_id=ride_id,
            rider_id=rider_id,
            amount=amount,
            payment_method=payment_method,
        )
        await self.session.commit()
        return payment_to_dict(payment)

    async def handle_webhook(
        self, raw_body: bytes, signature_header: Optional[str]
    ) -> WebhookResult:
        self.gateway.verify_webhook(raw_body, signature_header)

        try:
            event = ProviderEvent.model_validate(json.loads(raw_body))
        except (ValueError, ValidationError) as exc:
            raise ValidationFailed("Malformed webhook payload", reason="invalid_payload") from exc

        logger.info("Stripe event %s received", event.type)
        if event.type != PAYMENT_SUCCEEDED:
            return WebhookResult()

        try:
            intent = event.payment_intent()
        except ValidationError as exc:
            raise ValidationFailed("Malformed payment intent", reason="invalid_payload") from exc
        return await self.reconcile(intent)

    async def reconcile(self, intent: PaymentIntentObject) -> WebhookResult:
        ride_id = _metadata_id(intent.metadata, "ride_id")
        rider_id = _metadata_id(intent.metadata, "rider_id")

        if await self.payments.get_completed_by_intent(intent.id) is not None:
            logger.info("Payment intent %s already reconciled", intent.id)
            return WebhookResult(handled=True, duplicate=True, ride_id=ride_id)

        ride = await self.rides.get_by_id(ride_id)
        if ride is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        if ride.status in (RideStatus.CANCELLED, RideStatus.PENDING):
            logger.warning(
                "Payment %s completes ride %s from status %s",
                intent.id,
                ride_id,
                ride.status.value,
            )

        finalized = await self.payments.finalize(
            ride_id=ride_id,
            rider_id=rider_id,
            amount=intent.amount_received / 100,
            payment_method=next(iter(intent.payment_method_types), "card"),
            payment_intent_id=intent.id,
        )
        if not finalized:
            await self.session.rollback()
            logger.info("Payment for ride %s already finalised, ignoring %s", ride_id, intent.id)
            return WebhookResult(handled=True, duplicate=True, ride_id=ride_id)

        await self.rides.settle(ride_id)
        if ride.driver_id is not None:
            await self.users.increment_earnings(ride.driver_id, ride.fare)
        await self.session.commit()
        logger.info(
            "Payment %s reconciled: ride %s completed, driver %s credited %.2f",
            intent.id,
            ride_id,
            ride.driver_id,
            ride.fare,
        )

        settled = await self.rides.get_by_id(ride_id)
        await self.hub.publish_many(
            RideStatusUpdate(ride_id=ride_id, status=RideStatus.COMPLETED.value),
            RideCompleted(ride_id=ride_id),
            RideUpdated(ride_id=ride_id, ride=ride_to_dict(settled)),
        )
        if self.receipts is not None:
            self.receipts.enqueue(ride_id)
        return WebhookResult(handled=True, ride_id=ride_id)
