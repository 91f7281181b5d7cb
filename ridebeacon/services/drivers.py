"""Driver-side operations: location reporting, Stripe Connect, payouts, earnings."""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from ridebeacon.domain.distance import valid_coordinate
from ridebeacon.domain.events import DriverLocationAck, DriverLocationUpdate
from ridebeacon.domain.exceptions import (
    PayoutInProgress,
    UserNotFound,
    ValidationFailed,
)
from ridebeacon.domain.proximity import LocationIndex
from ridebeacon.infrastructure.locks import DistributedLock, LockNotAcquired
from ridebeacon.infrastructure.repositories import ReviewRepository, UserRepository
from ridebeacon.infrastructure.stripe_gateway import StripeGateway
from ridebeacon.realtime.hub import BroadcastHub

logger = logging.getLogger(__name__)

PAYOUT_LOCK_TTL_SECONDS = 60
# retries of the same payout inside this window reuse one idempotency key
PAYOUT_DEDUP_WINDOW_SECONDS = 300


def payout_idempotency_key(
    driver_id: int, amount_minor: int, now: Optional[float] = None
) -> str:
    window = int((time.time() if now is None else now) // PAYOUT_DEDUP_WINDOW_SECONDS)
    return f"payout-{driver_id}-{amount_minor}-{window}"


async def broadcast_location(
    hub: BroadcastHub,
    locations: LocationIndex,
    driver_id: int,
    lat,
    lng,
    ride_id: Optional[int] = None,
) -> None:
    """Record a position and fan it out.  Shared by HTTP and the socket."""
    location = locations.record(driver_id, lat, lng)
    if ride_id is not None:
        await hub.publish(
            DriverLocationUpdate(
                ride_id=ride_id,
                driver_id=driver_id,
                lat=location.latitude,
                lng=location.longitude,
            )
        )
    await hub.publish(
        DriverLocationAck(
            driver_id=driver_id, lat=location.latitude, lng=location.longitude
        )
    )


class DriverService:
    def __init__(
        self,
        session: AsyncSession,
        *,
        hub: Optional[BroadcastHub] = None,
        locations: Optional[LocationIndex] = None,
        gateway: Optional[StripeGateway] = None,
        redis: Optional[aioredis.Redis] = None,
        frontend_url: str = "",
    ):
        self.session = session
        self.hub = hub
        self.locations = locations
        self.gateway = gateway
        self.redis = redis
        self.frontend_url = frontend_url.rstrip("/")
        self.users = UserRepository(session)
        self.reviews = ReviewRepository(session)

    async def _driver(self, driver_id: int):
        driver = await self.users.get_by_id(driver_id)
        if driver is None:
            raise UserNotFound(f"Driver {driver_id} not found")
        return driver

    async def record_location(
        self, driver_id: int, lat, lng, ride_id: Optional[int] = None
    ) -> dict[str, Any]:
        if not valid_coordinate(lat, lng):
            raise ValidationFailed("Coordinates required", reason="invalid_coordinates")
        if not await self.users.set_last_position(driver_id, lat, lng):
            raise UserNotFound(f"Driver {driver_id} not found")
        await self.session.commit()
        await broadcast_location(self.hub, self.locations, driver_id, lat, lng, ride_id)
        return {"driver_id": driver_id, "lat": lat, "lng": lng, "ride_id": ride_id}

    async def connect_stripe(self, driver_id: int) -> dict[str, Any]:
        driver = await self._driver(driver_id)
        if driver.stripe_account_id:
            return {"url": None, "message": "Already connected"}

        account_id = await self.gateway.create_connected_account()
        await self.users.set_stripe_account(driver_id, account_id)
        await self.session.commit()
        logger.info("Driver %s linked to Stripe account %s", driver_id, account_id)

        url = await self.gateway.create_onboarding_link(
            account_id,
            refresh_url=f"{self.frontend_url}/driver/stripe/failed",
            return_url=f"{self.frontend_url}/driver/stripe/success",
        )
        return {"url": url}

    async def payout(
        self, driver_id: int, amount, idempotency_key: Optional[str] = None
    ) -> dict[str, Any]:
        """
        Transfer *amount* to the driver's connected account.

        The redis lock keeps two payouts for one driver from running at
        once; the idempotency key (client supplied, or derived from driver,
        amount and time window) makes Stripe drop a retried transfer.
        """
        if (
            isinstance(amount, bool)
            or not isinstance(amount, (int, float))
            or not math.isfinite(amount)
            or amount <= 0
        ):
            raise ValidationFailed("Invalid amount", reason="invalid_amount")
        amount_minor = math.floor(amount * 100)

        driver = await self._driver(driver_id)
        if not driver.stripe_account_id:
            raise ValidationFailed(
                "Driver Stripe account not connected", reason="stripe_not_connected"
            )

        lock = DistributedLock(
            self.redis, f"payout:{driver_id}", ttl_seconds=PAYOUT_LOCK_TTL_SECONDS
        )
        try:
            async with lock:
                transfer_id = await self.gateway.create_transfer(
                    amount_minor,
                    driver.stripe_account_id,
                    idempotency_key=(
                        f"payout-{driver_id}-{idempotency_key}"
                        if idempotency_key
                        else payout_idempotency_key(driver_id, amount_minor)
                    ),
                )
        except LockNotAcquired as exc:
            raise PayoutInProgress(
                f"A payout for driver {driver_id} is already in progress"
            ) from exc

        logger.info(
            "Payout %s of %d paise to driver %s", transfer_id, amount_minor, driver_id
        )
        return {"message": "Payout requested successfully", "transferId": transfer_id}

    async def earnings(self, driver_id: int) -> dict[str, Any]:
        driver = await self._driver(driver_id)
        return {"driver_id": driver_id, "total_earnings": driver.total_earnings or 0}

    async def reviews_for(self, driver_id: int) -> dict[str, Any]:
        reviews = await self.reviews.for_driver(driver_id)
        average = (
            round(sum(r.rating for r in reviews) / len(reviews), 2) if reviews else None
        )
        items = [
            {
                "id": review.id,
                "ride_id": review.ride_id,
                "rating": review.rating,
                "review": review.review,
                "created_at": review.created_at.isoformat() if review.created_at else None,
                "rider": {
                    "id": review.rider.id,
                    "full_name": review.rider.full_name,
                    "profile_pic": review.rider.profile_pic,
                }
                if review.rider
                else None,
            }
            for review in reviews
        ]
        return {"average_rating": average, "reviews": items}
