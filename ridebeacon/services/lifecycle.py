"""
Ride Lifecycle Engine
=====================

Owns the ride state machine.  Every status change is one conditional
UPDATE (see ``RideRepository.claim`` / ``transition``); when the guard
does not match, the current row is loaded and the ``Ride`` entity
explains why (not found, already taken, illegal transition).

Events go out through the ``BroadcastHub`` only after the transaction
has committed.  They are notifications prompting a refetch, so a
client may see one slightly before its read reflects the change.

Decline exhaustion
------------------
A ride that every nearby driver declined stays ``pending`` until the
rider cancels it; nothing expires rides automatically.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ridebeacon.domain.distance import valid_coordinate
from ridebeacon.domain.enums import RideStatus, UserRole, allowed_sources
from ridebeacon.domain.events import (
    DriverAssigned,
    NewRideRequest,
    RideCancelled,
    RideCompleted,
    RideStatusUpdate,
    RideUpdated,
)
from ridebeacon.domain.exceptions import (
    InvalidStateTransition,
    RideConflict,
    RideNotFound,
    UserNotFound,
    ValidationFailed,
)
from ridebeacon.domain.pricing import FareEngine
from ridebeacon.domain.proximity import find_nearby
from ridebeacon.infrastructure.models import RideModel, UserModel
from ridebeacon.infrastructure.repositories import (
    PaymentRepository,
    RideRepository,
    UserRepository,
)
from ridebeacon.realtime.hub import BroadcastHub

logger = logging.getLogger(__name__)

# client vocabulary for PATCH /rides/{id}/status
STATUS_ALIASES: dict[str, RideStatus] = {
    "in_progress": RideStatus.ONGOING,
    "ongoing": RideStatus.ONGOING,
    "completed": RideStatus.COMPLETED,
}

HISTORY_LIMIT = 100


# ── Serialisation ─────────────────────────────────────────────────────


def _value(member) -> Optional[str]:
    return getattr(member, "value", member)


def ride_to_dict(ride: RideModel, **extra: Any) -> dict[str, Any]:
    data = {
        "id": ride.id,
        "rider_id": ride.rider_id,
        "driver_id": ride.driver_id,
        "pickup": ride.pickup,
        "dropoff": ride.dropoff,
        "pickup_lat": ride.pickup_lat,
        "pickup_lng": ride.pickup_lng,
        "dropoff_lat": ride.dropoff_lat,
        "dropoff_lng": ride.dropoff_lng,
        "ride_type": ride.ride_type,
        "fare": ride.fare,
        "status": _value(ride.status),
        "payment_status": _value(ride.payment_status),
        "declined_by": ride.declined_by,
        "created_at": ride.created_at.isoformat() if ride.created_at else None,
    }
    data.update(extra)
    return data


def _party_summary(user: Optional[UserModel]) -> Optional[dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "full_name": user.full_name}


# ── Engine ────────────────────────────────────────────────────────────


class RideLifecycleEngine:
    def __init__(
        self,
        session: AsyncSession,
        hub: BroadcastHub,
        fares: Optional[FareEngine] = None,
    ):
        self.session = session
        self.hub = hub
        self.fares = fares or FareEngine()
        self.rides = RideRepository(session)
        self.users = UserRepository(session)
        self.payments = PaymentRepository(session)

    async def _require(self, ride_id: int) -> RideModel:
        ride = await self.rides.get_by_id(ride_id)
        if ride is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride

    # ── Create ────────────────────────────────────────────────────────

    async def create(
        self,
        *,
        rider_id: int,
        pickup_lat: float,
        pickup_lng: float,
        dropoff_lat: float,
        dropoff_lng: float,
        ride_type: Optional[str] = None,
        pickup: Optional[str] = None,
        dropoff: Optional[str] = None,
    ) -> dict[str, Any]:
        if not (
            valid_coordinate(pickup_lat, pickup_lng)
            and valid_coordinate(dropoff_lat, dropoff_lng)
        ):
            raise ValidationFailed(
                "Pickup and dropoff coordinates are required",
                reason="invalid_coordinates",
            )
        if await self.users.get_by_id(rider_id) is None:
            raise UserNotFound(f"Rider {rider_id} not found")

        ride_type = ride_type or "Standard"
        fare = self.fares.calculate_fare(
            pickup_lat, pickup_lng, dropoff_lat, dropoff_lng, ride_type
        )
        ride = await self.rides.create_ride(
            rider_id=rider_id,
            pickup=pickup,
            dropoff=dropoff,
            pickup_lat=pickup_lat,
            pickup_lng=pickup_lng,
            dropoff_lat=dropoff_lat,
            dropoff_lng=dropoff_lng,
            ride_type=ride_type,
            fare=fare,
        )
        await self.session.commit()
        data = ride_to_dict(ride)
        logger.info("Ride %s created for rider %s (fare %.2f)", ride.id, rider_id, fare)

        await self.hub.publish(NewRideRequest(ride=data))
        return data

    # ── Queries ───────────────────────────────────────────────────────

    async def nearby(
        self,
        lat,
        lng,
        radius_km=5.0,
        driver_id: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Open rides near (lat, lng), nearest first, with ``distance`` in km."""
        if not valid_coordinate(lat, lng):
            return []
        candidates = await self.rides.get_open_rides(excluding_driver_id=driver_id)
        by_id = {ride.id: ride for ride in candidates}
        hits = find_nearby(
            (ride.to_entity() for ride in candidates),
            lat,
            lng,
            radius_km,
            excluding_driver_id=driver_id,
        )
        return [ride_to_dict(by_id[hit.ride.id], distance=hit.distance_km) for hit in hits]

    async def get(self, ride_id: int) -> dict[str, Any]:
        ride = await self.rides.get_with_parties(ride_id)
        if ride is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride_to_dict(
            ride,
            rider=_party_summary(ride.rider),
            driver=ride.driver.driver_profile().as_dict() if ride.driver else None,
        )

    async def list_for_rider(self, rider_id: int) -> list[dict[str, Any]]:
        return [ride_to_dict(ride) for ride in await self.rides.list_for_rider(rider_id)]

    async def history(self, user_id: Optional[int], role: Optional[str]) -> list[dict[str, Any]]:
        if user_id is None or role not in (UserRole.RIDER.value, UserRole.DRIVER.value):
            raise ValidationFailed("userId and valid role (rider or driver) required")
        rides = await self.rides.history(
            user_id, as_driver=role == UserRole.DRIVER.value, limit=HISTORY_LIMIT
        )
        return [
            {
                "id": ride.id,
                "pickup": ride.pickup,
                "dropoff": ride.dropoff,
                "fare": ride.fare,
                "status": _value(ride.status),
                "payment_status": _value(ride.payment_status),
                "ride_type": ride.ride_type,
                "created_at": ride.created_at.isoformat() if ride.created_at else None,
                "rider": _party_summary(ride.rider),
                "driver": _party_summary(ride.driver),
            }
            for ride in rides
        ]

    # ── Transitions ───────────────────────────────────────────────────

    async def accept(self, ride_id: int, driver_id: Optional[int]) -> dict[str, Any]:
        if driver_id is None:
            raise ValidationFailed("No driver_id provided")
        driver = await self.users.get_by_id(driver_id)
        if driver is None:
            raise UserNotFound(f"Driver {driver_id} not found")

        if not await self.rides.claim(ride_id, driver_id):
            current = await self._require(ride_id)
            # raises RideConflict / InvalidStateTransition for a closed ride
            current.to_entity().assign_driver(driver_id)
            raise RideConflict(f"Ride {ride_id} is no longer available")

        await self.session.commit()
        ride = await self._require(ride_id)
        profile = driver.driver_profile().as_dict()
        logger.info("Ride %s accepted by driver %s", ride_id, driver_id)

        await self.hub.publish_many(
            RideStatusUpdate(ride_id=ride_id, status=RideStatus.CONFIRMED.value),
            DriverAssigned(ride_id=ride_id, driver=profile),
        )
        return ride_to_dict(ride, driver=profile)

    async def decline(self, ride_id: int, driver_id: Optional[int]) -> dict[str, Any]:
        if driver_id is None:
            raise ValidationFailed("No driver_id provided")
        ride = await self._require(ride_id)
        ride.to_entity().decline(driver_id)

        added = await self.rides.add_decline(ride_id, driver_id)
        await self.session.commit()
        ride = await self._require(ride_id)

        if added:
            logger.info("Ride %s declined by driver %s", ride_id, driver_id)
            await self.hub.publish(
                RideStatusUpdate(ride_id=ride_id, status=RideStatus.PENDING.value)
            )
        return ride_to_dict(ride)

    async def _transition(self, ride_id: int, target: RideStatus) -> RideModel:
        if not await self.rides.transition(ride_id, allowed_sources(target), target):
            current = await self._require(ride_id)
            current.to_entity().transition_to(target)
            raise InvalidStateTransition(
                f"Ride {ride_id} changed concurrently, cannot move to {target.value}"
            )
        await self.session.commit()
        logger.info("Ride %s -> %s", ride_id, target.value)
        return await self._require(ride_id)

    async def update_status(self, ride_id: int, status: Optional[str]) -> dict[str, Any]:
        target = STATUS_ALIASES.get(status or "")
        if target is None:
            raise ValidationFailed(
                f"Unsupported status {status!r}; use in_progress or completed",
                reason="invalid_status",
            )
        if target is RideStatus.COMPLETED:
            return await self.complete(ride_id)
        return await self.start(ride_id)

    async def start(self, ride_id: int) -> dict[str, Any]:
        ride = await self._transition(ride_id, RideStatus.ONGOING)
        await self.hub.publish(
            RideStatusUpdate(ride_id=ride_id, status=RideStatus.ONGOING.value)
        )
        return ride_to_dict(ride)

    async def complete(self, ride_id: int) -> dict[str, Any]:
        ride = await self._transition(ride_id, RideStatus.COMPLETED)
        await self.hub.publish_many(
            RideStatusUpdate(ride_id=ride_id, status=RideStatus.COMPLETED.value),
            RideCompleted(ride_id=ride_id),
        )
        return ride_to_dict(ride)

    async def complete_after_payment(self, ride_id: int) -> dict[str, Any]:
        """Complete a ride whose payment is already recorded as completed."""
        ride = await self._require(ride_id)
        if await self.payments.get_completed_for_ride(ride_id) is None:
            raise ValidationFailed(
                "Payment not completed for this ride.", reason="payment_not_completed"
            )
        if ride.status == RideStatus.COMPLETED:
            # reconciliation already closed it
            return ride_to_dict(ride)
        return await self.complete(ride_id)

    async def cancel(self, ride_id: int) -> dict[str, Any]:
        ride = await self._transition(ride_id, RideStatus.CANCELLED)
        await self.hub.publish_many(
            RideStatusUpdate(ride_id=ride_id, status=RideStatus.CANCELLED.value),
            RideCancelled(ride_id=ride_id),
        )
        return ride_to_dict(ride)

    async def mark_paid(self, ride_id: int) -> dict[str, Any]:
        if not await self.rides.mark_paid(ride_id):
            raise RideNotFound(f"Ride {ride_id} not found")
        await self.session.commit()
        ride = await self._require(ride_id)
        data = ride_to_dict(ride)
        await self.hub.publish(RideUpdated(ride_id=ride_id, ride=data))
        return data
