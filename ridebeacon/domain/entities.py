"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: enforces valid lifecycle transitions
  (pending -> confirmed -> ongoing -> completed | cancelled).
- ``Ride.decline`` keeps ``declined_by`` a set, so declining twice is a
  no-op.

The persistent copy of a ride lives in the store and is only changed
through conditional updates (see ``RideRepository``); these entities are
the in-memory view used for matching and for explaining why a
conditional update did not apply.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import RIDE_TRANSITIONS, PaymentStatus, RideStatus
from .exceptions import InvalidStateTransition, RideConflict


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class DriverLocation:
    driver_id: int
    latitude: float
    longitude: float
    updated_at: datetime


@dataclass(frozen=True)
class DriverProfile:
    """Public driver card shown to the rider once a ride is accepted."""

    id: int
    full_name: Optional[str] = None
    phone: Optional[str] = None
    profile_pic: Optional[str] = None
    vehicle: Optional[str] = None
    vehicle_plate: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone": self.phone,
            "profile_pic": self.profile_pic,
            "vehicle": self.vehicle,
            "vehicle_plate": self.vehicle_plate,
        }


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    id: Optional[int] = None
    rider_id: int = 0
    driver_id: Optional[int] = None
    pickup: Optional[str] = None
    dropoff: Optional[str] = None
    pickup_location: Optional[Location] = None
    dropoff_location: Optional[Location] = None
    ride_type: str = "Standard"
    fare: Optional[float] = None
    status: RideStatus = RideStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    declined_by: set[int] = field(default_factory=set)
    created_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        """Pending and not yet claimed by any driver."""
        return self.status == RideStatus.PENDING and self.driver_id is None

    def can_transition_to(self, new_status: RideStatus) -> bool:
        return new_status in RIDE_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: RideStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        if not self.can_transition_to(new_status):
            raise InvalidStateTransition(
                f"Cannot transition from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def assign_driver(self, driver_id: int) -> None:
        if not self.is_open:
            raise RideConflict(f"Ride {self.id} is no longer available")
        self.transition_to(RideStatus.CONFIRMED)
        self.driver_id = driver_id

    def decline(self, driver_id: int) -> None:
        if self.status != RideStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot decline a ride in status {self.status.value}"
            )
        self.declined_by.add(driver_id)
