"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class RideClass(str, enum.Enum):
    STANDARD = "Standard"
    PREMIUM = "Premium"
    XL = "XL"


class UserRole(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.PENDING: {RideStatus.CONFIRMED, RideStatus.CANCELLED},
    RideStatus.CONFIRMED: {
        RideStatus.ONGOING,
        RideStatus.COMPLETED,
        RideStatus.CANCELLED,
    },
    RideStatus.ONGOING: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}


def allowed_sources(target: RideStatus) -> set[RideStatus]:
    """Statuses from which *target* may be reached in one step."""
    return {src for src, dests in RIDE_TRANSITIONS.items() if target in dests}
