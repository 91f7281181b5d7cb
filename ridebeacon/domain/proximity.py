"""
Location & Proximity Index
==========================

Two pieces:

1. ``LocationIndex`` -- last known position per driver.  Last write wins,
   no history.  Each driver key is written independently, so concurrent
   connection handlers never need a shared lock.
2. ``find_nearby`` -- which open rides are within ``radius_km`` of a
   driver, nearest first.

Nearby filter
-------------
A ride is returned when all of these hold:

* status is ``pending`` and no driver has claimed it,
* the requesting driver has not declined it,
* its pickup point lies within ``radius_km`` (haversine).

Malformed coordinates or radius produce an empty list instead of an
error; a driver app polling with a bad GPS fix simply sees nothing.

Complexity: O(n log n) for n candidate rides (distance + sort).
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Iterable, NamedTuple, Optional

from .distance import haversine_km, valid_coordinate
from .entities import DriverLocation, Ride
from .exceptions import ValidationFailed


class NearbyRide(NamedTuple):
    ride: Ride
    distance_km: float


class LocationIndex:
    """In-memory driver position table, one entry per driver."""

    def __init__(self) -> None:
        self._positions: dict[int, DriverLocation] = {}

    def record(self, driver_id: int, lat: float, lng: float) -> DriverLocation:
        if not valid_coordinate(lat, lng):
            raise ValidationFailed(
                f"Invalid coordinates ({lat}, {lng})", reason="invalid_coordinates"
            )
        location = DriverLocation(
            driver_id=driver_id,
            latitude=float(lat),
            longitude=float(lng),
            updated_at=datetime.now(timezone.utc),
        )
        self._positions[driver_id] = location
        return location

    def get(self, driver_id: int) -> Optional[DriverLocation]:
        return self._positions.get(driver_id)

    def forget(self, driver_id: int) -> None:
        self._positions.pop(driver_id, None)

    def snapshot(self) -> dict[int, DriverLocation]:
        return dict(self._positions)

    def __len__(self) -> int:
        return len(self._positions)


def find_nearby(
    rides: Iterable[Ride],
    origin_lat,
    origin_lng,
    radius_km,
    excluding_driver_id: Optional[int] = None,
) -> list[NearbyRide]:
    """Return open rides whose pickup is within *radius_km*, nearest first."""
    if not valid_coordinate(origin_lat, origin_lng):
        return []
    try:
        radius = float(radius_km)
    except (TypeError, ValueError):
        return []
    if not math.isfinite(radius) or radius < 0:
        return []

    lat, lng = float(origin_lat), float(origin_lng)
    nearby: list[NearbyRide] = []
    for ride in rides:
        if not ride.is_open:
            continue
        if excluding_driver_id is not None and excluding_driver_id in ride.declined_by:
            continue
        if ride.pickup_location is None:
            continue
        distance = haversine_km(
            lat,
            lng,
            ride.pickup_location.latitude,
            ride.pickup_location.longitude,
        )
        if distance <= radius:
            nearby.append(NearbyRide(ride, distance))

    nearby.sort(key=lambda item: item.distance_km)
    return nearby
