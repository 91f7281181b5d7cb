"""
Fare Engine  (Strategy Pattern)
===============================

Formula
-------
Fare = (Base_Fare + Distance x Rate_Per_KM) x Class_Multiplier

* **Class_Multiplier**: Standard 1.0, Premium 1.5, XL 2.0; any class we
  do not recognise is charged at 1.0.
* The fare is rounded to the currency minor unit (paise) and computed
  exactly once, when the ride is created.

Complexity: O(1) per fare calculation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Mapping, Optional

from .distance import haversine_km
from .enums import RideClass

DEFAULT_MULTIPLIERS: dict[str, float] = {
    RideClass.STANDARD.value: 1.0,
    RideClass.PREMIUM.value: 1.5,
    RideClass.XL.value: 2.0,
}


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(
        self, distance_km: float, base_fare: float, rate_per_km: float
    ) -> float: ...


class RideClassPricing(PricingStrategy):
    """Metered fare scaled by the multiplier of the requested ride class."""

    def __init__(self, multiplier: float = 1.0):
        self.multiplier = multiplier

    def calculate(
        self, distance_km: float, base_fare: float, rate_per_km: float
    ) -> float:
        raw = (base_fare + distance_km * rate_per_km) * self.multiplier
        return round(raw, 2)


# ── Engine facade ─────────────────────────────────────────────────────


class FareEngine:
    """High-level API used by the lifecycle engine."""

    def __init__(
        self,
        base_fare: float = 25.0,
        rate_per_km: float = 12.0,
        multipliers: Optional[Mapping[str, float]] = None,
    ):
        self.base_fare = base_fare
        self.rate_per_km = rate_per_km
        self.multipliers = dict(multipliers or DEFAULT_MULTIPLIERS)

    def multiplier_for(self, ride_class: Optional[str]) -> float:
        if not ride_class:
            return 1.0
        return self.multipliers.get(ride_class, 1.0)

    def fare_for_distance(
        self, distance_km: float, ride_class: Optional[str] = None
    ) -> float:
        strategy = RideClassPricing(self.multiplier_for(ride_class))
        return strategy.calculate(distance_km, self.base_fare, self.rate_per_km)

    def calculate_fare(
        self,
        pickup_lat: float,
        pickup_lng: float,
        dropoff_lat: float,
        dropoff_lng: float,
        ride_class: Optional[str] = None,
    ) -> float:
        distance = haversine_km(pickup_lat, pickup_lng, dropoff_lat, dropoff_lng)
        return self.fare_for_distance(distance, ride_class)
