"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ridebeacon.domain.enums import UserRole


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    rider_id: int
    pickup: Optional[str] = Field(None, max_length=255)
    dropoff: Optional[str] = Field(None, max_length=255)
    ride_type: Optional[str] = Field("Standard", max_length=32)
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    dropoff_lat: float = Field(..., ge=-90, le=90)
    dropoff_lng: float = Field(..., ge=-180, le=180)


class DriverActionRequest(BaseModel):
    driver_id: Optional[int] = None


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., description="in_progress (or ongoing) | completed")


class LocationUpdateRequest(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    ride_id: Optional[int] = None


class PayoutRequest(BaseModel):
    amount: Optional[float] = None


class PaymentIntentRequest(BaseModel):
    ride_id: int
    rider_id: int
    amount: float


class PaymentCreateRequest(BaseModel):
    ride_id: int
    rider_id: int
    amount: float
    payment_method: Optional[str] = Field(None, max_length=64)


class ReviewRequest(BaseModel):
    ride_id: int
    driver_id: int
    rider_id: int
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = Field(None, max_length=120)
    phone: Optional[str] = Field(None, max_length=32)
    profile_pic: Optional[str] = Field(None, max_length=512)
    role: Optional[str] = Field(None, pattern="^(rider|driver)$")
    vehicle: Optional[str] = Field(None, max_length=120)
    vehicle_plate: Optional[str] = Field(None, max_length=32)


# ── Responses ─────────────────────────────────────────────────────────


class PartySummary(BaseModel):
    id: int
    full_name: Optional[str] = None


class DriverProfileResponse(BaseModel):
    id: int
    full_name: Optional[str] = None
    phone: Optional[str] = None
    profile_pic: Optional[str] = None
    vehicle: Optional[str] = None
    vehicle_plate: Optional[str] = None


class RideResponse(BaseModel):
    id: int
    rider_id: int
    driver_id: Optional[int] = None
    pickup: Optional[str] = None
    dropoff: Optional[str] = None
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    dropoff_lat: Optional[float] = None
    dropoff_lng: Optional[float] = None
    ride_type: str
    fare: float
    status: str
    payment_status: str
    declined_by: list[int] = []
    created_at: Optional[datetime] = None


class NearbyRideResponse(RideResponse):
    distance: float


class RideDetailResponse(RideResponse):
    rider: Optional[PartySummary] = None
    driver: Optional[DriverProfileResponse] = None


class RideHistoryEntry(BaseModel):
    id: int
    pickup: Optional[str] = None
    dropoff: Optional[str] = None
    fare: float
    status: str
    payment_status: str
    ride_type: str
    created_at: Optional[datetime] = None
    rider: Optional[PartySummary] = None
    driver: Optional[PartySummary] = None


class LocationResponse(BaseModel):
    driver_id: int
    lat: float
    lng: float
    ride_id: Optional[int] = None


class ConnectStripeResponse(BaseModel):
    url: Optional[str] = None
    message: Optional[str] = None


class PayoutResponse(BaseModel):
    message: str
    transferId: str


class EarningsResponse(BaseModel):
    driver_id: int
    total_earnings: float


class ReviewRider(PartySummary):
    profile_pic: Optional[str] = None


class ReviewEntry(BaseModel):
    id: int
    ride_id: int
    rating: int
    review: Optional[str] = None
    created_at: Optional[datetime] = None
    rider: Optional[ReviewRider] = None


class DriverReviewsResponse(BaseModel):
    average_rating: Optional[float] = None
    reviews: list[ReviewEntry] = []


class ReviewResponse(BaseModel):
    id: int
    ride_id: int
    driver_id: int
    rider_id: int
    rating: int
    review: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PaymentIntentResponse(BaseModel):
    clientSecret: str
    paymentIntentId: str


class PaymentResponse(BaseModel):
    id: int
    ride_id: int
    rider_id: int
    amount: float
    status: str
    payment_method: Optional[str] = None
    payment_intent_id: Optional[str] = None
    created_at: Optional[datetime] = None


class WebhookResponse(BaseModel):
    received: bool = True
    handled: bool = False
    duplicate: bool = False
    ride_id: Optional[int] = None


class ProfileResponse(BaseModel):
    id: int
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    profile_pic: Optional[str] = None
    role: UserRole
    vehicle: Optional[str] = None
    vehicle_plate: Optional[str] = None
    total_earnings: float = 0.0
    stripe_account_id: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None

    model_config = {"from_attributes": True}


class GeocodeResponse(BaseModel):
    lat: float
    lng: float


class DirectionsResponse(BaseModel):
    polyline: str
    steps: list[str] = []


class HealthResponse(BaseModel):
    status: str = "ok"


class RealtimeStatsResponse(BaseModel):
    active_connections: int
    total_rooms: int
    total_connections_ever: int
    total_messages_sent: int
    relay: str
    tracked_drivers: int
    queued_receipts: int


class ErrorResponse(BaseModel):
    error: str
    detail: str


ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Validation failure"},
    401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
    404: {"model": ErrorResponse, "description": "Entity not found"},
}
