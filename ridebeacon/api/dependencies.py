"""FastAPI dependency injection helpers."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ridebeacon.config import settings
from ridebeacon.domain.exceptions import AuthenticationFailed
from ridebeacon.domain.pricing import FareEngine
from ridebeacon.domain.proximity import LocationIndex
from ridebeacon.infrastructure.auth import AuthenticatedUser, TokenVerifier
from ridebeacon.infrastructure.database import async_session_factory
from ridebeacon.infrastructure.maps import MapsClient
from ridebeacon.infrastructure.redis_client import get_redis
from ridebeacon.infrastructure.stripe_gateway import StripeGateway
from ridebeacon.realtime.hub import BroadcastHub
from ridebeacon.services.drivers import DriverService
from ridebeacon.services.lifecycle import RideLifecycleEngine
from ridebeacon.services.payments import PaymentService
from ridebeacon.workers.receipts import ReceiptWorker

_bearer = HTTPBearer(auto_error=False)


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Shared process state (created in the app lifespan) ───────────────


def get_hub(request: Request) -> BroadcastHub:
    return request.app.state.hub


def get_location_index(request: Request) -> LocationIndex:
    return request.app.state.locations


def get_fare_engine(request: Request) -> FareEngine:
    return request.app.state.fares


def get_stripe_gateway(request: Request) -> StripeGateway:
    return request.app.state.stripe


def get_maps_client(request: Request) -> MapsClient:
    return request.app.state.maps


def get_token_verifier(request: Request) -> TokenVerifier:
    return request.app.state.token_verifier


def get_receipt_worker(request: Request) -> Optional[ReceiptWorker]:
    return getattr(request.app.state, "receipts", None)


# ── Auth ──────────────────────────────────────────────────────────────


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> AuthenticatedUser:
    if credentials is None or not credentials.credentials:
        raise AuthenticationFailed("No token provided")
    return await verifier.verify(credentials.credentials)


# ── Services ──────────────────────────────────────────────────────────


def get_lifecycle(
    db: AsyncSession = Depends(get_db),
    hub: BroadcastHub = Depends(get_hub),
    fares: FareEngine = Depends(get_fare_engine),
) -> RideLifecycleEngine:
    return RideLifecycleEngine(db, hub, fares)


def get_payment_service(
    db: AsyncSession = Depends(get_db),
    hub: BroadcastHub = Depends(get_hub),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    receipts: Optional[ReceiptWorker] = Depends(get_receipt_worker),
) -> PaymentService:
    return PaymentService(db, hub, gateway, receipts)


async def get_driver_service(
    db: AsyncSession = Depends(get_db),
    hub: BroadcastHub = Depends(get_hub),
    locations: LocationIndex = Depends(get_location_index),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> DriverService:
    return DriverService(
        db,
        hub=hub,
        locations=locations,
        gateway=gateway,
        redis=await get_redis(),
        frontend_url=settings.frontend_url,
    )
