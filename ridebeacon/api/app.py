"""
FastAPI application factory.

* Builds the per-process shared state (broadcast hub, driver location
  index, provider clients, receipt worker) and hangs it on ``app.state``.
  Every piece can be injected, which is how the tests swap in fakes.
* Starts / stops the receipt worker and, with ``BROADCAST_BACKEND=redis``,
  the cross-instance relay via lifespan events.
* Registers routes under ``/api`` plus the ``/ws`` socket.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

import httpx
from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ridebeacon.api.errors import register_exception_handlers
from ridebeacon.api.middleware import limiter
from ridebeacon.api.routes import (
    admin,
    drivers,
    maps,
    payments,
    profile,
    reviews,
    rides,
    socket,
)
from ridebeacon.config import settings
from ridebeacon.domain.pricing import FareEngine
from ridebeacon.domain.proximity import LocationIndex
from ridebeacon.infrastructure.auth import TokenVerifier
from ridebeacon.infrastructure.database import async_session_factory
from ridebeacon.infrastructure.mailer import SmtpMailer
from ridebeacon.infrastructure.maps import MapsClient
from ridebeacon.infrastructure.redis_client import get_redis
from ridebeacon.infrastructure.stripe_gateway import StripeGateway
from ridebeacon.log_config import configure_logging
from ridebeacon.realtime.hub import BroadcastHub
from ridebeacon.realtime.relay import RedisRelay
from ridebeacon.workers.receipts import ReceiptWorker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start background machinery on startup; stop it on shutdown."""
    relay: Optional[RedisRelay] = None
    if settings.broadcast_backend == "redis":
        relay = RedisRelay(await get_redis(), settings.broadcast_channel, app.state.hub)
        await relay.start()
        app.state.hub.attach_relay(relay)
    await app.state.receipts.start()
    yield
    await app.state.receipts.stop()
    if relay is not None:
        app.state.hub.attach_relay(None)
        await relay.stop()
    await app.state.http.aclose()


def _default_receipt_worker() -> ReceiptWorker:
    mailer = SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_user,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        sender=settings.mail_sender,
        timeout_seconds=settings.smtp_timeout_seconds,
    )
    return ReceiptWorker(
        async_session_factory,
        mailer,
        max_attempts=settings.receipt_max_attempts,
        retry_base_seconds=settings.receipt_retry_base_seconds,
        max_queue=settings.receipt_queue_size,
    )


def create_app(
    *,
    hub: Optional[BroadcastHub] = None,
    locations: Optional[LocationIndex] = None,
    stripe_gateway: Optional[StripeGateway] = None,
    maps_client: Optional[MapsClient] = None,
    token_verifier: Optional[TokenVerifier] = None,
    receipts: Optional[ReceiptWorker] = None,
) -> FastAPI:
    configure_logging(settings.log_level)

    app = FastAPI(
        title="RideBeacon Dispatch API",
        description=(
            "Ride-hailing dispatch backend: ride lifecycle, proximity "
            "matching, realtime ride rooms over WebSocket and Stripe "
            "payment reconciliation."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Shared process state
    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    app.state.http = http_client
    app.state.hub = hub or BroadcastHub()
    app.state.locations = locations or LocationIndex()
    app.state.fares = FareEngine(
        settings.base_fare, settings.rate_per_km, settings.ride_class_multipliers
    )
    app.state.stripe = stripe_gateway or StripeGateway(
        settings.stripe_secret_key,
        settings.stripe_webhook_secret,
        currency=settings.stripe_currency,
        country=settings.stripe_country,
        timeout_seconds=settings.stripe_timeout_seconds,
    )
    app.state.maps = maps_client or MapsClient(
        http_client,
        api_key=settings.google_maps_api_key,
        geocode_url=settings.geocode_url,
        directions_url=settings.directions_url,
        region=settings.geocode_region,
    )
    app.state.token_verifier = token_verifier or TokenVerifier(
        http_client,
        base_url=settings.supabase_url,
        api_key=settings.supabase_service_key,
    )
    app.state.receipts = receipts or _default_receipt_worker()

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    register_exception_handlers(app)

    # Routers
    for module in (rides, drivers, payments, reviews, profile, maps, admin):
        app.include_router(module.router, prefix="/api")
    app.include_router(socket.router)

    return app
