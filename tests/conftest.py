"""
Shared test fixtures.

Every test gets its own SQLite database file (via aiosqlite) built from
the production metadata, so tests run without Docker / PostgreSQL /
Redis.  Two connection hooks make SQLite behave closer to PostgreSQL:

* pysqlite's implicit transaction handling is switched off and we emit
  BEGIN ourselves, otherwise SAVEPOINTs (``begin_nested``) do not work;
* WAL journaling lets a test read through one session while requests
  write through others.

The concurrency tests build their engine with ``BEGIN IMMEDIATE`` so
competing writers queue on the database lock instead of failing.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, AsyncGenerator, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ridebeacon.domain.enums import UserRole
from ridebeacon.domain.exceptions import AuthenticationFailed
from ridebeacon.infrastructure.auth import AuthenticatedUser
from ridebeacon.infrastructure.database import Base
from ridebeacon.infrastructure.models import RideModel, UserModel
from ridebeacon.infrastructure.stripe_gateway import PaymentIntentHandle, StripeGateway
from ridebeacon.realtime.hub import BroadcastHub

WEBHOOK_SECRET = "whsec_test_secret"
AUTH_HEADERS = {"Authorization": "Bearer test-token"}

# MG Road -> Koramangala, Bangalore
PICKUP = (12.9716, 77.5946)
DROPOFF = (12.9352, 77.6146)


# ── Engine helpers ────────────────────────────────────────────────────


def make_engine(path, begin: str = "BEGIN") -> AsyncEngine:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{path}", connect_args={"timeout": 15}
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(begin)

    return engine


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ── Fakes ─────────────────────────────────────────────────────────────


class FakeConnection:
    """Socket stand-in that records every frame it is sent."""

    def __init__(self, fail: bool = False):
        self.frames: list[dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.frames.append(data)

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.frames]


class FakeTokenVerifier:
    async def verify(self, token: str) -> AuthenticatedUser:
        if token != "test-token":
            raise AuthenticationFailed("Invalid or expired token")
        return AuthenticatedUser(id="auth-user-1", email="rider@example.com")


class FakeReceiptQueue:
    def __init__(self):
        self.jobs: list[int] = []

    def enqueue(self, ride_id: int) -> None:
        self.jobs.append(ride_id)

    @property
    def pending(self) -> int:
        return len(self.jobs)

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass


def make_gateway() -> StripeGateway:
    """Real webhook verification, mocked network calls."""
    gateway = StripeGateway("sk_test_dummy", WEBHOOK_SECRET)
    gateway.create_payment_intent = AsyncMock(
        return_value=PaymentIntentHandle(id="pi_123", client_secret="pi_123_secret_abc")
    )
    gateway.create_connected_account = AsyncMock(return_value="acct_123")
    gateway.create_onboarding_link = AsyncMock(
        return_value="https://connect.stripe.com/setup/e/acct_123"
    )
    gateway.create_transfer = AsyncMock(return_value="tr_123")
    return gateway


def sign_webhook(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Build a ``Stripe-Signature`` header for *payload*."""
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def succeeded_event(
    intent_id: str,
    ride_id: int,
    rider_id: int,
    amount_minor: int,
    event_type: str = "payment_intent.succeeded",
) -> bytes:
    return json.dumps(
        {
            "id": f"evt_{intent_id}",
            "type": event_type,
            "data": {
                "object": {
                    "id": intent_id,
                    "object": "payment_intent",
                    "amount_received": amount_minor,
                    "metadata": {"ride_id": str(ride_id), "rider_id": str(rider_id)},
                    "payment_method_types": ["card"],
                }
            },
        }
    ).encode("utf-8")


# ── Seed helpers ──────────────────────────────────────────────────────


async def seed_users(session_factory: async_sessionmaker) -> dict[str, int]:
    async with session_factory() as session:
        rider = UserModel(
            full_name="Aarav Sharma",
            email="aarav@example.com",
            phone="+919800000001",
            role=UserRole.RIDER,
        )
        driver = UserModel(
            full_name="Vikram Singh",
            email="vikram@example.com",
            phone="+919800000101",
            role=UserRole.DRIVER,
            vehicle="Maruti Dzire",
            vehicle_plate="KA01AB1234",
        )
        other_driver = UserModel(
            full_name="Karan Joshi",
            email="karan@example.com",
            role=UserRole.DRIVER,
            vehicle="Toyota Innova",
            vehicle_plate="KA03CD5678",
        )
        session.add_all([rider, driver, other_driver])
        await session.commit()
        return {
            "rider": rider.id,
            "driver": driver.id,
            "other_driver": other_driver.id,
        }


async def fetch(session_factory: async_sessionmaker, model, pk: int):
    """Read one row through a fresh session."""
    async with session_factory() as session:
        return await session.get(model, pk)


async def fetch_ride(session_factory: async_sessionmaker, ride_id: int) -> Optional[RideModel]:
    return await fetch(session_factory, RideModel, ride_id)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = make_engine(tmp_path / "ridebeacon.db")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def users(session_factory) -> dict[str, int]:
    return await seed_users(session_factory)


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub()


@pytest.fixture
def gateway() -> StripeGateway:
    return make_gateway()


@pytest.fixture
def receipts() -> FakeReceiptQueue:
    return FakeReceiptQueue()


@pytest_asyncio.fixture
async def app(session_factory, hub, gateway, receipts):
    from ridebeacon.api.app import create_app
    from ridebeacon.api.dependencies import get_db
    from ridebeacon.api.middleware import limiter

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application = create_app(
        hub=hub,
        stripe_gateway=gateway,
        token_verifier=FakeTokenVerifier(),
        receipts=receipts,
    )
    application.dependency_overrides[get_db] = _test_db
    limiter.reset()
    yield application
    await application.state.http.aclose()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers=AUTH_HEADERS
    ) as ac:
        yield ac
