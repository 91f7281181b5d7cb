"""Driver endpoints: location, Stripe Connect, payouts, earnings, reviews."""

from __future__ import annotations

import time
from types import SimpleNamespace
from unittest.mock import ANY, AsyncMock

import pytest
import stripe

from ridebeacon.domain.exceptions import UpstreamTimeout, UserNotFound, ValidationFailed
from ridebeacon.infrastructure.models import UserModel
from ridebeacon.infrastructure.repositories import UserRepository
from ridebeacon.infrastructure.stripe_gateway import StripeGateway
from ridebeacon.services.drivers import DriverService, payout_idempotency_key
from tests.conftest import DROPOFF, PICKUP, FakeConnection, fetch


async def _ride(client, users) -> dict:
    resp = await client.post(
        "/api/rides",
        json={
            "rider_id": users["rider"],
            "pickup_lat": PICKUP[0],
            "pickup_lng": PICKUP[1],
            "dropoff_lat": DROPOFF[0],
            "dropoff_lng": DROPOFF[1],
        },
    )
    return resp.json()


class TestLocation:
    @pytest.mark.asyncio
    async def test_location_is_stored_and_broadcast(
        self, client, app, users, hub, session_factory
    ):
        ride = await _ride(client, users)
        follower, driver_socket = FakeConnection(), FakeConnection()
        hub.join(hub.connect(follower), f"ride_{ride['id']}")
        hub.join(hub.connect(driver_socket), f"driver_{users['driver']}")

        resp = await client.post(
            f"/api/drivers/{users['driver']}/location",
            json={"lat": 12.975, "lng": 77.6, "ride_id": ride["id"]},
        )

        assert resp.status_code == 200, resp.text
        assert resp.json() == {
            "driver_id": users["driver"],
            "lat": 12.975,
            "lng": 77.6,
            "ride_id": ride["id"],
        }
        assert follower.frames == [
            {
                "event": "driver_location_update",
                "data": {
                    "rideId": ride["id"],
                    "driverId": users["driver"],
                    "lat": 12.975,
                    "lng": 77.6,
                },
            }
        ]
        assert driver_socket.events() == ["driver_location_ack"]
        assert app.state.locations.get(users["driver"]).latitude == 12.975

        stored = await fetch(session_factory, UserModel, users["driver"])
        assert (stored.lat, stored.lng) == (12.975, 77.6)

    @pytest.mark.asyncio
    async def test_location_without_ride_only_acks(self, client, users, hub):
        bystander = FakeConnection()
        hub.connect(bystander)
        resp = await client.post(
            f"/api/drivers/{users['driver']}/location", json={"lat": 12.9, "lng": 77.5}
        )
        assert resp.status_code == 200
        assert bystander.frames == []

    @pytest.mark.asyncio
    async def test_missing_coordinates(self, client, users):
        resp = await client.post(f"/api/drivers/{users['driver']}/location", json={"lat": 12.9})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_coordinates"

    @pytest.mark.asyncio
    async def test_unknown_driver(self, client, users):
        resp = await client.post("/api/drivers/999/location", json={"lat": 12.9, "lng": 77.5})
        assert resp.status_code == 404


class TestStripeConnect:
    @pytest.mark.asyncio
    async def test_onboarding_link(self, client, users, gateway, session_factory):
        resp = await client.post(f"/api/drivers/{users['driver']}/connect-stripe")
        assert resp.status_code == 200, resp.text
        assert resp.json()["url"] == "https://connect.stripe.com/setup/e/acct_123"

        stored = await fetch(session_factory, UserModel, users["driver"])
        assert stored.stripe_account_id == "acct_123"
        kwargs = gateway.create_onboarding_link.await_args.kwargs
        assert kwargs["return_url"].endswith("/driver/stripe/success")

    @pytest.mark.asyncio
    async def test_already_connected(self, client, users, gateway):
        await client.post(f"/api/drivers/{users['driver']}/connect-stripe")
        resp = await client.post(f"/api/drivers/{users['driver']}/connect-stripe")
        assert resp.json() == {"url": None, "message": "Already connected"}
        gateway.create_connected_account.assert_awaited_once()


class TestPayout:
    @pytest.mark.asyncio
    async def test_payout_floors_to_minor_units(self, db_session, users, gateway):
        await UserRepository(db_session).set_stripe_account(users["driver"], "acct_123")
        await db_session.commit()
        redis = AsyncMock()
        redis.set = AsyncMock(return_value=True)
        service = DriverService(db_session, gateway=gateway, redis=redis)

        result = await service.payout(users["driver"], 123.456)

        assert result == {"message": "Payout requested successfully", "transferId": "tr_123"}
        gateway.create_transfer.assert_awaited_once_with(
            12345, "acct_123", idempotency_key=ANY
        )
        redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [None, 0, -10, float("nan"), True])
    async def test_rejects_bad_amount(self, db_session, users, gateway, amount):
        service = DriverService(db_session, gateway=gateway, redis=AsyncMock())
        with pytest.raises(ValidationFailed) as exc:
            await service.payout(users["driver"], amount)
        assert exc.value.reason == "invalid_amount"

    @pytest.mark.asyncio
    async def test_requires_connected_account(self, db_session, users, gateway):
        service = DriverService(db_session, gateway=gateway, redis=AsyncMock())
        with pytest.raises(ValidationFailed) as exc:
            await service.payout(users["driver"], 100)
        assert exc.value.reason == "stripe_not_connected"
        gateway.create_transfer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retried_payout_reuses_idempotency_key(
        self, db_session, users, gateway, monkeypatch
    ):
        monkeypatch.setattr(
            "ridebeacon.services.drivers.time", SimpleNamespace(time=lambda: 1000.0)
        )
        await UserRepository(db_session).set_stripe_account(users["driver"], "acct_123")
        await db_session.commit()
        redis = AsyncMock()
        redis.set = AsyncMock(return_value=True)
        service = DriverService(db_session, gateway=gateway, redis=redis)

        await service.payout(users["driver"], 500)
        await service.payout(users["driver"], 500)

        first, second = gateway.create_transfer.await_args_list
        assert first.kwargs["idempotency_key"] == second.kwargs["idempotency_key"]

    @pytest.mark.asyncio
    async def test_client_key_is_scoped_to_driver(
        self, client, users, gateway, session_factory, monkeypatch
    ):
        async with session_factory() as session:
            await UserRepository(session).set_stripe_account(users["driver"], "acct_123")
            await session.commit()
        redis = AsyncMock()
        redis.set = AsyncMock(return_value=True)
        monkeypatch.setattr("ridebeacon.api.dependencies.get_redis", AsyncMock(return_value=redis))

        resp = await client.post(
            f"/api/drivers/{users['driver']}/payout",
            json={"amount": 250},
            headers={"Idempotency-Key": "req-42"},
        )

        assert resp.status_code == 200, resp.text
        gateway.create_transfer.assert_awaited_once_with(
            25000, "acct_123", idempotency_key=f"payout-{users['driver']}-req-42"
        )


def test_payout_key_is_stable_within_window():
    assert payout_idempotency_key(7, 500, now=600.0) == payout_idempotency_key(7, 500, now=899.0)
    assert payout_idempotency_key(7, 500, now=600.0) != payout_idempotency_key(7, 500, now=900.0)
    assert payout_idempotency_key(7, 500, now=600.0) != payout_idempotency_key(7, 501, now=600.0)


class TestStripeGateway:
    @pytest.mark.asyncio
    async def test_slow_transfer_is_awaited_to_completion(self, monkeypatch):
        calls = []

        def slow_create(**params):
            time.sleep(0.2)
            calls.append(params)
            return SimpleNamespace(id="tr_slow")

        monkeypatch.setattr(stripe.Transfer, "create", slow_create)
        gateway = StripeGateway("sk_test_dummy", "whsec", timeout_seconds=0.01)

        transfer_id = await gateway.create_transfer(1000, "acct_9", idempotency_key="payout-9-x")

        assert transfer_id == "tr_slow"
        assert calls[0]["idempotency_key"] == "payout-9-x"
        assert calls[0]["destination"] == "acct_9"

    @pytest.mark.asyncio
    async def test_connection_timeout_is_504(self, monkeypatch):
        def timed_out(**params):
            raise stripe.APIConnectionError("Request timed out")

        monkeypatch.setattr(stripe.Transfer, "create", timed_out)
        gateway = StripeGateway("sk_test_dummy", "whsec", timeout_seconds=0.01)

        with pytest.raises(UpstreamTimeout):
            await gateway.create_transfer(1000, "acct_9")

    def test_timeout_is_set_on_sdk_http_client(self):
        StripeGateway("sk_test_dummy", "whsec", timeout_seconds=4.0)
        assert isinstance(stripe.default_http_client, stripe.RequestsClient)


class TestEarningsAndReviews:
    @pytest.mark.asyncio
    async def test_earnings_start_at_zero(self, client, users):
        resp = await client.get(f"/api/drivers/{users['driver']}/earnings")
        assert resp.json() == {"driver_id": users["driver"], "total_earnings": 0.0}

    @pytest.mark.asyncio
    async def test_earnings_unknown_driver(self, db_session, users):
        with pytest.raises(UserNotFound):
            await DriverService(db_session).earnings(999)

    @pytest.mark.asyncio
    async def test_reviews_with_average(self, client, users, session_factory):
        first = await _ride(client, users)
        second = await _ride(client, users)
        for ride, rating in ((first, 5), (second, 4)):
            resp = await client.post(
                "/api/reviews",
                json={
                    "ride_id": ride["id"],
                    "driver_id": users["driver"],
                    "rider_id": users["rider"],
                    "rating": rating,
                    "review": "Smooth ride",
                },
            )
            assert resp.status_code == 200, resp.text

        resp = await client.get(f"/api/drivers/{users['driver']}/reviews")
        data = resp.json()
        assert data["average_rating"] == 4.5
        assert len(data["reviews"]) == 2
        assert data["reviews"][0]["rider"]["full_name"] == "Aarav Sharma"

    @pytest.mark.asyncio
    async def test_resubmitting_review_overwrites(self, client, users):
        ride = await _ride(client, users)
        body = {
            "ride_id": ride["id"],
            "driver_id": users["driver"],
            "rider_id": users["rider"],
            "rating": 2,
        }
        first = await client.post("/api/reviews", json=body)
        second = await client.post("/api/reviews", json={**body, "rating": 5})
        assert first.json()["id"] == second.json()["id"]

        resp = await client.get(f"/api/drivers/{users['driver']}/reviews")
        assert resp.json()["average_rating"] == 5.0

    @pytest.mark.asyncio
    async def test_no_reviews(self, client, users):
        resp = await client.get(f"/api/drivers/{users['other_driver']}/reviews")
        assert resp.json() == {"average_rating": None, "reviews": []}

    @pytest.mark.asyncio
    async def test_rating_out_of_range(self, client, users):
        ride = await _ride(client, users)
        resp = await client.post(
            "/api/reviews",
            json={
                "ride_id": ride["id"],
                "driver_id": users["driver"],
                "rider_id": users["rider"],
                "rating": 6,
            },
        )
        assert resp.status_code == 400
