"""Service-level tests for the ride lifecycle engine."""

from __future__ import annotations

import pytest

from ridebeacon.domain.enums import PaymentStatus
from ridebeacon.domain.exceptions import (
    InvalidStateTransition,
    RideConflict,
    RideNotFound,
    UserNotFound,
    ValidationFailed,
)
from ridebeacon.domain.pricing import FareEngine
from ridebeacon.infrastructure.models import PaymentModel
from ridebeacon.services.lifecycle import RideLifecycleEngine
from tests.conftest import DROPOFF, PICKUP, FakeConnection


def _ride_args(rider_id: int, **overrides):
    args = dict(
        rider_id=rider_id,
        pickup_lat=PICKUP[0],
        pickup_lng=PICKUP[1],
        dropoff_lat=DROPOFF[0],
        dropoff_lng=DROPOFF[1],
        ride_type="Premium",
        pickup="MG Road",
        dropoff="Koramangala",
    )
    args.update(overrides)
    return args


@pytest.fixture
def engine_for(hub):
    def build(session):
        return RideLifecycleEngine(session, hub, FareEngine())
    return build


def _watch(hub, *rooms):
    conn = FakeConnection()
    cid = hub.connect(conn)
    for room in rooms:
        hub.join(cid, room)
    return conn


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_prices_and_broadcasts(self, db_session, users, hub, engine_for):
        everyone = _watch(hub)
        ride = await engine_for(db_session).create(**_ride_args(users["rider"]))

        expected = FareEngine().calculate_fare(*PICKUP, *DROPOFF, "Premium")
        assert ride["fare"] == expected
        assert ride["status"] == "pending"
        assert ride["payment_status"] == "pending"
        assert ride["driver_id"] is None
        assert everyone.events() == ["new_ride_request"]
        assert everyone.frames[0]["data"]["id"] == ride["id"]

    @pytest.mark.asyncio
    async def test_unknown_rider(self, db_session, users, engine_for):
        with pytest.raises(UserNotFound):
            await engine_for(db_session).create(**_ride_args(999))

    @pytest.mark.asyncio
    async def test_invalid_coordinates(self, db_session, users, engine_for):
        with pytest.raises(ValidationFailed) as exc:
            await engine_for(db_session).create(
                **_ride_args(users["rider"], pickup_lat=120.0)
            )
        assert exc.value.reason == "invalid_coordinates"


class TestAcceptAndDecline:
    @pytest.mark.asyncio
    async def test_accept_assigns_driver(self, db_session, users, hub, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        room = _watch(hub, f"ride_{ride['id']}")

        accepted = await engine.accept(ride["id"], users["driver"])

        assert accepted["status"] == "confirmed"
        assert accepted["driver_id"] == users["driver"]
        assert accepted["driver"]["vehicle_plate"] == "KA01AB1234"
        assert room.events() == ["ride_status_update", "driver_assigned"]
        assert room.frames[0]["data"] == {"rideId": ride["id"], "status": "confirmed"}
        assert room.frames[1]["data"]["driver"]["full_name"] == "Vikram Singh"

    @pytest.mark.asyncio
    async def test_second_accept_conflicts(self, db_session, users, hub, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        await engine.accept(ride["id"], users["driver"])
        room = _watch(hub, f"ride_{ride['id']}")

        with pytest.raises(RideConflict):
            await engine.accept(ride["id"], users["other_driver"])
        assert room.frames == []
        assert (await engine.get(ride["id"]))["driver_id"] == users["driver"]

    @pytest.mark.asyncio
    async def test_accept_cancelled_ride_conflicts(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        await engine.cancel(ride["id"])
        with pytest.raises(RideConflict):
            await engine.accept(ride["id"], users["driver"])

    @pytest.mark.asyncio
    async def test_accept_requires_driver(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        with pytest.raises(ValidationFailed):
            await engine.accept(ride["id"], None)
        with pytest.raises(UserNotFound):
            await engine.accept(ride["id"], 999)

    @pytest.mark.asyncio
    async def test_accept_missing_ride(self, db_session, users, engine_for):
        with pytest.raises(RideNotFound):
            await engine_for(db_session).accept(999, users["driver"])

    @pytest.mark.asyncio
    async def test_decline_twice_is_recorded_once(self, db_session, users, hub, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        room = _watch(hub, f"ride_{ride['id']}")

        first = await engine.decline(ride["id"], users["driver"])
        second = await engine.decline(ride["id"], users["driver"])

        assert first["declined_by"] == [users["driver"]]
        assert second["declined_by"] == [users["driver"]]
        assert second["status"] == "pending"
        assert room.events() == ["ride_status_update"]

    @pytest.mark.asyncio
    async def test_declined_ride_hidden_from_that_driver(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        await engine.decline(ride["id"], users["driver"])

        mine = await engine.nearby(*PICKUP, 5, driver_id=users["driver"])
        theirs = await engine.nearby(*PICKUP, 5, driver_id=users["other_driver"])
        assert mine == []
        assert [r["id"] for r in theirs] == [ride["id"]]
        assert theirs[0]["distance"] == pytest.approx(0.0, abs=1e-6)

    @pytest.mark.asyncio
    async def test_decline_confirmed_ride_fails(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        await engine.accept(ride["id"], users["driver"])
        with pytest.raises(InvalidStateTransition):
            await engine.decline(ride["id"], users["other_driver"])


class TestNearby:
    @pytest.mark.asyncio
    async def test_nearest_first_and_radius(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        far = await engine.create(**_ride_args(users["rider"], pickup_lat=12.9352, pickup_lng=77.6146))
        near = await engine.create(**_ride_args(users["rider"], pickup_lat=12.9763, pickup_lng=77.5929))
        claimed = await engine.create(**_ride_args(users["rider"]))
        await engine.accept(claimed["id"], users["driver"])

        hits = await engine.nearby(*PICKUP, 10)
        assert [r["id"] for r in hits] == [near["id"], far["id"]]
        assert hits[0]["distance"] < hits[1]["distance"]

        assert [r["id"] for r in await engine.nearby(*PICKUP, 2)] == [near["id"]]

    @pytest.mark.asyncio
    async def test_malformed_coordinates(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        await engine.create(**_ride_args(users["rider"]))
        assert await engine.nearby("abc", PICKUP[1], 5) == []
        assert await engine.nearby(*PICKUP, "wide") == []


class TestTransitions:
    @pytest.mark.asyncio
    async def test_full_trip(self, db_session, users, hub, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        await engine.accept(ride["id"], users["driver"])
        room = _watch(hub, f"ride_{ride['id']}")

        started = await engine.update_status(ride["id"], "in_progress")
        assert started["status"] == "ongoing"
        done = await engine.update_status(ride["id"], "completed")
        assert done["status"] == "completed"

        assert room.events() == ["ride_status_update", "ride_status_update", "ride_completed"]
        assert [f["data"].get("status") for f in room.frames[:2]] == ["ongoing", "completed"]

    @pytest.mark.asyncio
    async def test_unknown_status_alias(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        with pytest.raises(ValidationFailed) as exc:
            await engine.update_status(ride["id"], "teleported")
        assert exc.value.reason == "invalid_status"

    @pytest.mark.asyncio
    async def test_start_pending_ride_fails(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        with pytest.raises(InvalidStateTransition):
            await engine.start(ride["id"])

    @pytest.mark.asyncio
    async def test_cancel_once(self, db_session, users, hub, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        room = _watch(hub, f"ride_{ride['id']}")

        cancelled = await engine.cancel(ride["id"])
        assert cancelled["status"] == "cancelled"
        with pytest.raises(InvalidStateTransition):
            await engine.cancel(ride["id"])
        assert room.events() == ["ride_status_update", "ride_cancelled"]

    @pytest.mark.asyncio
    async def test_cannot_cancel_ongoing_ride(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        await engine.accept(ride["id"], users["driver"])
        await engine.start(ride["id"])
        with pytest.raises(InvalidStateTransition):
            await engine.cancel(ride["id"])

    @pytest.mark.asyncio
    async def test_transition_missing_ride(self, db_session, users, engine_for):
        with pytest.raises(RideNotFound):
            await engine_for(db_session).cancel(999)

    @pytest.mark.asyncio
    async def test_mark_paid(self, db_session, users, hub, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        room = _watch(hub, f"ride_{ride['id']}")

        paid = await engine.mark_paid(ride["id"])
        assert paid["payment_status"] == "completed"
        assert paid["status"] == "pending"
        assert room.events() == ["ride_updated"]
        with pytest.raises(RideNotFound):
            await engine.mark_paid(999)


class TestCompleteAfterPayment:
    @pytest.mark.asyncio
    async def test_requires_completed_payment(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        await engine.accept(ride["id"], users["driver"])
        with pytest.raises(ValidationFailed) as exc:
            await engine.complete_after_payment(ride["id"])
        assert exc.value.reason == "payment_not_completed"

    @pytest.mark.asyncio
    async def test_completes_once(self, db_session, users, hub, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        await engine.accept(ride["id"], users["driver"])
        db_session.add(
            PaymentModel(
                ride_id=ride["id"],
                rider_id=users["rider"],
                amount=ride["fare"],
                status=PaymentStatus.COMPLETED,
                payment_method="card",
                payment_intent_id="pi_manual",
            )
        )
        await db_session.commit()
        room = _watch(hub, f"ride_{ride['id']}")

        first = await engine.complete_after_payment(ride["id"])
        second = await engine.complete_after_payment(ride["id"])

        assert first["status"] == second["status"] == "completed"
        assert room.events() == ["ride_status_update", "ride_completed"]


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_includes_parties(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        await engine.accept(ride["id"], users["driver"])

        detail = await engine.get(ride["id"])
        assert detail["rider"] == {"id": users["rider"], "full_name": "Aarav Sharma"}
        assert detail["driver"]["vehicle"] == "Maruti Dzire"

    @pytest.mark.asyncio
    async def test_get_missing(self, db_session, users, engine_for):
        with pytest.raises(RideNotFound):
            await engine_for(db_session).get(999)

    @pytest.mark.asyncio
    async def test_history_by_role(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        first = await engine.create(**_ride_args(users["rider"]))
        second = await engine.create(**_ride_args(users["rider"]))
        await engine.accept(first["id"], users["driver"])

        as_rider = await engine.history(users["rider"], "rider")
        as_driver = await engine.history(users["driver"], "driver")

        assert {r["id"] for r in as_rider} == {first["id"], second["id"]}
        assert [r["id"] for r in as_driver] == [first["id"]]
        assert as_driver[0]["rider"]["full_name"] == "Aarav Sharma"
        assert as_driver[0]["driver"]["full_name"] == "Vikram Singh"

    @pytest.mark.asyncio
    async def test_history_requires_role(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        with pytest.raises(ValidationFailed):
            await engine.history(users["rider"], "admin")
        with pytest.raises(ValidationFailed):
            await engine.history(None, "rider")

    @pytest.mark.asyncio
    async def test_list_for_rider(self, db_session, users, engine_for):
        engine = engine_for(db_session)
        ride = await engine.create(**_ride_args(users["rider"]))
        assert [r["id"] for r in await engine.list_for_rider(users["rider"])] == [ride["id"]]
        assert await engine.list_for_rider(users["driver"]) == []
