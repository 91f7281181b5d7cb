"""Unit tests for ride entity state transitions (State Pattern)."""

import pytest

from ridebeacon.domain.entities import Ride
from ridebeacon.domain.enums import RideStatus, allowed_sources
from ridebeacon.domain.exceptions import InvalidStateTransition, RideConflict


class TestRideStateMachine:
    def test_initial_status_is_pending(self):
        ride = Ride()
        assert ride.status == RideStatus.PENDING
        assert ride.is_open

    # ── Valid transitions ─────────────────────────────────────────

    def test_pending_to_confirmed(self):
        ride = Ride(status=RideStatus.PENDING)
        ride.transition_to(RideStatus.CONFIRMED)
        assert ride.status == RideStatus.CONFIRMED

    def test_pending_to_cancelled(self):
        ride = Ride(status=RideStatus.PENDING)
        ride.transition_to(RideStatus.CANCELLED)
        assert ride.status == RideStatus.CANCELLED

    def test_confirmed_to_ongoing(self):
        ride = Ride(status=RideStatus.CONFIRMED)
        ride.transition_to(RideStatus.ONGOING)
        assert ride.status == RideStatus.ONGOING

    def test_confirmed_to_completed(self):
        ride = Ride(status=RideStatus.CONFIRMED)
        ride.transition_to(RideStatus.COMPLETED)
        assert ride.status == RideStatus.COMPLETED

    def test_confirmed_to_cancelled(self):
        ride = Ride(status=RideStatus.CONFIRMED)
        ride.transition_to(RideStatus.CANCELLED)
        assert ride.status == RideStatus.CANCELLED

    def test_ongoing_to_completed(self):
        ride = Ride(status=RideStatus.ONGOING)
        ride.transition_to(RideStatus.COMPLETED)
        assert ride.status == RideStatus.COMPLETED

    # ── Invalid transitions ───────────────────────────────────────

    def test_pending_to_completed_fails(self):
        ride = Ride(status=RideStatus.PENDING)
        with pytest.raises(InvalidStateTransition):
            ride.transition_to(RideStatus.COMPLETED)

    def test_pending_to_ongoing_fails(self):
        ride = Ride(status=RideStatus.PENDING)
        with pytest.raises(InvalidStateTransition):
            ride.transition_to(RideStatus.ONGOING)

    def test_completed_is_terminal(self):
        ride = Ride(status=RideStatus.COMPLETED)
        for target in RideStatus:
            assert not ride.can_transition_to(target)

    def test_cancelled_is_terminal(self):
        ride = Ride(status=RideStatus.CANCELLED)
        with pytest.raises(InvalidStateTransition):
            ride.transition_to(RideStatus.PENDING)

    def test_ongoing_to_cancelled_fails(self):
        """Once the trip has started it can only complete."""
        ride = Ride(status=RideStatus.ONGOING)
        with pytest.raises(InvalidStateTransition):
            ride.transition_to(RideStatus.CANCELLED)

    def test_allowed_sources(self):
        assert allowed_sources(RideStatus.COMPLETED) == {
            RideStatus.CONFIRMED,
            RideStatus.ONGOING,
        }
        assert allowed_sources(RideStatus.CANCELLED) == {
            RideStatus.PENDING,
            RideStatus.CONFIRMED,
        }
        assert allowed_sources(RideStatus.PENDING) == set()


class TestAssignAndDecline:
    def test_assign_driver_confirms(self):
        ride = Ride(id=1)
        ride.assign_driver(7)
        assert ride.driver_id == 7
        assert ride.status == RideStatus.CONFIRMED
        assert not ride.is_open

    def test_assign_taken_ride_conflicts(self):
        ride = Ride(id=1, driver_id=7, status=RideStatus.CONFIRMED)
        with pytest.raises(RideConflict):
            ride.assign_driver(8)

    def test_decline_is_idempotent(self):
        ride = Ride(id=1)
        ride.decline(7)
        ride.decline(7)
        assert ride.declined_by == {7}
        assert ride.status == RideStatus.PENDING

    def test_decline_confirmed_ride_fails(self):
        ride = Ride(id=1, driver_id=7, status=RideStatus.CONFIRMED)
        with pytest.raises(InvalidStateTransition):
            ride.decline(8)
