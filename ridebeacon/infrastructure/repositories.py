"""
Repository pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Every write that can race with another request is a single statement:

* ``RideRepository.claim``             UPDATE ... WHERE driver_id IS NULL
* ``RideRepository.transition``        UPDATE ... WHERE status IN (...)
* ``RideRepository.add_decline``       INSERT guarded by a unique key
* ``UserRepository.increment_earnings`` UPDATE ... SET x = x + :fare
* ``PaymentRepository.finalize``       guarded by partial unique indexes
"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import (
    PaymentModel,
    RideDeclineModel,
    RideModel,
    ReviewModel,
    UserModel,
)
from ridebeacon.domain.enums import PaymentStatus, RideStatus


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_ride(
        self,
        *,
        rider_id: int,
        pickup_lat: float,
        pickup_lng: float,
        dropoff_lat: float,
        dropoff_lng: float,
        fare: float,
        ride_type: str = "Standard",
        pickup: str | None = None,
        dropoff: str | None = None,
    ) -> RideModel:
        ride = RideModel(
            rider_id=rider_id,
            pickup=pickup,
            dropoff=dropoff,
            pickup_lat=pickup_lat,
            pickup_lng=pickup_lng,
            dropoff_lat=dropoff_lat,
            dropoff_lng=dropoff_lng,
            ride_type=ride_type,
            fare=fare,
            status=RideStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
        )
        self.session.add(ride)
        await self.session.flush()
        await self.session.refresh(ride)
        return ride

    async def get_by_id(self, ride_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_with_parties(self, ride_id: int) -> Optional[RideModel]:
        """Ride with rider and driver profiles eagerly loaded."""
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .options(selectinload(RideModel.rider), selectinload(RideModel.driver))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_rider(self, rider_id: int) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.rider_id == rider_id)
            .order_by(RideModel.created_at.desc(), RideModel.id.desc())
        )
        return list(result.scalars().all())

    async def history(
        self, user_id: int, *, as_driver: bool, limit: int = 100
    ) -> list[RideModel]:
        column = RideModel.driver_id if as_driver else RideModel.rider_id
        result = await self.session.execute(
            select(RideModel)
            .where(column == user_id)
            .options(selectinload(RideModel.rider), selectinload(RideModel.driver))
            .order_by(RideModel.created_at.desc(), RideModel.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_open_rides(
        self, excluding_driver_id: int | None = None
    ) -> list[RideModel]:
        """Pending, unclaimed rides the given driver has not declined."""
        query = select(RideModel).where(
            RideModel.status == RideStatus.PENDING,
            RideModel.driver_id.is_(None),
        )
        if excluding_driver_id is not None:
            declined = select(RideDeclineModel.id).where(
                RideDeclineModel.ride_id == RideModel.id,
                RideDeclineModel.driver_id == excluding_driver_id,
            )
            query = query.where(~declined.exists())
        result = await self.session.execute(query.order_by(RideModel.created_at))
        return list(result.scalars().all())

    async def claim(self, ride_id: int, driver_id: int) -> bool:
        """Assign *driver_id* only if nobody holds the ride yet."""
        result = await self.session.execute(
            update(RideModel)
            .where(
                RideModel.id == ride_id,
                RideModel.driver_id.is_(None),
                RideModel.status == RideStatus.PENDING,
            )
            .values(driver_id=driver_id, status=RideStatus.CONFIRMED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def transition(
        self,
        ride_id: int,
        allowed_from: Iterable[RideStatus],
        to_status: RideStatus,
    ) -> bool:
        """Compare-and-set on ``status``; False when the guard did not match."""
        result = await self.session.execute(
            update(RideModel)
            .where(
                RideModel.id == ride_id,
                RideModel.status.in_(list(allowed_from)),
            )
            .values(status=to_status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def settle(self, ride_id: int) -> bool:
        """Mark a ride paid and completed in one statement."""
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id)
            .values(
                status=RideStatus.COMPLETED,
                payment_status=PaymentStatus.COMPLETED,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_paid(self, ride_id: int) -> bool:
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id)
            .values(payment_status=PaymentStatus.COMPLETED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def add_decline(self, ride_id: int, driver_id: int) -> bool:
        """Record a decline; returns False when it was already recorded."""
        try:
            async with self.session.begin_nested():
                self.session.add(RideDeclineModel(ride_id=ride_id, driver_id=driver_id))
        except IntegrityError:
            return False
        return True


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_pending(self, ride_id: int, rider_id: int) -> Optional[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.ride_id == ride_id,
                PaymentModel.rider_id == rider_id,
                PaymentModel.status == PaymentStatus.PENDING,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_or_create_pending(
        self,
        *,
        ride_id: int,
        rider_id: int,
        amount: float,
        payment_method: str | None,
    ) -> PaymentModel:
        existing = await self.get_pending(ride_id, rider_id)
        if existing:
            return existing
        payment = PaymentModel(
            ride_id=ride_id,
            rider_id=rider_id,
            amount=amount,
            status=PaymentStatus.PENDING,
            payment_method=payment_method,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(payment)
        except IntegrityError:
            # a concurrent request inserted the pending row first
            existing = await self.get_pending(ride_id, rider_id)
            if existing is None:
                raise
            return existing
        return payment

    async def set_intent(self, payment_id: int, payment_intent_id: str) -> None:
        await self.session.execute(
            update(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .values(payment_intent_id=payment_intent_id)
            .execution_options(synchronize_session=False)
        )

    async def get_completed_by_intent(
        self, payment_intent_id: str
    ) -> Optional[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel).where(
                PaymentModel.payment_intent_id == payment_intent_id,
                PaymentModel.status == PaymentStatus.COMPLETED,
            )
        )
        return result.scalar_one_or_none()

    async def get_completed_for_ride(self, ride_id: int) -> Optional[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel).where(
                PaymentModel.ride_id == ride_id,
                PaymentModel.status == PaymentStatus.COMPLETED,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_ride(self, ride_id: int) -> list[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.ride_id == ride_id)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
        )
        return list(result.scalars().all())

    async def finalize(
        self,
        *,
        ride_id: int,
        rider_id: int,
        amount: float,
        payment_method: str,
        payment_intent_id: str,
    ) -> bool:
        """
        Record the completed payment for *payment_intent_id*.

        Promotes the pending row created by the intent request when there
        is one, otherwise inserts a completed row.  Returns False when a
        completed payment for this intent or ride already exists.
        """
        try:
            async with self.session.begin_nested():
                promoted = await self.session.execute(
                    update(PaymentModel)
                    .where(
                        PaymentModel.payment_intent_id == payment_intent_id,
                        PaymentModel.status == PaymentStatus.PENDING,
                    )
                    .values(
                        status=PaymentStatus.COMPLETED,
                        amount=amount,
                        payment_method=payment_method,
                    )
                    .execution_options(synchronize_session=False)
                )
                if promoted.rowcount == 0:
                    self.session.add(
                        PaymentModel(
                            ride_id=ride_id,
                            rider_id=rider_id,
                            amount=amount,
                            status=PaymentStatus.COMPLETED,
                            payment_method=payment_method,
                            payment_intent_id=payment_intent_id,
                        )
                    )
        except IntegrityError:
            return False
        return True


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id, populate_existing=True)

    async def update_profile(self, user_id: int, values: dict) -> Optional[UserModel]:
        if values:
            await self.session.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        return await self.get_by_id(user_id)

    async def increment_earnings(self, driver_id: int, amount: float) -> bool:
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == driver_id)
            .values(total_earnings=UserModel.total_earnings + amount)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_stripe_account(self, driver_id: int, account_id: str) -> None:
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == driver_id)
            .values(stripe_account_id=account_id)
            .execution_options(synchronize_session=False)
        )

    async def set_last_position(self, driver_id: int, lat: float, lng: float) -> bool:
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == driver_id)
            .values(lat=lat, lng=lng)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class ReviewRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(
        self,
        *,
        ride_id: int,
        driver_id: int,
        rider_id: int,
        rating: int,
        review: str | None,
    ) -> ReviewModel:
        result = await self.session.execute(
            select(ReviewModel).where(
                ReviewModel.ride_id == ride_id, ReviewModel.rider_id == rider_id
            )
        )
        existing = result.scalar_one_or_none()
        if existing:
            existing.driver_id = driver_id
            existing.rating = rating
            existing.review = review
            await self.session.flush()
            return existing

        created = ReviewModel(
            ride_id=ride_id,
            driver_id=driver_id,
            rider_id=rider_id,
            rating=rating,
            review=review,
        )
        self.session.add(created)
        await self.session.flush()
        await self.session.refresh(created)
        return created

    async def for_driver(self, driver_id: int) -> list[ReviewModel]:
        result = await self.session.execute(
            select(ReviewModel)
            .where(ReviewModel.driver_id == driver_id)
            .options(selectinload(ReviewModel.rider))
            .order_by(ReviewModel.created_at.desc(), ReviewModel.id.desc())
        )
        return list(result.scalars().all())
