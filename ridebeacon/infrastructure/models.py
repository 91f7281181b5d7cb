"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``          -- riders and drivers (drivers carry earnings + Stripe account)
* ``rides``          -- individual ride requests
* ``ride_declines``  -- (ride, driver) pairs; one row per driver that passed
* ``payments``       -- pending intents and finalised payments
* ``ride_reviews``   -- one review per (ride, rider)

Indexes
-------
* **B-Tree** on ``status``, ``rider_id``, ``driver_id`` for the nearby
  query and history look-ups.
* **Unique** ``(ride_id, driver_id)`` on ``ride_declines`` makes a repeat
  decline a no-op.
* **Partial unique** indexes on ``payments`` guarantee at most one
  completed payment per ride and per payment intent, and at most one
  pending payment per (ride, rider).
"""

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import relationship

from .database import Base
from ridebeacon.domain.entities import DriverProfile, Location, Ride
from ridebeacon.domain.enums import PaymentStatus, RideStatus, UserRole


def _enum(enum_cls, name: str) -> Enum:
    # store the lowercase values ("pending"), not the member names
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(120), nullable=True)
    email = Column(String(255), unique=True, nullable=True)
    phone = Column(String(32), nullable=True)
    profile_pic = Column(String(512), nullable=True)
    role = Column(_enum(UserRole, "userrole"), default=UserRole.RIDER, nullable=False)
    vehicle = Column(String(120), nullable=True)
    vehicle_plate = Column(String(32), nullable=True)
    total_earnings = Column(Float, default=0.0, nullable=False)
    stripe_account_id = Column(String(64), nullable=True)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def driver_profile(self) -> DriverProfile:
        return DriverProfile(
            id=self.id,
            full_name=self.full_name,
            phone=self.phone,
            profile_pic=self.profile_pic,
            vehicle=self.vehicle,
            vehicle_plate=self.vehicle_plate,
        )


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    pickup = Column(String(255), nullable=True)
    dropoff = Column(String(255), nullable=True)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)

    ride_type = Column(String(32), default="Standard", nullable=False)
    fare = Column(Float, nullable=False)
    status = Column(
        _enum(RideStatus, "ridestatus"), default=RideStatus.PENDING, nullable=False
    )
    payment_status = Column(
        _enum(PaymentStatus, "paymentstatus"),
        default=PaymentStatus.PENDING,
        nullable=False,
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    rider = relationship("UserModel", foreign_keys=[rider_id], lazy="raise")
    driver = relationship("UserModel", foreign_keys=[driver_id], lazy="raise")
    declines = relationship(
        "RideDeclineModel", lazy="selectin", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_rider", "rider_id"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_created", "created_at"),
    )

    @property
    def declined_by(self) -> list[int]:
        return sorted(d.driver_id for d in self.declines)

    def to_entity(self) -> Ride:
        pickup = (
            Location(self.pickup_lat, self.pickup_lng)
            if self.pickup_lat is not None and self.pickup_lng is not None
            else None
        )
        dropoff = (
            Location(self.dropoff_lat, self.dropoff_lng)
            if self.dropoff_lat is not None and self.dropoff_lng is not None
            else None
        )
        return Ride(
            id=self.id,
            rider_id=self.rider_id,
            driver_id=self.driver_id,
            pickup=self.pickup,
            dropoff=self.dropoff,
            pickup_location=pickup,
            dropoff_location=dropoff,
            ride_type=self.ride_type,
            fare=self.fare,
            status=RideStatus(self.status),
            payment_status=PaymentStatus(self.payment_status),
            declined_by=set(self.declined_by),
            created_at=self.created_at,
        )


class RideDeclineModel(Base):
    __tablename__ = "ride_declines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(
        Integer, ForeignKey("rides.id", ondelete="CASCADE"), nullable=False
    )
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("ride_id", "driver_id", name="uq_ride_declines_ride_driver"),
        Index("idx_ride_declines_driver", "driver_id"),
    )


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    rider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(
        _enum(PaymentStatus, "paymentstatus"),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_method = Column(String(64), nullable=True)
    payment_intent_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_payments_ride", "ride_id"),
        Index("idx_payments_intent", "payment_intent_id"),
        Index(
            "uq_payments_completed_ride",
            "ride_id",
            unique=True,
            postgresql_where=text("status = 'completed'"),
            sqlite_where=text("status = 'completed'"),
        ),
        Index(
            "uq_payments_completed_intent",
            "payment_intent_id",
            unique=True,
            postgresql_where=text("status = 'completed'"),
            sqlite_where=text("status = 'completed'"),
        ),
        Index(
            "uq_payments_pending_ride_rider",
            "ride_id",
            "rider_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )


class ReviewModel(Base):
    __tablename__ = "ride_reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    rider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    rating = Column(Integer, nullable=False)
    review = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    rider = relationship("UserModel", foreign_keys=[rider_id], lazy="raise")

    __table_args__ = (
        UniqueConstraint("ride_id", "rider_id", name="uq_ride_reviews_ride_rider"),
        Index("idx_ride_reviews_driver", "driver_id"),
    )
