"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 riders and 5 drivers around central Bangalore
  - 7 sample rides (mix of pending, confirmed, ongoing, completed, cancelled)
  - a completed payment and a review for the completed ride
"""

import asyncio

from sqlalchemy import text

from ridebeacon.config import settings
from ridebeacon.domain.enums import PaymentStatus, RideStatus, UserRole
from ridebeacon.domain.pricing import FareEngine
from ridebeacon.infrastructure.database import async_session_factory, engine
from ridebeacon.infrastructure.models import (
    PaymentModel,
    ReviewModel,
    RideModel,
    UserModel,
)

# MG Road, Bangalore (approx)
CENTRE_LAT, CENTRE_LNG = 12.9716, 77.5946


RIDERS = [
    {"full_name": "Aarav Sharma", "email": "aarav@example.com", "phone": "+919800000001"},
    {"full_name": "Priya Patel", "email": "priya@example.com", "phone": "+919800000002"},
    {"full_name": "Rohan Mehta", "email": "rohan@example.com", "phone": "+919800000003"},
    {"full_name": "Sneha Gupta", "email": "sneha@example.com", "phone": "+919800000004"},
    {"full_name": "Ananya Reddy", "email": "ananya@example.com", "phone": "+919800000005"},
    {"full_name": "Meera Nair", "email": "meera@example.com", "phone": "+919800000006"},
]

DRIVERS = [
    {"full_name": "Vikram Singh", "email": "vikram@example.com", "vehicle": "Maruti Dzire", "vehicle_plate": "KA01AB1234", "lat": 12.9720, "lng": 77.5950},
    {"full_name": "Karan Joshi", "email": "karan@example.com", "vehicle": "Toyota Innova", "vehicle_plate": "KA03CD5678", "lat": 12.9352, "lng": 77.6146},
    {"full_name": "Arjun Kumar", "email": "arjun@example.com", "vehicle": "Honda City", "vehicle_plate": "KA05EF9012", "lat": 12.9780, "lng": 77.6400},
    {"full_name": "Diya Iyer", "email": "diya@example.com", "vehicle": "Hyundai Aura", "vehicle_plate": "KA02GH3456", "lat": 13.0050, "lng": 77.5800},
    {"full_name": "Rahul Das", "email": "rahul@example.com", "vehicle": "Kia Carens", "vehicle_plate": "KA04IJ7890", "lat": 12.9600, "lng": 77.5700},
]


async def seed():
    fares = FareEngine(
        settings.base_fare, settings.rate_per_km, settings.ride_class_multipliers
    )

    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        riders = [UserModel(role=UserRole.RIDER, **r) for r in RIDERS]
        drivers = [UserModel(role=UserRole.DRIVER, **d) for d in DRIVERS]
        session.add_all(riders + drivers)
        await session.flush()
        print(f"  Created {len(riders)} riders and {len(drivers)} drivers")

        # ── Rides ─────────────────────────────────────────────────────
        rides_data = [
            {
                "rider": riders[0], "driver": None,
                "pickup": ("MG Road", 12.9716, 77.5946),
                "dropoff": ("Koramangala", 12.9352, 77.6146),
                "ride_type": "Premium", "status": RideStatus.PENDING,
            },
            {
                "rider": riders[1], "driver": None,
                "pickup": ("Cubbon Park", 12.9763, 77.5929),
                "dropoff": ("Indiranagar", 12.9784, 77.6408),
                "ride_type": "Standard", "status": RideStatus.PENDING,
            },
            {
                "rider": riders[2], "driver": None,
                "pickup": ("Majestic", 12.9767, 77.5713),
                "dropoff": ("Whitefield", 12.9698, 77.7500),
                "ride_type": "XL", "status": RideStatus.PENDING,
            },
            {
                "rider": riders[3], "driver": drivers[0],
                "pickup": ("Richmond Town", 12.9610, 77.6010),
                "dropoff": ("HSR Layout", 12.9116, 77.6389),
                "ride_type": "Standard", "status": RideStatus.CONFIRMED,
            },
            {
                "rider": riders[4], "driver": drivers[1],
                "pickup": ("Jayanagar", 12.9250, 77.5938),
                "dropoff": ("BTM Layout", 12.9166, 77.6101),
                "ride_type": "Standard", "status": RideStatus.ONGOING,
            },
            {
                "rider": riders[5], "driver": drivers[2],
                "pickup": ("Malleshwaram", 13.0035, 77.5710),
                "dropoff": ("Hebbal", 13.0358, 77.5970),
                "ride_type": "Premium", "status": RideStatus.COMPLETED,
            },
            {
                "rider": riders[0], "driver": None,
                "pickup": ("Ulsoor", 12.9817, 77.6200),
                "dropoff": ("Domlur", 12.9609, 77.6387),
                "ride_type": "Standard", "status": RideStatus.CANCELLED,
            },
        ]

        rides = []
        for r in rides_data:
            label_p, plat, plng = r["pickup"]
            label_d, dlat, dlng = r["dropoff"]
            completed = r["status"] == RideStatus.COMPLETED
            ride = RideModel(
                rider_id=r["rider"].id,
                driver_id=r["driver"].id if r["driver"] else None,
                pickup=label_p,
                dropoff=label_d,
                pickup_lat=plat,
                pickup_lng=plng,
                dropoff_lat=dlat,
                dropoff_lng=dlng,
                ride_type=r["ride_type"],
                fare=fares.calculate_fare(plat, plng, dlat, dlng, r["ride_type"]),
                status=r["status"],
                payment_status=PaymentStatus.COMPLETED if completed else PaymentStatus.PENDING,
            )
            session.add(ride)
            rides.append(ride)
        await session.flush()
        print(f"  Created {len(rides)} rides")

        # ── Settlement for the completed ride ─────────────────────────
        done = rides[5]
        session.add(
            PaymentModel(
                ride_id=done.id,
                rider_id=done.rider_id,
                amount=done.fare,
                status=PaymentStatus.COMPLETED,
                payment_method="card",
                payment_intent_id="pi_seed_0001",
            )
        )
        drivers[2].total_earnings = done.fare
        session.add(
            ReviewModel(
                ride_id=done.id,
                driver_id=done.driver_id,
                rider_id=done.rider_id,
                rating=5,
                review="Smooth ride, very punctual.",
            )
        )
        await session.flush()
        print("  Created 1 payment and 1 review")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
