"""Initial schema: users, rides, ride declines, payments and reviews.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

RIDE_STATUS = sa.Enum(
    "pending", "confirmed", "ongoing", "completed", "cancelled", name="ridestatus"
)
PAYMENT_STATUS = sa.Enum("pending", "completed", name="paymentstatus")
USER_ROLE = sa.Enum("rider", "driver", name="userrole")


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("full_name", sa.String(120), nullable=True),
        sa.Column("email", sa.String(255), unique=True, nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("profile_pic", sa.String(512), nullable=True),
        sa.Column("role", USER_ROLE, nullable=False, server_default="rider"),
        sa.Column("vehicle", sa.String(120), nullable=True),
        sa.Column("vehicle_plate", sa.String(32), nullable=True),
        sa.Column("total_earnings", sa.Float, nullable=False, server_default="0"),
        sa.Column("stripe_account_id", sa.String(64), nullable=True),
        sa.Column("lat", sa.Float, nullable=True),
        sa.Column("lng", sa.Float, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("rider_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("pickup", sa.String(255), nullable=True),
        sa.Column("dropoff", sa.String(255), nullable=True),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lng", sa.Float, nullable=True),
        sa.Column("dropoff_lat", sa.Float, nullable=True),
        sa.Column("dropoff_lng", sa.Float, nullable=True),
        sa.Column("ride_type", sa.String(32), nullable=False, server_default="Standard"),
        sa.Column("fare", sa.Float, nullable=False),
        sa.Column("status", RIDE_STATUS, nullable=False, server_default="pending"),
        sa.Column(
            "payment_status", PAYMENT_STATUS, nullable=False, server_default="pending"
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_rider", "rides", ["rider_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_created", "rides", ["created_at"])

    # ── ride_declines ─────────────────────────────────────────────────
    op.create_table(
        "ride_declines",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "ride_id",
            sa.Integer,
            sa.ForeignKey("rides.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("ride_id", "driver_id", name="uq_ride_declines_ride_driver"),
    )
    op.create_index("idx_ride_declines_driver", "ride_declines", ["driver_id"])

    # ── payments ──────────────────────────────────────────────────────
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("rider_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "completed", name="paymentstatus", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("payment_method", sa.String(64), nullable=True),
        sa.Column("payment_intent_id", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_payments_ride", "payments", ["ride_id"])
    op.create_index("idx_payments_intent", "payments", ["payment_intent_id"])
    # exactly-once reconciliation guards
    op.create_index(
        "uq_payments_completed_ride",
        "payments",
        ["ride_id"],
        unique=True,
        postgresql_where=sa.text("status = 'completed'"),
    )
    op.create_index(
        "uq_payments_completed_intent",
        "payments",
        ["payment_intent_id"],
        unique=True,
        postgresql_where=sa.text("status = 'completed'"),
    )
    op.create_index(
        "uq_payments_pending_ride_rider",
        "payments",
        ["ride_id", "rider_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # ── ride_reviews ──────────────────────────────────────────────────
    op.create_table(
        "ride_reviews",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("rider_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("review", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("ride_id", "rider_id", name="uq_ride_reviews_ride_rider"),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_ride_reviews_rating"),
    )
    op.create_index("idx_ride_reviews_driver", "ride_reviews", ["driver_id"])


def downgrade() -> None:
    op.drop_table("ride_reviews")
    op.drop_table("payments")
    op.drop_table("ride_declines")
    op.drop_table("rides")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS paymentstatus")
    op.execute("DROP TYPE IF EXISTS ridestatus")
    op.execute("DROP TYPE IF EXISTS userrole")
