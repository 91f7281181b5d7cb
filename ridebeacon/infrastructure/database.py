"""
Async SQLAlchemy engine and session factory.

Uses ``asyncpg`` as the PostgreSQL driver for non-blocking I/O.  Every
store call is a suspension point; correctness under concurrent requests
comes from conditional UPDATEs in the repositories, not from
in-process locking.

Store calls are bounded: ``pool_timeout`` caps the wait for a pooled
connection and asyncpg's ``command_timeout`` caps each statement.  Both
surface as timeouts that the API renders as 504.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ridebeacon.config import settings


def engine_options(database_url: str, timeout_seconds: float) -> dict:
    options = {
        "echo": False,
        "pool_size": 20,
        "max_overflow": 10,
        "pool_timeout": timeout_seconds,
    }
    if make_url(database_url).get_driver_name() == "asyncpg":
        options["connect_args"] = {"command_timeout": timeout_seconds}
    return options


engine = create_async_engine(
    settings.database_url,
    **engine_options(settings.database_url, settings.db_timeout_seconds),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""
