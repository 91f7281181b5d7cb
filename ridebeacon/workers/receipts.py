"""
Background Receipt Worker
=========================

Payment reconciliation enqueues a ride id once the payment transaction
has committed; this worker turns it into a PDF receipt mailed to the
rider.

Retry policy
------------
Each job gets ``max_attempts`` tries with exponential backoff
(``retry_base_seconds * 2 ** (attempt - 1)`` between tries).  A failed
attempt waits out its backoff in a separate task and is then re-queued,
so one stuck receipt never holds up the others.  A job that still fails
is logged and dropped.  The queue is bounded; jobs that do not fit are
logged and dropped.  Nothing here can touch the payment
or ride rows, so a failed receipt never affects settlement.

Jobs are idempotent (render + send), so a retry after a partial failure
at worst mails the same receipt twice.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridebeacon.domain.exceptions import RideNotFound
from ridebeacon.infrastructure.mailer import SmtpMailer
from ridebeacon.infrastructure.models import UserModel
from ridebeacon.infrastructure.receipts import (
    Party,
    PaymentLine,
    ReceiptData,
    render_receipt,
)
from ridebeacon.infrastructure.repositories import PaymentRepository, RideRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReceiptJob:
    ride_id: int
    attempt: int = 1


def _party(user: Optional[UserModel]) -> Party:
    if user is None:
        return Party()
    return Party(full_name=user.full_name, phone=user.phone, email=user.email)


async def load_receipt_data(session: AsyncSession, ride_id: int) -> ReceiptData:
    """Ride, both parties and the latest payment, shaped for the PDF."""
    ride = await RideRepository(session).get_with_parties(ride_id)
    if ride is None:
        raise RideNotFound(f"Ride {ride_id} not found")
    payments = await PaymentRepository(session).list_for_ride(ride_id)
    payment = payments[0] if payments else None
    return ReceiptData(
        ride_id=ride.id,
        pickup=ride.pickup,
        dropoff=ride.dropoff,
        fare=ride.fare,
        status=ride.status.value,
        payment_status=ride.payment_status.value,
        ride_type=ride.ride_type,
        created_at=ride.created_at,
        rider=_party(ride.rider),
        driver=_party(ride.driver),
        payment=(
            PaymentLine(
                amount=payment.amount,
                payment_method=payment.payment_method,
                status=payment.status.value,
                paid_on=payment.created_at,
            )
            if payment
            else None
        ),
    )


class ReceiptWorker:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        mailer: SmtpMailer,
        *,
        max_attempts: int = 4,
        retry_base_seconds: float = 2.0,
        max_queue: int = 1000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.mailer = mailer
        self.max_attempts = max(1, max_attempts)
        self.retry_base_seconds = retry_base_seconds
        self._sleep = sleep
        self._queue: asyncio.Queue[ReceiptJob] = asyncio.Queue(maxsize=max(1, max_queue))
        self._retries: set[asyncio.Task] = set()
        self._task: Optional[asyncio.Task] = None

    # ── Public API ────────────────────────────────────────────────────

    def enqueue(self, ride_id: int) -> None:
        if self._put(ReceiptJob(ride_id)):
            logger.debug("Receipt job queued for ride %s", ride_id)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def scheduled_retries(self) -> int:
        return len(self._retries)

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Receipt worker started (max_attempts=%d, backoff=%.1fs, queue=%d)",
            self.max_attempts,
            self.retry_base_seconds,
            self._queue.maxsize,
        )

    async def stop(self) -> None:
        for retry in list(self._retries):
            retry.cancel()
        if self._retries:
            await asyncio.gather(*self._retries, return_exceptions=True)
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Receipt worker stopped (%d jobs left)", self._queue.qsize())

    async def drain(self) -> None:
        """Wait until every queued job, retries included, has finished."""
        while True:
            await self._queue.join()
            if not self._retries:
                return
            await asyncio.gather(*list(self._retries), return_exceptions=True)

    # ── Internals ─────────────────────────────────────────────────────

    def _put(self, job: ReceiptJob) -> bool:
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning(
                "Receipt queue full (%d), dropping job for ride %s",
                self._queue.maxsize,
                job.ride_id,
            )
            return False
        return True

    async def _loop(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.process(job)
            except Exception:
                logger.exception("Unhandled error in receipt job for ride %s", job.ride_id)
            finally:
                self._queue.task_done()

    async def _retry_later(self, job: ReceiptJob, delay: float) -> None:
        await self._sleep(delay)
        self._put(job)

    def _schedule_retry(self, job: ReceiptJob, delay: float) -> None:
        # the retry waits off the queue so other receipts keep flowing
        retry = asyncio.create_task(self._retry_later(job, delay))
        self._retries.add(retry)
        retry.add_done_callback(self._retries.discard)

    def backoff(self, attempt: int) -> float:
        return self.retry_base_seconds * (2 ** (attempt - 1))

    async def process(self, job: ReceiptJob) -> bool:
        """
        Make one attempt at *job*.  Returns True once the receipt is sent.

        A failed attempt below ``max_attempts`` schedules the next one
        after its backoff delay and returns False straight away.
        """
        try:
            return await self.send_receipt(job.ride_id)
        except RideNotFound:
            logger.warning("Receipt skipped: ride %s no longer exists", job.ride_id)
            return False
        except Exception as exc:
            if job.attempt >= self.max_attempts:
                logger.error(
                    "Receipt for ride %s failed after %d attempts: %s",
                    job.ride_id,
                    job.attempt,
                    exc,
                )
                return False
            delay = self.backoff(job.attempt)
            logger.warning(
                "Receipt for ride %s failed (attempt %d/%d), retrying in %.1fs: %s",
                job.ride_id,
                job.attempt,
                self.max_attempts,
                delay,
                exc,
            )
            self._schedule_retry(ReceiptJob(job.ride_id, job.attempt + 1), delay)
            return False

    async def send_receipt(self, ride_id: int) -> bool:
        async with self.session_factory() as session:
            data = await load_receipt_data(session, ride_id)
        if not data.rider.email:
            logger.warning("Receipt skipped: rider of ride %s has no email", ride_id)
            return False
        pdf = render_receipt(data)
        await self.mailer.send_receipt(data.rider.email, ride_id, pdf, data.filename)
        return True
