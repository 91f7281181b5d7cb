"""SMTP delivery for receipt emails."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage

from ridebeacon.domain.exceptions import UpstreamTimeout, UpstreamUnavailable

logger = logging.getLogger(__name__)

RECEIPT_SUBJECT = "Your Ride Receipt from RideBeacon"
RECEIPT_BODY = """\
<p>Thank you for riding with RideBeacon!</p>
<p>Your receipt for trip #{ride_id} is attached to this email.</p>
<p>Thank you for choosing RideBeacon!</p>
"""


class SmtpMailer:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        sender: str,
        timeout_seconds: float = 20.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout_seconds = timeout_seconds

    def _build_receipt(
        self, to_email: str, ride_id: int, pdf: bytes, filename: str
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to_email
        message["Subject"] = RECEIPT_SUBJECT
        message.set_content(f"Your receipt for trip #{ride_id} is attached.")
        message.add_alternative(RECEIPT_BODY.format(ride_id=ride_id), subtype="html")
        message.add_attachment(
            pdf, maintype="application", subtype="pdf", filename=filename
        )
        return message

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def send_receipt(
        self, to_email: str, ride_id: int, pdf: bytes, filename: str
    ) -> None:
        message = self._build_receipt(to_email, ride_id, pdf, filename)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._deliver, message),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeout("SMTP delivery timed out") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise UpstreamUnavailable(f"SMTP delivery failed: {exc}") from exc
        logger.info("Receipt for ride %s sent to %s", ride_id, to_email)
