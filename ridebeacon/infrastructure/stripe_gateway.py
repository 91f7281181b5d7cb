"""
Stripe adapter.

The SDK is synchronous, so every call runs in a worker thread and a slow
Stripe never stalls the event loop.  The timeout lives on the SDK's own
HTTP client rather than around the thread: an abandoned thread could
still complete a transfer after the caller had given up.  A connection
failure or timeout is reported as ``UpstreamTimeout``.

Nothing here is retried automatically.  Callers pass an idempotency key
for payment intents and transfers so that a retried request is
deduplicated by Stripe instead of charging or paying out twice.

Webhook verification is CPU-only and runs inline.  It must be given
the exact raw request body -- re-serialised JSON will not match the
signature.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Optional

import stripe

from ridebeacon.domain.exceptions import (
    SignatureVerificationFailed,
    UpstreamTimeout,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class PaymentIntentHandle:
    id: str
    client_secret: str


class StripeGateway:
    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        *,
        currency: str = "inr",
        country: str = "IN",
        timeout_seconds: float = 15.0,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.country = country
        self.timeout_seconds = timeout_seconds
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)
        stripe.max_network_retries = 0

    async def _call(
        self,
        fn: Callable[..., Any],
        idempotency_key: Optional[str] = None,
        **params: Any,
    ) -> Any:
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            return await asyncio.to_thread(partial(fn, api_key=self.api_key, **params))
        except stripe.APIConnectionError as exc:
            logger.warning(
                "Stripe call %s timed out or could not connect: %s",
                getattr(fn, "__qualname__", fn),
                exc,
            )
            raise UpstreamTimeout("Payment provider timed out") from exc
        except stripe.StripeError as exc:
            logger.error("Stripe call failed: %s", exc)
            raise UpstreamUnavailable(
                exc.user_message or "Payment provider error"
            ) from exc

    # ── Payments ──────────────────────────────────────────────────────

    async def create_payment_intent(
        self,
        amount_minor: int,
        metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntentHandle:
        intent = await self._call(
            stripe.PaymentIntent.create,
            idempotency_key,
            amount=amount_minor,
            currency=self.currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
        return PaymentIntentHandle(id=intent.id, client_secret=intent.client_secret)

    def verify_webhook(self, raw_body: bytes, signature_header: str | None) -> None:
        """Raise ``SignatureVerificationFailed`` unless the body is authentic."""
        if not signature_header or not self.webhook_secret:
            raise SignatureVerificationFailed("Missing webhook signature")
        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureVerificationFailed("Webhook body is not UTF-8") from exc
        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature_header,
                self.webhook_secret,
                SIGNATURE_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError as exc:
            raise SignatureVerificationFailed(str(exc)) from exc

    # ── Connected accounts ────────────────────────────────────────────

    async def create_connected_account(self) -> str:
        account = await self._call(
            stripe.Account.create,
            type="express",
            country=self.country,
            capabilities={
                "transfers": {"requested": True},
                "card_payments": {"requested": True},
            },
        )
        return account.id

    async def create_onboarding_link(
        self, account_id: str, *, refresh_url: str, return_url: str
    ) -> str:
        link = await self._call(
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )
        return link.url

    async def create_transfer(
        self,
        amount_minor: int,
        destination: str,
        idempotency_key: Optional[str] = None,
    ) -> str:
        transfer = await self._call(
            stripe.Transfer.create,
            idempotency_key,
            amount=amount_minor,
            currency=self.currency,
            destination=destination,
        )
        return transfer.id
