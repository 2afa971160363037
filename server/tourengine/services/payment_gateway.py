"""Payment processor gateway: checkout sessions and webhook verification."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import stripe

from ..core.config import settings
from ..core.exceptions import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

# Stripe refuses checkout sessions expiring sooner than this
MIN_SESSION_MINUTES = 30


@dataclass(frozen=True)
class CheckoutSessionHandle:
    """Identifier and redirect URL of a hosted checkout session."""

    id: str
    url: str


class PaymentGateway(Protocol):
    """Operations the engine needs from the payment processor."""

    async def create_checkout_session(
        self,
        amount_cents: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        description: str,
        customer_email: Optional[str] = None,
        fee_amount_cents: Optional[int] = None,
        destination_account: Optional[str] = None,
    ) -> CheckoutSessionHandle:
        ...

    def parse_webhook_event(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        ...


class StripePaymentGateway:
    """Stripe Checkout with Connect destination charges."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret

    async def create_checkout_session(
        self,
        amount_cents: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        description: str,
        customer_email: Optional[str] = None,
        fee_amount_cents: Optional[int] = None,
        destination_account: Optional[str] = None,
    ) -> CheckoutSessionHandle:
        """
        Create a one-line-item checkout session.

        When a destination account is given the charge is routed to it and the
        platform keeps ``fee_amount_cents``.

        Raises:
            ExternalServiceError: If the processor rejects or fails the request
        """
        if not self.api_key:
            raise ExternalServiceError("payment", detail="Payment processor is not configured")

        payment_intent_data: dict[str, Any] = {"metadata": metadata}
        if destination_account:
            payment_intent_data["transfer_data"] = {"destination": destination_account}
            if fee_amount_cents:
                payment_intent_data["application_fee_amount"] = fee_amount_cents

        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [{
                "price_data": {
                    "currency": currency.lower(),
                    "unit_amount": amount_cents,
                    "product_data": {"name": description},
                },
                "quantity": 1,
            }],
            "payment_intent_data": payment_intent_data,
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "expires_at": self.session_expiry(),
            "api_key": self.api_key,
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
        except stripe.StripeError as e:
            logger.error(
                "Checkout session creation failed",
                extra={
                    "amount_cents": amount_cents,
                    "currency": currency,
                    "destination_account": destination_account,
                    "error": str(e),
                }
            )
            raise ExternalServiceError("payment", detail=f"Payment session could not be created: {e}") from e

        logger.info(
            "Checkout session created",
            extra={
                "session_id": session.id,
                "amount_cents": amount_cents,
                "fee_amount_cents": fee_amount_cents,
                "type": metadata.get("type"),
            }
        )
        return CheckoutSessionHandle(id=session.id, url=session.url)

    @staticmethod
    def session_expiry(now: Optional[float] = None) -> int:
        """Unix time at which a new checkout session lapses unpaid."""
        minutes = max(settings.abandoned_booking_grace_minutes, MIN_SESSION_MINUTES)
        return int(now if now is not None else time.time()) + minutes * 60

    def parse_webhook_event(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        """
        Verify a webhook signature and return the event as a plain dict.

        Raises:
            ValidationError: If the signature header is missing or invalid
            ExternalServiceError: If no webhook secret is configured
        """
        if not self.webhook_secret:
            logger.error("No webhook secret configured")
            raise ExternalServiceError("payment", detail="Webhook verification is not configured")
        if not signature:
            raise ValidationError(detail="Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed", extra={"error": str(e)})
            raise ValidationError(detail="Invalid webhook signature") from e
        except ValueError as e:
            raise ValidationError(detail="Invalid webhook payload") from e

        return json.loads(payload)
