"""Payments router for processor webhooks and payment confirmations."""

import logging
from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProblemDetailsException
from ..schemas.payment import ConfirmationResult, PaymentConfirmation, WebhookAck
from ..services.booking_service import BookingService
from ..services.notification_service import NotificationDispatcher
from ..services.payment_gateway import PaymentGateway
from .booking import convert_booking_to_schema
from .common import (
    DB_DEPENDENCY,
    NOTIFIER_DEPENDENCY,
    PAYMENT_GATEWAY_DEPENDENCY,
    internal_error,
    ok,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payments", tags=["payments"])

SIGNATURE_HEADER = Header(None, alias="Stripe-Signature")


@router.post("/confirm", response_model=ConfirmationResult)
async def confirm_payment(
    request: PaymentConfirmation,
    db: AsyncSession = DB_DEPENDENCY,
    notifier: NotificationDispatcher = NOTIFIER_DEPENDENCY
) -> JSONResponse:
    """
    Materialize the booking for a normalized payment confirmation.

    Delivering the same confirmation again returns the existing booking.
    """
    booking_service = BookingService(db, notifier=notifier)
    try:
        outcome, booking = await booking_service.confirm_payment(request)
        return ok(ConfirmationResult(
            outcome=outcome,
            booking=convert_booking_to_schema(booking) if booking is not None else None,
        ))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error(
            "Unexpected error in payment confirmation", e, confirmation_id=request.confirmation_id
        ) from e


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = SIGNATURE_HEADER,
    db: AsyncSession = DB_DEPENDENCY,
    payment_gateway: PaymentGateway = PAYMENT_GATEWAY_DEPENDENCY,
    notifier: NotificationDispatcher = NOTIFIER_DEPENDENCY
) -> JSONResponse:
    """
    Receive a signed payment processor event.

    Events are recorded by id; a redelivered event is acknowledged without
    being applied again.
    """
    payload = await request.body()
    event = payment_gateway.parse_webhook_event(payload, stripe_signature)
    event_id = str(event.get("id", ""))
    event_type = str(event.get("type", ""))

    booking_service = BookingService(db, payment_gateway, notifier)
    try:
        duplicate = await booking_service.process_webhook_event(event)

        logger.info(
            "Webhook event handled",
            extra={"event_id": event_id, "event_type": event_type, "duplicate": duplicate}
        )
        return ok(WebhookAck(event_id=event_id, event_type=event_type, duplicate=duplicate))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error(
            "Unexpected error in webhook handling", e, event_id=event_id, event_type=event_type
        ) from e
