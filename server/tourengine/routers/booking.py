"""Booking router for checkout, cancellation and lookup."""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProblemDetailsException
from ..models.booking import Booking as BookingModel
from ..schemas.booking import (
    Booking,
    CancelBookingRequest,
    CheckoutRequest,
    CheckoutResponse,
    GetBookingRequest,
)
from ..services.booking_service import BookingService
from ..services.notification_service import NotificationDispatcher
from ..services.payment_gateway import PaymentGateway
from .common import (
    DB_DEPENDENCY,
    IDEMPOTENCY_KEY_DEPENDENCY,
    NOTIFIER_DEPENDENCY,
    PAYMENT_GATEWAY_DEPENDENCY,
    handle_idempotent_operation,
    internal_error,
    ok,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/booking", tags=["booking"])


def convert_booking_to_schema(booking_model: BookingModel) -> Booking:
    """Convert booking model to schema."""
    return Booking(
        id=str(booking_model.id),
        reference=booking_model.reference,
        tour_id=str(booking_model.tour_id),
        slot_id=str(booking_model.slot_id) if booking_model.slot_id else None,
        offer_id=str(booking_model.offer_id) if booking_model.offer_id else None,
        guest_email=booking_model.guest_email,
        participants=booking_model.participants,
        total_price=booking_model.total_price,
        deposit_amount=booking_model.deposit_amount,
        currency=booking_model.currency,
        status=booking_model.status,
        payment_status=booking_model.payment_status,
        created_at=booking_model.created_at,
        cancelled_at=booking_model.cancelled_at,
        cancellation_reason=booking_model.cancellation_reason,
    )


@router.post("/checkout", response_model=CheckoutResponse)
async def start_checkout(
    request: CheckoutRequest,
    db: AsyncSession = DB_DEPENDENCY,
    payment_gateway: PaymentGateway = PAYMENT_GATEWAY_DEPENDENCY,
    notifier: NotificationDispatcher = NOTIFIER_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY
) -> JSONResponse:
    """
    Reserve spots and open a checkout session for a slot booking.

    This operation is idempotent when an Idempotency-Key header is sent.
    """
    booking_service = BookingService(db, payment_gateway, notifier)

    async def operation():
        booking, session = await booking_service.start_checkout(request)
        response_data = CheckoutResponse(
            booking=convert_booking_to_schema(booking),
            session_id=session.id,
            checkout_url=session.url,
        )

        logger.info(
            "Checkout started",
            extra={
                "reference": booking.reference,
                "slot_id": request.slot_id,
                "participants": request.participants,
                "idempotency_key": idempotency_key
            }
        )
        return response_data.model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            method="booking/checkout",
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            operation_func=operation,
            db=db
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error(
            "Unexpected error in checkout",
            e,
            slot_id=request.slot_id,
            participants=request.participants,
            idempotency_key=idempotency_key,
        ) from e


@router.post("/cancel", response_model=Booking)
async def cancel_booking(
    request: CancelBookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    notifier: NotificationDispatcher = NOTIFIER_DEPENDENCY
) -> JSONResponse:
    """
    Cancel a booking and release its spots.

    Cancelling an already cancelled booking returns it unchanged.
    """
    booking_service = BookingService(db, notifier=notifier)
    try:
        booking = await booking_service.cancel_booking(request.reference, request.actor, request.reason)
        return ok(convert_booking_to_schema(booking))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in booking cancellation", e, reference=request.reference) from e


@router.post("/get", response_model=Booking)
async def get_booking(
    request: GetBookingRequest,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Get booking details.

    This is a read operation and does not require idempotency.
    """
    booking_service = BookingService(db)
    try:
        booking = await booking_service.get_booking(request.reference)
        return ok(convert_booking_to_schema(booking))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in booking retrieval", e, reference=request.reference) from e
