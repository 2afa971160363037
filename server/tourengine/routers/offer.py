"""Offer router for custom tour offers addressed by token."""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProblemDetailsException
from ..models.offer import TourOffer
from ..schemas.offer import (
    AcceptOfferResponse,
    CreateOfferRequest,
    CreateOfferResponse,
    DeclineOfferRequest,
    Offer,
    OfferTokenRequest,
)
from ..services.notification_service import NotificationDispatcher
from ..services.offer_service import OfferService
from ..services.payment_gateway import PaymentGateway
from .common import (
    DB_DEPENDENCY,
    GUIDE_DEPENDENCY,
    IDEMPOTENCY_KEY_DEPENDENCY,
    NOTIFIER_DEPENDENCY,
    PAYMENT_GATEWAY_DEPENDENCY,
    handle_idempotent_operation,
    internal_error,
    ok,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/offer", tags=["offer"])

TOKEN_QUERY = Query(..., min_length=1, max_length=64, description="Offer token")


def _convert_offer_to_schema(offer: TourOffer) -> Offer:
    """Convert offer model to schema."""
    return Offer(
        id=str(offer.id),
        status=offer.status,
        guide_id=offer.guide_id,
        guest_email=offer.guest_email,
        duration=offer.duration,
        preferred_date=offer.preferred_date,
        group_size=offer.group_size,
        meeting_point=offer.meeting_point,
        meeting_time=offer.meeting_time,
        itinerary=offer.itinerary,
        included_items=offer.included_items or [],
        personal_note=offer.personal_note,
        price_per_person=offer.price_per_person,
        total_price=offer.total_price,
        deposit_amount=offer.deposit_amount,
        final_payment_amount=offer.final_payment_amount,
        currency=offer.currency,
        expires_at=offer.expires_at,
        accepted_at=offer.accepted_at,
        declined_at=offer.declined_at,
        booking_id=str(offer.booking_id) if offer.booking_id else None,
    )


def _cents_to_amount(cents: int) -> Decimal:
    return (Decimal(cents) / Decimal(100)).quantize(Decimal("0.01"))


@router.post("/create", response_model=CreateOfferResponse)
async def create_offer(
    request: CreateOfferRequest,
    guide: dict = GUIDE_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY,
    notifier: NotificationDispatcher = NOTIFIER_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY
) -> JSONResponse:
    """
    Send a custom offer to a guest.

    This operation is idempotent when an Idempotency-Key header is sent.
    """
    offer_service = OfferService(db, notifier=notifier)

    async def operation():
        offer = await offer_service.create_offer(guide["guide_id"], request)
        return CreateOfferResponse(
            offer_id=str(offer.id),
            token=offer.token,
            expires_at=offer.expires_at,
            total_price=offer.total_price,
            currency=offer.currency,
        ).model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            method=f"offer/create:{guide['guide_id']}",
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            operation_func=operation,
            db=db
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error(
            "Unexpected error in offer creation",
            e,
            guide_id=guide["guide_id"],
            conversation_id=request.conversation_id,
        ) from e


@router.get("/view", response_model=Offer)
async def view_offer(
    token: str = TOKEN_QUERY,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Show an offer to its guest.

    Read-only; an offer past its expiry is shown as it is stored.
    """
    offer_service = OfferService(db)
    try:
        offer = await offer_service.get_offer(token)
        return ok(_convert_offer_to_schema(offer))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in offer lookup", e) from e


async def _accept(token: str, db: AsyncSession, payment_gateway: PaymentGateway) -> JSONResponse:
    offer_service = OfferService(db, payment_gateway)
    try:
        outcome = await offer_service.accept(token)
        return ok(AcceptOfferResponse(
            offer_id=str(outcome.offer.id),
            status=outcome.offer.status,
            session_id=outcome.session.id,
            checkout_url=outcome.session.url,
            platform_fee=_cents_to_amount(outcome.platform_fee_cents),
            guide_net_amount=_cents_to_amount(outcome.guide_net_cents),
        ))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in offer acceptance", e) from e


@router.get("/accept", response_model=AcceptOfferResponse)
async def accept_offer_link(
    token: str = TOKEN_QUERY,
    db: AsyncSession = DB_DEPENDENCY,
    payment_gateway: PaymentGateway = PAYMENT_GATEWAY_DEPENDENCY
) -> JSONResponse:
    """Accept an offer from the link in the offer email."""
    return await _accept(token, db, payment_gateway)


@router.post("/accept", response_model=AcceptOfferResponse)
async def accept_offer(
    request: OfferTokenRequest,
    db: AsyncSession = DB_DEPENDENCY,
    payment_gateway: PaymentGateway = PAYMENT_GATEWAY_DEPENDENCY
) -> JSONResponse:
    """
    Accept an offer and open its checkout session.

    The booking is created once the payment is confirmed.
    """
    return await _accept(request.token, db, payment_gateway)


@router.post("/decline", response_model=Offer)
async def decline_offer(
    request: DeclineOfferRequest,
    db: AsyncSession = DB_DEPENDENCY,
    notifier: NotificationDispatcher = NOTIFIER_DEPENDENCY
) -> JSONResponse:
    """Decline an offer, optionally with a reason for the guide."""
    offer_service = OfferService(db, notifier=notifier)
    try:
        offer = await offer_service.decline(request.token, request.reason)
        return ok(_convert_offer_to_schema(offer))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in offer decline", e) from e
