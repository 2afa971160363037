"""Offer state machine: custom offers addressed by a single-use token."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import (
    ExternalServiceError,
    NotFoundError,
    OfferExpiredError,
    StateConflictError,
)
from ..core.observability import metrics_collector
from ..models.offer import OfferStatus, TourOffer
from ..models.tour import Tour
from ..schemas.offer import CreateOfferRequest
from .guide_service import GuideService
from .notification_service import NotificationDispatcher
from .payment_gateway import CheckoutSessionHandle, PaymentGateway
from .pricing_service import compute_price_for_policy, policy_for_guide, to_cents, to_minor_units
from .tour_service import parse_uuid

logger = logging.getLogger(__name__)


@dataclass
class AcceptOutcome:
    offer: TourOffer
    session: CheckoutSessionHandle
    platform_fee_cents: int
    guide_net_cents: int


def platform_fee_cents(total_cents: int, fee_percent: Optional[Decimal] = None) -> int:
    """Platform share of a payment in cents, rounded half up."""
    if fee_percent is None:
        fee_percent = settings.platform_fee_percent
    fee = Decimal(total_cents) * Decimal(fee_percent) / Decimal(100)
    return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def is_expired(offer: TourOffer, now: datetime) -> bool:
    return offer.expires_at < now


class OfferService:
    """
    Sole writer of ``TourOffer.status``.

    Every status change is an UPDATE guarded by the allowed source states,
    so of two racing transitions exactly one takes effect.
    """

    def __init__(
        self,
        db: AsyncSession,
        payment_gateway: Optional[PaymentGateway] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ):
        self.db = db
        self.payment_gateway = payment_gateway
        self.notifier = notifier
        self.guide_service = GuideService(db)

    async def create_offer(self, guide_id: str, request: CreateOfferRequest) -> TourOffer:
        """
        Create a custom offer and its draft tour, then notify the guest.

        The price is snapshotted from the guide's policy at creation time;
        discounts only run when ``apply_discounts`` is set.

        Raises:
            NotFoundError: If the guide has no profile
            ValidationError: If the guide's pricing policy is malformed
        """
        guide = await self.guide_service.get_guide_or_raise(guide_id)
        policy = policy_for_guide(guide)

        now = utcnow()
        days_until_tour = (
            max((request.preferred_date - now.date()).days, 0) if request.preferred_date else None
        )
        base_price = to_cents(request.price_per_person * request.group_size)
        breakdown = compute_price_for_policy(
            policy,
            base_price=base_price,
            participants=request.group_size,
            days_until_tour=days_until_tour,
            apply_discounts=request.apply_discounts,
        )

        token = secrets.token_urlsafe(32)
        tour = Tour(
            guide_id=guide_id,
            title=f"Custom Tour - {request.duration}",
            slug=f"custom-{token[:12].lower().replace('_', '-')}-{secrets.token_hex(4)}",
            description=request.itinerary,
            duration=request.duration,
            meeting_point=request.meeting_point,
            group_size=request.group_size,
            price=to_cents(request.price_per_person),
            currency=request.currency,
            is_custom=True,
            is_active=False,
            archived=False,
        )
        self.db.add(tour)
        await self.db.flush()

        offer = TourOffer(
            conversation_id=request.conversation_id,
            guide_id=guide_id,
            guest_email=request.guest_email.lower().strip(),
            guest_id=parse_uuid(request.guest_id, "guest") if request.guest_id else None,
            tour_id=tour.id,
            price_per_person=to_cents(request.price_per_person),
            base_price=breakdown.base_price,
            total_price=breakdown.final_price,
            deposit_amount=breakdown.deposit_amount,
            final_payment_amount=breakdown.final_payment_amount,
            currency=request.currency,
            duration=request.duration,
            preferred_date=request.preferred_date,
            group_size=request.group_size,
            meeting_point=request.meeting_point,
            meeting_time=request.meeting_time,
            itinerary=request.itinerary,
            included_items=list(request.included_items),
            personal_note=request.personal_note,
            token=token,
            status=OfferStatus.PENDING.value,
            expires_at=now + timedelta(days=settings.offer_ttl_days),
        )
        self.db.add(offer)
        await self.db.commit()

        metrics_collector.record_offer_transition(OfferStatus.PENDING.value)
        logger.info(
            "Offer created",
            extra={
                "offer_id": str(offer.id),
                "guide_id": guide_id,
                "conversation_id": request.conversation_id,
                "total_price": str(offer.total_price),
                "expires_at": offer.expires_at.isoformat(),
            }
        )

        if self.notifier is not None:
            people = "person" if offer.group_size == 1 else "people"
            await self.notifier.post_system_message(
                offer.conversation_id,
                f"Tour offer sent to client. Total: {format_money(offer.total_price, offer.currency)} "
                f"for {offer.group_size} {people}.",
            )
            await self.notifier.send_email(
                offer.guest_email,
                "tour_offer",
                {
                    "guide_name": guide.display_name,
                    "duration": offer.duration,
                    "preferred_date": offer.preferred_date.isoformat() if offer.preferred_date else "",
                    "group_size": offer.group_size,
                    "total_price": str(offer.total_price),
                    "currency": offer.currency,
                    "offer_url": f"{settings.public_base_url}/offer/{offer.token}",
                    "expires_at": offer.expires_at.isoformat() + "Z",
                },
            )

        return offer

    async def get_offer(self, token: str) -> TourOffer:
        """
        Read-only lookup by token.

        Raises:
            NotFoundError: If no offer has this token
        """
        result = await self.db.execute(
            select(TourOffer)
            .where(TourOffer.token == token)
            .execution_options(populate_existing=True)
        )
        offer = result.scalar_one_or_none()
        if offer is None:
            logger.warning("Offer token not found")
            raise NotFoundError(resource_type="offer", detail="No offer exists for this token")
        return offer

    async def get_offer_by_id(self, offer_id: UUID) -> TourOffer:
        result = await self.db.execute(
            select(TourOffer)
            .where(TourOffer.id == offer_id)
            .execution_options(populate_existing=True)
        )
        offer = result.scalar_one_or_none()
        if offer is None:
            raise NotFoundError(resource_type="offer", resource_id=str(offer_id))
        return offer

    async def accept(self, token: str, now: Optional[datetime] = None) -> AcceptOutcome:
        """
        Start payment for an offer: claim it and open a checkout session.

        No booking is created here; it is materialized when the payment
        confirmation arrives.

        Raises:
            NotFoundError: If no offer has this token
            OfferExpiredError: If the offer's expiry has passed
            StateConflictError: If the offer is not pending, another accept won
                the race, or the guide cannot receive payments
            ExternalServiceError: If the checkout session could not be created;
                the offer is back in pending and safe to retry
        """
        now = now or utcnow()
        offer = await self._get_open_offer(token, now)

        if offer.offer_status != OfferStatus.PENDING:
            raise StateConflictError(
                detail=f"Offer {offer.id} is {offer.status} and cannot be accepted",
                conflicting_resource={"offer_id": str(offer.id), "status": offer.status},
            )

        guide = await self.guide_service.get_guide(offer.guide_id)
        if guide is None or not guide.stripe_account_id:
            logger.warning(
                "Offer accept rejected - guide has no payment destination",
                extra={"offer_id": str(offer.id), "guide_id": offer.guide_id}
            )
            raise StateConflictError(
                detail="The guide cannot receive payments yet",
                code="PAYMENT_DESTINATION_MISSING",
            )

        total_cents = to_minor_units(offer.total_price)
        fee_cents = platform_fee_cents(total_cents)
        guide_net_cents = total_cents - fee_cents

        claimed = await self._transition(
            offer.id, OfferStatus.PAYMENT_PENDING, (OfferStatus.PENDING,)
        )
        if not claimed:
            raise StateConflictError(
                detail=f"Offer {offer.id} was already accepted or declined",
                conflicting_resource={"offer_id": str(offer.id)},
            )

        try:
            session = await self._require_gateway().create_checkout_session(
                amount_cents=total_cents,
                currency=offer.currency,
                success_url=f"{settings.public_base_url}/booking-success?offer_id={offer.id}",
                cancel_url=f"{settings.public_base_url}/offer/decline?token={offer.token}",
                metadata={
                    "type": "tour_offer",
                    "offer_id": str(offer.id),
                    "conversation_id": offer.conversation_id,
                    "guide_id": offer.guide_id,
                },
                description=f"Custom Tour - {offer.duration}",
                customer_email=offer.guest_email,
                fee_amount_cents=fee_cents,
                destination_account=guide.stripe_account_id,
            )
        except Exception:
            await self._transition(offer.id, OfferStatus.PENDING, (OfferStatus.PAYMENT_PENDING,))
            logger.warning(
                "Offer claim reverted after checkout session failure",
                extra={"offer_id": str(offer.id)}
            )
            raise

        await self.db.execute(
            update(TourOffer)
            .where(TourOffer.id == offer.id)
            .values(checkout_session_id=session.id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        offer = await self.get_offer_by_id(offer.id)

        logger.info(
            "Offer accepted - awaiting payment",
            extra={
                "offer_id": str(offer.id),
                "session_id": session.id,
                "total_cents": total_cents,
                "platform_fee_cents": fee_cents,
            }
        )
        return AcceptOutcome(
            offer=offer,
            session=session,
            platform_fee_cents=fee_cents,
            guide_net_cents=guide_net_cents,
        )

    async def decline(self, token: str, reason: Optional[str] = None, now: Optional[datetime] = None) -> TourOffer:
        """
        Decline an offer on the guest's behalf.

        Raises:
            NotFoundError: If no offer has this token
            OfferExpiredError: If the offer's expiry has passed
            StateConflictError: If the offer is already terminal
        """
        now = now or utcnow()
        offer = await self._get_open_offer(token, now)

        reason = reason.strip() if reason and reason.strip() else None
        declined = await self._transition(
            offer.id,
            OfferStatus.DECLINED,
            (OfferStatus.PENDING, OfferStatus.PAYMENT_PENDING),
            declined_at=now,
            decline_reason=reason,
        )
        if not declined:
            current = await self.get_offer_by_id(offer.id)
            raise StateConflictError(
                detail=f"Offer {offer.id} is {current.status} and cannot be declined",
                conflicting_resource={"offer_id": str(offer.id), "status": current.status},
            )

        offer = await self.get_offer_by_id(offer.id)
        logger.info(
            "Offer declined",
            extra={"offer_id": str(offer.id), "has_reason": reason is not None}
        )

        if self.notifier is not None:
            content = (
                f"Client declined the offer. Reason: {reason}" if reason else "Client declined the offer."
            )
            await self.notifier.post_system_message(offer.conversation_id, content)
            guide = await self.guide_service.get_guide(offer.guide_id)
            if guide is not None:
                await self.notifier.send_email(
                    guide.email,
                    "offer_declined",
                    {
                        "guide_name": guide.display_name,
                        "duration": offer.duration,
                        "reason": reason or "",
                    },
                )

        return offer

    async def abandon_checkout(self, offer_id: UUID) -> bool:
        """The checkout session of an accepted offer expired unpaid."""
        declined = await self._transition(
            offer_id,
            OfferStatus.DECLINED,
            (OfferStatus.PAYMENT_PENDING,),
            declined_at=utcnow(),
            decline_reason="payment abandoned",
        )
        logger.info(
            "Offer checkout abandoned",
            extra={"offer_id": str(offer_id), "declined": declined}
        )
        return declined

    async def mark_accepted(self, offer_id: UUID, booking_id: UUID, commit: bool = True) -> bool:
        """Record a paid offer as accepted and link its booking."""
        return await self._transition(
            offer_id,
            OfferStatus.ACCEPTED,
            (OfferStatus.PENDING, OfferStatus.PAYMENT_PENDING),
            commit=commit,
            accepted_at=utcnow(),
            booking_id=booking_id,
        )

    async def expire(
        self,
        offer_id: UUID,
        now: Optional[datetime] = None,
        sources: Iterable[OfferStatus] = (OfferStatus.PENDING,),
        commit: bool = True,
    ) -> bool:
        """Move an offer past its expiry to expired; False if it no longer matched."""
        now = now or utcnow()
        return await self._transition(
            offer_id,
            OfferStatus.EXPIRED,
            tuple(sources),
            commit=commit,
            extra_conditions=(TourOffer.expires_at < now,),
        )

    async def _get_open_offer(self, token: str, now: datetime) -> TourOffer:
        """Look up an offer, enforcing expiry at read time."""
        offer = await self.get_offer(token)

        if offer.offer_status.is_open and is_expired(offer, now):
            await self.expire(
                offer.id,
                now,
                sources=(OfferStatus.PENDING, OfferStatus.PAYMENT_PENDING),
            )
            logger.info("Offer expired on access", extra={"offer_id": str(offer.id)})
            raise OfferExpiredError(str(offer.id), offer.expires_at)

        if offer.offer_status == OfferStatus.EXPIRED:
            raise OfferExpiredError(str(offer.id), offer.expires_at)

        if offer.offer_status.is_terminal:
            raise StateConflictError(
                detail=f"Offer {offer.id} is already {offer.status}",
                conflicting_resource={"offer_id": str(offer.id), "status": offer.status},
            )
        return offer

    async def _transition(
        self,
        offer_id: UUID,
        target: OfferStatus,
        sources: tuple[OfferStatus, ...],
        commit: bool = True,
        extra_conditions: tuple = (),
        **values: Any,
    ) -> bool:
        """Guarded status write; True if this call performed the transition."""
        for source in sources:
            if not source.can_transition_to(target):
                raise ValueError(f"Invalid offer transition {source.value} -> {target.value}")

        result = await self.db.execute(
            update(TourOffer)
            .where(
                TourOffer.id == offer_id,
                TourOffer.status.in_([source.value for source in sources]),
                *extra_conditions,
            )
            .values(status=target.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if commit:
            await self.db.commit()

        performed = result.rowcount > 0
        if performed:
            metrics_collector.record_offer_transition(target.value)
        return performed

    def _require_gateway(self) -> PaymentGateway:
        if self.payment_gateway is None:
            raise ExternalServiceError("payment", detail="No payment gateway configured")
        return self.payment_gateway


def format_money(amount: Decimal, currency: str) -> str:
    symbol = {"EUR": "€", "GBP": "£", "USD": "$"}.get(currency.upper())
    return f"{symbol}{amount:.2f}" if symbol else f"{amount:.2f} {currency.upper()}"
