"""Booking materializer: checkout start, payment confirmation and cancellation."""

import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import (
    ExternalServiceError,
    NotFoundError,
    ProblemDetailsException,
    StateConflictError,
    ValidationError,
)
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..models.guest import GuestProfile
from ..models.offer import TourOffer
from ..models.payment_event import PaymentEvent
from ..models.slot import TourDateSlot
from ..schemas.booking import CancellationActor, CheckoutRequest
from ..schemas.payment import ConfirmationOutcome, PaymentConfirmation
from ..schemas.pricing import Quote, QuoteRequest
from .guide_service import GuideService
from .notification_service import NotificationDispatcher
from .offer_service import OfferService, format_money, platform_fee_cents
from .payment_gateway import CheckoutSessionHandle, PaymentGateway
from .pricing_service import compute_price_for_policy, policy_for_guide, to_cents, to_minor_units
from .slot_service import SlotService
from .tour_service import TourService, parse_uuid

logger = logging.getLogger(__name__)

REFERENCE_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
REFERENCE_ATTEMPTS = 10

SLOT_BOOKING = "slot_booking"
TOUR_OFFER = "tour_offer"


def generate_reference(now: Optional[datetime] = None) -> str:
    """Random booking reference such as ``MTH-2026-4F7K2Q``."""
    now = now or utcnow()
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(6))
    return f"{settings.booking_reference_prefix}-{now.year}-{suffix}"


def effective_unit_price(slot: TourDateSlot, tour_price: Decimal) -> Decimal:
    """Per-person price of a slot: its override, reduced by its date discount."""
    unit = slot.price_override if slot.price_override is not None else tour_price
    if slot.discount_percentage:
        unit = unit * (Decimal(100) - Decimal(slot.discount_percentage)) / Decimal(100)
    return to_cents(unit)


class BookingService:
    """
    Sole writer of ``Booking.status``.

    A payment confirmation is materialized exactly once per confirmation id:
    the unique ``payment_intent_id`` column backs the dedup when the same
    confirmation is delivered concurrently.
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
        self.slot_service = SlotService(db, notifier)
        self.offer_service = OfferService(db, payment_gateway, notifier)
        self.guide_service = GuideService(db)
        self.tour_service = TourService(db)

    async def get_booking(self, reference: str) -> Booking:
        """
        Get booking by reference.

        Raises:
            NotFoundError: If booking not found
        """
        result = await self.db.execute(
            select(Booking)
            .where(Booking.reference == reference)
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFoundError(resource_type="booking", resource_id=reference)
        return booking

    async def get_booking_by_id(self, booking_id: UUID) -> Optional[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def quote(self, request: QuoteRequest, now: Optional[datetime] = None) -> Quote:
        """
        Price a slot, or an explicit per-person price under a guide's policy.

        Raises:
            NotFoundError: If slot, tour or guide not found
            ValidationError: If the guide's stored policy is malformed
        """
        now = now or utcnow()
        discount_label = None
        if request.slot_id is not None:
            slot = await self.slot_service.get_slot(parse_uuid(request.slot_id, "slot"))
            tour = await self.tour_service.get_tour_by_id_or_raise(slot.tour_id)
            guide = await self.guide_service.get_guide_or_raise(tour.guide_id)
            unit_price = effective_unit_price(slot, tour.price)
            days_until_tour = max((slot.slot_date - now.date()).days, 0)
            currency = slot.currency_override or tour.currency
            discount_label = slot.discount_label
        else:
            guide = await self.guide_service.get_guide_or_raise(request.guide_id)
            unit_price = to_cents(request.base_price)
            days_until_tour = request.days_until_tour
            currency = request.currency

        breakdown = compute_price_for_policy(
            policy_for_guide(guide),
            base_price=unit_price * request.participants,
            participants=request.participants,
            days_until_tour=days_until_tour,
        )
        return Quote(
            currency=currency,
            participants=request.participants,
            unit_price=unit_price,
            discount_label=discount_label,
            breakdown=breakdown,
        )

    async def start_checkout(
        self, request: CheckoutRequest, now: Optional[datetime] = None
    ) -> tuple[Booking, CheckoutSessionHandle]:
        """
        Reserve spots on a slot and open a checkout session for them.

        The booking is persisted as pending with a capacity hold before the
        session is created. If the session cannot be created the booking is
        cancelled and its spots are released right away.

        Raises:
            NotFoundError: If slot, tour or guide not found
            StateConflictError: If the tour is not bookable or the date has passed
            CapacityExceededError: If too few spots remain; nothing is created
            ExternalServiceError: If the checkout session could not be created
        """
        now = now or utcnow()
        slot = await self.slot_service.get_slot(parse_uuid(request.slot_id, "slot"), refresh=True)
        tour = await self.tour_service.get_tour_by_id_or_raise(slot.tour_id)
        if not tour.is_active or tour.archived:
            raise StateConflictError(detail=f"Tour {tour.id} is not open for booking")

        days_until_tour = (slot.slot_date - now.date()).days
        if days_until_tour < 0:
            raise StateConflictError(detail=f"Slot {slot.id} is in the past")

        guide = await self.guide_service.get_guide_or_raise(tour.guide_id)
        unit_price = effective_unit_price(slot, tour.price)
        breakdown = compute_price_for_policy(
            policy_for_guide(guide),
            base_price=unit_price * request.participants,
            participants=request.participants,
            days_until_tour=days_until_tour,
        )
        currency = slot.currency_override or tour.currency

        try:
            await self.slot_service.reserve(slot.id, request.participants, commit=False)
            booking = Booking(
                reference=await self._unique_reference(now),
                tour_id=tour.id,
                slot_id=slot.id,
                guest_id=parse_uuid(request.guest_id, "guest") if request.guest_id else None,
                guest_email=request.guest_email.lower().strip(),
                participants=request.participants,
                total_price=breakdown.final_price,
                deposit_amount=breakdown.deposit_amount,
                currency=currency,
                status=BookingStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                holds_capacity=True,
            )
            self.db.add(booking)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Booking pending payment",
            extra={
                "booking_id": str(booking.id),
                "reference": booking.reference,
                "slot_id": str(slot.id),
                "participants": booking.participants,
                "total_price": str(booking.total_price),
            }
        )

        # Deposit is collected now; a zero deposit means paying in full
        amount_due = booking.deposit_amount if booking.deposit_amount > 0 else booking.total_price
        amount_cents = to_minor_units(amount_due)
        try:
            if self.payment_gateway is None:
                raise ExternalServiceError("payment", detail="No payment gateway configured")
            session = await self.payment_gateway.create_checkout_session(
                amount_cents=amount_cents,
                currency=currency,
                success_url=request.success_url
                or f"{settings.public_base_url}/booking-success?booking={booking.reference}",
                cancel_url=request.cancel_url or f"{settings.public_base_url}/tours/{tour.slug}",
                metadata={
                    "type": SLOT_BOOKING,
                    "booking_id": str(booking.id),
                    "slot_id": str(slot.id),
                    "tour_id": str(tour.id),
                    "participants": str(booking.participants),
                },
                description=f"{tour.title} - {slot.slot_date.isoformat()}",
                customer_email=booking.guest_email,
                fee_amount_cents=platform_fee_cents(amount_cents) if guide.stripe_account_id else None,
                destination_account=guide.stripe_account_id,
            )
        except Exception:
            booking_id, slot_id = booking.id, slot.id
            await self._cancel(booking_id, reason="checkout_failed", payment_status=PaymentStatus.FAILED)
            logger.warning(
                "Checkout session failed - booking cancelled and spots released",
                extra={"booking_id": str(booking_id), "slot_id": str(slot_id)}
            )
            raise

        await self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id)
            .values(checkout_session_id=session.id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        booking = await self.get_booking_by_id(booking.id)
        return booking, session

    async def confirm_payment(
        self, confirmation: PaymentConfirmation
    ) -> tuple[ConfirmationOutcome, Optional[Booking]]:
        """
        Materialize the booking paid by a confirmation, exactly once.

        Returns:
            The outcome and the booking (existing booking on duplicates)

        Raises:
            NotFoundError: If the booking, slot or offer named in the metadata is unknown
            CapacityExceededError: If a payment with no prior booking finds the slot full
        """
        if confirmation.payment_status != "paid":
            logger.info(
                "Ignoring unpaid confirmation",
                extra={"confirmation_id": confirmation.confirmation_id, "payment_status": confirmation.payment_status}
            )
            return ConfirmationOutcome.IGNORED, None

        existing = await self._get_by_payment_intent(confirmation.confirmation_id)
        if existing is not None:
            logger.info(
                "Duplicate payment confirmation",
                extra={"confirmation_id": confirmation.confirmation_id, "reference": existing.reference}
            )
            return ConfirmationOutcome.DUPLICATE, existing

        kind = confirmation.metadata.get("type")
        if kind not in (SLOT_BOOKING, TOUR_OFFER):
            logger.info(
                "Ignoring confirmation of unknown type",
                extra={"confirmation_id": confirmation.confirmation_id, "type": kind}
            )
            return ConfirmationOutcome.IGNORED, None

        try:
            if kind == TOUR_OFFER:
                booking = await self._materialize_offer_booking(confirmation)
            elif confirmation.metadata.get("booking_id"):
                booking = await self._confirm_pending_booking(confirmation)
            else:
                booking = await self._materialize_slot_booking(confirmation)
        except IntegrityError:
            await self.db.rollback()
            winner = await self._get_by_payment_intent(confirmation.confirmation_id)
            if winner is None:
                raise
            logger.info(
                "Concurrent duplicate payment confirmation",
                extra={"confirmation_id": confirmation.confirmation_id, "reference": winner.reference}
            )
            return ConfirmationOutcome.DUPLICATE, winner

        if booking is None:
            winner = await self._get_by_payment_intent(confirmation.confirmation_id)
            return ConfirmationOutcome.DUPLICATE, winner
        if booking.payment_intent_id != confirmation.confirmation_id:
            logger.warning(
                "Booking already paid under another confirmation",
                extra={"reference": booking.reference, "confirmation_id": confirmation.confirmation_id}
            )
            return ConfirmationOutcome.DUPLICATE, booking
        if booking.status == BookingStatus.CANCELLED.value:
            return ConfirmationOutcome.IGNORED, booking

        metrics_collector.record_booking_confirmed("offer" if kind == TOUR_OFFER else "slot")
        logger.info(
            "Booking confirmed",
            extra={
                "booking_id": str(booking.id),
                "reference": booking.reference,
                "confirmation_id": confirmation.confirmation_id,
                "source": kind,
            }
        )
        await self._notify_confirmed(booking, kind)
        return ConfirmationOutcome.PROCESSED, booking

    async def fail_payment(
        self,
        payment_intent_id: Optional[str] = None,
        booking_id: Optional[UUID] = None,
    ) -> Optional[Booking]:
        """Cancel a pending booking whose payment failed and release its spots once."""
        booking = None
        if booking_id is not None:
            booking = await self.get_booking_by_id(booking_id)
        if booking is None and payment_intent_id:
            booking = await self._get_by_payment_intent(payment_intent_id)
        if booking is None:
            logger.info(
                "Payment failure for unknown booking",
                extra={"payment_intent_id": payment_intent_id, "booking_id": str(booking_id) if booking_id else None}
            )
            return None

        if booking.status != BookingStatus.PENDING.value:
            return booking

        cancelled = await self._cancel(
            booking.id,
            reason="payment_failed",
            payment_status=PaymentStatus.FAILED,
            only_pending=True,
        )
        booking = await self.get_booking_by_id(booking.id)
        if cancelled and self.notifier is not None:
            await self.notifier.send_email(
                booking.guest_email,
                "payment_failed",
                {"booking_reference": booking.reference},
            )
        return booking

    async def expire_checkout(self, session_id: str, metadata: dict[str, str]) -> bool:
        """
        A checkout session expired unpaid.

        Slot bookings are cancelled and their spots released; offers go back
        to the guest as declined with reason "payment abandoned".
        """
        kind = metadata.get("type")
        if kind == TOUR_OFFER and metadata.get("offer_id"):
            return await self.offer_service.abandon_checkout(parse_uuid(metadata["offer_id"], "offer"))

        booking = None
        if metadata.get("booking_id"):
            booking = await self.get_booking_by_id(parse_uuid(metadata["booking_id"], "booking"))
        if booking is None:
            result = await self.db.execute(
                select(Booking).where(Booking.checkout_session_id == session_id)
            )
            booking = result.scalar_one_or_none()
        if booking is None:
            return False

        return await self._cancel(
            booking.id,
            reason="checkout_expired",
            payment_status=PaymentStatus.FAILED,
            only_pending=True,
        )

    async def cancel_booking(
        self,
        reference: str,
        actor: CancellationActor = CancellationActor.GUEST,
        reason: Optional[str] = None,
    ) -> Booking:
        """
        Cancel a booking; repeating the call returns the cancelled booking.

        Raises:
            NotFoundError: If booking not found
        """
        booking = await self.get_booking(reference)
        if booking.status == BookingStatus.CANCELLED.value:
            return booking

        cancelled = await self._cancel(
            booking.id,
            reason=reason or f"cancelled by {actor.value}",
            metric_reason=f"{actor.value}_request",
        )
        booking = await self.get_booking_by_id(booking.id)
        if cancelled and self.notifier is not None:
            await self.notifier.send_email(
                booking.guest_email,
                "booking_cancelled",
                {"booking_reference": booking.reference, "reason": booking.cancellation_reason or ""},
            )
        return booking

    async def cancel_abandoned(self, booking_id: UUID, cutoff: datetime) -> bool:
        """
        Cancel a booking that never reached the payment processor.

        The selection predicate is re-checked in the UPDATE, so a booking that
        got a session or payment in the meantime is left alone.
        """
        return await self._cancel(
            booking_id,
            reason="abandoned",
            extra_conditions=(
                Booking.payment_status == PaymentStatus.PENDING.value,
                Booking.checkout_session_id.is_(None),
                Booking.payment_intent_id.is_(None),
                Booking.created_at < cutoff,
            ),
        )

    async def process_webhook_event(self, event: dict[str, Any]) -> bool:
        """
        Record a processor event and route it.

        Returns:
            True if the event was already processed (duplicate delivery)
        """
        event_id = str(event.get("id") or "")
        event_type = str(event.get("type") or "")
        if not event_id or not event_type:
            raise ValidationError(detail="Webhook event is missing id or type")

        result = await self.db.execute(
            select(PaymentEvent)
            .where(PaymentEvent.event_id == event_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is not None and record.processed:
            logger.info("Duplicate webhook event", extra={"event_id": event_id, "event_type": event_type})
            return True

        if record is None:
            try:
                self.db.add(PaymentEvent(event_id=event_id, event_type=event_type, payload=event))
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                logger.info("Webhook event recorded concurrently", extra={"event_id": event_id})
                return True

        error: Optional[str] = None
        try:
            await self._route_event(event_type, event.get("data", {}).get("object", {}) or {})
        except ProblemDetailsException as e:
            await self.db.rollback()
            error = str(e.detail)
            logger.error(
                "Webhook event could not be applied",
                extra={"event_id": event_id, "event_type": event_type, "error": error}
            )

        await self.db.execute(
            update(PaymentEvent)
            .where(PaymentEvent.event_id == event_id)
            .values(processed=True, processed_at=utcnow(), error=error)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return False

    async def _route_event(self, event_type: str, obj: dict[str, Any]) -> None:
        metadata = {str(k): str(v) for k, v in (obj.get("metadata") or {}).items()}

        if event_type == "checkout.session.completed":
            customer = obj.get("customer_details") or {}
            await self.confirm_payment(PaymentConfirmation(
                confirmation_id=obj.get("payment_intent") or obj["id"],
                session_id=obj.get("id"),
                payment_status=obj.get("payment_status") or "unpaid",
                customer_email=customer.get("email") or obj.get("customer_email"),
                amount_total=obj.get("amount_total"),
                currency=obj.get("currency"),
                metadata=metadata,
            ))
        elif event_type == "checkout.session.expired":
            await self.expire_checkout(obj.get("id", ""), metadata)
        elif event_type == "payment_intent.payment_failed":
            booking_id = metadata.get("booking_id") if metadata.get("type") == SLOT_BOOKING else None
            await self.fail_payment(
                payment_intent_id=obj.get("id"),
                booking_id=parse_uuid(booking_id, "booking") if booking_id else None,
            )
        else:
            logger.info("Unhandled webhook event type", extra={"event_type": event_type})

    async def _confirm_pending_booking(self, confirmation: PaymentConfirmation) -> Optional[Booking]:
        """Confirm the pending booking created at checkout start."""
        booking_id = parse_uuid(confirmation.metadata["booking_id"], "booking")
        booking = await self.get_booking_by_id(booking_id)
        if booking is None:
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        if booking.payment_intent_id is not None:
            # Confirmed earlier by another confirmation id
            return booking

        guest = await self._resolve_guest(confirmation.customer_email or booking.guest_email)
        booking = await self.get_booking_by_id(booking_id)
        if booking.status == BookingStatus.CANCELLED.value:
            return await self._record_payment_on_cancelled(booking, confirmation)

        result = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.payment_intent_id.is_(None),
                Booking.status == BookingStatus.PENDING.value,
            )
            .values(
                status=BookingStatus.CONFIRMED.value,
                payment_status=PaymentStatus.SUCCEEDED.value,
                payment_intent_id=confirmation.confirmation_id,
                checkout_session_id=confirmation.session_id or booking.checkout_session_id,
                guest_id=guest.id,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            booking = await self.get_booking_by_id(booking_id)
            if booking.status == BookingStatus.CANCELLED.value and booking.payment_intent_id is None:
                # Cancelled between the read and the update
                return await self._record_payment_on_cancelled(booking, confirmation)
            return None

        await self.db.commit()
        return await self.get_booking_by_id(booking_id)

    async def _record_payment_on_cancelled(
        self, booking: Booking, confirmation: PaymentConfirmation
    ) -> Optional[Booking]:
        """
        Keep a payment that arrived for a cancelled booking.

        The booking stays cancelled and its released spots are not taken
        again; the payment is recorded so it can be refunded.
        """
        result = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.payment_intent_id.is_(None),
                Booking.status == BookingStatus.CANCELLED.value,
            )
            .values(
                payment_status=PaymentStatus.SUCCEEDED.value,
                payment_intent_id=confirmation.confirmation_id,
                checkout_session_id=confirmation.session_id or booking.checkout_session_id,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            return None

        await self.db.commit()
        logger.error(
            "Payment received for a cancelled booking; refund required",
            extra={
                "booking_id": str(booking.id),
                "reference": booking.reference,
                "confirmation_id": confirmation.confirmation_id,
                "cancellation_reason": booking.cancellation_reason,
            }
        )
        return await self.get_booking_by_id(booking.id)

    async def _materialize_slot_booking(self, confirmation: PaymentConfirmation) -> Booking:
        """Reserve and create a confirmed booking for a payment with no prior booking."""
        slot_id = confirmation.metadata.get("slot_id")
        if not slot_id:
            raise NotFoundError(resource_type="slot", detail="Confirmation carries no slot or booking")
        email = confirmation.customer_email or confirmation.metadata.get("guest_email")
        if not email:
            raise ValidationError(detail="Confirmation carries no customer email")
        guest = await self._resolve_guest(email)

        slot = await self.slot_service.get_slot(parse_uuid(slot_id, "slot"))
        tour = await self.tour_service.get_tour_by_id_or_raise(slot.tour_id)
        participants = int(confirmation.metadata.get("participants") or 1)
        amount = self._amount_paid(confirmation)

        try:
            await self.slot_service.reserve(slot.id, participants, commit=False)
            booking = Booking(
                reference=await self._unique_reference(),
                tour_id=tour.id,
                slot_id=slot.id,
                guest_id=guest.id,
                guest_email=guest.email,
                participants=participants,
                total_price=amount if amount is not None else to_cents(effective_unit_price(slot, tour.price) * participants),
                deposit_amount=amount if amount is not None else Decimal("0"),
                currency=(confirmation.currency or slot.currency_override or tour.currency).upper(),
                status=BookingStatus.CONFIRMED.value,
                payment_status=PaymentStatus.SUCCEEDED.value,
                checkout_session_id=confirmation.session_id,
                payment_intent_id=confirmation.confirmation_id,
                holds_capacity=True,
            )
            self.db.add(booking)
            await self.db.commit()
        except IntegrityError:
            # confirm_payment rolls back and returns the winning booking
            raise
        except Exception:
            await self.db.rollback()
            raise
        return booking

    async def _materialize_offer_booking(self, confirmation: PaymentConfirmation) -> Booking:
        """Create the booking of a paid offer and mark the offer accepted."""
        offer_id = confirmation.metadata.get("offer_id")
        if not offer_id:
            raise NotFoundError(resource_type="offer", detail="Confirmation carries no offer")
        offer_uuid = parse_uuid(offer_id, "offer")
        offer: TourOffer = await self.offer_service.get_offer_by_id(offer_uuid)

        guest = await self._resolve_guest(confirmation.customer_email or offer.guest_email)
        offer = await self.offer_service.get_offer_by_id(offer_uuid)
        amount = self._amount_paid(confirmation)

        booking = Booking(
            reference=await self._unique_reference(),
            tour_id=offer.tour_id,
            offer_id=offer.id,
            guest_id=guest.id,
            guest_email=guest.email,
            participants=offer.group_size,
            total_price=offer.total_price,
            deposit_amount=amount if amount is not None else offer.total_price,
            currency=offer.currency,
            status=BookingStatus.CONFIRMED.value,
            payment_status=PaymentStatus.SUCCEEDED.value,
            checkout_session_id=confirmation.session_id,
            payment_intent_id=confirmation.confirmation_id,
            holds_capacity=False,
        )
        try:
            self.db.add(booking)
            await self.db.flush()

            accepted = await self.offer_service.mark_accepted(offer.id, booking.id, commit=False)
            await self.db.commit()
        except IntegrityError:
            # confirm_payment rolls back and returns the winning booking
            raise
        except Exception:
            await self.db.rollback()
            raise

        if not accepted:
            # Money was taken, so the booking stands even though the offer had moved on
            logger.error(
                "Payment received for an offer that is no longer open",
                extra={"offer_id": str(offer.id), "offer_status": offer.status, "booking_id": str(booking.id)}
            )
        return booking

    async def _cancel(
        self,
        booking_id: UUID,
        reason: str,
        payment_status: Optional[PaymentStatus] = None,
        only_pending: bool = False,
        extra_conditions: tuple = (),
        metric_reason: Optional[str] = None,
    ) -> bool:
        """Cancel a booking if it is still live and release its held spots once."""
        conditions = [Booking.id == booking_id, Booking.status != BookingStatus.CANCELLED.value]
        if only_pending:
            conditions.append(Booking.status == BookingStatus.PENDING.value)
        conditions.extend(extra_conditions)

        values: dict[str, Any] = {
            "status": BookingStatus.CANCELLED.value,
            "cancelled_at": utcnow(),
            "cancellation_reason": reason,
            "updated_at": utcnow(),
        }
        if payment_status is not None:
            values["payment_status"] = payment_status.value

        try:
            result = await self.db.execute(
                update(Booking).where(*conditions).values(**values).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.db.commit()
                return False

            booking = await self.get_booking_by_id(booking_id)
            if booking.slot_id is not None:
                await self.slot_service.release(
                    booking.slot_id, booking.participants, booking_id=booking.id, commit=False
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        metrics_collector.record_booking_cancelled(metric_reason or reason)
        logger.info(
            "Booking cancelled",
            extra={"booking_id": str(booking_id), "reason": reason}
        )
        return True

    async def _resolve_guest(self, email: str) -> GuestProfile:
        """Find or create the guest profile for an email, in its own transaction."""
        email = email.lower().strip()
        result = await self.db.execute(select(GuestProfile).where(GuestProfile.email == email))
        guest = result.scalar_one_or_none()
        if guest is not None:
            return guest

        try:
            guest = GuestProfile(email=email)
            self.db.add(guest)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            result = await self.db.execute(select(GuestProfile).where(GuestProfile.email == email))
            guest = result.scalar_one()
        return guest

    async def _unique_reference(self, now: Optional[datetime] = None) -> str:
        for _ in range(REFERENCE_ATTEMPTS):
            reference = generate_reference(now)
            result = await self.db.execute(select(Booking.id).where(Booking.reference == reference))
            if result.scalar_one_or_none() is None:
                return reference
        raise StateConflictError(detail="Could not allocate a unique booking reference")

    async def _get_by_payment_intent(self, payment_intent_id: str) -> Optional[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.payment_intent_id == payment_intent_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _amount_paid(confirmation: PaymentConfirmation) -> Optional[Decimal]:
        if confirmation.amount_total is None:
            return None
        return to_cents(Decimal(confirmation.amount_total) / Decimal(100))

    async def _notify_confirmed(self, booking: Booking, kind: str) -> None:
        if self.notifier is None:
            return

        if kind == TOUR_OFFER and booking.offer_id is not None:
            offer = await self.offer_service.get_offer_by_id(booking.offer_id)
            paid = booking.deposit_amount
            await self.notifier.post_system_message(
                offer.conversation_id,
                f"Offer accepted! Booking {booking.reference} confirmed. "
                f"Payment received: {format_money(paid, booking.currency)}",
            )

        await self.notifier.send_email(
            booking.guest_email,
            "booking_confirmed",
            {
                "booking_reference": booking.reference,
                "participants": booking.participants,
                "total_price": str(booking.total_price),
                "deposit_amount": str(booking.deposit_amount),
                "currency": booking.currency,
            },
        )

