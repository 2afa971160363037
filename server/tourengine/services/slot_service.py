"""Slot inventory service: availability and atomic capacity bookkeeping."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy import case, delete, exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import CapacityExceededError, NotFoundError, StateConflictError, ValidationError
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus
from ..models.slot import TourDateSlot
from ..schemas.slot import AvailabilityStatus, CreateSlotRequest, UpdateSlotRequest
from .notification_service import NotificationDispatcher
from .tour_service import TourService, parse_uuid

logger = logging.getLogger(__name__)


def classify_availability(spots_remaining: int, threshold: Optional[int] = None) -> AvailabilityStatus:
    """Badge for a slot: booked at zero, limited at or below the threshold."""
    if threshold is None:
        threshold = settings.limited_availability_threshold
    if spots_remaining <= 0:
        return AvailabilityStatus.BOOKED
    if spots_remaining <= threshold:
        return AvailabilityStatus.LIMITED
    return AvailabilityStatus.AVAILABLE


@dataclass
class DateChangeOutcome:
    slot: TourDateSlot
    previous_date: date
    notified: int
    failed: int


class SlotService:
    """
    Sole writer of ``TourDateSlot.spots_booked``.

    Every capacity change is a single conditional UPDATE, so concurrent
    reservations against one slot can never oversell it. Methods taking
    ``commit`` can join a caller's transaction with ``commit=False``.
    """

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationDispatcher] = None):
        self.db = db
        self.notifier = notifier
        self.tour_service = TourService(db)

    async def get_slot(self, slot_id: UUID, refresh: bool = False) -> TourDateSlot:
        """
        Get slot by ID.

        Raises:
            NotFoundError: If slot not found
        """
        stmt = select(TourDateSlot).where(TourDateSlot.id == slot_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        slot = result.scalar_one_or_none()
        if slot is None:
            raise NotFoundError(resource_type="slot", resource_id=str(slot_id))
        return slot

    async def create_slot(self, request: CreateSlotRequest, guide_id: Optional[str] = None) -> TourDateSlot:
        """
        Open a bookable date on a tour.

        Raises:
            NotFoundError: If the tour does not exist
            AuthorizationError: If the tour belongs to another guide
            StateConflictError: If the tour already has a slot on that date
        """
        tour_id = parse_uuid(request.tour_id, "tour")
        if guide_id is not None:
            await self.tour_service.get_tour_for_guide(tour_id, guide_id)
        else:
            await self.tour_service.get_tour_by_id_or_raise(tour_id)

        slot = TourDateSlot(
            tour_id=tour_id,
            slot_date=request.slot_date,
            spots_total=request.spots_total,
            spots_booked=0,
            price_override=request.price_override,
            currency_override=request.currency_override,
            discount_label=request.discount_label,
            discount_percentage=request.discount_percentage,
        )

        try:
            self.db.add(slot)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(
                "Slot creation failed - date already open",
                extra={"tour_id": request.tour_id, "slot_date": request.slot_date.isoformat(), "error": str(e)}
            )
            raise StateConflictError(
                detail=f"Tour {request.tour_id} already has a slot on {request.slot_date.isoformat()}"
            ) from e

        logger.info(
            "Slot created",
            extra={
                "slot_id": str(slot.id),
                "tour_id": request.tour_id,
                "slot_date": request.slot_date.isoformat(),
                "spots_total": request.spots_total,
            }
        )
        return slot

    async def get_availability(
        self,
        tour_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[TourDateSlot]:
        """Slots of a tour within an inclusive date range, ordered by date."""
        await self.tour_service.get_tour_by_id_or_raise(tour_id)

        stmt = select(TourDateSlot).where(TourDateSlot.tour_id == tour_id)
        if date_from is not None:
            stmt = stmt.where(TourDateSlot.slot_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(TourDateSlot.slot_date <= date_to)
        stmt = stmt.order_by(TourDateSlot.slot_date).execution_options(populate_existing=True)

        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def reserve(self, slot_id: UUID, count: int, commit: bool = True) -> TourDateSlot:
        """
        Atomically take ``count`` spots from a slot.

        Args:
            slot_id: Slot to reserve on
            count: Number of spots, at least 1
            commit: Commit the reservation; pass False to join the caller's transaction

        Returns:
            The slot with its updated counters

        Raises:
            ValidationError: If count < 1
            NotFoundError: If slot not found
            CapacityExceededError: If fewer than ``count`` spots remain; nothing is changed
        """
        if count < 1:
            raise ValidationError(detail="Reservation count must be at least 1")

        stmt = (
            update(TourDateSlot)
            .where(
                TourDateSlot.id == slot_id,
                TourDateSlot.spots_booked + count <= TourDateSlot.spots_total,
            )
            .values(spots_booked=TourDateSlot.spots_booked + count, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount == 0:
            slot = await self._find_slot(slot_id)
            if slot is None:
                metrics_collector.record_reservation("not_found")
                raise NotFoundError(resource_type="slot", resource_id=str(slot_id))

            metrics_collector.record_reservation("capacity_exceeded")
            logger.warning(
                "Reservation rejected - capacity exceeded",
                extra={
                    "slot_id": str(slot_id),
                    "requested": count,
                    "spots_remaining": slot.spots_remaining,
                }
            )
            raise CapacityExceededError(
                slot_id=str(slot_id),
                requested_spots=count,
                spots_remaining=slot.spots_remaining,
            )

        if commit:
            await self.db.commit()

        slot = await self.get_slot(slot_id, refresh=True)
        metrics_collector.record_reservation("reserved")
        metrics_collector.set_slot_utilization(str(slot_id), slot.spots_booked, slot.spots_total)

        logger.info(
            "Spots reserved",
            extra={
                "slot_id": str(slot_id),
                "count": count,
                "spots_booked": slot.spots_booked,
                "spots_total": slot.spots_total,
            }
        )
        return slot

    async def release(
        self,
        slot_id: UUID,
        count: int,
        booking_id: Optional[UUID] = None,
        commit: bool = True,
    ) -> bool:
        """
        Return ``count`` spots to a slot, never going below zero.

        When ``booking_id`` is given the booking's capacity hold is cleared
        first; if it was already cleared the release is skipped, so one
        booking's spots come back at most once.

        Returns:
            True if spots were released, False if the release was a no-op

        Raises:
            ValidationError: If count < 1
            NotFoundError: If slot not found
        """
        if count < 1:
            raise ValidationError(detail="Release count must be at least 1")

        if booking_id is not None:
            guard = await self.db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.holds_capacity.is_(True))
                .values(holds_capacity=False, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if guard.rowcount == 0:
                logger.info(
                    "Release skipped - booking holds no capacity",
                    extra={"slot_id": str(slot_id), "booking_id": str(booking_id)}
                )
                return False

        result = await self.db.execute(
            update(TourDateSlot)
            .where(TourDateSlot.id == slot_id)
            .values(
                spots_booked=case(
                    (TourDateSlot.spots_booked >= count, TourDateSlot.spots_booked - count),
                    else_=0,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if commit:
                await self.db.rollback()
            raise NotFoundError(resource_type="slot", resource_id=str(slot_id))

        if commit:
            await self.db.commit()

        metrics_collector.record_spots_released(count)
        logger.info(
            "Spots released",
            extra={
                "slot_id": str(slot_id),
                "count": count,
                "booking_id": str(booking_id) if booking_id else None,
            }
        )
        return True

    async def update_slot(self, request: UpdateSlotRequest, guide_id: Optional[str] = None) -> TourDateSlot:
        """
        Edit capacity or per-date pricing of a slot.

        Only fields present in the request are changed; explicit nulls clear
        the pricing overrides.

        Raises:
            NotFoundError: If slot not found
            StateConflictError: If the new capacity is below the spots already booked
        """
        slot_id = parse_uuid(request.slot_id, "slot")
        slot = await self.get_slot(slot_id)
        if guide_id is not None:
            await self.tour_service.get_tour_for_guide(slot.tour_id, guide_id)

        changes = {
            field: getattr(request, field)
            for field in ("spots_total", "price_override", "currency_override", "discount_label", "discount_percentage")
            if field in request.model_fields_set
        }
        if changes.get("spots_total", 0) is None:
            raise ValidationError(detail="spots_total cannot be null")
        if not changes:
            return slot

        stmt = update(TourDateSlot).where(TourDateSlot.id == slot_id)
        if "spots_total" in changes:
            stmt = stmt.where(TourDateSlot.spots_booked <= changes["spots_total"])
        stmt = stmt.values(**changes, updated_at=utcnow()).execution_options(synchronize_session=False)

        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            await self.db.rollback()
            current = await self.get_slot(slot_id, refresh=True)
            raise StateConflictError(
                detail=(
                    f"Cannot set capacity of slot {slot_id} to {changes['spots_total']}: "
                    f"{current.spots_booked} spots are already booked"
                ),
                conflicting_resource={
                    "slot_id": str(slot_id),
                    "spots_booked": current.spots_booked,
                },
            )

        await self.db.commit()
        slot = await self.get_slot(slot_id, refresh=True)

        logger.info(
            "Slot updated",
            extra={"slot_id": str(slot_id), "fields": sorted(changes)}
        )
        return slot

    async def change_slot_date(
        self,
        slot_id: UUID,
        new_date: date,
        guide_id: Optional[str] = None,
    ) -> DateChangeOutcome:
        """
        Move a slot to a new date and tell every booking holder.

        The date change is committed before notifications go out; a failed
        notification is counted, never rolled back.

        Raises:
            NotFoundError: If slot not found
            StateConflictError: If the tour already has a slot on the new date
        """
        slot = await self.get_slot(slot_id)
        tour = (
            await self.tour_service.get_tour_for_guide(slot.tour_id, guide_id)
            if guide_id is not None
            else await self.tour_service.get_tour_by_id_or_raise(slot.tour_id)
        )
        previous_date, tour_id = slot.slot_date, slot.tour_id
        if previous_date == new_date:
            return DateChangeOutcome(slot=slot, previous_date=previous_date, notified=0, failed=0)

        try:
            await self.db.execute(
                update(TourDateSlot)
                .where(TourDateSlot.id == slot_id)
                .values(slot_date=new_date, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise StateConflictError(
                detail=f"Tour {tour_id} already has a slot on {new_date.isoformat()}"
            ) from e

        slot = await self.get_slot(slot_id, refresh=True)
        logger.info(
            "Slot date changed",
            extra={
                "slot_id": str(slot_id),
                "previous_date": previous_date.isoformat(),
                "new_date": new_date.isoformat(),
            }
        )

        result = await self.db.execute(
            select(Booking).where(
                Booking.slot_id == slot_id,
                Booking.status != BookingStatus.CANCELLED.value,
            )
        )
        bookings = list(result.scalars())

        notified = failed = 0
        for booking in bookings:
            sent = False
            if self.notifier is not None:
                sent = await self.notifier.send_email(
                    booking.guest_email,
                    "tour_date_changed",
                    {
                        "booking_reference": booking.reference,
                        "tour_title": tour.title,
                        "old_date": previous_date.isoformat(),
                        "new_date": new_date.isoformat(),
                        "participants": booking.participants,
                    },
                )
            if sent:
                notified += 1
            else:
                failed += 1

        if failed:
            logger.warning(
                "Some date change notifications failed",
                extra={"slot_id": str(slot_id), "notified": notified, "failed": failed}
            )

        return DateChangeOutcome(slot=slot, previous_date=previous_date, notified=notified, failed=failed)

    async def delete_slot(self, slot_id: UUID, guide_id: Optional[str] = None) -> None:
        """
        Delete a slot that no live booking references.

        Raises:
            NotFoundError: If slot not found
            StateConflictError: If non-cancelled bookings reference the slot
        """
        slot = await self.get_slot(slot_id)
        if guide_id is not None:
            await self.tour_service.get_tour_for_guide(slot.tour_id, guide_id)

        live_bookings = exists().where(
            Booking.slot_id == slot_id,
            Booking.status != BookingStatus.CANCELLED.value,
        )
        result = await self.db.execute(
            delete(TourDateSlot)
            .where(TourDateSlot.id == slot_id, ~live_bookings)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise StateConflictError(
                detail=f"Slot {slot_id} still has active bookings",
                conflicting_resource={"slot_id": str(slot_id)},
            )

        await self.db.commit()
        self.db.expunge(slot)
        logger.info("Slot deleted", extra={"slot_id": str(slot_id)})

    async def _find_slot(self, slot_id: UUID) -> Optional[TourDateSlot]:
        result = await self.db.execute(
            select(TourDateSlot)
            .where(TourDateSlot.id == slot_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
