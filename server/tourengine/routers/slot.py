"""Slot router for availability and capacity operations."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProblemDetailsException, ValidationError
from ..models.slot import TourDateSlot
from ..schemas.slot import (
    AvailabilityResponse,
    ChangeSlotDateRequest,
    CreateSlotRequest,
    DateChangeResult,
    DeleteSlotRequest,
    ReleaseResult,
    ReleaseSpotsRequest,
    ReserveSpotsRequest,
    Slot,
    UpdateSlotRequest,
)
from ..services.notification_service import NotificationDispatcher
from ..services.slot_service import SlotService, classify_availability
from ..services.tour_service import parse_uuid
from .common import (
    DB_DEPENDENCY,
    GUIDE_DEPENDENCY,
    IDEMPOTENCY_KEY_DEPENDENCY,
    NOTIFIER_DEPENDENCY,
    handle_idempotent_operation,
    internal_error,
    ok,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/slot", tags=["slot"])


def _convert_slot_to_schema(slot: TourDateSlot) -> Slot:
    """Convert slot model to schema."""
    return Slot(
        id=str(slot.id),
        tour_id=str(slot.tour_id),
        slot_date=slot.slot_date,
        spots_total=slot.spots_total,
        spots_booked=slot.spots_booked,
        spots_remaining=slot.spots_remaining,
        availability_status=classify_availability(slot.spots_remaining),
        price_override=slot.price_override,
        currency_override=slot.currency_override,
        discount_label=slot.discount_label,
        discount_percentage=slot.discount_percentage,
    )


@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(
    tour_id: str = Query(..., description="Tour to list"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    List a tour's slots in a date range with their availability badges.

    This is a read operation and does not require idempotency.
    """
    if date_from and date_to and date_from > date_to:
        raise ValidationError(detail="date_from must not be after date_to")

    slot_service = SlotService(db)
    try:
        slots = await slot_service.get_availability(parse_uuid(tour_id, "tour"), date_from, date_to)
        return ok(AvailabilityResponse(
            tour_id=tour_id,
            slots=[_convert_slot_to_schema(slot) for slot in slots],
        ))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in availability lookup", e, tour_id=tour_id) from e


@router.post("/create", response_model=Slot)
async def create_slot(
    request: CreateSlotRequest,
    guide: dict = GUIDE_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Open a bookable date on one of the caller's tours."""
    slot_service = SlotService(db)
    try:
        slot = await slot_service.create_slot(request, guide_id=guide["guide_id"])
        return ok(_convert_slot_to_schema(slot))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in slot creation", e, tour_id=request.tour_id) from e


@router.post("/reserve", response_model=Slot)
async def reserve_spots(
    request: ReserveSpotsRequest,
    db: AsyncSession = DB_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY
) -> JSONResponse:
    """
    Atomically reserve spots on a slot.

    This operation is idempotent when an Idempotency-Key header is sent.
    """
    slot_service = SlotService(db)

    async def operation():
        slot = await slot_service.reserve(parse_uuid(request.slot_id, "slot"), request.count)
        return _convert_slot_to_schema(slot).model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            method="slot/reserve",
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            operation_func=operation,
            db=db
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error(
            "Unexpected error in spot reservation", e,
            slot_id=request.slot_id, count=request.count, idempotency_key=idempotency_key
        ) from e


@router.post("/release", response_model=ReleaseResult)
async def release_spots(
    request: ReleaseSpotsRequest,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Return spots to a slot.

    With a booking_id, a booking's spots come back at most once.
    """
    slot_service = SlotService(db)
    try:
        slot_id = parse_uuid(request.slot_id, "slot")
        booking_id = parse_uuid(request.booking_id, "booking") if request.booking_id else None
        released = await slot_service.release(slot_id, request.count, booking_id=booking_id)
        slot = await slot_service.get_slot(slot_id, refresh=True)
        return ok(ReleaseResult(released=released, slot=_convert_slot_to_schema(slot)))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in spot release", e, slot_id=request.slot_id) from e


@router.post("/update", response_model=Slot)
async def update_slot(
    request: UpdateSlotRequest,
    guide: dict = GUIDE_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Edit capacity or per-date pricing of a slot."""
    slot_service = SlotService(db)
    try:
        slot = await slot_service.update_slot(request, guide_id=guide["guide_id"])
        return ok(_convert_slot_to_schema(slot))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in slot update", e, slot_id=request.slot_id) from e


@router.post("/change-date", response_model=DateChangeResult)
async def change_slot_date(
    request: ChangeSlotDateRequest,
    guide: dict = GUIDE_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY,
    notifier: NotificationDispatcher = NOTIFIER_DEPENDENCY
) -> JSONResponse:
    """Move a slot to another date and notify its booking holders."""
    slot_service = SlotService(db, notifier)
    try:
        outcome = await slot_service.change_slot_date(
            parse_uuid(request.slot_id, "slot"), request.new_date, guide_id=guide["guide_id"]
        )
        return ok(DateChangeResult(
            slot=_convert_slot_to_schema(outcome.slot),
            previous_date=outcome.previous_date,
            notified=outcome.notified,
            failed=outcome.failed,
        ))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in slot date change", e, slot_id=request.slot_id) from e


@router.post("/delete")
async def delete_slot(
    request: DeleteSlotRequest,
    guide: dict = GUIDE_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Delete a slot that has no live bookings."""
    slot_service = SlotService(db)
    try:
        await slot_service.delete_slot(parse_uuid(request.slot_id, "slot"), guide_id=guide["guide_id"])
        return ok({"deleted": True, "slot_id": request.slot_id})

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in slot deletion", e, slot_id=request.slot_id) from e
