"""Concurrency tests for capacity, offers and payment confirmations."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from tourengine.core.database import utcnow
from tourengine.core.exceptions import CapacityExceededError, StateConflictError
from tourengine.models.booking import Booking
from tourengine.models.offer import OfferStatus
from tourengine.schemas.booking import CancellationActor, CheckoutRequest
from tourengine.schemas.guide import UpsertGuideRequest
from tourengine.schemas.offer import CreateOfferRequest
from tourengine.schemas.payment import ConfirmationOutcome, PaymentConfirmation
from tourengine.schemas.slot import CreateSlotRequest
from tourengine.schemas.tour import CreateTourRequest
from tourengine.services.booking_service import BookingService
from tourengine.services.guide_service import GuideService
from tourengine.services.offer_service import OfferService
from tourengine.services.slot_service import SlotService
from tourengine.services.tour_service import TourService

pytestmark = pytest.mark.concurrency


@pytest.fixture
def make_slot(file_session_factory, guide_request_data):
    """Factory creating a guide, a tour and one slot of the given capacity."""

    async def _create(spots_total: int):
        async with file_session_factory() as session:
            await GuideService(session).upsert_guide("guide-001", UpsertGuideRequest(**guide_request_data))
            tour = await TourService(session).create_tour(
                CreateTourRequest(title="Glacier Walk", slug="glacier-walk", price=Decimal("100")),
                "guide-001",
            )
            slot = await SlotService(session).create_slot(CreateSlotRequest(
                tour_id=str(tour.id),
                slot_date=utcnow().date() + timedelta(days=10),
                spots_total=spots_total,
            ))
            return slot.id

    return _create


async def spots_booked(file_session_factory, slot_id) -> int:
    async with file_session_factory() as session:
        return (await SlotService(session).get_slot(slot_id, refresh=True)).spots_booked


@pytest.mark.asyncio
async def test_last_spots_go_to_exactly_two_of_three(file_session_factory, make_slot):
    """Three one-spot requests against two free spots: two win, one is refused."""
    slot_id = await make_slot(spots_total=2)

    async def reserve_one():
        async with file_session_factory() as session:
            return await SlotService(session).reserve(slot_id, 1)

    results = await asyncio.gather(*(reserve_one() for _ in range(3)), return_exceptions=True)

    refused = [r for r in results if isinstance(r, CapacityExceededError)]
    assert len(refused) == 1
    assert len(results) - len(refused) == 2
    assert await spots_booked(file_session_factory, slot_id) == 2


@pytest.mark.asyncio
async def test_many_concurrent_reservations_never_overbook(file_session_factory, make_slot):
    capacity = 7
    slot_id = await make_slot(spots_total=capacity)

    async def reserve(count: int):
        async with file_session_factory() as session:
            try:
                await SlotService(session).reserve(slot_id, count)
                return count
            except CapacityExceededError:
                return 0

    granted = await asyncio.gather(*(reserve(1 + i % 3) for i in range(12)))

    booked = await spots_booked(file_session_factory, slot_id)
    assert booked == sum(granted)
    assert booked <= capacity


@pytest.mark.asyncio
async def test_concurrent_checkouts_respect_capacity(file_session_factory, make_slot, payment_gateway):
    slot_id = await make_slot(spots_total=3)

    async def checkout(n: int):
        async with file_session_factory() as session:
            return await BookingService(session, payment_gateway).start_checkout(CheckoutRequest(
                slot_id=str(slot_id), participants=1, guest_email=f"hiker{n}@example.com"
            ))

    results = await asyncio.gather(*(checkout(n) for n in range(5)), return_exceptions=True)

    started = [r for r in results if not isinstance(r, Exception)]
    assert len(started) == 3
    assert all(isinstance(r, CapacityExceededError) for r in results if isinstance(r, Exception))
    assert len(payment_gateway.sessions) == 3
    async with file_session_factory() as session:
        count = (await session.execute(select(func.count()).select_from(Booking))).scalar_one()
    assert count == 3


@pytest.mark.asyncio
async def test_only_one_accept_wins(file_session_factory, guide_request_data, payment_gateway):
    async with file_session_factory() as session:
        await GuideService(session).upsert_guide("guide-001", UpsertGuideRequest(**guide_request_data))
        offer = await OfferService(session).create_offer("guide-001", CreateOfferRequest(
            conversation_id="conv-race",
            guest_email="family@example.com",
            price_per_person=Decimal("150"),
            group_size=4,
            duration="Full day",
        ))
        token = offer.token

    async def accept():
        async with file_session_factory() as session:
            return await OfferService(session, payment_gateway).accept(token)

    results = await asyncio.gather(*(accept() for _ in range(4)), return_exceptions=True)

    winners = [r for r in results if not isinstance(r, Exception)]
    assert len(winners) == 1
    assert all(isinstance(r, StateConflictError) for r in results if isinstance(r, Exception))
    assert len(payment_gateway.sessions) == 1
    async with file_session_factory() as session:
        assert (await OfferService(session).get_offer(token)).status == OfferStatus.PAYMENT_PENDING.value


@pytest.mark.asyncio
async def test_duplicate_confirmations_create_one_booking(file_session_factory, make_slot):
    slot_id = await make_slot(spots_total=8)
    confirmation = PaymentConfirmation(
        confirmation_id="pi_race_1",
        customer_email="walkin@example.com",
        amount_total=3600,
        currency="eur",
        metadata={"type": "slot_booking", "slot_id": str(slot_id), "participants": "2"},
    )

    async def confirm():
        async with file_session_factory() as session:
            outcome, booking = await BookingService(session).confirm_payment(confirmation)
            return outcome, booking.reference

    results = await asyncio.gather(*(confirm() for _ in range(3)))

    outcomes = sorted(outcome.value for outcome, _ in results)
    assert outcomes == [ConfirmationOutcome.DUPLICATE.value] * 2 + [ConfirmationOutcome.PROCESSED.value]
    assert len({reference for _, reference in results}) == 1
    assert await spots_booked(file_session_factory, slot_id) == 2
    async with file_session_factory() as session:
        count = (await session.execute(select(func.count()).select_from(Booking))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_concurrent_cancels_release_spots_once(file_session_factory, make_slot, payment_gateway):
    slot_id = await make_slot(spots_total=8)
    async with file_session_factory() as session:
        await SlotService(session).reserve(slot_id, 3)
        booking, _ = await BookingService(session, payment_gateway).start_checkout(CheckoutRequest(
            slot_id=str(slot_id), participants=2, guest_email="hiker@example.com"
        ))
        reference = booking.reference
    assert await spots_booked(file_session_factory, slot_id) == 5

    async def cancel():
        async with file_session_factory() as session:
            return await BookingService(session).cancel_booking(reference, CancellationActor.GUEST)

    results = await asyncio.gather(*(cancel() for _ in range(3)))

    assert {booking.status for booking in results} == {"cancelled"}
    assert await spots_booked(file_session_factory, slot_id) == 3
