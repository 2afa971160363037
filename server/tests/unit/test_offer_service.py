"""Unit tests for the custom offer lifecycle."""

from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select

from tourengine.core.database import utcnow
from tourengine.core.exceptions import (
    ExternalServiceError,
    NotFoundError,
    OfferExpiredError,
    StateConflictError,
)
from tourengine.models.message import ConversationMessage
from tourengine.models.offer import OfferStatus
from tourengine.models.tour import Tour
from tourengine.schemas.offer import CreateOfferRequest
from tourengine.services.offer_service import OfferService, format_money, platform_fee_cents

CONVERSATION_ID = "conv-42"


def offer_request(**overrides) -> CreateOfferRequest:
    data = {
        "conversation_id": CONVERSATION_ID,
        "guest_email": "Guest@Example.com",
        "price_per_person": Decimal("150.00"),
        "group_size": 4,
        "currency": "EUR",
        "duration": "Full day",
        "preferred_date": utcnow().date() + timedelta(days=45),
        "included_items": ["Lunch", "Poles"],
    }
    data.update(overrides)
    return CreateOfferRequest(**data)


async def conversation_notes(session) -> list[str]:
    result = await session.execute(
        select(ConversationMessage.content)
        .where(ConversationMessage.conversation_id == CONVERSATION_ID)
        .order_by(ConversationMessage.created_at)
    )
    return list(result.scalars())


@pytest_asyncio.fixture
async def offer_service(test_session, payment_gateway, notifier, create_guide):
    await create_guide()
    return OfferService(test_session, payment_gateway, notifier)


@pytest_asyncio.fixture
async def offer(offer_service):
    return await offer_service.create_offer("guide-001", offer_request())


def test_platform_fee_rounds_half_up():
    assert platform_fee_cents(60000) == 3000
    assert platform_fee_cents(1010) == 51
    assert platform_fee_cents(1009) == 50


def test_format_money():
    assert format_money(Decimal("600"), "EUR") == "€600.00"
    assert format_money(Decimal("12.5"), "CHF") == "12.50 CHF"


@pytest.mark.asyncio
async def test_create_offer_snapshots_price(test_session, offer, email_sender):
    assert offer.status == OfferStatus.PENDING.value
    assert offer.guest_email == "guest@example.com"
    assert offer.base_price == Decimal("600.00")
    # Discounts are opt-in for offers
    assert offer.total_price == Decimal("600.00")
    assert offer.deposit_amount == Decimal("120.00")
    assert offer.final_payment_amount == Decimal("480.00")
    assert len(offer.token) >= 32

    ttl = offer.expires_at - offer.created_at
    assert timedelta(days=7) - timedelta(seconds=5) < ttl <= timedelta(days=7)

    tour = await test_session.get(Tour, offer.tour_id)
    assert tour.is_custom is True
    assert tour.is_active is False
    assert tour.guide_id == "guide-001"

    assert await conversation_notes(test_session) == [
        "Tour offer sent to client. Total: €600.00 for 4 people."
    ]
    assert email_sender.templates() == ["tour_offer"]
    assert email_sender.sent[0][0] == "guest@example.com"


@pytest.mark.asyncio
async def test_create_offer_with_discounts(offer_service):
    # 45 days out hits the 30-day early bird tier of 15%
    offer = await offer_service.create_offer("guide-001", offer_request(apply_discounts=True))

    assert offer.base_price == Decimal("600.00")
    assert offer.total_price == Decimal("510.00")


@pytest.mark.asyncio
async def test_undated_offer_gets_no_last_minute_discount(test_session, payment_gateway, notifier, create_guide):
    await create_guide(last_minute_settings={"hours": 48, "percent": "25"})
    offers = OfferService(test_session, payment_gateway, notifier)

    undated = await offers.create_offer(
        "guide-001", offer_request(preferred_date=None, apply_discounts=True)
    )
    tomorrow = await offers.create_offer(
        "guide-001", offer_request(preferred_date=utcnow().date() + timedelta(days=1), apply_discounts=True)
    )

    assert undated.total_price == Decimal("600.00")
    assert tomorrow.total_price == Decimal("450.00")


@pytest.mark.asyncio
async def test_create_offer_requires_guide_profile(test_session, payment_gateway):
    with pytest.raises(NotFoundError):
        await OfferService(test_session, payment_gateway).create_offer("ghost", offer_request())


@pytest.mark.asyncio
async def test_get_offer_unknown_token(offer_service):
    with pytest.raises(NotFoundError):
        await offer_service.get_offer("no-such-token")


@pytest.mark.asyncio
async def test_accept_opens_checkout_with_platform_fee(offer_service, offer, payment_gateway):
    outcome = await offer_service.accept(offer.token)

    assert outcome.offer.status == OfferStatus.PAYMENT_PENDING.value
    assert outcome.offer.checkout_session_id == outcome.session.id
    assert outcome.platform_fee_cents == 3000
    assert outcome.guide_net_cents == 57000

    session = payment_gateway.sessions[0]
    assert session["amount_cents"] == 60000
    assert session["fee_amount_cents"] == 3000
    assert session["destination_account"] == "acct_test_123"
    assert session["metadata"] == {
        "type": "tour_offer",
        "offer_id": str(offer.id),
        "conversation_id": CONVERSATION_ID,
        "guide_id": "guide-001",
    }


@pytest.mark.asyncio
async def test_second_accept_is_rejected(offer_service, offer):
    token = offer.token
    await offer_service.accept(token)

    with pytest.raises(StateConflictError):
        await offer_service.accept(token)


@pytest.mark.asyncio
async def test_accept_without_payment_destination(test_session, payment_gateway, create_guide):
    await create_guide(stripe_account_id=None)
    service = OfferService(test_session, payment_gateway)
    offer = await service.create_offer("guide-001", offer_request())

    with pytest.raises(StateConflictError) as exc_info:
        await service.accept(offer.token)

    assert exc_info.value.code == "PAYMENT_DESTINATION_MISSING"
    assert (await service.get_offer(offer.token)).status == OfferStatus.PENDING.value
    assert payment_gateway.sessions == []


@pytest.mark.asyncio
async def test_accept_reverts_claim_when_checkout_fails(offer_service, offer, payment_gateway):
    token = offer.token
    payment_gateway.fail_next = True

    with pytest.raises(ExternalServiceError):
        await offer_service.accept(token)

    assert (await offer_service.get_offer(token)).status == OfferStatus.PENDING.value

    # Safe to retry
    outcome = await offer_service.accept(token)
    assert outcome.offer.status == OfferStatus.PAYMENT_PENDING.value


@pytest.mark.asyncio
async def test_decline_with_reason(test_session, offer_service, offer, email_sender):
    declined = await offer_service.decline(offer.token, reason="  Dates don't work  ")

    assert declined.status == OfferStatus.DECLINED.value
    assert declined.decline_reason == "Dates don't work"
    assert declined.declined_at is not None

    assert "Client declined the offer. Reason: Dates don't work" in await conversation_notes(test_session)
    assert email_sender.templates()[-1] == "offer_declined"
    assert email_sender.sent[-1][0] == "guide@example.com"


@pytest.mark.asyncio
async def test_decline_while_payment_pending(offer_service, offer):
    token = offer.token
    await offer_service.accept(token)

    declined = await offer_service.decline(token)

    assert declined.status == OfferStatus.DECLINED.value
    assert declined.decline_reason is None


@pytest.mark.asyncio
async def test_terminal_offer_rejects_transitions(offer_service, offer):
    token = offer.token
    await offer_service.decline(token)

    with pytest.raises(StateConflictError):
        await offer_service.accept(token)
    with pytest.raises(StateConflictError):
        await offer_service.decline(token)


@pytest.mark.asyncio
async def test_expired_on_access(offer_service, offer, payment_gateway):
    token = offer.token
    later = offer.expires_at + timedelta(seconds=1)

    with pytest.raises(OfferExpiredError) as exc_info:
        await offer_service.accept(token, now=later)

    assert exc_info.value.code == "OFFER_EXPIRED"
    assert (await offer_service.get_offer(token)).status == OfferStatus.EXPIRED.value
    assert payment_gateway.sessions == []

    # Stays expired for every later caller
    with pytest.raises(OfferExpiredError):
        await offer_service.decline(token)


@pytest.mark.asyncio
async def test_payment_pending_offer_expires_on_access(offer_service, offer):
    token, expires_at = offer.token, offer.expires_at
    await offer_service.accept(token)

    with pytest.raises(OfferExpiredError):
        await offer_service.decline(token, now=expires_at + timedelta(minutes=1))

    assert (await offer_service.get_offer(token)).status == OfferStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_abandon_checkout_declines_payment_pending_only(offer_service, offer):
    offer_id, token = offer.id, offer.token

    assert await offer_service.abandon_checkout(offer_id) is False

    await offer_service.accept(token)
    assert await offer_service.abandon_checkout(offer_id) is True

    abandoned = await offer_service.get_offer(token)
    assert abandoned.status == OfferStatus.DECLINED.value
    assert abandoned.decline_reason == "payment abandoned"


@pytest.mark.asyncio
async def test_expire_requires_expiry_to_have_passed(offer_service, offer):
    offer_id, expires_at = offer.id, offer.expires_at

    assert await offer_service.expire(offer_id) is False
    assert await offer_service.expire(offer_id, now=expires_at + timedelta(seconds=1)) is True
    assert await offer_service.expire(offer_id, now=expires_at + timedelta(seconds=2)) is False
