"""Tests for the HTTP API."""

import json
from datetime import timedelta
from decimal import Decimal

import pytest

from tourengine.core.database import utcnow

WEBHOOK_SIGNATURE = "t=1,v1=test-signature"


def slot_date(days_ahead: int = 10) -> str:
    return (utcnow().date() + timedelta(days=days_ahead)).isoformat()


@pytest.fixture
def listed_tour(test_client, auth_headers, guide_request_data, sample_tour_data):
    """Factory registering the guide and one tour through the API."""

    async def _create():
        response = await test_client.post("/v1/guide/upsert", json=guide_request_data, headers=auth_headers)
        assert response.status_code == 200
        response = await test_client.post("/v1/tour/create", json=sample_tour_data, headers=auth_headers)
        assert response.status_code == 200
        return response.json()

    return _create


@pytest.fixture
def open_slot(test_client, auth_headers, listed_tour):
    async def _create(spots_total: int = 8, days_ahead: int = 10):
        tour = await listed_tour()
        response = await test_client.post(
            "/v1/slot/create",
            json={"tour_id": tour["id"], "slot_date": slot_date(days_ahead), "spots_total": spots_total},
            headers=auth_headers,
        )
        assert response.status_code == 200
        return response.json()

    return _create


def completed_event(event_id: str, session: dict, payment_intent: str) -> bytes:
    return json.dumps({
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": session["id"],
            "payment_intent": payment_intent,
            "payment_status": "paid",
            "amount_total": session["amount_cents"],
            "currency": session["currency"].lower(),
            "metadata": session["metadata"],
        }},
    }).encode()


@pytest.mark.asyncio
async def test_create_tour(test_client, auth_headers, sample_tour_data):
    response = await test_client.post("/v1/tour/create", json=sample_tour_data, headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["slug"] == "dolomites-ridge-traverse"
    assert data["guide_id"] == "guide-001"
    assert Decimal(data["price"]) == Decimal("100")
    assert data["is_custom"] is False
    assert data["is_active"] is True


@pytest.mark.asyncio
async def test_create_tour_repeat_returns_existing(test_client, auth_headers, sample_tour_data):
    first = await test_client.post("/v1/tour/create", json=sample_tour_data, headers=auth_headers)
    second = await test_client.post("/v1/tour/create", json=sample_tour_data, headers=auth_headers)

    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]


@pytest.mark.asyncio
async def test_create_tour_slug_taken_by_another_guide(test_client, guide_headers, sample_tour_data):
    await test_client.post("/v1/tour/create", json=sample_tour_data, headers=guide_headers("guide-001"))
    response = await test_client.post("/v1/tour/create", json=sample_tour_data, headers=guide_headers("guide-002"))

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_create_tour_missing_auth(test_client, sample_tour_data):
    response = await test_client.post("/v1/tour/create", json=sample_tour_data)

    assert response.status_code == 401
    data = response.json()
    assert data["status"] == 401
    assert data["title"] == "Authentication Required"
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_create_tour_invalid_token(test_client, sample_tour_data):
    response = await test_client.post(
        "/v1/tour/create",
        json=sample_tour_data,
        headers={"Authorization": "Bearer not-a-jwt"}
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_tour_invalid_data(test_client, auth_headers):
    invalid_data = {
        "title": "",
        "slug": "Not A Slug",
        "price": "-5",
    }

    response = await test_client.post("/v1/tour/create", json=invalid_data, headers=auth_headers)

    assert response.status_code == 422
    data = response.json()
    assert data["status"] == 422
    paths = {violation["path"] for violation in data["violations"]}
    assert {"body.title", "body.slug", "body.price"} <= paths


@pytest.mark.asyncio
async def test_upsert_guide(test_client, auth_headers, guide_request_data):
    response = await test_client.post("/v1/guide/upsert", json=guide_request_data, headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["guide_id"] == "guide-001"
    assert data["payouts_enabled"] is True
    assert data["deposit_type"] == "percentage"
    assert data["early_bird_settings"]["tier1_days"] == 60

    updated = await test_client.post(
        "/v1/guide/upsert",
        json={**guide_request_data, "stripe_account_id": None, "discounts_disabled": True},
        headers=auth_headers,
    )
    assert updated.json()["payouts_enabled"] is False
    assert updated.json()["discounts_disabled"] is True


@pytest.mark.asyncio
async def test_slot_availability_and_reserve(test_client, open_slot):
    slot = await open_slot(spots_total=6)
    assert slot["availability_status"] == "available"

    headers = {"Idempotency-Key": "reserve-1"}
    body = {"slot_id": slot["id"], "count": 2}
    first = await test_client.post("/v1/slot/reserve", json=body, headers=headers)
    replay = await test_client.post("/v1/slot/reserve", json=body, headers=headers)

    assert first.status_code == 200
    assert replay.json() == first.json()
    assert first.json()["spots_remaining"] == 4
    assert first.json()["availability_status"] == "limited"

    response = await test_client.get("/v1/slot/availability", params={"tour_id": slot["tour_id"]})
    assert response.status_code == 200
    listed = response.json()["slots"]
    assert [item["id"] for item in listed] == [slot["id"]]
    assert listed[0]["spots_booked"] == 2


@pytest.mark.asyncio
async def test_reserve_over_capacity(test_client, open_slot):
    slot = await open_slot(spots_total=2)

    response = await test_client.post("/v1/slot/reserve", json={"slot_id": slot["id"], "count": 3})

    assert response.status_code == 409
    data = response.json()
    assert data["code"] == "CAPACITY_EXCEEDED"
    assert data["spots_remaining"] == 2


@pytest.mark.asyncio
async def test_availability_rejects_inverted_range(test_client, open_slot):
    slot = await open_slot()

    response = await test_client.get(
        "/v1/slot/availability",
        params={"tour_id": slot["tour_id"], "date_from": slot_date(20), "date_to": slot_date(5)},
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_slot_on_another_guides_tour(test_client, guide_headers, listed_tour):
    tour = await listed_tour()

    response = await test_client.post(
        "/v1/slot/create",
        json={"tour_id": tour["id"], "slot_date": slot_date(), "spots_total": 4},
        headers=guide_headers("guide-002"),
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_release_and_delete_slot(test_client, auth_headers, open_slot):
    slot = await open_slot()
    await test_client.post("/v1/slot/reserve", json={"slot_id": slot["id"], "count": 3})

    released = await test_client.post("/v1/slot/release", json={"slot_id": slot["id"], "count": 5})
    assert released.json()["slot"]["spots_booked"] == 0

    response = await test_client.post("/v1/slot/delete", json={"slot_id": slot["id"]}, headers=auth_headers)
    assert response.json() == {"deleted": True, "slot_id": slot["id"]}


@pytest.mark.asyncio
async def test_pricing_quote(test_client, open_slot):
    slot = await open_slot(days_ahead=10)

    response = await test_client.post("/v1/pricing/quote", json={"slot_id": slot["id"], "participants": 1})

    assert response.status_code == 200
    breakdown = response.json()["breakdown"]
    assert Decimal(breakdown["base_price"]) == Decimal("100")
    assert Decimal(breakdown["final_price"]) == Decimal("90")
    assert Decimal(breakdown["deposit_amount"]) == Decimal("18")


@pytest.mark.asyncio
async def test_pricing_quote_requires_a_target(test_client):
    response = await test_client.post("/v1/pricing/quote", json={"participants": 2})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_checkout_webhook_and_cancel(test_client, open_slot, payment_gateway, email_sender):
    slot = await open_slot()

    checkout = await test_client.post(
        "/v1/booking/checkout",
        json={"slot_id": slot["id"], "participants": 2, "guest_email": "hiker@example.com"},
        headers={"Idempotency-Key": "checkout-1"},
    )
    assert checkout.status_code == 200
    booking = checkout.json()["booking"]
    assert booking["status"] == "pending"
    assert Decimal(booking["total_price"]) == Decimal("180")
    assert checkout.json()["checkout_url"].startswith("https://checkout.test/")

    session = payment_gateway.sessions[0]
    webhook = await test_client.post(
        "/v1/payments/webhook",
        content=completed_event("evt_1", session, "pi_api_1"),
        headers={"Stripe-Signature": WEBHOOK_SIGNATURE},
    )
    assert webhook.status_code == 200
    assert webhook.json()["duplicate"] is False

    fetched = await test_client.post("/v1/booking/get", json={"reference": booking["reference"]})
    assert fetched.json()["status"] == "confirmed"
    assert fetched.json()["payment_status"] == "succeeded"
    assert "booking_confirmed" in email_sender.templates()

    cancelled = await test_client.post(
        "/v1/booking/cancel",
        json={"reference": booking["reference"], "actor": "guide", "reason": "Storm warning"},
    )
    assert cancelled.json()["status"] == "cancelled"

    availability = await test_client.get("/v1/slot/availability", params={"tour_id": slot["tour_id"]})
    assert availability.json()["slots"][0]["spots_booked"] == 0


@pytest.mark.asyncio
async def test_webhook_redelivery_is_acknowledged(test_client, open_slot, payment_gateway):
    slot = await open_slot()
    await test_client.post(
        "/v1/booking/checkout",
        json={"slot_id": slot["id"], "participants": 1, "guest_email": "hiker@example.com"},
    )
    payload = completed_event("evt_dup", payment_gateway.sessions[0], "pi_api_dup")
    headers = {"Stripe-Signature": WEBHOOK_SIGNATURE}

    await test_client.post("/v1/payments/webhook", content=payload, headers=headers)
    again = await test_client.post("/v1/payments/webhook", content=payload, headers=headers)

    assert again.status_code == 200
    assert again.json()["duplicate"] is True


@pytest.mark.asyncio
async def test_webhook_with_bad_signature(test_client):
    response = await test_client.post(
        "/v1/payments/webhook",
        content=b'{"id": "evt_x", "type": "checkout.session.completed"}',
        headers={"Stripe-Signature": "t=1,v1=forged"},
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_confirm_payment_directly(test_client, open_slot):
    slot = await open_slot()
    confirmation = {
        "confirmation_id": "pi_direct_1",
        "customer_email": "walkin@example.com",
        "amount_total": 1800,
        "currency": "eur",
        "metadata": {"type": "slot_booking", "slot_id": slot["id"], "participants": "1"},
    }

    first = await test_client.post("/v1/payments/confirm", json=confirmation)
    second = await test_client.post("/v1/payments/confirm", json=confirmation)

    assert first.json()["outcome"] == "processed"
    assert second.json()["outcome"] == "duplicate"
    assert second.json()["booking"]["reference"] == first.json()["booking"]["reference"]


@pytest.mark.asyncio
async def test_unknown_booking_reference(test_client):
    response = await test_client.post("/v1/booking/get", json={"reference": "MTH-2026-ZZZZZZ"})

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_offer_create_view_accept(test_client, auth_headers, guide_request_data, payment_gateway):
    await test_client.post("/v1/guide/upsert", json=guide_request_data, headers=auth_headers)

    created = await test_client.post(
        "/v1/offer/create",
        json={
            "conversation_id": "conv-api",
            "guest_email": "family@example.com",
            "price_per_person": "150",
            "group_size": 4,
            "duration": "Full day",
        },
        headers={**auth_headers, "Idempotency-Key": "offer-1"},
    )
    assert created.status_code == 200
    token = created.json()["token"]
    assert Decimal(created.json()["total_price"]) == Decimal("600")

    viewed = await test_client.get("/v1/offer/view", params={"token": token})
    assert viewed.json()["status"] == "pending"
    assert viewed.json()["group_size"] == 4

    accepted = await test_client.get("/v1/offer/accept", params={"token": token})
    assert accepted.status_code == 200
    data = accepted.json()
    assert data["status"] == "payment_pending"
    assert Decimal(data["platform_fee"]) == Decimal("30")
    assert Decimal(data["guide_net_amount"]) == Decimal("570")
    assert payment_gateway.sessions[0]["destination_account"] == "acct_test_123"

    again = await test_client.post("/v1/offer/accept", json={"token": token})
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_declined_offer_cannot_be_accepted(test_client, auth_headers, guide_request_data, email_sender):
    await test_client.post("/v1/guide/upsert", json=guide_request_data, headers=auth_headers)
    created = await test_client.post(
        "/v1/offer/create",
        json={
            "conversation_id": "conv-decline",
            "guest_email": "busy@example.com",
            "price_per_person": "80",
            "group_size": 2,
            "duration": "Half day",
        },
        headers=auth_headers,
    )
    token = created.json()["token"]

    declined = await test_client.post("/v1/offer/decline", json={"token": token, "reason": "  Other plans  "})
    assert declined.json()["status"] == "declined"
    assert "offer_declined" in email_sender.templates()

    response = await test_client.get("/v1/offer/accept", params={"token": token})
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_offer_create_requires_auth(test_client):
    response = await test_client.post("/v1/offer/create", json={})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unknown_offer_token(test_client):
    response = await test_client.get("/v1/offer/view", params={"token": "missing-token"})

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_sweep_endpoints(test_client):
    abandoned = await test_client.post("/v1/sweep/abandoned-bookings")
    expired = await test_client.post("/v1/sweep/expired-offers")

    assert abandoned.status_code == 200
    assert abandoned.json()["sweeper"] == "abandoned_bookings"
    assert abandoned.json()["total"] == 0
    assert expired.json()["sweeper"] == "expired_offers"


@pytest.mark.asyncio
async def test_metrics_endpoint(test_client):
    """Test the Prometheus metrics endpoint."""
    response = await test_client.get("/metrics")

    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]
