"""Unit tests for the Stripe gateway."""

from types import SimpleNamespace

import pytest
import stripe

from tourengine.core.config import settings
from tourengine.core.exceptions import ExternalServiceError, ValidationError
from tourengine.services.payment_gateway import StripePaymentGateway


@pytest.fixture
def captured_sessions(monkeypatch):
    """Replace the Stripe session call and collect its parameters."""
    calls = []

    def create(**params):
        calls.append(params)
        return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.test/cs_test_1")

    monkeypatch.setattr(stripe.checkout.Session, "create", create)
    return calls


async def open_session(gateway, **overrides):
    params = dict(
        amount_cents=9000,
        currency="EUR",
        success_url="https://tours.example/success",
        cancel_url="https://tours.example/cancel",
        metadata={"type": "slot_booking", "booking_id": "b-1"},
        description="Lakeside Loop",
    )
    params.update(overrides)
    return await gateway.create_checkout_session(**params)


@pytest.mark.asyncio
async def test_checkout_session_lapses_after_the_grace_window(monkeypatch, captured_sessions):
    monkeypatch.setattr(settings, "abandoned_booking_grace_minutes", 45)
    monkeypatch.setattr("tourengine.services.payment_gateway.time.time", lambda: 1_700_000_000.5)

    handle = await open_session(StripePaymentGateway(api_key="sk_test", webhook_secret="whsec"))

    assert handle.id == "cs_test_1"
    params = captured_sessions[0]
    assert params["expires_at"] == 1_700_000_000 + 45 * 60
    assert params["mode"] == "payment"
    assert params["line_items"][0]["price_data"]["currency"] == "eur"
    assert params["line_items"][0]["price_data"]["unit_amount"] == 9000


@pytest.mark.asyncio
async def test_checkout_session_expiry_respects_stripe_minimum(monkeypatch, captured_sessions):
    monkeypatch.setattr(settings, "abandoned_booking_grace_minutes", 10)

    await open_session(StripePaymentGateway(api_key="sk_test", webhook_secret="whsec"))

    assert StripePaymentGateway.session_expiry(now=1000) == 1000 + 30 * 60
    assert captured_sessions[0]["expires_at"] > 0


@pytest.mark.asyncio
async def test_destination_charge_carries_platform_fee(captured_sessions):
    await open_session(
        StripePaymentGateway(api_key="sk_test", webhook_secret="whsec"),
        fee_amount_cents=450,
        destination_account="acct_guide",
    )

    intent = captured_sessions[0]["payment_intent_data"]
    assert intent["transfer_data"] == {"destination": "acct_guide"}
    assert intent["application_fee_amount"] == 450


@pytest.mark.asyncio
async def test_unconfigured_gateway_refuses_checkout(captured_sessions):
    with pytest.raises(ExternalServiceError):
        await open_session(StripePaymentGateway(api_key="", webhook_secret="whsec"))

    assert captured_sessions == []


def test_webhook_requires_signature():
    gateway = StripePaymentGateway(api_key="sk_test", webhook_secret="whsec")

    with pytest.raises(ValidationError):
        gateway.parse_webhook_event(b"{}", None)
