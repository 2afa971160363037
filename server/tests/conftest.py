"""Test configuration and fixtures."""

import json
import os
from datetime import timedelta
from typing import Any, Optional

# Settings are read at import time, so the environment is prepared first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("WORKERS_ENABLED", "false")

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from tourengine import models  # noqa: F401
from tourengine.core.config import settings
from tourengine.core.database import Base, get_db, utcnow
from tourengine.core.dependencies import get_email_sender, get_payment_gateway
from tourengine.core.exceptions import ExternalServiceError, ValidationError
from tourengine.schemas.guide import UpsertGuideRequest
from tourengine.schemas.slot import CreateSlotRequest
from tourengine.schemas.tour import CreateTourRequest
from tourengine.services.guide_service import GuideService
from tourengine.services.notification_service import NotificationDispatcher
from tourengine.services.payment_gateway import CheckoutSessionHandle
from tourengine.services.slot_service import SlotService
from tourengine.services.tour_service import TourService

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

GUIDE_ID = "guide-001"
WEBHOOK_SIGNATURE = "t=1,v1=test-signature"


class FakePaymentGateway:
    """Records checkout sessions instead of calling the processor."""

    def __init__(self):
        self.sessions: list[dict[str, Any]] = []
        self.fail_next = False

    async def create_checkout_session(
        self,
        amount_cents: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        description: str,
        customer_email: Optional[str] = None,
        fee_amount_cents: Optional[int] = None,
        destination_account: Optional[str] = None,
    ) -> CheckoutSessionHandle:
        if self.fail_next:
            self.fail_next = False
            raise ExternalServiceError("payment", detail="Processor unavailable")

        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({
            "id": session_id,
            "amount_cents": amount_cents,
            "currency": currency,
            "metadata": dict(metadata),
            "customer_email": customer_email,
            "fee_amount_cents": fee_amount_cents,
            "destination_account": destination_account,
        })
        return CheckoutSessionHandle(id=session_id, url=f"https://checkout.test/{session_id}")

    def parse_webhook_event(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        if signature != WEBHOOK_SIGNATURE:
            raise ValidationError(detail="Invalid webhook signature")
        return json.loads(payload)


class FakeEmailSender:
    """Collects sent emails; set ``fail`` to simulate a provider outage."""

    def __init__(self):
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self.fail = False

    async def send(self, to: str, template: str, data: dict[str, Any]) -> bool:
        if self.fail:
            raise RuntimeError("email provider down")
        self.sent.append((to, template, data))
        return True

    def templates(self) -> list[str]:
        return [template for _, template, _ in self.sent]


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def file_session_factory(tmp_path):
    """
    Session factory over a file-backed SQLite database.

    Every session gets its own connection, so concurrently running sessions
    really contend on the database like separate processes would.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.fixture
def payment_gateway():
    return FakePaymentGateway()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def notifier(test_session, email_sender):
    return NotificationDispatcher(test_session, email_sender)


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session, payment_gateway, email_sender):
    """The real application with the database and collaborators overridden."""
    from tourengine.main import create_app

    app = create_app()

    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: payment_gateway
    app.dependency_overrides[get_email_sender] = lambda: email_sender

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def make_guide_token(guide_id: str = GUIDE_ID, **claims: Any) -> str:
    payload = {"sub": guide_id, "email": f"{guide_id}@example.com", **claims}
    return jwt.encode(payload, settings.bearer_token_secret, algorithm="HS256")


@pytest.fixture
def auth_headers():
    """Bearer token headers of the default test guide."""
    return {"Authorization": f"Bearer {make_guide_token()}"}


@pytest.fixture
def guide_headers():
    """Factory of bearer token headers for any guide."""

    def _headers(guide_id: str = GUIDE_ID) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_guide_token(guide_id)}"}

    return _headers


@pytest.fixture
def guide_request_data():
    """Guide profile with an early bird policy and a 20% deposit."""
    return {
        "display_name": "Alpine Trails",
        "email": "guide@example.com",
        "stripe_account_id": "acct_test_123",
        "early_bird_settings": {
            "enabled": True,
            "tier1_days": 60, "tier1_percent": "20",
            "tier2_days": 30, "tier2_percent": "15",
            "tier3_days": 7, "tier3_percent": "10",
        },
        "deposit_type": "percentage",
        "deposit_amount": "20",
    }


@pytest.fixture
def sample_tour_data():
    """Sample tour data for testing."""
    return {
        "title": "Dolomites Ridge Traverse",
        "slug": "dolomites-ridge-traverse",
        "description": "A full-day guided ridge hike",
        "price": "100.00",
        "currency": "EUR",
        "duration": "8 hours",
    }


@pytest.fixture
def create_guide(test_session, guide_request_data):
    """Factory creating a guide profile; keyword overrides replace request fields."""

    async def _create(guide_id: str = GUIDE_ID, **overrides: Any):
        data = {**guide_request_data, **overrides}
        return await GuideService(test_session).upsert_guide(guide_id, UpsertGuideRequest(**data))

    return _create


@pytest.fixture
def create_tour(test_session, sample_tour_data):
    async def _create(guide_id: str = GUIDE_ID, **overrides: Any):
        data = {**sample_tour_data, **overrides}
        return await TourService(test_session).create_tour(CreateTourRequest(**data), guide_id)

    return _create


@pytest.fixture
def create_slot(test_session):
    async def _create(tour_id, days_ahead: int = 10, spots_total: int = 8, **overrides: Any):
        request = CreateSlotRequest(
            tour_id=str(tour_id),
            slot_date=utcnow().date() + timedelta(days=days_ahead),
            spots_total=spots_total,
            **overrides,
        )
        return await SlotService(test_session).create_slot(request)

    return _create


@pytest_asyncio.fixture(scope="function")
async def listed_slot(create_guide, create_tour, create_slot):
    """A guide, a tour priced 100 EUR and a slot 10 days out with 8 spots."""
    guide = await create_guide()
    tour = await create_tour()
    slot = await create_slot(tour.id)
    return guide, tour, slot

