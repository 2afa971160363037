"""Unit tests for tour service."""

from decimal import Decimal
from uuid import uuid4

import pytest

from tourengine.core.exceptions import AuthorizationError, NotFoundError, StateConflictError
from tourengine.schemas.tour import CreateTourRequest
from tourengine.services.tour_service import TourService, parse_uuid


@pytest.mark.asyncio
async def test_create_tour(test_session, sample_tour_data):
    """Test creating a tour."""
    service = TourService(test_session)

    tour = await service.create_tour(CreateTourRequest(**sample_tour_data), "guide-001")

    assert tour.id is not None
    assert tour.title == sample_tour_data["title"]
    assert tour.slug == sample_tour_data["slug"]
    assert tour.price == Decimal("100.00")
    assert tour.is_active is True
    assert tour.is_custom is False
    assert tour.archived is False


@pytest.mark.asyncio
async def test_create_tour_duplicate_slug(test_session, sample_tour_data):
    """Test creating a tour with duplicate slug raises error."""
    service = TourService(test_session)
    await service.create_tour(CreateTourRequest(**sample_tour_data), "guide-001")

    with pytest.raises(StateConflictError):
        await service.create_tour(
            CreateTourRequest(**{**sample_tour_data, "title": "Different Tour"}),
            "guide-002",
        )


@pytest.mark.asyncio
async def test_get_tour_by_id(test_session, create_tour):
    service = TourService(test_session)
    created = await create_tour()

    found = await service.get_tour_by_id(created.id)

    assert found is not None
    assert found.id == created.id


@pytest.mark.asyncio
async def test_get_tour_by_id_not_found(test_session):
    """Test getting a non-existent tour returns None."""
    service = TourService(test_session)
    assert await service.get_tour_by_id(uuid4()) is None

    with pytest.raises(NotFoundError):
        await service.get_tour_by_id_or_raise(uuid4())


@pytest.mark.asyncio
async def test_get_tour_for_guide_checks_ownership(test_session, create_tour):
    service = TourService(test_session)
    tour = await create_tour(guide_id="guide-001")

    assert (await service.get_tour_for_guide(tour.id, "guide-001")).id == tour.id
    with pytest.raises(AuthorizationError):
        await service.get_tour_for_guide(tour.id, "guide-999")


@pytest.mark.asyncio
async def test_archive_tour_only_once(test_session, create_tour):
    service = TourService(test_session)
    tour = await create_tour()

    assert await service.archive_tour(tour.id) is True
    assert await service.archive_tour(tour.id) is False

    await test_session.refresh(tour)
    assert tour.archived is True
    assert tour.is_active is False


def test_parse_uuid_treats_malformed_ids_as_unknown():
    value = uuid4()
    assert parse_uuid(str(value), "tour") == value

    with pytest.raises(NotFoundError):
        parse_uuid("not-a-uuid", "tour")
