"""Tour service for business logic operations."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from ..core.database import utcnow
from ..core.exceptions import AuthorizationError, NotFoundError, StateConflictError
from ..models.tour import Tour
from ..schemas.tour import CreateTourRequest

logger = logging.getLogger(__name__)


def parse_uuid(value: str, resource_type: str) -> UUID:
    """Parse an identifier; malformed identifiers are reported as unknown."""
    try:
        return UUID(str(value))
    except ValueError:
        raise NotFoundError(resource_type=resource_type, resource_id=str(value))


class TourService:
    """Service for tour-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_tour(self, request: CreateTourRequest, guide_id: str) -> Tour:
        """
        Create a new listed tour for a guide.

        Args:
            request: Tour creation request
            guide_id: Owning guide

        Returns:
            Created tour entity

        Raises:
            StateConflictError: If tour with same slug already exists
        """
        existing_tour = await self.get_tour_by_slug(request.slug)
        if existing_tour:
            logger.warning(
                "Tour creation failed - slug already exists",
                extra={
                    "slug": request.slug,
                    "existing_tour_id": str(existing_tour.id)
                }
            )
            raise StateConflictError(
                detail=f"Tour with slug '{request.slug}' already exists",
                conflicting_resource={
                    "id": str(existing_tour.id),
                    "slug": existing_tour.slug,
                    "title": existing_tour.title
                }
            )

        tour = Tour(
            guide_id=guide_id,
            title=request.title,
            slug=request.slug,
            description=request.description,
            price=request.price,
            currency=request.currency,
            duration=request.duration,
            meeting_point=request.meeting_point,
            is_custom=False,
            is_active=True,
            archived=False,
        )

        try:
            self.db.add(tour)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(
                "Tour creation failed due to integrity constraint",
                extra={
                    "slug": request.slug,
                    "error": str(e)
                }
            )
            raise StateConflictError(
                detail=f"Tour with slug '{request.slug}' already exists"
            ) from e

        logger.info(
            "Tour created successfully",
            extra={
                "tour_id": str(tour.id),
                "guide_id": guide_id,
                "slug": tour.slug,
            }
        )
        return tour

    async def get_tour_by_id(self, tour_id: UUID) -> Optional[Tour]:
        stmt = select(Tour).where(Tour.id == tour_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tour_by_slug(self, slug: str) -> Optional[Tour]:
        stmt = select(Tour).where(Tour.slug == slug)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tour_by_id_or_raise(self, tour_id: UUID) -> Tour:
        """
        Get tour by ID or raise NotFoundError.

        Raises:
            NotFoundError: If tour not found
        """
        tour = await self.get_tour_by_id(tour_id)
        if not tour:
            logger.warning(
                "Tour not found",
                extra={"tour_id": str(tour_id)}
            )
            raise NotFoundError(
                resource_type="tour",
                resource_id=str(tour_id)
            )
        return tour

    async def get_tour_for_guide(self, tour_id: UUID, guide_id: str) -> Tour:
        """
        Get a tour the given guide owns.

        Raises:
            NotFoundError: If tour not found
            AuthorizationError: If the tour belongs to another guide
        """
        tour = await self.get_tour_by_id_or_raise(tour_id)
        if tour.guide_id != guide_id:
            logger.warning(
                "Guide attempted to manage a tour they do not own",
                extra={"tour_id": str(tour_id), "guide_id": guide_id}
            )
            raise AuthorizationError(detail=f"Tour {tour_id} belongs to another guide")
        return tour

    async def archive_tour(self, tour_id: UUID, commit: bool = True) -> bool:
        """Deactivate and archive a tour. Returns False if it was already archived."""
        result = await self.db.execute(
            update(Tour)
            .where(Tour.id == tour_id, Tour.archived.is_(False))
            .values(archived=True, is_active=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if commit:
            await self.db.commit()
        return result.rowcount > 0
