"""Tour router for tour management operations."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProblemDetailsException
from ..models.tour import Tour as TourModel
from ..schemas.tour import CreateTourRequest, Tour
from ..services.tour_service import TourService
from .common import DB_DEPENDENCY, GUIDE_DEPENDENCY, internal_error, ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/tour", tags=["tour"])


def _convert_tour_to_schema(tour: TourModel) -> Tour:
    """Convert tour model to schema."""
    return Tour(
        id=str(tour.id),
        guide_id=tour.guide_id,
        title=tour.title,
        slug=tour.slug,
        description=tour.description,
        price=tour.price,
        currency=tour.currency,
        is_custom=tour.is_custom,
        is_active=tour.is_active,
        archived=tour.archived,
    )


@router.post("/create", response_model=Tour)
async def create_tour(
    request: CreateTourRequest,
    guide: dict = GUIDE_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Create a new listed tour for the calling guide.

    Repeating the request with the same slug and title returns the existing tour.
    """
    tour_service = TourService(db)

    try:
        existing_tour = await tour_service.get_tour_by_slug(request.slug)
        if (
            existing_tour
            and existing_tour.guide_id == guide["guide_id"]
            and existing_tour.title == request.title
            and existing_tour.description == request.description
        ):
            logger.info(
                "Tour creation - returning existing tour (idempotent)",
                extra={
                    "tour_id": str(existing_tour.id),
                    "slug": request.slug,
                }
            )
            return ok(_convert_tour_to_schema(existing_tour))

        tour = await tour_service.create_tour(request, guide["guide_id"])
        return ok(_convert_tour_to_schema(tour))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in tour creation", e, slug=request.slug) from e
