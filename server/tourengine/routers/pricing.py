"""Pricing router for price quotes."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProblemDetailsException
from ..schemas.pricing import Quote, QuoteRequest
from ..services.booking_service import BookingService
from .common import DB_DEPENDENCY, internal_error, ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/pricing", tags=["pricing"])


@router.post("/quote", response_model=Quote)
async def quote(
    request: QuoteRequest,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Quote the price of a slot or an explicit base price under a guide's policy.

    The quote is informational; nothing is reserved.
    """
    booking_service = BookingService(db)
    try:
        result = await booking_service.quote(request)

        logger.info(
            "Price quoted",
            extra={
                "slot_id": request.slot_id,
                "guide_id": request.guide_id,
                "participants": request.participants,
                "final_price": str(result.breakdown.final_price),
            }
        )
        return ok(result)

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in price quote", e, slot_id=request.slot_id) from e
