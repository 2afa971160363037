"""Guide router for guide profiles and pricing policies."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProblemDetailsException
from ..models.guide import GuideProfile
from ..schemas.guide import Guide, UpsertGuideRequest
from ..services.guide_service import GuideService
from ..services.pricing_service import policy_for_guide
from .common import DB_DEPENDENCY, GUIDE_DEPENDENCY, internal_error, ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/guide", tags=["guide"])


def _convert_guide_to_schema(guide: GuideProfile) -> Guide:
    """Convert guide model to schema."""
    policy = policy_for_guide(guide)
    return Guide(
        guide_id=guide.guide_id,
        display_name=guide.display_name,
        email=guide.email,
        payouts_enabled=bool(guide.stripe_account_id),
        early_bird_settings=policy.early_bird,
        group_discount_settings=policy.group_discount,
        last_minute_settings=policy.last_minute,
        discounts_disabled=guide.discounts_disabled,
        deposit_type=policy.deposit.deposit_type,
        deposit_amount=policy.deposit.amount,
    )


@router.post("/upsert", response_model=Guide)
async def upsert_guide(
    request: UpsertGuideRequest,
    guide: dict = GUIDE_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Create or replace the calling guide's profile and pricing policy."""
    guide_service = GuideService(db)
    try:
        profile = await guide_service.upsert_guide(guide["guide_id"], request)
        return ok(_convert_guide_to_schema(profile))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in guide upsert", e, guide_id=guide["guide_id"]) from e
