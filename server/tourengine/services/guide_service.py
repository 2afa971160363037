"""Guide profile service."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError, StateConflictError
from ..models.guide import GuideProfile
from ..schemas.guide import UpsertGuideRequest

logger = logging.getLogger(__name__)


class GuideService:
    """Service for guide profiles and their pricing policies."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_guide(self, guide_id: str) -> Optional[GuideProfile]:
        result = await self.db.execute(
            select(GuideProfile).where(GuideProfile.guide_id == guide_id)
        )
        return result.scalar_one_or_none()

    async def get_guide_or_raise(self, guide_id: str) -> GuideProfile:
        """
        Get guide profile by external guide ID.

        Raises:
            NotFoundError: If guide not found
        """
        guide = await self.get_guide(guide_id)
        if guide is None:
            raise NotFoundError(resource_type="guide", resource_id=guide_id)
        return guide

    async def upsert_guide(self, guide_id: str, request: UpsertGuideRequest) -> GuideProfile:
        """
        Create the guide's profile or replace its settings.

        Discount settings arrive already validated as value types and are
        stored as JSON.
        """
        guide = await self.get_guide(guide_id)
        created = guide is None
        if guide is None:
            guide = GuideProfile(guide_id=guide_id)
            self.db.add(guide)

        guide.display_name = request.display_name
        guide.email = request.email
        guide.stripe_account_id = request.stripe_account_id
        guide.early_bird_settings = (
            request.early_bird_settings.model_dump(mode="json") if request.early_bird_settings else None
        )
        guide.group_discount_settings = (
            request.group_discount_settings.model_dump(mode="json") if request.group_discount_settings else None
        )
        guide.last_minute_settings = (
            request.last_minute_settings.model_dump(mode="json") if request.last_minute_settings else None
        )
        guide.discounts_disabled = request.discounts_disabled
        guide.deposit_type = request.deposit_type.value
        guide.deposit_amount = request.deposit_amount

        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise StateConflictError(detail=f"Guide profile '{guide_id}' was created concurrently") from e

        logger.info(
            "Guide profile saved",
            extra={
                "guide_id": guide_id,
                "created": created,
                "payouts_enabled": bool(guide.stripe_account_id),
            }
        )
        return guide
