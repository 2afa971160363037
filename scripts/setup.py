#!/usr/bin/env python3
"""Setup script for the tour engine: migrations plus a sample guide, tour and dates."""

import asyncio
import logging
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from tourengine import models  # noqa: F401
from tourengine.core.database import async_session_factory, close_db, utcnow
from tourengine.models.guide import DepositType, GuideProfile
from tourengine.models.slot import TourDateSlot
from tourengine.models.tour import Tour

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_GUIDE_ID = "guide-sample-001"


def run_migrations() -> None:
    """Upgrade the database schema to the latest revision."""
    logger.info("Running database migrations...")
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data() -> None:
    """Create a guide with a pricing policy, one listed tour and a few dates."""
    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        try:
            existing_tours = await db.execute(select(func.count()).select_from(Tour))
            if existing_tours.scalar() > 0:
                logger.info("Sample data already exists, skipping...")
                return

            db.add(GuideProfile(
                guide_id=SAMPLE_GUIDE_ID,
                display_name="Alpine Trails",
                email="guide@example.com",
                early_bird_settings={
                    "enabled": True,
                    "tier1_days": 90, "tier1_percent": "15",
                    "tier2_days": 60, "tier2_percent": "10",
                    "tier3_days": 30, "tier3_percent": "5",
                },
                group_discount_settings={
                    "enabled": True,
                    "tier1_min": 3, "tier1_max": 4, "tier1_percent": "5",
                    "tier2_min": 5, "tier2_max": 7, "tier2_percent": "10",
                    "tier3_min": 8, "tier3_percent": "15",
                },
                last_minute_settings={"enabled": True, "hours": 48, "percent": "10"},
                deposit_type=DepositType.PERCENTAGE.value,
                deposit_amount=Decimal("20"),
            ))

            tour = Tour(
                guide_id=SAMPLE_GUIDE_ID,
                title="Dolomites Ridge Traverse",
                slug="dolomites-ridge-traverse",
                description="A full-day guided ridge hike with panoramic views",
                duration="8 hours",
                meeting_point="Passo Gardena car park",
                price=Decimal("120.00"),
                currency="EUR",
            )
            db.add(tour)
            await db.flush()

            base_date = utcnow().date() + timedelta(days=30)
            for i in range(5):
                db.add(TourDateSlot(
                    tour_id=tour.id,
                    slot_date=base_date + timedelta(days=i * 7),
                    spots_total=12,
                    spots_booked=0,
                ))

            await db.commit()
            logger.info("Sample data created successfully!", extra={"tour_id": str(tour.id)})

        except Exception as e:
            await db.rollback()
            logger.error(f"Failed to create sample data: {e}")
            raise


async def main() -> None:
    """Main setup function."""
    logger.info("Starting tour engine setup...")

    await asyncio.to_thread(run_migrations)
    await create_sample_data()
    await close_db()

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn tourengine.main:app --reload")


if __name__ == "__main__":
    asyncio.run(main())
