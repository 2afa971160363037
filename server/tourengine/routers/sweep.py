"""Sweep router for running the lifecycle sweepers on demand."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProblemDetailsException
from ..schemas.sweep import SweepResult
from ..services.notification_service import NotificationDispatcher
from ..services.sweeper_service import SweeperService
from .common import DB_DEPENDENCY, NOTIFIER_DEPENDENCY, internal_error, ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/sweep", tags=["sweep"])


@router.post("/abandoned-bookings", response_model=SweepResult)
async def sweep_abandoned_bookings(
    db: AsyncSession = DB_DEPENDENCY,
    notifier: NotificationDispatcher = NOTIFIER_DEPENDENCY
) -> JSONResponse:
    """Cancel bookings abandoned before checkout and release their spots."""
    try:
        return ok(await SweeperService(db, notifier).sweep_abandoned_bookings())

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in abandoned booking sweep", e) from e


@router.post("/expired-offers", response_model=SweepResult)
async def sweep_expired_offers(
    db: AsyncSession = DB_DEPENDENCY,
    notifier: NotificationDispatcher = NOTIFIER_DEPENDENCY
) -> JSONResponse:
    """Expire pending offers past their expiry."""
    try:
        return ok(await SweeperService(db, notifier).sweep_expired_offers())

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise internal_error("Unexpected error in expired offer sweep", e) from e
