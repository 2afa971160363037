"""FastAPI routers package."""

from .booking import router as booking_router
from .guide import router as guide_router
from .health import router as health_router
from .metrics import router as metrics_router
from .offer import router as offer_router
from .payments import router as payments_router
from .pricing import router as pricing_router
from .slot import router as slot_router
from .sweep import router as sweep_router
from .tour import router as tour_router

__all__ = [
    "booking_router",
    "guide_router",
    "health_router",
    "metrics_router",
    "offer_router",
    "payments_router",
    "pricing_router",
    "slot_router",
    "sweep_router",
    "tour_router",
]
