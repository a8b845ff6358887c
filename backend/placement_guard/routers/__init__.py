"""Placement Guard - API Routers"""
from .access import router as access_router
from .messages import router as messages_router
from .alerts import router as alerts_router
from .enforcement import router as enforcement_router
from .scheduler import router as scheduler_router

__all__ = [
    "access_router",
    "messages_router",
    "alerts_router",
    "enforcement_router",
    "scheduler_router",
]
