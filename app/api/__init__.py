"""API routers."""

from app.api.items import router as items_router
from app.api.stats import router as stats_router

__all__ = ["items_router", "stats_router"]
