"""FastAPI application entry point for the Catalog service."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.aggregators import get_aggregator, start_aggregator, stop_aggregator
from app.api import items_router, stats_router
from app.core.config import get_settings
from app.core.observability import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    setup_observability,
)

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    logger.info("Starting Catalog API", version=settings.app_version, data_path=settings.data_path)

    # Warm stats cache, watch the item store and start periodic refresh
    await start_aggregator()

    yield

    logger.info("Shutting down Catalog API")

    await stop_aggregator()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Item catalog with cached aggregate statistics",
    lifespan=lifespan,
)

setup_observability(app)

# Middleware stack
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(items_router)
app.include_router(stats_router)


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    aggregator = get_aggregator()
    has_cache = aggregator.cache_entry is not None
    return {
        "status": "healthy" if has_cache else "degraded",
        "service": "catalog",
        "stats_cache_ready": has_cache,
    }


@app.get("/stats")
async def service_stats() -> dict:
    """Get service statistics."""
    aggregator = get_aggregator()
    return {
        "service": "catalog",
        "version": settings.app_version,
        "aggregator": aggregator.stats,
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Welcome to the Catalog API", "version": settings.app_version}
