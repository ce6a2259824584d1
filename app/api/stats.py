"""Aggregate stats endpoint."""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from app.aggregators import StatsAggregator, get_aggregator
from app.schemas import AggregateStats
from app.services.item_store import ItemStoreError

logger = structlog.get_logger()

router = APIRouter(prefix="/api/stats", tags=["stats"])


@router.get("", response_model=AggregateStats)
async def get_stats(
    aggregator: Annotated[StatsAggregator, Depends(get_aggregator)],
) -> AggregateStats:
    """Get item count and average price.

    May serve a stale value while the cache refreshes in the background.
    """
    try:
        return await aggregator.get_stats()
    except ItemStoreError as e:
        logger.error("Failed to compute stats", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to read item store",
        )
