"""Stats aggregation over the item store."""

from app.aggregators.stats_aggregator import (
    ChangeOutcome,
    StatsAggregator,
    get_aggregator,
    start_aggregator,
    stop_aggregator,
)

__all__ = [
    "ChangeOutcome",
    "StatsAggregator",
    "get_aggregator",
    "start_aggregator",
    "stop_aggregator",
]
